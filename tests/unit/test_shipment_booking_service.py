"""Unit tests for ShipmentBookingService."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.api.middleware.error_handler import APIError, AuthorizationError, ConflictError, NotFoundError
from src.core.http import OutboundProviderError
from src.models.status import Carrier
from src.services.carriers import BookedShipment
from src.services.shipment_booking_service import ShipmentBookingService
from tests.fakes import (
    CUSTOMER_ID,
    ORDER_ID,
    OTHER_USER_ID,
    SHOPKEEPER_ID,
    FakeOrderStore,
    make_order,
    make_shipment,
)

SHOP_A = "shop-a"
SHOP_B = "shop-b"


@pytest.fixture
def mock_carrier() -> MagicMock:
    carrier = MagicMock()
    carrier.name = Carrier.SHIPROCKET
    carrier.create_shipment = AsyncMock(return_value=BookedShipment(tracking_id="AWB-1", shipment_id="SR-9"))
    carrier.track_shipment = AsyncMock(return_value={"current_status": "IN TRANSIT"})
    return carrier


@pytest.fixture
def service(fake_store: FakeOrderStore, mock_carrier: MagicMock) -> ShipmentBookingService:
    return ShipmentBookingService(store=fake_store, carrier_factory=lambda name: mock_carrier)


@pytest.fixture
def two_shop_order(fake_store: FakeOrderStore) -> dict:
    fake_store.add_shop({"id": SHOP_A, "owner_id": SHOPKEEPER_ID, "pickup_address": {"city": "Pune"}})
    fake_store.add_shop({"id": SHOP_B, "owner_id": OTHER_USER_ID})
    return fake_store.add_order(make_order([make_shipment(SHOP_A), make_shipment(SHOP_B)]))


class TestBookShipment:
    """Tests for book_shipment."""

    @pytest.mark.asyncio
    async def test_books_and_confirms_shop_shipment(
        self, service: ShipmentBookingService, mock_carrier: MagicMock, two_shop_order: dict
    ) -> None:
        """Test that only the shop's shipment gets the tracking id and confirmed status."""
        order = await service.book_shipment(ORDER_ID, SHOP_A, "shiprocket", SHOPKEEPER_ID)

        booked, other = order["shipments"]
        assert booked["tracking_id"] == "AWB-1"
        assert booked["shipment_id"] == "SR-9"
        assert booked["carrier"] == "shiprocket"
        assert booked["status"] == "confirmed"
        assert booked["status_history"][-1]["by"] == SHOPKEEPER_ID
        assert other["status"] == "pending"
        assert other["tracking_id"] is None
        assert order["status"] == "confirmed"

        _, shop_id, items, pickup = mock_carrier.create_shipment.await_args.args
        assert shop_id == SHOP_A
        assert [i["product_id"] for i in items] == ["prod-1"]
        assert pickup == {"city": "Pune"}

    @pytest.mark.asyncio
    async def test_refuses_second_booking(self, service: ShipmentBookingService, two_shop_order: dict) -> None:
        """Test that an already booked shipment is not booked again."""
        await service.book_shipment(ORDER_ID, SHOP_A, "shiprocket", SHOPKEEPER_ID)

        with pytest.raises(ConflictError, match="already booked"):
            await service.book_shipment(ORDER_ID, SHOP_A, "shiprocket", SHOPKEEPER_ID)

    @pytest.mark.asyncio
    async def test_refuses_cancelled_order(
        self, service: ShipmentBookingService, fake_store: FakeOrderStore, two_shop_order: dict
    ) -> None:
        """Test that cancelled orders cannot be booked."""
        fake_store.orders[ORDER_ID]["status"] = "cancelled"

        with pytest.raises(ConflictError, match="cancelled"):
            await service.book_shipment(ORDER_ID, SHOP_A, "shiprocket", SHOPKEEPER_ID)

    @pytest.mark.asyncio
    async def test_refuses_non_owner(self, service: ShipmentBookingService, two_shop_order: dict) -> None:
        """Test that a user cannot book another shop's shipment."""
        with pytest.raises(AuthorizationError):
            await service.book_shipment(ORDER_ID, SHOP_A, "shiprocket", OTHER_USER_ID)

    @pytest.mark.asyncio
    async def test_shop_without_shipment_is_not_found(
        self, service: ShipmentBookingService, fake_store: FakeOrderStore, two_shop_order: dict
    ) -> None:
        """Test that a shop with nothing in the order gets NotFoundError."""
        fake_store.add_shop({"id": "shop-c", "owner_id": SHOPKEEPER_ID})

        with pytest.raises(NotFoundError):
            await service.book_shipment(ORDER_ID, "shop-c", "shiprocket", SHOPKEEPER_ID)

    @pytest.mark.asyncio
    async def test_carrier_rejection_is_bad_gateway(
        self,
        service: ShipmentBookingService,
        fake_store: FakeOrderStore,
        mock_carrier: MagicMock,
        two_shop_order: dict,
    ) -> None:
        """Test that a carrier failure surfaces as 502 and leaves the order unchanged."""
        mock_carrier.create_shipment.side_effect = OutboundProviderError(
            "shiprocket", "create_shipment", "HTTP 422", status_code=422
        )

        with pytest.raises(APIError) as exc_info:
            await service.book_shipment(ORDER_ID, SHOP_A, "shiprocket", SHOPKEEPER_ID)

        assert exc_info.value.status_code == 502
        assert fake_store.orders[ORDER_ID]["shipments"][0]["tracking_id"] is None
        assert fake_store.update_order_calls == 0

    @pytest.mark.asyncio
    async def test_cancel_during_booking_keeps_order_cancelled(
        self,
        service: ShipmentBookingService,
        fake_store: FakeOrderStore,
        mock_carrier: MagicMock,
        two_shop_order: dict,
    ) -> None:
        """Test that a cancellation landing mid-booking wins and the carrier booking is released."""

        async def cancel_while_booking(*args, **kwargs) -> BookedShipment:
            stored = fake_store.orders[ORDER_ID]
            stored["status"] = "cancelled"
            for shipment in stored["shipments"]:
                shipment["status"] = "cancelled"
            stored["version"] += 1
            return BookedShipment(tracking_id="AWB-LATE", shipment_id="SR-10")

        mock_carrier.create_shipment.side_effect = cancel_while_booking
        mock_carrier.cancel_shipment = AsyncMock(return_value={})

        with pytest.raises(ConflictError, match="cancelled"):
            await service.book_shipment(ORDER_ID, SHOP_A, "shiprocket", SHOPKEEPER_ID)

        stored = fake_store.orders[ORDER_ID]
        assert stored["status"] == "cancelled"
        assert stored["shipments"][0]["status"] == "cancelled"
        assert stored["shipments"][0]["tracking_id"] is None
        mock_carrier.cancel_shipment.assert_awaited_once_with("AWB-LATE")

    @pytest.mark.asyncio
    async def test_concurrent_booking_keeps_first_tracking_id(
        self,
        service: ShipmentBookingService,
        fake_store: FakeOrderStore,
        mock_carrier: MagicMock,
        two_shop_order: dict,
    ) -> None:
        """Test that a booking finishing second releases its own booking and leaves the first in place."""

        async def booked_elsewhere(*args, **kwargs) -> BookedShipment:
            stored = fake_store.orders[ORDER_ID]
            stored["shipments"][0].update(tracking_id="AWB-FIRST", status="confirmed")
            stored["version"] += 1
            return BookedShipment(tracking_id="AWB-SECOND", shipment_id="SR-11")

        mock_carrier.create_shipment.side_effect = booked_elsewhere
        mock_carrier.cancel_shipment = AsyncMock(return_value={})

        with pytest.raises(ConflictError, match="already booked"):
            await service.book_shipment(ORDER_ID, SHOP_A, "shiprocket", SHOPKEEPER_ID)

        assert fake_store.orders[ORDER_ID]["shipments"][0]["tracking_id"] == "AWB-FIRST"
        mock_carrier.cancel_shipment.assert_awaited_once_with("AWB-SECOND")

    @pytest.mark.asyncio
    async def test_failed_release_still_reports_conflict(
        self,
        service: ShipmentBookingService,
        fake_store: FakeOrderStore,
        mock_carrier: MagicMock,
        two_shop_order: dict,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Test that a carrier error while releasing the booking is logged and the conflict still raised."""

        async def cancel_while_booking(*args, **kwargs) -> BookedShipment:
            fake_store.orders[ORDER_ID]["status"] = "cancelled"
            fake_store.orders[ORDER_ID]["version"] += 1
            return BookedShipment(tracking_id="AWB-LATE", shipment_id=None)

        mock_carrier.create_shipment.side_effect = cancel_while_booking
        mock_carrier.cancel_shipment = AsyncMock(
            side_effect=OutboundProviderError("shiprocket", "cancel_shipment", "HTTP 500", status_code=500)
        )

        with pytest.raises(ConflictError):
            await service.book_shipment(ORDER_ID, SHOP_A, "shiprocket", SHOPKEEPER_ID)

        assert "Could not release carrier booking AWB-LATE" in caplog.text


class TestTrackOrder:
    """Tests for track_order."""

    @pytest.mark.asyncio
    async def test_entries_for_every_shipment(
        self, service: ShipmentBookingService, fake_store: FakeOrderStore, mock_carrier: MagicMock
    ) -> None:
        """Test that booked shipments are tracked and unbooked ones listed without a lookup."""
        fake_store.add_order(
            make_order([make_shipment(SHOP_A, "in_transit", "AWB-1", "shiprocket"), make_shipment(SHOP_B)])
        )

        entries = await service.track_order(ORDER_ID, CUSTOMER_ID)

        assert entries[0]["tracking"] == {"current_status": "IN TRANSIT"}
        assert entries[0]["error"] is None
        assert entries[1]["tracking"] is None
        assert entries[1]["tracking_id"] is None
        mock_carrier.track_shipment.assert_awaited_once_with("AWB-1")

    @pytest.mark.asyncio
    async def test_failure_only_affects_its_entry(
        self, service: ShipmentBookingService, fake_store: FakeOrderStore, mock_carrier: MagicMock
    ) -> None:
        """Test that one carrier outage leaves the other entries intact."""
        fake_store.add_order(
            make_order(
                [
                    make_shipment(SHOP_A, "shipped", "AWB-1", "shiprocket"),
                    make_shipment(SHOP_B, "shipped", "AWB-2", "shiprocket"),
                ]
            )
        )
        mock_carrier.track_shipment.side_effect = [
            OutboundProviderError("shiprocket", "track_shipment", "retries exhausted"),
            {"current_status": "SHIPPED"},
        ]

        entries = await service.track_order(ORDER_ID, CUSTOMER_ID)

        assert entries[0]["error"] == "Tracking is temporarily unavailable"
        assert entries[1]["tracking"] == {"current_status": "SHIPPED"}

    @pytest.mark.asyncio
    async def test_other_customer_is_refused(self, service: ShipmentBookingService, fake_store: FakeOrderStore) -> None:
        """Test that tracking is limited to the order's customer."""
        fake_store.add_order(make_order([make_shipment(SHOP_A)]))

        with pytest.raises(AuthorizationError):
            await service.track_order(ORDER_ID, OTHER_USER_ID)
