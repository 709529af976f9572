"""Carrier booking and tracking for order shipments."""

import logging
from typing import Any

from fastapi import status

from src.api.middleware.error_handler import APIError, ConflictError, NotFoundError
from src.core.http import OutboundProviderError
from src.models.status import ShipmentStatus
from src.services.carriers import get_carrier
from src.services.order_service import OrderService
from src.services.order_store import OrderStore
from src.services.shipment_updates import ShipmentUpdateService, find_shipment_index

logger = logging.getLogger(__name__)


def _ensure_bookable(order: dict[str, Any], index: int) -> None:
    if order["status"] == ShipmentStatus.CANCELLED.value:
        raise ConflictError("Order is cancelled")
    if order["shipments"][index].get("tracking_id"):
        raise ConflictError("Shipment is already booked")


class ShipmentBookingService:
    """Book shipments with carriers and look up their tracking."""

    def __init__(self, store: OrderStore | None = None, carrier_factory=get_carrier) -> None:
        """Initialize booking service."""
        self.store = store or OrderStore()
        self.orders = OrderService(self.store)
        self.updates = ShipmentUpdateService(self.store)
        self.carrier_factory = carrier_factory

    async def book_shipment(
        self,
        order_id: str,
        shop_id: str,
        carrier_name: str,
        user_id: str,
    ) -> dict[str, Any]:
        """Book the shipment of one shop's items and mark it confirmed.

        Args:
            order_id: Order to ship.
            shop_id: Shop whose items are shipped.
            carrier_name: Carrier to book with (case-insensitive).
            user_id: Shopkeeper making the booking.

        Returns:
            dict: The updated order.

        Raises:
            ValidationError: If the carrier is not supported.
            NotFoundError: If the order, shop or shipment does not exist.
            AuthorizationError: If the user does not own the shop.
            ConflictError: If the order is cancelled or the shipment already booked.
            APIError: 502 if the carrier rejected the booking.
        """
        carrier = self.carrier_factory(carrier_name)
        shop = await self.orders.get_owned_shop(shop_id, user_id)
        order = await self.orders.get_order(order_id)

        index = find_shipment_index(order, shop_id=shop_id)
        if index is None:
            raise NotFoundError("Shipment not found for shop")
        _ensure_bookable(order, index)

        items = [i for i in order.get("items") or [] if str(i["shop_id"]) == str(shop_id)]
        try:
            booked = await carrier.create_shipment(order, shop_id, items, shop.get("pickup_address") or {})
        except OutboundProviderError as e:
            logger.error("Shipment booking failed for order %s shop %s: %s", order_id, shop_id, str(e))
            raise APIError(
                message="Carrier rejected the shipment booking",
                status_code=status.HTTP_502_BAD_GATEWAY,
                error_type="carrier_error",
            ) from e

        logger.info(
            "Shipment booked with %s: %s",
            carrier.name.value,
            booked.tracking_id,
            extra={"order_id": order_id, "shop_id": shop_id},
        )
        try:
            return await self.updates.apply_to_shop_shipment(
                order_id,
                shop_id,
                ShipmentStatus.CONFIRMED,
                fields={
                    "tracking_id": booked.tracking_id,
                    "shipment_id": booked.shipment_id,
                    "carrier": carrier.name.value,
                },
                by=str(user_id),
                guard=_ensure_bookable,
            )
        except ConflictError:
            # Order was cancelled or booked elsewhere during the carrier call.
            await self._release_booking(carrier, booked.tracking_id, order_id)
            raise

    async def _release_booking(self, carrier, tracking_id: str, order_id: str) -> None:
        try:
            await carrier.cancel_shipment(tracking_id)
            logger.info("Released carrier booking %s for order %s", tracking_id, order_id)
        except OutboundProviderError as e:
            logger.error(
                "Could not release carrier booking %s for order %s: %s",
                tracking_id,
                order_id,
                str(e),
                extra={"order_id": order_id, "tracking_id": tracking_id},
            )

    async def track_order(self, order_id: str, customer_id: str) -> list[dict[str, Any]]:
        """Fetch carrier tracking for every booked shipment of a customer's order.

        A carrier that fails only affects its own entry.
        """
        order = await self.orders.get_order_for_customer(order_id, customer_id)
        results = []
        for shipment in order.get("shipments") or []:
            entry: dict[str, Any] = {
                "shop_id": str(shipment.get("shop_id")),
                "carrier": shipment.get("carrier"),
                "tracking_id": shipment.get("tracking_id"),
                "status": shipment.get("status"),
                "tracking": None,
                "error": None,
            }
            if shipment.get("tracking_id"):
                try:
                    carrier = self.carrier_factory(shipment.get("carrier"))
                    entry["tracking"] = await carrier.track_shipment(shipment["tracking_id"])
                except Exception as e:
                    logger.warning("Tracking lookup failed for %s: %s", shipment["tracking_id"], str(e))
                    entry["error"] = "Tracking is temporarily unavailable"
            results.append(entry)
        return results
