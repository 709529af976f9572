"""Customer order cancellation with carrier-side compensation."""

import logging
from dataclasses import dataclass, field
from typing import Any

from src.api.middleware.error_handler import ConcurrentUpdateError, ConflictError
from src.core.config import get_settings
from src.models.status import NON_CANCELLABLE_ORDER_STATUSES, ShipmentStatus
from src.services.carriers import CarrierProvider, get_carrier
from src.services.order_service import OrderService
from src.services.order_store import OrderStore
from src.services.shipment_updates import apply_shipment_status, utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class ShipmentCancelFailure:
    """A carrier cancel call that failed; needs manual follow-up with the carrier."""

    shop_id: str
    tracking_id: str
    carrier: str | None
    error: str


@dataclass
class CancellationResult:
    order: dict[str, Any]
    carrier_calls: int = 0
    failures: list[ShipmentCancelFailure] = field(default_factory=list)


class CancellationService:
    """Cancel orders.

    Carrier cancel calls happen first and are best effort: a failure on one
    shipment is recorded and the loop moves on. The local cancellation, with
    its stock restoration, is then committed in one transaction. The local
    state is authoritative even when a carrier still needs manual follow-up.
    """

    def __init__(self, store: OrderStore | None = None, carrier_factory=get_carrier) -> None:
        """Initialize cancellation service."""
        self.store = store or OrderStore()
        self.orders = OrderService(self.store)
        self.carrier_factory = carrier_factory
        self.settings = get_settings()

    async def _cancel_with_carrier(self, shipment: dict[str, Any], order_id: str) -> ShipmentCancelFailure | None:
        tracking_id = shipment["tracking_id"]
        try:
            carrier: CarrierProvider = self.carrier_factory(shipment.get("carrier"))
            response = await carrier.cancel_shipment(tracking_id)
            logger.info(
                "Carrier cancel succeeded for %s",
                tracking_id,
                extra={"order_id": order_id, "carrier": carrier.name.value, "response_keys": sorted(response)},
            )
            return None
        except Exception as e:
            logger.error(
                "Carrier cancel failed for shipment %s of order %s: %s",
                tracking_id,
                order_id,
                str(e),
                extra={"order_id": order_id, "shop_id": shipment.get("shop_id"), "carrier": shipment.get("carrier")},
            )
            return ShipmentCancelFailure(
                shop_id=str(shipment.get("shop_id")),
                tracking_id=tracking_id,
                carrier=shipment.get("carrier"),
                error=str(e),
            )

    async def cancel_order(self, order_id: str, user_id: str) -> CancellationResult:
        """Cancel an order on behalf of its customer.

        Args:
            order_id: Order to cancel.
            user_id: Requesting customer.

        Returns:
            CancellationResult: The cancelled order and any carrier failures.

        Raises:
            NotFoundError: If the order does not exist.
            AuthorizationError: If the order belongs to someone else.
            ConflictError: If the order is already cancelled, delivered or returned.
            ConcurrentUpdateError: If the order kept changing underneath.
        """
        result: CancellationResult | None = None
        # Shipments already sent to their carrier; never called twice on retry.
        attempted: set[str] = set()
        attempts = self.settings.optimistic_update_max_attempts

        for _ in range(attempts):
            order = await self.orders.get_order_for_customer(order_id, user_id)
            if ShipmentStatus(order["status"]) in NON_CANCELLABLE_ORDER_STATUSES:
                raise ConflictError(f"Order cannot be cancelled in '{order['status']}' state")

            if result is None:
                result = CancellationResult(order=order)

            booked = [s for s in order.get("shipments") or [] if s.get("tracking_id")]
            if not booked:
                logger.info("Order %s has no booked shipments, cancelling locally", order_id)

            for shipment in booked:
                if shipment["tracking_id"] in attempted:
                    continue
                attempted.add(shipment["tracking_id"])
                result.carrier_calls += 1
                failure = await self._cancel_with_carrier(shipment, order_id)
                if failure:
                    result.failures.append(failure)

            at = utc_now_iso()
            updated = order
            for index in range(len(order.get("shipments") or [])):
                updated = apply_shipment_status(
                    updated, index, ShipmentStatus.CANCELLED, at, by=str(user_id), record_history=True
                )

            saved = await self.store.cancel_order_with_restock(
                order_id=order["id"],
                expected_version=order["version"],
                shipments=updated.get("shipments") or [],
                cancelled_by=str(user_id),
                cancelled_at=at,
            )
            if saved is not None:
                result.order = saved
                logger.info(
                    "Order %s cancelled by customer %s (%d carrier calls, %d failed)",
                    order_id,
                    user_id,
                    result.carrier_calls,
                    len(result.failures),
                )
                return result

            logger.info("Order %s changed during cancellation, retrying", order_id)

        raise ConcurrentUpdateError()
