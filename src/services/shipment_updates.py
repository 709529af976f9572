"""Shipment status application and order status re-derivation.

``apply_shipment_status`` is the only place a shipment status changes. Inbound
carrier webhooks, shipment booking, cancellation and return decisions all go
through it, so they cannot disagree about how a shipment change moves the
order status.
"""

import copy
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from src.api.middleware.error_handler import ConcurrentUpdateError, NotFoundError
from src.core.config import get_settings
from src.models.status import ShipmentStatus
from src.services.order_status import aggregate_order_status
from src.services.order_store import OrderStore

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def find_shipment_index(order: dict[str, Any], *, tracking_id: str | None = None, shop_id: str | None = None) -> int | None:
    """Locate a shipment inside an order by tracking id or shop id.

    Returns:
        int | None: Index into ``order["shipments"]``, or None if absent.
    """
    for index, shipment in enumerate(order.get("shipments") or []):
        if tracking_id is not None and shipment.get("tracking_id") == tracking_id:
            return index
        if shop_id is not None and str(shipment.get("shop_id")) == str(shop_id):
            return index
    return None


def is_duplicate(shipment: dict[str, Any], event_id: str | None, status: ShipmentStatus | str) -> bool:
    """Check whether an event was already applied to a shipment.

    Only events carrying a provider event id can be detected. The same status
    under a new event id is a legitimate resend and is applied again. Without
    an event id this always returns False; re-applying a status is harmless.
    """
    if event_id is None:
        return False
    return (
        shipment.get("last_webhook_event_id") == event_id
        and shipment.get("last_status") == ShipmentStatus(status).value
    )


def apply_shipment_status(
    order: dict[str, Any],
    index: int,
    status: ShipmentStatus | str,
    at: str,
    event_id: str | None = None,
    by: str | None = None,
    record_history: bool = False,
    fields: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Apply a canonical status to one shipment and re-derive the order status.

    Args:
        order: Order row; not modified.
        index: Shipment index.
        status: New canonical status.
        at: ISO timestamp of the change.
        event_id: Provider event id, stored as part of the fingerprint.
        by: User who made a manual change, for the history entry.
        record_history: Append a status history entry.
        fields: Extra shipment fields to set (tracking id, carrier...).

    Returns:
        dict: A new order dict with the shipment and order status updated.
    """
    status = ShipmentStatus(status)
    updated = copy.deepcopy(order)
    shipment = updated["shipments"][index]
    old_status = shipment.get("status")

    if fields:
        shipment.update(fields)
    shipment["status"] = status.value
    shipment["last_updated"] = at
    shipment["last_status"] = status.value
    if event_id is not None:
        shipment["last_webhook_event_id"] = event_id
    if record_history:
        shipment.setdefault("status_history", []).append(
            {"old_status": old_status, "new_status": status.value, "changed_at": at, "by": by}
        )

    order_status = aggregate_order_status(s["status"] for s in updated["shipments"])
    if order_status == ShipmentStatus.DELIVERED and updated.get("status") != ShipmentStatus.DELIVERED.value:
        updated["delivered_at"] = at
    if order_status == ShipmentStatus.RETURNED and updated.get("status") != ShipmentStatus.RETURNED.value:
        updated["returned_at"] = at
    updated["status"] = order_status.value
    return updated


def order_changes(order: dict[str, Any]) -> dict[str, Any]:
    """Columns written back after a shipment change."""
    return {
        "shipments": order["shipments"],
        "status": order["status"],
        "delivered_at": order.get("delivered_at"),
        "returned_at": order.get("returned_at"),
        "updated_at": utc_now_iso(),
    }


class UpdateResult(str, Enum):
    """What happened to an incoming shipment event."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"


@dataclass
class UpdateOutcome:
    result: UpdateResult
    order: dict[str, Any]

    @property
    def duplicate(self) -> bool:
        return self.result == UpdateResult.DUPLICATE


class ShipmentUpdateService:
    """Persist shipment status changes with optimistic concurrency."""

    def __init__(self, store: OrderStore | None = None) -> None:
        """Initialize with an order store."""
        self.store = store or OrderStore()
        self.settings = get_settings()

    async def apply(
        self,
        tracking_id: str,
        status: ShipmentStatus,
        at: str | None = None,
        event_id: str | None = None,
    ) -> UpdateOutcome:
        """Apply a carrier-reported status to the shipment with this tracking id.

        Re-reads the order and re-runs the duplicate check each time the
        version check fails, so a racing redelivery is seen as a duplicate.

        Args:
            tracking_id: Carrier tracking id.
            status: Translated canonical status.
            at: Event timestamp; defaults to now.
            event_id: Provider event id when the carrier sends one.

        Returns:
            UpdateOutcome: Applied or duplicate, with the resulting order.

        Raises:
            NotFoundError: If no order has a shipment with this tracking id.
            ConcurrentUpdateError: If every attempt lost the race.
        """
        at = at or utc_now_iso()

        async def load() -> dict[str, Any]:
            order = await self.store.find_order_by_tracking_id(tracking_id)
            if not order:
                logger.warning("No order found for tracking id %s", tracking_id)
                raise NotFoundError("Order not found for tracking id")
            return order

        def mutate(order: dict[str, Any]) -> dict[str, Any] | None:
            index = find_shipment_index(order, tracking_id=tracking_id)
            if index is None:
                raise NotFoundError("Shipment not found for tracking id")
            if is_duplicate(order["shipments"][index], event_id, status):
                return None
            return apply_shipment_status(order, index, status, at, event_id=event_id)

        outcome = await self.save_with_retry(load, mutate)
        if outcome.duplicate:
            logger.info(
                "Duplicate shipment event ignored",
                extra={"tracking_id": tracking_id, "event_id": event_id, "status": status.value},
            )
        else:
            logger.info(
                "Shipment %s updated to %s, order %s now %s",
                tracking_id,
                status.value,
                outcome.order["id"],
                outcome.order["status"],
            )
        return outcome

    async def apply_to_shop_shipment(
        self,
        order_id: str,
        shop_id: str,
        status: ShipmentStatus,
        fields: dict[str, Any] | None = None,
        by: str | None = None,
        guard: Callable[[dict[str, Any], int], None] | None = None,
    ) -> dict[str, Any]:
        """Apply a status to the shipment of one shop, recording who changed it.

        ``guard`` runs against every freshly loaded order before the write and
        raises to abort, so preconditions hold for the version that is saved.

        Returns:
            dict: The saved order.
        """
        at = utc_now_iso()

        async def load() -> dict[str, Any]:
            order = await self.store.get_order(order_id)
            if not order:
                raise NotFoundError("Order not found")
            return order

        def mutate(order: dict[str, Any]) -> dict[str, Any]:
            index = find_shipment_index(order, shop_id=shop_id)
            if index is None:
                raise NotFoundError("Shipment not found for shop")
            if guard is not None:
                guard(order, index)
            return apply_shipment_status(
                order, index, status, at, by=by, record_history=True, fields=fields
            )

        outcome = await self.save_with_retry(load, mutate)
        return outcome.order

    async def save_with_retry(
        self,
        load: Callable[[], Awaitable[dict[str, Any]]],
        mutate: Callable[[dict[str, Any]], dict[str, Any] | None],
    ) -> UpdateOutcome:
        """Read, mutate and conditionally write an order until the write wins.

        ``mutate`` returns None to signal there is nothing to write.
        """
        attempts = self.settings.optimistic_update_max_attempts
        for attempt in range(1, attempts + 1):
            order = await load()
            updated = mutate(order)
            if updated is None:
                return UpdateOutcome(UpdateResult.DUPLICATE, order)

            saved = await self.store.update_order(order["id"], order["version"], order_changes(updated))
            if saved is not None:
                return UpdateOutcome(UpdateResult.APPLIED, saved)

            logger.info(
                "Order %s changed concurrently (attempt %d/%d), retrying",
                order["id"],
                attempt,
                attempts,
            )

        raise ConcurrentUpdateError()
