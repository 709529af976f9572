"""Order status derivation from shipment statuses."""

from collections.abc import Iterable

from src.models.status import ORDER_STATUS_PRECEDENCE, ShipmentStatus


def first_by_precedence(statuses: Iterable[ShipmentStatus | str]) -> ShipmentStatus | None:
    """Return the highest-precedence status present in any shipment.

    Args:
        statuses: Shipment statuses (enum members or their string values).

    Returns:
        ShipmentStatus | None: First precedence entry present, or None.
    """
    present = {ShipmentStatus(s) for s in statuses}
    for candidate in ORDER_STATUS_PRECEDENCE:
        if candidate in present:
            return candidate
    return None


def aggregate_order_status(statuses: Iterable[ShipmentStatus | str]) -> ShipmentStatus:
    """Derive the order status from the current status of each shipment.

    Rules, in order:
    1. Every shipment delivered -> delivered.
    2. Every shipment cancelled -> cancelled.
    3. First status of ORDER_STATUS_PRECEDENCE present on any shipment.
    4. Otherwise pending.

    Statuses outside the precedence list (refunded, failed, and a mix of
    delivered/cancelled) fall through to pending.

    Args:
        statuses: Shipment statuses (enum members or their string values).

    Returns:
        ShipmentStatus: The order status.
    """
    normalized = [ShipmentStatus(s) for s in statuses]
    if not normalized:
        return ShipmentStatus.PENDING

    if all(s == ShipmentStatus.DELIVERED for s in normalized):
        return ShipmentStatus.DELIVERED
    if all(s == ShipmentStatus.CANCELLED for s in normalized):
        return ShipmentStatus.CANCELLED

    return first_by_precedence(normalized) or ShipmentStatus.PENDING
