"""Carrier vocabulary to canonical shipment status translation."""

import logging

from src.models.status import Carrier, ShipmentStatus

logger = logging.getLogger(__name__)


class UnmappedStatusError(Exception):
    """A carrier reported a status with no canonical equivalent.

    Not a failure: the event is acknowledged to the carrier and ignored,
    otherwise the carrier would redeliver it forever.
    """

    def __init__(self, carrier: str, vendor_status: str) -> None:
        self.carrier = carrier
        self.vendor_status = vendor_status
        super().__init__(f"Unmapped {carrier} status: {vendor_status!r}")


FEDEX_STATUS_MAP: dict[str, ShipmentStatus] = {
    "pending": ShipmentStatus.PENDING,
    "created": ShipmentStatus.PENDING,
    "label_created": ShipmentStatus.PACKED,
    "picked_up": ShipmentStatus.SHIPPED,
    "in_transit": ShipmentStatus.IN_TRANSIT,
    "out_for_delivery": ShipmentStatus.OUT_FOR_DELIVERY,
    "delivered": ShipmentStatus.DELIVERED,
    "cancelled": ShipmentStatus.CANCELLED,
    "return_initiated": ShipmentStatus.RETURN_REQUESTED,
    "returned": ShipmentStatus.RETURNED,
    "exception": ShipmentStatus.FAILED,
    "failed": ShipmentStatus.FAILED,
}

SHIPROCKET_STATUS_MAP: dict[str, ShipmentStatus] = {
    "PICKUP_SCHEDULED": ShipmentStatus.CONFIRMED,
    "PICKUP_GENERATED": ShipmentStatus.PACKED,
    "OUT_FOR_DELIVERY": ShipmentStatus.IN_TRANSIT,
    "IN_TRANSIT": ShipmentStatus.IN_TRANSIT,
    "SHIPPED": ShipmentStatus.SHIPPED,
    "DELIVERED": ShipmentStatus.DELIVERED,
    "RETURNED": ShipmentStatus.RETURNED,
    "CANCELLED": ShipmentStatus.CANCELLED,
}

UPS_STATUS_MAP: dict[str, ShipmentStatus] = {
    "label_created": ShipmentStatus.CONFIRMED,
    "shipped": ShipmentStatus.SHIPPED,
    "in_transit": ShipmentStatus.IN_TRANSIT,
    "out_for_delivery": ShipmentStatus.OUT_FOR_DELIVERY,
    "delivered": ShipmentStatus.DELIVERED,
    "exception": ShipmentStatus.FAILED,
    "return_initiated": ShipmentStatus.RETURN_REQUESTED,
    "returned_to_seller": ShipmentStatus.RETURNED,
    "refund_processed": ShipmentStatus.REFUNDED,
}


def _normalize_fedex(status: str) -> str:
    return status.strip().lower()


def _normalize_shiprocket(status: str) -> str:
    return status.strip().upper()


def _normalize_ups(status: str) -> str:
    return status.strip()


_TABLES = {
    Carrier.FEDEX: (FEDEX_STATUS_MAP, _normalize_fedex),
    Carrier.SHIPROCKET: (SHIPROCKET_STATUS_MAP, _normalize_shiprocket),
    Carrier.UPS: (UPS_STATUS_MAP, _normalize_ups),
}


def translate(carrier: Carrier | str, vendor_status: str) -> ShipmentStatus | None:
    """Translate a carrier status code to the canonical status.

    Args:
        carrier: Carrier the status came from.
        vendor_status: Status as sent by the carrier.

    Returns:
        ShipmentStatus | None: Canonical status, or None if unmapped.
    """
    table, normalize = _TABLES[Carrier(carrier)]
    return table.get(normalize(vendor_status))


def require_status(carrier: Carrier | str, vendor_status: str) -> ShipmentStatus:
    """Translate a carrier status, raising if it has no canonical equivalent.

    Raises:
        UnmappedStatusError: If the status is not in the carrier's table.
    """
    status = translate(carrier, vendor_status)
    if status is None:
        raise UnmappedStatusError(Carrier(carrier).value, vendor_status)
    return status
