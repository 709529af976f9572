"""Database model type definitions."""

from src.models.order import Order, OrderLineItem, Payment, ReturnRequest, Shipment, StatusHistoryEntry
from src.models.status import (
    Carrier,
    PaymentGateway,
    PaymentPurpose,
    PaymentStatus,
    Remedy,
    ReturnReason,
    ReturnStatus,
    ReverseShipmentStatus,
    ShipmentStatus,
)

__all__ = [
    "Order",
    "OrderLineItem",
    "Payment",
    "ReturnRequest",
    "Shipment",
    "StatusHistoryEntry",
    "Carrier",
    "PaymentGateway",
    "PaymentPurpose",
    "PaymentStatus",
    "Remedy",
    "ReturnReason",
    "ReturnStatus",
    "ReverseShipmentStatus",
    "ShipmentStatus",
]
