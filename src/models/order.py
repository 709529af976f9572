"""Order, payment and return request type definitions for database operations."""

from datetime import datetime
from typing import Any, TypedDict
from uuid import UUID


class OrderLineItem(TypedDict):
    """Structure for a single line item in an order.

    Stored as part of the items JSONB array. Captured from the payment's
    checkout snapshot, never from a live cart.
    """

    product_id: str
    shop_id: str
    name: str
    sku: str | None
    quantity: int
    price: float
    shipping_cost: float


class StatusHistoryEntry(TypedDict):
    """One manual status change recorded on a shipment."""

    old_status: str
    new_status: str
    changed_at: str
    by: str | None


class Shipment(TypedDict, total=False):
    """Shipment sub-record embedded in the order's shipments JSONB array.

    One per contributing shop. Has no identity outside its order; it is
    addressed by shop id or tracking id.
    """

    shop_id: str
    carrier: str | None
    tracking_id: str | None
    shipment_id: str | None
    status: str
    last_updated: str
    last_webhook_event_id: str | None
    last_status: str | None
    status_history: list[StatusHistoryEntry]


class Order(TypedDict):
    """Order table row representation.

    The status column is derived from the shipments, except for a direct
    cancellation before any shipment is booked. The version column is bumped
    on every write and used for optimistic concurrency.
    """

    id: UUID
    order_number: str
    customer_id: UUID
    items: list[OrderLineItem]
    shipments: list[Shipment]
    subtotal: float
    shipping: float
    total: float
    payment_id: UUID | None
    payment_method: str
    shipping_address: dict[str, Any]
    status: str
    version: int
    cancelled_at: datetime | None
    cancelled_by: UUID | None
    delivered_at: datetime | None
    returned_at: datetime | None
    created_at: datetime
    updated_at: datetime


class Payment(TypedDict):
    """Payment table row representation. One per checkout attempt."""

    id: UUID
    customer_id: UUID | None
    purpose: str
    gateway: str
    gateway_order_id: str | None
    gateway_payment_id: str | None
    amount: float
    currency: str
    status: str
    metadata: dict[str, Any]
    order_id: UUID | None
    paid_at: datetime | None
    created_at: datetime


class ReturnRequest(TypedDict):
    """Return request table row representation. One per (order, product) claim."""

    id: UUID
    order_id: UUID
    customer_id: UUID
    shop_id: UUID
    product_id: UUID
    product_name: str
    reason: str
    remedy: str
    description: str
    amount: float
    quantity: int
    status: str
    shopkeeper_comment: str | None
    processed_at: datetime | None
    processed_by: UUID | None
    reverse_tracking_id: str | None
    reverse_carrier: str | None
    reverse_shipment_status: str
    created_at: datetime
