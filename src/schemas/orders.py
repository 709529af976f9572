"""Order, shipment and tracking Pydantic schemas for API request/response models."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.models.status import Carrier, ShipmentStatus


class OrderLineItemSchema(BaseModel):
    """Schema for a single line item in an order."""

    model_config = ConfigDict(from_attributes=True)

    product_id: str = Field(description="Product UUID")
    shop_id: str = Field(description="Shop that sells the product")
    name: str = Field(description="Product name at checkout time")
    sku: str | None = Field(default=None, description="Product SKU")
    quantity: int = Field(ge=1, description="Quantity ordered")
    price: float = Field(ge=0, description="Unit price")
    shipping_cost: float = Field(default=0, ge=0, description="Shipping cost for this line")


class StatusHistorySchema(BaseModel):
    """One manual status change on a shipment."""

    old_status: str
    new_status: str
    changed_at: str
    by: str | None = None


class ShipmentSchema(BaseModel):
    """Per-shop shipment embedded in an order."""

    model_config = ConfigDict(from_attributes=True)

    shop_id: str = Field(description="Shop fulfilling this shipment")
    carrier: str | None = Field(default=None, description="Carrier the shipment was booked with")
    tracking_id: str | None = Field(default=None, description="Carrier tracking id or AWB")
    shipment_id: str | None = Field(default=None, description="Carrier-side shipment id")
    status: ShipmentStatus = Field(description="Canonical shipment status")
    last_updated: str | None = Field(default=None, description="Time of the last status change")
    status_history: list[StatusHistorySchema] = Field(default_factory=list, description="Manual status changes")


class OrderResponse(BaseModel):
    """Schema for order API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Order unique identifier")
    order_number: str = Field(description="Human-readable order number")
    customer_id: UUID = Field(description="Customer who placed the order")
    status: ShipmentStatus = Field(description="Order status derived from its shipments")
    items: list[OrderLineItemSchema] = Field(description="Order line items")
    shipments: list[ShipmentSchema] = Field(description="One shipment per contributing shop")
    subtotal: float = Field(description="Sum of item prices")
    shipping: float = Field(description="Sum of shipping costs")
    total: float = Field(description="Amount paid")
    payment_method: str = Field(description="Payment gateway used")
    shipping_address: dict[str, Any] = Field(default_factory=dict, description="Delivery address")
    cancelled_at: datetime | None = Field(default=None, description="Cancellation timestamp")
    delivered_at: datetime | None = Field(default=None, description="Delivery timestamp")
    returned_at: datetime | None = Field(default=None, description="Return timestamp")
    created_at: datetime | None = Field(default=None, description="Creation timestamp")


class ShipmentCancelFailureSchema(BaseModel):
    """A carrier cancel call that failed and needs manual follow-up."""

    model_config = ConfigDict(from_attributes=True)

    shop_id: str
    tracking_id: str
    carrier: str | None = None
    error: str


class CancellationResponse(BaseModel):
    """Response for POST /orders/{id}/cancel."""

    model_config = ConfigDict(from_attributes=True)

    order: OrderResponse = Field(description="The cancelled order")
    carrier_failures: list[ShipmentCancelFailureSchema] = Field(
        default_factory=list,
        description="Carrier cancellations that failed; the order is cancelled regardless",
    )


class BookShipmentRequest(BaseModel):
    """Request schema for booking one shop's shipment with a carrier."""

    shop_id: UUID = Field(description="Shop whose items are shipped")
    carrier: Carrier = Field(description="Carrier to book with")


class TrackingEntry(BaseModel):
    """Tracking lookup result for one shipment."""

    shop_id: str
    carrier: str | None = None
    tracking_id: str | None = None
    status: str | None = None
    tracking: dict[str, Any] | None = Field(default=None, description="Carrier tracking payload")
    error: str | None = Field(default=None, description="Set when this carrier's lookup failed")


class TrackingResponse(BaseModel):
    """Response for GET /orders/{id}/tracking."""

    items: list[TrackingEntry]
