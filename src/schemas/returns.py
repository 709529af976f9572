"""Return request Pydantic schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.models.status import Remedy, ReturnReason, ReturnStatus, ReverseShipmentStatus


class ReturnRequestCreate(BaseModel):
    """Schema for creating a return request via POST /returns."""

    order_id: UUID = Field(description="Order containing the product")
    product_id: UUID = Field(description="Product being returned")
    reason: ReturnReason = Field(description="Why the product is returned")
    remedy: Remedy = Field(description="Replacement or refund")
    description: str = Field(min_length=10, max_length=500, description="Description of the problem")

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, v: str) -> str:
        if len(v.strip()) < 10:
            raise ValueError("Description must be at least 10 characters")
        return v


class ReturnDecisionRequest(BaseModel):
    """Shopkeeper decision on a return request."""

    status: Literal["completed", "rejected"] = Field(description="Approve (completed) or reject")
    comment: str | None = Field(default=None, max_length=500, description="Comment shown to the customer")


class ReturnRequestResponse(BaseModel):
    """Schema for return request API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    customer_id: UUID
    shop_id: UUID
    product_id: UUID
    product_name: str
    reason: ReturnReason
    remedy: Remedy
    description: str
    amount: float = Field(description="Price times quantity of the returned line")
    quantity: int
    status: ReturnStatus
    shopkeeper_comment: str | None = None
    processed_at: datetime | None = None
    processed_by: UUID | None = None
    reverse_tracking_id: str | None = None
    reverse_carrier: str | None = None
    reverse_shipment_status: ReverseShipmentStatus = ReverseShipmentStatus.NONE
    created_at: datetime | None = None


class ReturnRequestListResponse(BaseModel):
    """Schema for return request list responses."""

    items: list[ReturnRequestResponse]
