"""Order API routes: read, cancel, book shipments, track."""

from dataclasses import asdict
from uuid import UUID

from fastapi import APIRouter, status

from src.api.deps import CurrentUser
from src.schemas.orders import (
    BookShipmentRequest,
    CancellationResponse,
    OrderResponse,
    ShipmentCancelFailureSchema,
    TrackingEntry,
    TrackingResponse,
)
from src.services.cancellation_service import CancellationService
from src.services.order_service import OrderService
from src.services.shipment_booking_service import ShipmentBookingService

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order by ID",
    description="Returns a single order by ID. Only accessible by the customer who placed it.",
)
async def get_order(order_id: UUID, user: CurrentUser) -> OrderResponse:
    """Get a single order by ID.

    Raises:
        NotFoundError: 404 if order not found.
        AuthorizationError: 403 if not authorized to view this order.
    """
    order = await OrderService().get_order_for_customer(str(order_id), str(user.user_id))
    return OrderResponse(**order)


@router.post(
    "/{order_id}/cancel",
    response_model=CancellationResponse,
    summary="Cancel an order",
    description=(
        "Cancels the order, asks each carrier to cancel its booked shipment and restores stock. "
        "Carrier failures are reported but do not prevent the cancellation."
    ),
    responses={
        403: {"description": "Not the order's customer"},
        409: {"description": "Order already cancelled, delivered or returned"},
    },
)
async def cancel_order(order_id: UUID, user: CurrentUser) -> CancellationResponse:
    """Cancel an order on behalf of its customer."""
    result = await CancellationService().cancel_order(str(order_id), str(user.user_id))
    return CancellationResponse(
        order=OrderResponse(**result.order),
        carrier_failures=[ShipmentCancelFailureSchema(**asdict(f)) for f in result.failures],
    )


@router.post(
    "/{order_id}/shipments/book",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book a shipment",
    description="Books the requesting shopkeeper's shipment for this order with a carrier.",
    responses={
        403: {"description": "Not the shop's owner"},
        409: {"description": "Order cancelled or shipment already booked"},
        502: {"description": "Carrier rejected the booking"},
    },
)
async def book_shipment(order_id: UUID, data: BookShipmentRequest, user: CurrentUser) -> OrderResponse:
    """Book a shop's shipment and mark it confirmed."""
    order = await ShipmentBookingService().book_shipment(
        order_id=str(order_id),
        shop_id=str(data.shop_id),
        carrier_name=data.carrier.value,
        user_id=str(user.user_id),
    )
    return OrderResponse(**order)


@router.get(
    "/{order_id}/tracking",
    response_model=TrackingResponse,
    summary="Track an order's shipments",
    description="Returns live carrier tracking for each booked shipment of the order.",
)
async def track_order(order_id: UUID, user: CurrentUser) -> TrackingResponse:
    """Fetch carrier tracking for the customer's order."""
    entries = await ShipmentBookingService().track_order(str(order_id), str(user.user_id))
    return TrackingResponse(items=[TrackingEntry(**entry) for entry in entries])
