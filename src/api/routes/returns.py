"""Return request API routes."""

import logging
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, status

from src.api.deps import AdminUser, CurrentUser
from src.models.status import ReturnStatus
from src.schemas.returns import (
    ReturnDecisionRequest,
    ReturnRequestCreate,
    ReturnRequestListResponse,
    ReturnRequestResponse,
)
from src.services.return_service import ReturnService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/returns", tags=["returns"])


@router.post(
    "",
    response_model=ReturnRequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a return request",
    responses={
        403: {"description": "Not the order's customer"},
        409: {"description": "Order not returnable, shop inactive or request already exists"},
    },
)
async def create_return_request(data: ReturnRequestCreate, user: CurrentUser) -> ReturnRequestResponse:
    """Create a return request for one product of the customer's order."""
    request = await ReturnService().create_return_request(
        customer_id=str(user.user_id),
        order_id=str(data.order_id),
        product_id=str(data.product_id),
        reason=data.reason.value,
        remedy=data.remedy.value,
        description=data.description,
    )
    return ReturnRequestResponse(**request)


@router.get(
    "",
    response_model=ReturnRequestListResponse,
    summary="List my return requests",
)
async def list_my_return_requests(user: CurrentUser) -> ReturnRequestListResponse:
    requests = await ReturnService().list_for_customer(str(user.user_id))
    return ReturnRequestListResponse(items=[ReturnRequestResponse(**r) for r in requests])


@router.get(
    "/shops/{shop_id}",
    response_model=ReturnRequestListResponse,
    summary="List a shop's return requests",
    description="Returns all return requests for a shop. Only accessible by the shop owner.",
)
async def list_shop_return_requests(shop_id: UUID, user: CurrentUser) -> ReturnRequestListResponse:
    requests = await ReturnService().list_for_shop(str(shop_id), str(user.user_id))
    return ReturnRequestListResponse(items=[ReturnRequestResponse(**r) for r in requests])


@router.get(
    "/{return_id}",
    response_model=ReturnRequestResponse,
    summary="Get a return request",
    responses={
        403: {"description": "Neither the request's customer nor the shop's owner"},
        404: {"description": "Return request not found"},
    },
)
async def get_return_request(return_id: UUID, user: CurrentUser) -> ReturnRequestResponse:
    request = await ReturnService().get_for_user(str(return_id), str(user.user_id))
    return ReturnRequestResponse(**request)


@router.patch(
    "/{return_id}",
    response_model=ReturnRequestResponse,
    summary="Approve or reject a return request",
    responses={
        403: {"description": "Not the shop's owner"},
        409: {"description": "Shop inactive or request already decided"},
    },
)
async def decide_return_request(
    return_id: UUID,
    data: ReturnDecisionRequest,
    user: CurrentUser,
    background_tasks: BackgroundTasks,
) -> ReturnRequestResponse:
    """Record the shopkeeper's decision.

    An approval schedules the reverse shipment to run after the response is
    sent; its outcome is recorded on the request's reverse_shipment_status.
    """
    service = ReturnService()
    request = await service.decide(
        return_id=str(return_id),
        user_id=str(user.user_id),
        status=ReturnStatus(data.status),
        comment=data.comment,
    )
    if request["status"] == ReturnStatus.COMPLETED.value:
        background_tasks.add_task(service.create_reverse_shipment, str(return_id))
        logger.info("Reverse shipment scheduled for return request %s", return_id)
    return ReturnRequestResponse(**request)


@router.post(
    "/{return_id}/reverse-shipment",
    response_model=ReturnRequestResponse,
    summary="Retry a reverse shipment (admin)",
    description="Re-runs reverse shipment creation for an approved request whose earlier attempt failed.",
    responses={409: {"description": "Request not approved or reverse shipment already created"}},
)
async def retry_reverse_shipment(return_id: UUID, admin: AdminUser) -> ReturnRequestResponse:
    logger.info("Admin %s retrying reverse shipment for %s", admin.user_id, return_id)
    request = await ReturnService().retry_reverse_shipment(str(return_id))
    return ReturnRequestResponse(**request)
