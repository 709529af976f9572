"""Return and refund requests.

A shopkeeper's decision is committed first. The reverse shipment is a
separate step run after the response, with its own status field on the
request, so a carrier outage never rolls back an approval and an operator
can retry it later.
"""

import logging
from typing import Any

from src.api.middleware.error_handler import (
    ConcurrentUpdateError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from src.core.config import get_settings
from src.models.status import (
    RETURNABLE_ORDER_STATUSES,
    Remedy,
    ReturnStatus,
    ReverseShipmentStatus,
    ShipmentStatus,
)
from src.services.carriers import get_carrier
from src.services.order_service import OrderService
from src.services.order_store import OrderStore
from src.services.shipment_updates import apply_shipment_status, find_shipment_index, utc_now_iso

logger = logging.getLogger(__name__)

# Shipment status recorded when a return is approved, per remedy.
APPROVED_SHIPMENT_STATUS = {
    Remedy.REFUND: ShipmentStatus.REFUNDED,
    Remedy.REPLACEMENT: ShipmentStatus.RETURN_REQUESTED,
}


class ReturnService:
    """Service for return request creation, decisions and reverse shipments."""

    def __init__(self, store: OrderStore | None = None, carrier_factory=get_carrier) -> None:
        """Initialize return service."""
        self.store = store or OrderStore()
        self.orders = OrderService(self.store)
        self.carrier_factory = carrier_factory
        self.settings = get_settings()

    async def create_return_request(
        self,
        customer_id: str,
        order_id: str,
        product_id: str,
        reason: str,
        remedy: str,
        description: str,
    ) -> dict[str, Any]:
        """Create a return request for one product of a customer's order.

        Args:
            customer_id: Requesting customer.
            order_id: Order containing the product.
            product_id: Product being returned.
            reason: Return reason.
            remedy: Replacement or refund.
            description: Customer's description of the problem.

        Returns:
            dict: The created return request.

        Raises:
            NotFoundError: If the order does not exist.
            AuthorizationError: If the order belongs to someone else.
            ConflictError: If the order is not returnable, the shop is inactive,
                or a request for this product is already open or completed.
            ValidationError: If the product is not part of the order.
        """
        order = await self.orders.get_order_for_customer(order_id, customer_id)

        if ShipmentStatus(order["status"]) not in RETURNABLE_ORDER_STATUSES:
            raise ConflictError("Order cannot be returned at this stage")

        item = next(
            (i for i in order.get("items") or [] if str(i["product_id"]) == str(product_id)),
            None,
        )
        if item is None:
            raise ValidationError("Product not found in this order")

        shop = await self.store.get_shop(item["shop_id"])
        if not shop or not shop.get("is_active"):
            raise ConflictError("Shop is not active. Cannot process return request")

        existing = await self.store.find_blocking_return_request(order_id, product_id)
        if existing:
            raise ConflictError("Return request already exists for this product")

        request = await self.store.insert_return_request(
            {
                "order_id": str(order_id),
                "customer_id": str(customer_id),
                "shop_id": str(item["shop_id"]),
                "product_id": str(product_id),
                "product_name": item["name"],
                "reason": reason,
                "remedy": remedy,
                "description": description.strip(),
                "amount": item["price"] * item["quantity"],
                "quantity": item["quantity"],
                "status": ReturnStatus.PROCESSING.value,
                "reverse_shipment_status": ReverseShipmentStatus.NONE.value,
            }
        )
        logger.info(
            "Return request %s created by customer %s for order %s",
            request["id"],
            customer_id,
            order_id,
        )
        return request

    async def get_return_request(self, return_id: str) -> dict[str, Any]:
        request = await self.store.get_return_request(return_id)
        if not request:
            raise NotFoundError("Return request not found")
        return request

    async def get_for_user(self, return_id: str, user_id: str) -> dict[str, Any]:
        """Get a return request for its customer or the owner of its shop.

        Raises:
            NotFoundError: If the request does not exist.
            AuthorizationError: If the user is neither the customer nor the shop owner.
        """
        request = await self.get_return_request(return_id)
        if str(request["customer_id"]) == str(user_id):
            return request
        await self.orders.get_owned_shop(request["shop_id"], user_id)
        return request

    async def decide(
        self,
        return_id: str,
        user_id: str,
        status: ReturnStatus,
        comment: str | None = None,
    ) -> dict[str, Any]:
        """Record a shopkeeper's approval or rejection.

        On approval the matching shipment moves to ``refunded`` (refund) or
        ``return_requested`` (replacement) with a history entry, and the
        returned quantity goes back to stock, all in one transaction with the
        decision. The reverse shipment is not started here.

        Returns:
            dict: The updated return request.

        Raises:
            NotFoundError: If the request does not exist.
            AuthorizationError: If the user does not own the request's shop.
            ConflictError: If the shop is inactive or the request was already decided.
            ValidationError: If the decision is not completed or rejected.
        """
        status = ReturnStatus(status)
        if status not in (ReturnStatus.COMPLETED, ReturnStatus.REJECTED):
            raise ValidationError("Decision must be completed or rejected")

        request = await self.get_return_request(return_id)
        shop = await self.orders.get_owned_shop(request["shop_id"], user_id)
        if not shop.get("is_active"):
            raise ConflictError("Your shop must be active")

        attempts = self.settings.optimistic_update_max_attempts
        for _ in range(attempts):
            if request["status"] != ReturnStatus.PROCESSING.value:
                raise ConflictError(f"Return request already {request['status']}")

            at = utc_now_iso()
            order_version = shipments = order_status = returned_at = None
            if status == ReturnStatus.COMPLETED:
                order = await self.orders.get_order(request["order_id"])
                order_version = order["version"]
                index = find_shipment_index(order, shop_id=request["shop_id"])
                if index is not None:
                    updated = apply_shipment_status(
                        order,
                        index,
                        APPROVED_SHIPMENT_STATUS[Remedy(request["remedy"])],
                        at,
                        by=str(user_id),
                        record_history=True,
                    )
                    shipments = updated["shipments"]
                    order_status = updated["status"]
                    returned_at = updated.get("returned_at")
                else:
                    logger.warning(
                        "No shipment for shop %s on order %s", request["shop_id"], request["order_id"]
                    )

            saved = await self.store.decide_return_request(
                return_id=return_id,
                status=status.value,
                comment=comment,
                processed_by=str(user_id),
                processed_at=at,
                order_version=order_version,
                shipments=shipments,
                order_status=order_status,
                returned_at=returned_at,
            )
            if saved is not None:
                logger.info(
                    "Return request %s marked %s",
                    return_id,
                    status.value,
                    extra={"shop_id": request["shop_id"], "order_id": request["order_id"], "by": user_id},
                )
                return saved

            request = await self.get_return_request(return_id)

        raise ConcurrentUpdateError()

    async def create_reverse_shipment(self, return_id: str) -> dict[str, Any]:
        """Book the reverse shipment for an approved return.

        Runs after the decision has been committed. Carrier failures are
        recorded as ``reverse_shipment_status=failed`` and never raised;
        nothing else on the request or order is touched.

        Returns:
            dict: The return request after the attempt.
        """
        request = await self.get_return_request(return_id)
        if request["status"] != ReturnStatus.COMPLETED.value:
            logger.info("Reverse shipment skipped for %s: request is %s", return_id, request["status"])
            return request

        order = await self.orders.get_order(request["order_id"])
        index = find_shipment_index(order, shop_id=request["shop_id"])
        shipment = order["shipments"][index] if index is not None else None
        if not shipment or not shipment.get("tracking_id"):
            logger.warning("Reverse shipment skipped for %s: shipment was never booked", return_id)
            return request

        log_context = {"return_id": return_id, "order_id": order["id"], "carrier": shipment.get("carrier")}
        try:
            carrier = self.carrier_factory(shipment.get("carrier"))
            shop = await self.store.get_shop(request["shop_id"]) or {}
            tracking_id = await carrier.create_return_shipment(
                order,
                request["shop_id"],
                shipment["tracking_id"],
                shop.get("pickup_address") or {},
            )
        except Exception as e:
            logger.error("Reverse shipment creation failed: %s", str(e), extra=log_context)
            updated = await self.store.update_return_request(
                return_id, {"reverse_shipment_status": ReverseShipmentStatus.FAILED.value}
            )
            return updated or request

        logger.info("Reverse shipment %s created", tracking_id, extra=log_context)
        updated = await self.store.update_return_request(
            return_id,
            {
                "reverse_shipment_status": ReverseShipmentStatus.SUCCESS.value,
                "reverse_tracking_id": tracking_id,
                "reverse_carrier": carrier.name.value,
            },
        )
        return updated or request

    async def retry_reverse_shipment(self, return_id: str) -> dict[str, Any]:
        """Re-run the reverse shipment for an approved request.

        Raises:
            NotFoundError: If the request does not exist.
            ConflictError: If the request is not approved or already has a reverse shipment.
        """
        request = await self.get_return_request(return_id)
        if request["status"] != ReturnStatus.COMPLETED.value:
            raise ConflictError("Only completed return requests have a reverse shipment")
        if request.get("reverse_shipment_status") == ReverseShipmentStatus.SUCCESS.value:
            raise ConflictError("Reverse shipment already created")
        return await self.create_reverse_shipment(return_id)

    async def list_for_customer(self, customer_id: str) -> list[dict[str, Any]]:
        return await self.store.list_return_requests_for_customer(customer_id)

    async def list_for_shop(self, shop_id: str, user_id: str) -> list[dict[str, Any]]:
        """List a shop's return requests for its owner."""
        shop = await self.orders.get_owned_shop(shop_id, user_id)
        if not shop.get("is_active"):
            raise ConflictError("Your shop must be active to view return requests")
        return await self.store.list_return_requests_for_shop(shop_id)
