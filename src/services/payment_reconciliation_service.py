"""Payment gateway webhook reconciliation.

Pipeline for every gateway: check the gateway is configured, verify, parse,
locate the payment, check the amount, skip if already paid, mark paid, then
finalize the order. Finalization runs after the payment is durably paid and
its failure never fails the webhook; the gateway redelivering would not fix it.
"""

import logging
from collections.abc import Mapping
from decimal import Decimal
from typing import Any
from uuid import UUID

from src.api.middleware.error_handler import (
    AmountMismatchError,
    GatewayNotConfiguredError,
    NotFoundError,
    ValidationError,
)
from src.core.config import get_gateway_credentials
from src.models.status import OPEN_PAYMENT_STATUSES, PaymentPurpose, PaymentStatus
from src.schemas.common import WebhookAck
from src.services.order_finalization_service import OrderFinalizationService
from src.services.order_store import OrderStore
from src.services.payment_gateways import EventKind, GatewayEvent, LookupKey, get_gateway
from src.services.shipment_updates import utc_now_iso

logger = logging.getLogger(__name__)

_CLOSING_STATUS = {
    EventKind.FAILED: PaymentStatus.FAILED,
    EventKind.CANCELLED: PaymentStatus.CANCELLED,
}


def _is_uuid(value: str) -> bool:
    try:
        UUID(value)
    except ValueError:
        return False
    return True


class PaymentReconciliationService:
    """Apply payment gateway webhooks to payments."""

    def __init__(
        self,
        store: OrderStore | None = None,
        finalizer: OrderFinalizationService | None = None,
        gateway_factory=get_gateway,
    ) -> None:
        """Initialize reconciliation service."""
        self.store = store or OrderStore()
        self.finalizer = finalizer or OrderFinalizationService(self.store)
        self.gateway_factory = gateway_factory

    async def handle_webhook(
        self,
        gateway_name: str,
        raw_body: bytes,
        headers: Mapping[str, str],
    ) -> WebhookAck:
        """Verify and apply one gateway webhook.

        Args:
            gateway_name: stripe, razorpay or paypal.
            raw_body: Unparsed request body.
            headers: Request headers.

        Returns:
            WebhookAck: Acknowledgement, flagged ignored or duplicate when nothing changed.

        Raises:
            GatewayNotConfiguredError: If the gateway has no active credentials.
            AuthenticationError: If verification fails.
            ValidationError: If the payload or correlation key is missing.
            NotFoundError: If no payment matches.
            AmountMismatchError: If the paid amount differs from the expected amount.
        """
        credentials = get_gateway_credentials(gateway_name)
        if credentials is None:
            logger.error("Webhook for unconfigured gateway %s rejected", gateway_name)
            raise GatewayNotConfiguredError(gateway_name)

        gateway = self.gateway_factory(gateway_name)
        payload = await gateway.verify(raw_body, headers, credentials)
        event = gateway.parse(payload)

        if event.kind == EventKind.IGNORED:
            logger.info("Ignoring %s event %s", gateway_name, event.event_type)
            return WebhookAck(ignored=True)

        logger.info("Processing %s event %s", gateway_name, event.event_type)
        return await self.reconcile(event)

    async def locate_payment(self, event: GatewayEvent) -> dict[str, Any]:
        """Find the payment an event refers to, trying each correlation key in order.

        Raises:
            ValidationError: If the event carries no correlation key.
            NotFoundError: If no key matches a payment.
        """
        if not event.lookup:
            logger.warning("%s %s has no payment correlation key", event.gateway.value, event.event_type)
            raise ValidationError("Missing payment correlation key")

        gateway = event.gateway.value
        for key, value in event.lookup:
            payment = None
            if key == LookupKey.GATEWAY_ORDER_ID:
                payment = await self.store.find_payment_by_gateway_order_id(gateway, value)
            elif key == LookupKey.PAYMENT_ID and _is_uuid(value):
                payment = await self.store.get_payment(value)
                if payment and payment.get("gateway") != gateway:
                    payment = None
            elif key == LookupKey.GATEWAY_PAYMENT_ID:
                payment = await self.store.find_payment_by_gateway_payment_id(gateway, value)
            elif key == LookupKey.ORDER_REF:
                payment = await self.store.find_payment_by_order_ref(gateway, value)
            if payment:
                logger.debug("Payment %s located by %s", payment["id"], key.value)
                return payment

        logger.warning(
            "No payment found for %s event",
            gateway,
            extra={"lookup": [k.value for k, _ in event.lookup], "event_type": event.event_type},
        )
        raise NotFoundError("Payment not found")

    async def reconcile(self, event: GatewayEvent) -> WebhookAck:
        payment = await self.locate_payment(event)
        if event.kind == EventKind.SUCCEEDED:
            return await self._apply_success(payment, event)
        return await self._apply_closing(payment, event)

    async def _apply_success(self, payment: dict[str, Any], event: GatewayEvent) -> WebhookAck:
        expected = Decimal(str(payment["amount"]))
        if event.amount is None or event.amount != expected:
            logger.error(
                "Amount mismatch for payment %s: received %s, expected %s",
                payment["id"],
                event.amount,
                expected,
            )
            raise AmountMismatchError(
                details=[{"msg": f"received {event.amount}, expected {expected}", "type": "amount_mismatch"}]
            )

        if payment["status"] == PaymentStatus.PAID.value:
            logger.info("Payment %s already paid", payment["id"])
            return WebhookAck(duplicate=True)

        paid = await self.store.mark_payment_paid(payment["id"], event.gateway_payment_id, utc_now_iso())
        if paid is None:
            logger.info("Payment %s was marked paid by a concurrent delivery", payment["id"])
            return WebhookAck(duplicate=True)
        logger.info("Payment %s marked paid", payment["id"], extra={"gateway": event.gateway.value})

        if paid.get("purpose") == PaymentPurpose.ORDER.value:
            try:
                await self.finalizer.finalize(paid)
            except Exception as e:
                logger.error(
                    "Order finalization failed for payment %s: %s",
                    payment["id"],
                    str(e),
                    exc_info=True,
                )
        return WebhookAck()

    async def _apply_closing(self, payment: dict[str, Any], event: GatewayEvent) -> WebhookAck:
        target = _CLOSING_STATUS[event.kind]
        if payment["status"] not in {s.value for s in OPEN_PAYMENT_STATUSES}:
            logger.info(
                "Payment %s is %s; %s not applied",
                payment["id"],
                payment["status"],
                target.value,
            )
            return WebhookAck(duplicate=True)

        closed = await self.store.close_payment(payment["id"], target)
        if closed is None:
            logger.info("Payment %s left its open state concurrently", payment["id"])
            return WebhookAck(duplicate=True)

        logger.info("Payment %s marked %s", payment["id"], target.value)
        return WebhookAck()
