"""Webhook API routes for carriers and payment gateways.

Every endpoint hands the raw body to its service untouched; signatures are
computed over the exact bytes received.
"""

import logging

from fastapi import APIRouter, Request, status

from src.models.status import Carrier, PaymentGateway
from src.schemas.common import WebhookAck
from src.services.carrier_webhook_service import CarrierWebhookService
from src.services.payment_reconciliation_service import PaymentReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

_RESPONSES = {
    400: {"description": "Malformed payload, missing correlation key or amount mismatch"},
    401: {"description": "Missing or invalid signature"},
    404: {"description": "No matching shipment or payment"},
}


async def _carrier_webhook(carrier: Carrier, request: Request) -> WebhookAck:
    payload = await request.body()
    logger.debug("%s webhook payload size: %d bytes", carrier.value, len(payload))
    return await CarrierWebhookService().handle(carrier.value, payload, request.headers)


async def _payment_webhook(gateway: PaymentGateway, request: Request) -> WebhookAck:
    payload = await request.body()
    logger.debug("%s webhook payload size: %d bytes", gateway.value, len(payload))
    return await PaymentReconciliationService().handle_webhook(gateway.value, payload, request.headers)


@router.post(
    "/fedex",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    responses=_RESPONSES,
    summary="Handle FedEx tracking webhooks",
)
async def fedex_webhook(request: Request) -> WebhookAck:
    """Apply a FedEx tracking event. Requires a valid x-fedex-signature HMAC."""
    return await _carrier_webhook(Carrier.FEDEX, request)


@router.post(
    "/shiprocket",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    responses=_RESPONSES,
    summary="Handle Shiprocket tracking webhooks",
)
async def shiprocket_webhook(request: Request) -> WebhookAck:
    """Apply a Shiprocket tracking event. Requires the shared x-shiprocket-token."""
    return await _carrier_webhook(Carrier.SHIPROCKET, request)


@router.post(
    "/ups",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    responses=_RESPONSES,
    summary="Handle UPS tracking webhooks",
)
async def ups_webhook(request: Request) -> WebhookAck:
    """Apply a UPS tracking event. Requires a valid x-ups-signature HMAC."""
    return await _carrier_webhook(Carrier.UPS, request)


@router.post(
    "/stripe",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    responses={**_RESPONSES, 503: {"description": "Stripe is not configured"}},
    summary="Handle Stripe webhooks",
)
async def stripe_webhook(request: Request) -> WebhookAck:
    """Handle Stripe payment intent events.

    Handles:
    - payment_intent.succeeded: marks the payment paid and finalizes the order
    - payment_intent.payment_failed: marks an open payment failed
    - payment_intent.canceled: marks an open payment cancelled

    Other event types are acknowledged and ignored.
    """
    return await _payment_webhook(PaymentGateway.STRIPE, request)


@router.post(
    "/razorpay",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    responses={**_RESPONSES, 503: {"description": "Razorpay is not configured"}},
    summary="Handle Razorpay webhooks",
)
async def razorpay_webhook(request: Request) -> WebhookAck:
    """Handle Razorpay payment.captured, payment.failed and abandoned order.paid events."""
    return await _payment_webhook(PaymentGateway.RAZORPAY, request)


@router.post(
    "/paypal",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    responses={**_RESPONSES, 503: {"description": "PayPal is not configured"}},
    summary="Handle PayPal webhooks",
)
async def paypal_webhook(request: Request) -> WebhookAck:
    """Handle PayPal capture and checkout events.

    The signature is verified by PayPal's verify-webhook-signature API.
    """
    return await _payment_webhook(PaymentGateway.PAYPAL, request)
