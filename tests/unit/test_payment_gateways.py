"""Unit tests for payment gateway adapters."""

import json
from decimal import Decimal

import httpx
import pytest

from src.api.middleware.error_handler import AuthenticationError, ValidationError
from src.models.status import PaymentGateway
from src.services.payment_gateways import (
    EventKind,
    LookupKey,
    PayPalGateway,
    RazorpayGateway,
    StripeGateway,
    get_gateway,
)

PAYPAL_URL = "https://paypal.test"
PAYPAL_CREDENTIALS = {
    "api_url": PAYPAL_URL,
    "client_id": "pp-client",
    "client_secret": "pp-secret",
    "webhook_id": "WH-1",
}
PAYPAL_HEADERS = {
    "paypal-auth-algo": "SHA256withRSA",
    "paypal-cert-url": "https://api.paypal.com/cert.pem",
    "paypal-transmission-id": "tx-1",
    "paypal-transmission-sig": "sig",
    "paypal-transmission-time": "2026-10-18T10:00:00Z",
}


def _stripe_event(event_type: str, **intent) -> dict:
    return {"id": "evt_1", "type": event_type, "data": {"object": {"id": "pi_1", **intent}}}


class TestStripeParse:
    """Tests for StripeGateway.parse."""

    def test_succeeded_event(self) -> None:
        """Test that amount is converted from cents and lookup keys are ordered."""
        event = StripeGateway().parse(
            _stripe_event(
                "payment_intent.succeeded",
                amount_received=12550,
                latest_charge="ch_1",
                metadata={"payment_id": "pay-1", "order_ref": "REF-1"},
            )
        )

        assert event.kind == EventKind.SUCCEEDED
        assert event.amount == Decimal("125.50")
        assert event.gateway_payment_id == "ch_1"
        assert event.lookup == [
            (LookupKey.GATEWAY_ORDER_ID, "pi_1"),
            (LookupKey.PAYMENT_ID, "pay-1"),
            (LookupKey.ORDER_REF, "REF-1"),
        ]

    def test_failed_and_cancelled_events(self) -> None:
        """Test that failure and cancellation events carry no amount."""
        failed = StripeGateway().parse(_stripe_event("payment_intent.payment_failed"))
        cancelled = StripeGateway().parse(_stripe_event("payment_intent.canceled"))

        assert failed.kind == EventKind.FAILED
        assert cancelled.kind == EventKind.CANCELLED
        assert failed.amount is None

    def test_unhandled_type_is_ignored(self) -> None:
        """Test that other event types are ignored."""
        event = StripeGateway().parse(_stripe_event("charge.refunded"))

        assert event.kind == EventKind.IGNORED

    def test_malformed_amount_is_validation_error(self) -> None:
        """Test that a success without a usable amount is rejected."""
        with pytest.raises(ValidationError):
            StripeGateway().parse(_stripe_event("payment_intent.succeeded", amount_received=None))


class TestRazorpayParse:
    """Tests for RazorpayGateway.parse."""

    def _payment(self, event: str, **entity) -> dict:
        return {"event": event, "payload": {"payment": {"entity": {"id": "pay_R1", "order_id": "order_R1", **entity}}}}

    def test_captured_event(self) -> None:
        """Test that captured payments carry the amount in rupees."""
        event = RazorpayGateway().parse(self._payment("payment.captured", amount=50000))

        assert event.kind == EventKind.SUCCEEDED
        assert event.amount == Decimal("500")
        assert event.lookup[0] == (LookupKey.GATEWAY_ORDER_ID, "order_R1")
        assert event.gateway_payment_id == "pay_R1"

    def test_failed_event(self) -> None:
        """Test that payment.failed maps to a failure."""
        event = RazorpayGateway().parse(self._payment("payment.failed"))

        assert event.kind == EventKind.FAILED

    def test_missing_entity_is_validation_error(self) -> None:
        """Test that a payment event without an entity is rejected."""
        with pytest.raises(ValidationError):
            RazorpayGateway().parse({"event": "payment.captured", "payload": {}})

    def test_abandoned_order_paid_is_cancellation(self) -> None:
        """Test that order.paid closed by the customer cancels the payment."""
        payload = {
            "event": "order.paid",
            "payload": {"order": {"entity": {"id": "order_R1", "close_reason": "user_exit"}}},
        }
        event = RazorpayGateway().parse(payload)

        assert event.kind == EventKind.CANCELLED
        assert event.lookup == [(LookupKey.GATEWAY_ORDER_ID, "order_R1")]

    def test_real_order_paid_is_ignored(self) -> None:
        """Test that a genuinely paid order defers to payment.captured."""
        payload = {
            "event": "order.paid",
            "payload": {"order": {"entity": {"id": "order_R1", "status": "paid", "amount_paid": 50000}}},
        }

        assert RazorpayGateway().parse(payload).kind == EventKind.IGNORED


class TestPayPalParse:
    """Tests for PayPalGateway.parse."""

    def test_capture_completed(self) -> None:
        """Test that a completed capture uses the related order id first."""
        payload = {
            "event_type": "PAYMENT.CAPTURE.COMPLETED",
            "resource": {
                "id": "CAP-1",
                "amount": {"value": "99.90", "currency_code": "USD"},
                "custom_id": "pay-1",
                "supplementary_data": {"related_ids": {"order_id": "PPO-1"}},
            },
        }
        event = PayPalGateway().parse(payload)

        assert event.kind == EventKind.SUCCEEDED
        assert event.amount == Decimal("99.90")
        assert event.lookup[:2] == [(LookupKey.GATEWAY_ORDER_ID, "PPO-1"), (LookupKey.PAYMENT_ID, "pay-1")]

    def test_capture_without_amount_is_validation_error(self) -> None:
        """Test that a completed capture without an amount is rejected."""
        with pytest.raises(ValidationError):
            PayPalGateway().parse({"event_type": "PAYMENT.CAPTURE.COMPLETED", "resource": {"id": "CAP-1"}})

    def test_denied_looks_up_capture_first(self) -> None:
        """Test that a denied capture is matched by its capture id first."""
        event = PayPalGateway().parse({"event_type": "PAYMENT.CAPTURE.DENIED", "resource": {"id": "CAP-1"}})

        assert event.kind == EventKind.FAILED
        assert event.lookup == [(LookupKey.GATEWAY_PAYMENT_ID, "CAP-1")]

    def test_refunded_is_ignored(self) -> None:
        """Test that refund notifications are not reconciled."""
        event = PayPalGateway().parse({"event_type": "PAYMENT.CAPTURE.REFUNDED", "resource": {"id": "CAP-1"}})

        assert event.kind == EventKind.IGNORED


class TestPayPalVerify:
    """Tests for PayPalGateway.verify."""

    body = json.dumps({"id": "WH-EVT-1", "event_type": "PAYMENT.CAPTURE.COMPLETED"}).encode()

    def _gateway(self, handler) -> PayPalGateway:
        gateway = PayPalGateway()
        gateway._clients[PAYPAL_URL] = httpx.AsyncClient(
            base_url=PAYPAL_URL, transport=httpx.MockTransport(handler)
        )
        return gateway

    @pytest.mark.asyncio
    async def test_success_returns_payload(self) -> None:
        """Test that a SUCCESS verification returns the decoded event."""
        sent: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v1/oauth2/token":
                return httpx.Response(200, json={"access_token": "pp-token", "expires_in": 32400})
            sent.update(json.loads(request.content))
            return httpx.Response(200, json={"verification_status": "SUCCESS"})

        payload = await self._gateway(handler).verify(self.body, PAYPAL_HEADERS, PAYPAL_CREDENTIALS)

        assert payload["id"] == "WH-EVT-1"
        assert sent["webhook_id"] == "WH-1"
        assert sent["transmission_id"] == "tx-1"
        assert sent["webhook_event"]["event_type"] == "PAYMENT.CAPTURE.COMPLETED"

    @pytest.mark.asyncio
    async def test_failure_status_is_rejected(self) -> None:
        """Test that a FAILURE verification raises AuthenticationError."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v1/oauth2/token":
                return httpx.Response(200, json={"access_token": "pp-token", "expires_in": 32400})
            return httpx.Response(200, json={"verification_status": "FAILURE"})

        with pytest.raises(AuthenticationError, match="Invalid signature"):
            await self._gateway(handler).verify(self.body, PAYPAL_HEADERS, PAYPAL_CREDENTIALS)

    @pytest.mark.asyncio
    async def test_verification_outage_is_rejected(self) -> None:
        """Test that an unreachable verification API fails closed."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": "invalid_client"})

        with pytest.raises(AuthenticationError, match="verification failed"):
            await self._gateway(handler).verify(self.body, PAYPAL_HEADERS, PAYPAL_CREDENTIALS)

    @pytest.mark.asyncio
    async def test_missing_header_is_rejected_without_calls(self) -> None:
        """Test that missing transmission headers fail before any request."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        headers = {k: v for k, v in PAYPAL_HEADERS.items() if k != "paypal-transmission-sig"}
        with pytest.raises(AuthenticationError, match="paypal-transmission-sig"):
            await self._gateway(handler).verify(self.body, headers, PAYPAL_CREDENTIALS)


class TestRegistry:
    """Tests for get_gateway."""

    def test_shared_instances(self) -> None:
        """Test that adapters are created once per gateway."""
        assert get_gateway("stripe") is get_gateway(PaymentGateway.STRIPE)
        assert isinstance(get_gateway("razorpay"), RazorpayGateway)

    def test_unknown_gateway(self) -> None:
        """Test that an unknown gateway name is a ValueError."""
        with pytest.raises(ValueError):
            get_gateway("square")
