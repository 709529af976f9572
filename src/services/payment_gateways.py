"""Payment gateway webhook adapters.

Each gateway verifies its own wire format and turns it into a
``GatewayEvent``. Reconciliation only sees ``GatewayEvent`` and never reads a
gateway payload directly.
"""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

import httpx

from src.api.middleware.error_handler import AuthenticationError, ValidationError
from src.core.config import get_settings
from src.core.http import CachedToken, OutboundProviderError, build_async_client, request_json
from src.models.status import PaymentGateway
from src.services import webhook_auth

logger = logging.getLogger(__name__)

PAYPAL_TRANSMISSION_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}

# Razorpay close reasons meaning the customer left checkout without paying.
RAZORPAY_ABANDON_REASONS = frozenset({"opt_out", "user_exit"})


class EventKind(str, Enum):
    """Effect of a gateway event on a payment."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    IGNORED = "ignored"


class LookupKey(str, Enum):
    """Ways to find the payment a gateway event refers to."""

    GATEWAY_ORDER_ID = "gateway_order_id"
    PAYMENT_ID = "payment_id"
    GATEWAY_PAYMENT_ID = "gateway_payment_id"
    ORDER_REF = "order_ref"


@dataclass
class GatewayEvent:
    """A verified gateway event in gateway-neutral form.

    ``lookup`` lists correlation keys in the order they should be tried.
    """

    gateway: PaymentGateway
    event_type: str
    kind: EventKind
    lookup: list[tuple[LookupKey, str]] = field(default_factory=list)
    amount: Decimal | None = None
    gateway_payment_id: str | None = None

    @classmethod
    def ignored(cls, gateway: PaymentGateway, event_type: str) -> "GatewayEvent":
        return cls(gateway=gateway, event_type=event_type, kind=EventKind.IGNORED)


def _lookup(*pairs: tuple[LookupKey, Any]) -> list[tuple[LookupKey, str]]:
    return [(key, str(value)) for key, value in pairs if value]


def _minor_units_to_decimal(value: Any, gateway: str) -> Decimal:
    try:
        return Decimal(int(value)) / 100
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Malformed {gateway} amount") from e


def _load_json(raw_body: bytes, gateway: str) -> dict[str, Any]:
    try:
        payload = json.loads(raw_body)
    except ValueError as e:
        raise ValidationError(f"Malformed {gateway} payload") from e
    if not isinstance(payload, dict):
        raise ValidationError(f"Malformed {gateway} payload")
    return payload


class PaymentGatewayProvider(ABC):
    """Interface every payment gateway adapter implements."""

    name: PaymentGateway

    @abstractmethod
    async def verify(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
        credentials: dict[str, str],
    ) -> dict[str, Any]:
        """Authenticate the webhook and return its decoded payload.

        Raises:
            AuthenticationError: If verification fails.
        """

    @abstractmethod
    def parse(self, payload: dict[str, Any]) -> GatewayEvent:
        """Map a verified payload to a GatewayEvent.

        Raises:
            ValidationError: If a handled event is missing required fields.
        """


class StripeGateway(PaymentGatewayProvider):
    """Stripe PaymentIntent webhooks. Amounts are in the smallest currency unit."""

    name = PaymentGateway.STRIPE

    async def verify(self, raw_body, headers, credentials) -> dict[str, Any]:
        secrets = [
            secret
            for secret in (credentials.get("webhook_secret"), credentials.get("webhook_secret_test"))
            if secret
        ]
        webhook_auth.construct_stripe_event(raw_body, headers, secrets)
        return _load_json(raw_body, "Stripe")

    def parse(self, payload: dict[str, Any]) -> GatewayEvent:
        event_type = payload.get("type", "")
        intent = (payload.get("data") or {}).get("object") or {}
        metadata = intent.get("metadata") or {}

        kinds = {
            "payment_intent.succeeded": EventKind.SUCCEEDED,
            "payment_intent.payment_failed": EventKind.FAILED,
            "payment_intent.canceled": EventKind.CANCELLED,
        }
        kind = kinds.get(event_type)
        if kind is None:
            return GatewayEvent.ignored(self.name, event_type)

        event = GatewayEvent(
            gateway=self.name,
            event_type=event_type,
            kind=kind,
            lookup=_lookup(
                (LookupKey.GATEWAY_ORDER_ID, intent.get("id")),
                (LookupKey.PAYMENT_ID, metadata.get("payment_id") or metadata.get("paymentId")),
                (LookupKey.ORDER_REF, metadata.get("order_ref")),
            ),
            gateway_payment_id=intent.get("latest_charge") or intent.get("id"),
        )
        if kind == EventKind.SUCCEEDED:
            event.amount = _minor_units_to_decimal(intent.get("amount_received"), "Stripe")
        return event


class RazorpayGateway(PaymentGatewayProvider):
    """Razorpay payment and order webhooks. Amounts are in paise."""

    name = PaymentGateway.RAZORPAY

    async def verify(self, raw_body, headers, credentials) -> dict[str, Any]:
        webhook_auth.verify_razorpay_signature(raw_body, headers, credentials.get("webhook_secret", ""))
        return _load_json(raw_body, "Razorpay")

    def parse(self, payload: dict[str, Any]) -> GatewayEvent:
        event_type = payload.get("event", "")
        body = payload.get("payload") or {}

        if event_type in ("payment.captured", "payment.failed"):
            entity = (body.get("payment") or {}).get("entity")
            if not entity:
                raise ValidationError("Razorpay payment entity missing")
            notes = entity.get("notes") or {}
            captured = event_type == "payment.captured"
            return GatewayEvent(
                gateway=self.name,
                event_type=event_type,
                kind=EventKind.SUCCEEDED if captured else EventKind.FAILED,
                lookup=_lookup(
                    (LookupKey.GATEWAY_ORDER_ID, entity.get("order_id")),
                    (LookupKey.PAYMENT_ID, notes.get("payment_id")),
                    (LookupKey.ORDER_REF, notes.get("order_ref")),
                ),
                amount=_minor_units_to_decimal(entity.get("amount"), "Razorpay") if captured else None,
                gateway_payment_id=entity.get("id"),
            )

        if event_type == "order.paid":
            order = (body.get("order") or {}).get("entity") or {}
            abandoned = order.get("close_reason") in RAZORPAY_ABANDON_REASONS or (
                order.get("status") == "attempted" and not order.get("amount_paid")
            )
            # A real order.paid is followed by payment.captured, which does the work.
            if not abandoned:
                return GatewayEvent.ignored(self.name, event_type)
            return GatewayEvent(
                gateway=self.name,
                event_type=event_type,
                kind=EventKind.CANCELLED,
                lookup=_lookup((LookupKey.GATEWAY_ORDER_ID, order.get("id"))),
            )

        return GatewayEvent.ignored(self.name, event_type)


class PayPalGateway(PaymentGatewayProvider):
    """PayPal webhooks, verified by PayPal's verify-webhook-signature API."""

    name = PaymentGateway.PAYPAL

    def __init__(self) -> None:
        self._clients: dict[str, httpx.AsyncClient] = {}
        self._tokens: dict[str, CachedToken] = {}

    def _client(self, api_url: str) -> httpx.AsyncClient:
        if api_url not in self._clients:
            self._clients[api_url] = build_async_client(api_url, get_settings().carrier_http_timeout_seconds)
        return self._clients[api_url]

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()

    async def _access_token(self, client: httpx.AsyncClient, credentials: dict[str, str]) -> str:
        cached = self._tokens.get(credentials["client_id"])
        if cached and cached.is_valid:
            return cached.value
        data = await request_json(
            client,
            "POST",
            "/v1/oauth2/token",
            provider="paypal",
            operation="token",
            data={"grant_type": "client_credentials"},
            auth=(credentials["client_id"], credentials["client_secret"]),
        )
        token = CachedToken.from_expires_in(data["access_token"], data.get("expires_in", 32400))
        self._tokens[credentials["client_id"]] = token
        return token.value

    async def verify(self, raw_body, headers, credentials) -> dict[str, Any]:
        transmission = {}
        for field_name, header in PAYPAL_TRANSMISSION_HEADERS.items():
            value = headers.get(header)
            if not value:
                logger.warning("PayPal webhook missing %s header", header)
                raise AuthenticationError(f"Missing {header} header")
            transmission[field_name] = value

        try:
            payload = _load_json(raw_body, "PayPal")
        except ValidationError as e:
            raise AuthenticationError("Invalid payload") from e

        client = self._client(credentials.get("api_url") or get_settings().paypal_api_url)
        try:
            token = await self._access_token(client, credentials)
            result = await request_json(
                client,
                "POST",
                "/v1/notifications/verify-webhook-signature",
                provider="paypal",
                operation="verify_webhook_signature",
                headers={"Authorization": f"Bearer {token}"},
                json={**transmission, "webhook_id": credentials["webhook_id"], "webhook_event": payload},
            )
        except OutboundProviderError as e:
            logger.error("PayPal webhook verification call failed: %s", str(e))
            raise AuthenticationError("PayPal webhook verification failed") from e

        verification_status = result.get("verification_status")
        if verification_status != "SUCCESS":
            logger.warning("PayPal webhook verification status: %s", verification_status)
            raise AuthenticationError("Invalid signature")
        return payload

    def parse(self, payload: dict[str, Any]) -> GatewayEvent:
        event_type = payload.get("event_type", "")
        resource = payload.get("resource") or {}
        purchase_units = resource.get("purchase_units") or [{}]
        custom_id = resource.get("custom_id") or purchase_units[0].get("custom_id")

        if event_type == "PAYMENT.CAPTURE.COMPLETED":
            related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
            try:
                amount = Decimal(str((resource.get("amount") or {})["value"]))
            except (KeyError, InvalidOperation) as e:
                raise ValidationError("PayPal capture amount missing") from e
            return GatewayEvent(
                gateway=self.name,
                event_type=event_type,
                kind=EventKind.SUCCEEDED,
                lookup=_lookup(
                    (LookupKey.GATEWAY_ORDER_ID, related.get("order_id")),
                    (LookupKey.PAYMENT_ID, custom_id),
                    (LookupKey.ORDER_REF, resource.get("invoice_id")),
                ),
                amount=amount,
                gateway_payment_id=resource.get("id"),
            )

        if event_type == "PAYMENT.CAPTURE.DENIED":
            related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
            return GatewayEvent(
                gateway=self.name,
                event_type=event_type,
                kind=EventKind.FAILED,
                lookup=_lookup(
                    (LookupKey.GATEWAY_PAYMENT_ID, resource.get("id")),
                    (LookupKey.GATEWAY_ORDER_ID, related.get("order_id")),
                    (LookupKey.PAYMENT_ID, custom_id),
                ),
            )

        if event_type == "CHECKOUT.ORDER.CANCELLED":
            return GatewayEvent(
                gateway=self.name,
                event_type=event_type,
                kind=EventKind.CANCELLED,
                lookup=_lookup(
                    (LookupKey.GATEWAY_ORDER_ID, resource.get("id")),
                    (LookupKey.PAYMENT_ID, custom_id),
                ),
            )

        return GatewayEvent.ignored(self.name, event_type)


_gateways: dict[PaymentGateway, PaymentGatewayProvider] = {}

_GATEWAY_CLASSES: dict[PaymentGateway, type[PaymentGatewayProvider]] = {
    PaymentGateway.STRIPE: StripeGateway,
    PaymentGateway.RAZORPAY: RazorpayGateway,
    PaymentGateway.PAYPAL: PayPalGateway,
}


def get_gateway(name: PaymentGateway | str) -> PaymentGatewayProvider:
    """Get the shared adapter for a payment gateway."""
    gateway = PaymentGateway(name)
    if gateway not in _gateways:
        _gateways[gateway] = _GATEWAY_CLASSES[gateway]()
    return _gateways[gateway]


async def close_gateways() -> None:
    """Close HTTP clients held by gateway adapters."""
    for gateway in list(_gateways.values()):
        if isinstance(gateway, PayPalGateway):
            await gateway.aclose()
    _gateways.clear()
