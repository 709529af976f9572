"""Carrier integrations: webhook handling and outbound shipment APIs.

Each supported carrier is one ``CarrierProvider`` subclass. Adding a carrier
means adding a subclass and registering it in ``_CARRIER_CLASSES``; the
webhook pipeline, cancellation and returns only talk to the base interface.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from src.api.middleware.error_handler import ValidationError
from src.core.config import Settings, get_settings
from src.core.http import CachedToken, OutboundProviderError, build_async_client, request_json
from src.models.status import Carrier, ShipmentStatus
from src.services import status_translator, webhook_auth

logger = logging.getLogger(__name__)

# Shiprocket login does not report a token lifetime.
SHIPROCKET_TOKEN_LIFETIME_SECONDS = 10 * 60 * 60


@dataclass
class CarrierEvent:
    """A parsed, authenticated carrier status notification."""

    tracking_id: str
    vendor_status: str
    event_id: str | None = None
    occurred_at: str | None = None


@dataclass
class BookedShipment:
    """Identifiers returned by a carrier when a shipment is booked."""

    tracking_id: str
    shipment_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


def _load_json(raw_body: bytes, provider: str) -> dict[str, Any]:
    try:
        payload = json.loads(raw_body)
    except ValueError as e:
        raise ValidationError(f"Malformed {provider} payload") from e
    if not isinstance(payload, dict):
        raise ValidationError(f"Malformed {provider} payload")
    return payload


def _require_fields(payload: dict[str, Any], provider: str, *names: str) -> list[str]:
    values = [payload.get(name) for name in names]
    missing = [name for name, value in zip(names, values) if not value]
    if missing:
        logger.warning("%s webhook missing fields %s; keys=%s", provider, missing, sorted(payload))
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details=[{"loc": ["body", name], "msg": "field required", "type": "missing"} for name in missing],
        )
    return [str(value) for value in values]


def _full_name(address: Mapping[str, Any]) -> str:
    return f"{address.get('first_name', '')} {address.get('last_name') or ''}".strip()


class CarrierProvider(ABC):
    """Interface every carrier integration implements."""

    name: Carrier

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings or get_settings()
        self._client = client
        self._token: CachedToken | None = None
        self._token_lock = asyncio.Lock()

    @property
    @abstractmethod
    def base_url(self) -> str:
        """Carrier API base URL."""

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = build_async_client(self.base_url, self.settings.carrier_http_timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # Inbound webhooks

    @abstractmethod
    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        """Authenticate a webhook. Raises AuthenticationError."""

    def translate(self, vendor_status: str) -> ShipmentStatus | None:
        return status_translator.translate(self.name, vendor_status)

    def require_status(self, vendor_status: str) -> ShipmentStatus:
        return status_translator.require_status(self.name, vendor_status)

    @abstractmethod
    def parse_event(self, raw_body: bytes, headers: Mapping[str, str]) -> CarrierEvent:
        """Extract the tracking id and vendor status. Raises ValidationError."""

    # Outbound calls

    @abstractmethod
    async def _fetch_token(self) -> CachedToken:
        """Obtain a fresh API token."""

    async def get_token(self) -> str:
        """Return a cached API token, refreshing it when close to expiry."""
        async with self._token_lock:
            if self._token is None or not self._token.is_valid:
                self._token = await self._fetch_token()
                logger.info("%s API token refreshed", self.name.value)
            return self._token.value

    async def _call(self, method: str, url: str, operation: str, **kwargs: Any) -> dict[str, Any]:
        token = await self.get_token()
        headers = {"Authorization": f"Bearer {token}", **kwargs.pop("headers", {})}
        return await request_json(
            self.client,
            method,
            url,
            provider=self.name.value,
            operation=operation,
            max_retries=self.settings.carrier_max_retries,
            headers=headers,
            **kwargs,
        )

    def _require_credentials(self, operation: str, *values: str) -> None:
        if not all(values):
            raise OutboundProviderError(self.name.value, operation, "credentials not configured")

    @abstractmethod
    async def create_shipment(
        self,
        order: dict[str, Any],
        shop_id: str,
        items: list[dict[str, Any]],
        pickup: Mapping[str, Any],
    ) -> BookedShipment:
        """Book a forward shipment for one shop's items."""

    @abstractmethod
    async def cancel_shipment(self, tracking_id: str) -> dict[str, Any]:
        """Cancel a booked shipment."""

    @abstractmethod
    async def create_return_shipment(
        self,
        order: dict[str, Any],
        shop_id: str,
        original_tracking_id: str,
        pickup: Mapping[str, Any],
    ) -> str:
        """Book a reverse shipment from the customer back to the shop. Returns its tracking id."""

    @abstractmethod
    async def track_shipment(self, tracking_id: str) -> dict[str, Any]:
        """Fetch the carrier's tracking details."""


class FedExCarrier(CarrierProvider):
    """FedEx REST APIs. Webhooks are HMAC signed, base64 or hex."""

    name = Carrier.FEDEX

    @property
    def base_url(self) -> str:
        return self.settings.fedex_api_url

    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        webhook_auth.verify_fedex_signature(raw_body, headers, self.settings.fedex_webhook_secret)

    def parse_event(self, raw_body: bytes, headers: Mapping[str, str]) -> CarrierEvent:
        payload = _load_json(raw_body, "FedEx")
        tracking_id, status = _require_fields(payload, "FedEx", "trackingNumber", "status")
        return CarrierEvent(tracking_id=tracking_id, vendor_status=status)

    async def _fetch_token(self) -> CachedToken:
        self._require_credentials("token", self.settings.fedex_client_id, self.settings.fedex_client_secret)
        data = await request_json(
            self.client,
            "POST",
            "/oauth/token",
            provider=self.name.value,
            operation="token",
            max_retries=self.settings.carrier_max_retries,
            data={
                "grant_type": "client_credentials",
                "client_id": self.settings.fedex_client_id,
                "client_secret": self.settings.fedex_client_secret,
            },
        )
        return CachedToken.from_expires_in(data["access_token"], data.get("expires_in", 3600))

    def _party(self, name: str, phone: str | None, address: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "contact": {"personName": name, "phoneNumber": phone},
            "address": {
                "streetLines": [address.get("address_line")],
                "city": address.get("city"),
                "stateOrProvinceCode": address.get("state"),
                "postalCode": address.get("zip_code"),
                "countryCode": address.get("country") or "IN",
            },
        }

    @staticmethod
    def _master_tracking_number(data: dict[str, Any], operation: str) -> tuple[str, str | None]:
        try:
            shipment = data["output"]["transactionShipments"][0]
            return shipment["masterTrackingNumber"], shipment.get("shipmentId")
        except (KeyError, IndexError, TypeError) as e:
            raise OutboundProviderError("fedex", operation, "response missing tracking number") from e

    async def create_shipment(self, order, shop_id, items, pickup) -> BookedShipment:
        address = order["shipping_address"]
        payload = {
            "accountNumber": {"value": self.settings.fedex_account_number},
            "customerTransactionId": f"{order['id']}-{shop_id}",
            "requestedShipment": {
                "shipper": self._party(pickup.get("contact_name", ""), pickup.get("phone"), pickup),
                "recipients": [self._party(_full_name(address), address.get("phone"), address)],
                "serviceType": "FEDEX_GROUND",
                "packagingType": "YOUR_PACKAGING",
                "labelSpecification": {"labelStockType": "PAPER_85X11_TOP_HALF_LABEL", "imageType": "PDF"},
                "requestedPackageLineItems": [
                    {
                        "weight": {"units": "KG", "value": item.get("weight") or 1},
                        "itemDescription": item["name"],
                    }
                    for item in items
                ],
            },
        }
        data = await self._call("POST", "/ship/v1/shipments", "create_shipment", json=payload)
        tracking_id, shipment_id = self._master_tracking_number(data, "create_shipment")
        return BookedShipment(tracking_id=tracking_id, shipment_id=shipment_id, raw=data)

    async def cancel_shipment(self, tracking_id: str) -> dict[str, Any]:
        payload = {
            "accountNumber": {"value": self.settings.fedex_account_number},
            "trackingNumber": tracking_id,
        }
        return await self._call("PUT", "/ship/v1/shipments/cancel", "cancel_shipment", json=payload)

    async def create_return_shipment(self, order, shop_id, original_tracking_id, pickup) -> str:
        address = order["shipping_address"]
        payload = {
            "accountNumber": {"value": self.settings.fedex_account_number},
            "customerTransactionId": f"{order['id']}-{shop_id}-RETURN",
            "requestedShipment": {
                "shipper": self._party(_full_name(address), address.get("phone"), address),
                "recipients": [self._party(pickup.get("contact_name", ""), pickup.get("phone"), pickup)],
                "serviceType": "FEDEX_GROUND",
                "packagingType": "YOUR_PACKAGING",
                "shipmentSpecialServices": {
                    "specialServiceTypes": ["RETURN_SHIPMENT"],
                    "returnShipmentDetail": {
                        "returnType": "PRINT_RETURN_LABEL",
                        "originalTrackingNumber": original_tracking_id,
                    },
                },
                "requestedPackageLineItems": [{"weight": {"units": "KG", "value": 1}}],
            },
        }
        data = await self._call("POST", "/ship/v1/shipments", "create_return_shipment", json=payload)
        tracking_id, _ = self._master_tracking_number(data, "create_return_shipment")
        return tracking_id

    async def track_shipment(self, tracking_id: str) -> dict[str, Any]:
        payload = {"trackingInfo": [{"trackingNumberInfo": {"trackingNumber": tracking_id}}], "includeDetailedScans": True}
        return await self._call("POST", "/track/v1/trackingnumbers", "track_shipment", json=payload)


class ShiprocketCarrier(CarrierProvider):
    """Shiprocket external API. Webhooks carry a static token, not a signature."""

    name = Carrier.SHIPROCKET

    @property
    def base_url(self) -> str:
        return self.settings.shiprocket_api_url

    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        webhook_auth.verify_shiprocket_token(headers, self.settings.shiprocket_webhook_token)

    def parse_event(self, raw_body: bytes, headers: Mapping[str, str]) -> CarrierEvent:
        payload = _load_json(raw_body, "Shiprocket")
        tracking_id, status = _require_fields(payload, "Shiprocket", "awb", "current_status")
        return CarrierEvent(tracking_id=tracking_id, vendor_status=status)

    async def _fetch_token(self) -> CachedToken:
        self._require_credentials("login", self.settings.shiprocket_email, self.settings.shiprocket_password)
        data = await request_json(
            self.client,
            "POST",
            "/auth/login",
            provider=self.name.value,
            operation="login",
            max_retries=self.settings.carrier_max_retries,
            json={"email": self.settings.shiprocket_email, "password": self.settings.shiprocket_password},
        )
        return CachedToken.from_expires_in(data["token"], SHIPROCKET_TOKEN_LIFETIME_SECONDS)

    def _customer_fields(self, prefix: str, address: Mapping[str, Any]) -> dict[str, Any]:
        return {
            f"{prefix}_customer_name": address.get("first_name"),
            f"{prefix}_last_name": address.get("last_name") or "",
            f"{prefix}_address": address.get("address_line"),
            f"{prefix}_city": address.get("city"),
            f"{prefix}_pincode": address.get("zip_code"),
            f"{prefix}_state": address.get("state"),
            f"{prefix}_country": address.get("country") or "India",
            f"{prefix}_email": address.get("email"),
            f"{prefix}_phone": address.get("phone"),
        }

    async def create_shipment(self, order, shop_id, items, pickup) -> BookedShipment:
        payload = {
            "order_id": f"{order['id']}-{shop_id}",
            "order_date": order.get("created_at"),
            "pickup_location": pickup.get("location_name") or self.settings.shiprocket_pickup_location,
            **self._customer_fields("billing", order["shipping_address"]),
            "shipping_is_billing": True,
            "payment_method": "COD" if order.get("payment_method") == "cod" else "Prepaid",
            "sub_total": sum(item["price"] * item["quantity"] for item in items),
            "order_items": [
                {"name": item["name"], "sku": item.get("sku"), "units": item["quantity"], "selling_price": item["price"]}
                for item in items
            ],
            "length": 10,
            "breadth": 10,
            "height": 10,
            "weight": 1,
        }
        data = await self._call("POST", "/orders/create/adhoc", "create_shipment", json=payload)
        if not data.get("awb_code") and not data.get("shipment_id"):
            raise OutboundProviderError(self.name.value, "create_shipment", "response missing awb and shipment id")
        tracking_id = data.get("awb_code") or str(data["shipment_id"])
        shipment_id = str(data["shipment_id"]) if data.get("shipment_id") else None
        return BookedShipment(tracking_id=tracking_id, shipment_id=shipment_id, raw=data)

    async def cancel_shipment(self, tracking_id: str) -> dict[str, Any]:
        return await self._call(
            "POST", "/orders/cancel/shipment/awbs", "cancel_shipment", json={"awbs": [tracking_id]}
        )

    async def create_return_shipment(self, order, shop_id, original_tracking_id, pickup) -> str:
        payload = {
            "order_id": f"{order['id']}-{shop_id}-RETURN",
            "order_date": order.get("created_at"),
            **self._customer_fields("pickup", order["shipping_address"]),
            "shipping_customer_name": pickup.get("contact_name"),
            "shipping_address": pickup.get("address_line"),
            "shipping_city": pickup.get("city"),
            "shipping_pincode": pickup.get("zip_code"),
            "shipping_state": pickup.get("state"),
            "shipping_country": pickup.get("country") or "India",
            "shipping_phone": pickup.get("phone"),
            "payment_method": "Prepaid",
            "sub_total": 0,
            "order_items": [{"name": "Return Package", "sku": original_tracking_id, "units": 1, "selling_price": 0}],
            "length": 10,
            "breadth": 10,
            "height": 10,
            "weight": 1,
        }
        data = await self._call("POST", "/orders/create/return", "create_return_shipment", json=payload)
        tracking_id = data.get("awb_code") or data.get("shipment_id")
        if not tracking_id:
            raise OutboundProviderError(self.name.value, "create_return_shipment", "response missing awb")
        return str(tracking_id)

    async def track_shipment(self, tracking_id: str) -> dict[str, Any]:
        return await self._call("GET", f"/courier/track/awb/{tracking_id}", "track_shipment")


class UPSCarrier(CarrierProvider):
    """UPS APIs. Webhooks are hex HMAC signed and carry an event id header."""

    name = Carrier.UPS

    @property
    def base_url(self) -> str:
        return self.settings.ups_api_url

    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        webhook_auth.verify_ups_signature(raw_body, headers, self.settings.ups_webhook_secret)

    def parse_event(self, raw_body: bytes, headers: Mapping[str, str]) -> CarrierEvent:
        payload = _load_json(raw_body, "UPS")
        tracking_id, status = _require_fields(payload, "UPS", "trackingNumber", "status")
        return CarrierEvent(
            tracking_id=tracking_id,
            vendor_status=status,
            event_id=headers.get(webhook_auth.UPS_EVENT_ID_HEADER) or None,
            occurred_at=payload.get("timestamp"),
        )

    async def _fetch_token(self) -> CachedToken:
        self._require_credentials("token", self.settings.ups_client_id, self.settings.ups_client_secret)
        data = await request_json(
            self.client,
            "POST",
            "/security/v1/oauth/token",
            provider=self.name.value,
            operation="token",
            max_retries=self.settings.carrier_max_retries,
            data={"grant_type": "client_credentials"},
            auth=(self.settings.ups_client_id, self.settings.ups_client_secret),
        )
        return CachedToken.from_expires_in(data["access_token"], int(data.get("expires_in", 14399)))

    @staticmethod
    def _party(name: str, phone: str | None, address: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "name": name,
            "phone": phone,
            "address": {
                "addressLine": address.get("address_line"),
                "city": address.get("city"),
                "stateProvince": address.get("state"),
                "postalCode": address.get("zip_code"),
                "countryCode": address.get("country") or "IN",
            },
        }

    async def create_shipment(self, order, shop_id, items, pickup) -> BookedShipment:
        address = order["shipping_address"]
        payload = {
            "shipment": {
                "shipper": self._party(pickup.get("contact_name", ""), pickup.get("phone"), pickup),
                "recipient": self._party(_full_name(address), address.get("phone"), address),
                "packages": [
                    {"description": item["name"], "weight": {"unit": "KGS", "value": item.get("weight") or 1}}
                    for item in items
                ],
            }
        }
        data = await self._call("POST", "/api/shipments/v1/ship", "create_shipment", json=payload)
        if not data.get("trackingNumber"):
            raise OutboundProviderError(self.name.value, "create_shipment", "response missing tracking number")
        return BookedShipment(tracking_id=data["trackingNumber"], shipment_id=data.get("shipmentId"), raw=data)

    async def cancel_shipment(self, tracking_id: str) -> dict[str, Any]:
        return await self._call("POST", f"/api/shipments/v1/ship/{tracking_id}/cancel", "cancel_shipment")

    async def create_return_shipment(self, order, shop_id, original_tracking_id, pickup) -> str:
        address = order["shipping_address"]
        payload = {
            "returnShipment": True,
            "originalTracking": original_tracking_id,
            "shipper": self._party(_full_name(address), address.get("phone"), address),
            "recipient": self._party(pickup.get("contact_name", ""), pickup.get("phone"), pickup),
        }
        data = await self._call("POST", "/api/shipments/v1/ship", "create_return_shipment", json=payload)
        if not data.get("trackingNumber"):
            raise OutboundProviderError(self.name.value, "create_return_shipment", "response missing tracking number")
        return data["trackingNumber"]

    async def track_shipment(self, tracking_id: str) -> dict[str, Any]:
        return await self._call("POST", "/api/track/v1/details", "track_shipment", json={"trackingNumber": tracking_id})


_CARRIER_CLASSES: dict[Carrier, type[CarrierProvider]] = {
    Carrier.FEDEX: FedExCarrier,
    Carrier.SHIPROCKET: ShiprocketCarrier,
    Carrier.UPS: UPSCarrier,
}


def normalize_carrier(name: str | None) -> Carrier:
    """Resolve a carrier name case-insensitively.

    Raises:
        ValidationError: If the carrier is not supported.
    """
    try:
        return Carrier((name or "").strip().lower())
    except ValueError as e:
        raise ValidationError(f"Unsupported carrier: {name}") from e


_instances: dict[Carrier, CarrierProvider] = {}


def get_carrier(name: str | Carrier | None) -> CarrierProvider:
    """Get the shared client for a carrier.

    Instances are kept for the life of the process so API tokens are reused
    across requests.

    Raises:
        ValidationError: If the carrier is not supported.
    """
    carrier = normalize_carrier(name.value if isinstance(name, Carrier) else name)
    if carrier not in _instances:
        _instances[carrier] = _CARRIER_CLASSES[carrier]()
    return _instances[carrier]


async def close_carriers() -> None:
    """Close HTTP clients of every carrier created so far."""
    for provider in list(_instances.values()):
        await provider.aclose()
    _instances.clear()
