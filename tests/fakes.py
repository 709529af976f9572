"""In-memory stand-ins for the Supabase-backed order store."""

import copy
import uuid
from typing import Any

from src.models.status import OPEN_PAYMENT_STATUSES, PaymentStatus, ReturnStatus
from src.services.order_store import BLOCKING_RETURN_STATUSES

CUSTOMER_ID = "11111111-1111-1111-1111-111111111111"
OTHER_USER_ID = "22222222-2222-2222-2222-222222222222"
SHOPKEEPER_ID = "33333333-3333-3333-3333-333333333333"
ORDER_ID = "44444444-4444-4444-4444-444444444444"
PAYMENT_ID = "55555555-5555-5555-5555-555555555555"


class FakeOrderStore:
    """Dict-backed store with the same async interface as OrderStore.

    Version-checked updates and the database functions behave like their
    SQL counterparts: a lost race returns None.
    """

    def __init__(self) -> None:
        self.orders: dict[str, dict[str, Any]] = {}
        self.payments: dict[str, dict[str, Any]] = {}
        self.return_requests: dict[str, dict[str, Any]] = {}
        self.shops: dict[str, dict[str, Any]] = {}
        self.stock: dict[str, int] = {}
        # Number of upcoming version-checked order writes to reject.
        self.fail_next_order_writes = 0
        self.update_order_calls = 0

    # Seeding

    def add_order(self, order: dict[str, Any]) -> dict[str, Any]:
        order = copy.deepcopy(order)
        order.setdefault("id", str(uuid.uuid4()))
        order.setdefault("version", 1)
        self.orders[order["id"]] = order
        return order

    def add_payment(self, payment: dict[str, Any]) -> dict[str, Any]:
        payment = copy.deepcopy(payment)
        payment.setdefault("id", str(uuid.uuid4()))
        self.payments[payment["id"]] = payment
        return payment

    def add_shop(self, shop: dict[str, Any]) -> dict[str, Any]:
        shop = copy.deepcopy(shop)
        shop.setdefault("is_active", True)
        shop.setdefault("pickup_address", {})
        self.shops[shop["id"]] = shop
        return shop

    def _lose_race(self) -> bool:
        if self.fail_next_order_writes > 0:
            self.fail_next_order_writes -= 1
            # Someone else wrote the row in between.
            return True
        return False

    # Orders

    async def get_order(self, order_id: str) -> dict[str, Any] | None:
        order = self.orders.get(str(order_id))
        return copy.deepcopy(order) if order else None

    async def find_order_by_tracking_id(self, tracking_id: str) -> dict[str, Any] | None:
        for order in self.orders.values():
            if any(s.get("tracking_id") == tracking_id for s in order.get("shipments") or []):
                return copy.deepcopy(order)
        return None

    async def find_order_by_payment_id(self, payment_id: str) -> dict[str, Any] | None:
        for order in self.orders.values():
            if str(order.get("payment_id")) == str(payment_id):
                return copy.deepcopy(order)
        return None

    async def update_order(
        self, order_id: str, expected_version: int, changes: dict[str, Any]
    ) -> dict[str, Any] | None:
        self.update_order_calls += 1
        order = self.orders.get(str(order_id))
        if order is None or self._lose_race():
            if order is not None:
                order["version"] += 1
            return None
        if order["version"] != expected_version:
            return None
        order.update(copy.deepcopy(changes))
        order["version"] = expected_version + 1
        return copy.deepcopy(order)

    async def cancel_order_with_restock(
        self,
        order_id: str,
        expected_version: int,
        shipments: list[dict[str, Any]],
        cancelled_by: str,
        cancelled_at: str,
    ) -> dict[str, Any] | None:
        order = self.orders.get(str(order_id))
        if order is None or self._lose_race():
            if order is not None:
                order["version"] += 1
            return None
        if order["version"] != expected_version:
            return None
        order.update(
            {
                "shipments": copy.deepcopy(shipments),
                "status": "cancelled",
                "cancelled_at": cancelled_at,
                "cancelled_by": cancelled_by,
                "version": expected_version + 1,
            }
        )
        for item in order.get("items") or []:
            self.stock[item["product_id"]] = self.stock.get(item["product_id"], 0) + item["quantity"]
        return copy.deepcopy(order)

    async def finalize_order(self, order: dict[str, Any], payment_id: str) -> dict[str, Any]:
        existing = await self.find_order_by_payment_id(payment_id)
        if existing:
            return existing
        saved = self.add_order({**order, "payment_id": str(payment_id)})
        for item in saved["items"]:
            self.stock[item["product_id"]] = self.stock.get(item["product_id"], 0) - item["quantity"]
        self.payments[str(payment_id)]["order_id"] = saved["id"]
        return copy.deepcopy(saved)

    # Payments

    async def get_payment(self, payment_id: str) -> dict[str, Any] | None:
        payment = self.payments.get(str(payment_id))
        return copy.deepcopy(payment) if payment else None

    def _find_payment(self, gateway: str, **criteria: Any) -> dict[str, Any] | None:
        for payment in self.payments.values():
            if payment.get("gateway") != gateway:
                continue
            if all(payment.get(k) == v for k, v in criteria.items()):
                return copy.deepcopy(payment)
        return None

    async def find_payment_by_gateway_order_id(self, gateway: str, gateway_order_id: str) -> dict[str, Any] | None:
        return self._find_payment(gateway, gateway_order_id=gateway_order_id)

    async def find_payment_by_gateway_payment_id(self, gateway: str, gateway_payment_id: str) -> dict[str, Any] | None:
        return self._find_payment(gateway, gateway_payment_id=gateway_payment_id)

    async def find_payment_by_order_ref(self, gateway: str, order_ref: str) -> dict[str, Any] | None:
        for payment in self.payments.values():
            if payment.get("gateway") == gateway and (payment.get("metadata") or {}).get("order_ref") == order_ref:
                return copy.deepcopy(payment)
        return None

    async def mark_payment_paid(
        self, payment_id: str, gateway_payment_id: str | None, paid_at: str
    ) -> dict[str, Any] | None:
        payment = self.payments.get(str(payment_id))
        if payment is None or payment["status"] == PaymentStatus.PAID.value:
            return None
        payment["status"] = PaymentStatus.PAID.value
        payment["paid_at"] = paid_at
        if gateway_payment_id:
            payment["gateway_payment_id"] = gateway_payment_id
        return copy.deepcopy(payment)

    async def close_payment(self, payment_id: str, status: PaymentStatus) -> dict[str, Any] | None:
        payment = self.payments.get(str(payment_id))
        if payment is None or payment["status"] not in {s.value for s in OPEN_PAYMENT_STATUSES}:
            return None
        payment["status"] = status.value
        return copy.deepcopy(payment)

    # Return requests

    async def get_return_request(self, return_id: str) -> dict[str, Any] | None:
        request = self.return_requests.get(str(return_id))
        return copy.deepcopy(request) if request else None

    async def find_blocking_return_request(self, order_id: str, product_id: str) -> dict[str, Any] | None:
        for request in self.return_requests.values():
            if (
                request["order_id"] == str(order_id)
                and request["product_id"] == str(product_id)
                and request["status"] in BLOCKING_RETURN_STATUSES
            ):
                return {"id": request["id"], "status": request["status"]}
        return None

    async def insert_return_request(self, data: dict[str, Any]) -> dict[str, Any]:
        request = {
            "id": str(uuid.uuid4()),
            "shopkeeper_comment": None,
            "processed_at": None,
            "processed_by": None,
            "reverse_tracking_id": None,
            "reverse_carrier": None,
            "created_at": "2026-10-18T00:00:00+00:00",
            **copy.deepcopy(data),
        }
        self.return_requests[request["id"]] = request
        return copy.deepcopy(request)

    async def update_return_request(self, return_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
        request = self.return_requests.get(str(return_id))
        if request is None:
            return None
        request.update(copy.deepcopy(changes))
        return copy.deepcopy(request)

    async def decide_return_request(
        self,
        return_id: str,
        status: str,
        comment: str | None,
        processed_by: str,
        processed_at: str,
        order_version: int | None = None,
        shipments: list[dict[str, Any]] | None = None,
        order_status: str | None = None,
        returned_at: str | None = None,
    ) -> dict[str, Any] | None:
        request = self.return_requests.get(str(return_id))
        if request is None or request["status"] != ReturnStatus.PROCESSING.value:
            return None
        if status == ReturnStatus.COMPLETED.value:
            if shipments is not None:
                order = self.orders[request["order_id"]]
                if self._lose_race() or order["version"] != order_version:
                    order["version"] += 1
                    return None
                order["shipments"] = copy.deepcopy(shipments)
                order["status"] = order_status or order["status"]
                order["returned_at"] = returned_at or order.get("returned_at")
                order["version"] += 1
            self.stock[request["product_id"]] = self.stock.get(request["product_id"], 0) + request["quantity"]
        request.update(
            {
                "status": status,
                "shopkeeper_comment": comment,
                "processed_by": processed_by,
                "processed_at": processed_at,
            }
        )
        return copy.deepcopy(request)

    async def list_return_requests_for_customer(self, customer_id: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(r) for r in self.return_requests.values() if r["customer_id"] == str(customer_id)]

    async def list_return_requests_for_shop(self, shop_id: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(r) for r in self.return_requests.values() if r["shop_id"] == str(shop_id)]

    # Shops

    async def get_shop(self, shop_id: str) -> dict[str, Any] | None:
        shop = self.shops.get(str(shop_id))
        return copy.deepcopy(shop) if shop else None


def make_shipment(shop_id: str, status: str = "pending", tracking_id: str | None = None, carrier: str | None = None) -> dict[str, Any]:
    return {
        "shop_id": shop_id,
        "carrier": carrier,
        "tracking_id": tracking_id,
        "shipment_id": None,
        "status": status,
        "last_updated": "2026-10-01T00:00:00+00:00",
        "last_webhook_event_id": None,
        "last_status": None,
        "status_history": [],
    }


def make_order(shipments: list[dict[str, Any]], status: str = "pending", **overrides: Any) -> dict[str, Any]:
    """Build an order row with one line item per shipment's shop."""
    items = [
        {
            "product_id": f"prod-{index}",
            "shop_id": shipment["shop_id"],
            "name": f"Product {index}",
            "sku": f"SKU-{index}",
            "quantity": 2,
            "price": 25.0,
            "shipping_cost": 5.0,
        }
        for index, shipment in enumerate(shipments, start=1)
    ]
    order = {
        "id": ORDER_ID,
        "order_number": "ORD-1760745600000-42",
        "customer_id": CUSTOMER_ID,
        "items": items,
        "shipments": shipments,
        "subtotal": 50.0 * len(items),
        "shipping": 5.0 * len(items),
        "total": 55.0 * len(items),
        "payment_id": PAYMENT_ID,
        "payment_method": "stripe",
        "shipping_address": {
            "first_name": "Asha",
            "last_name": "Rao",
            "address_line": "12 MG Road",
            "city": "Bengaluru",
            "state": "KA",
            "zip_code": "560001",
            "country": "IN",
            "phone": "9999999999",
        },
        "status": status,
        "version": 1,
        "cancelled_at": None,
        "cancelled_by": None,
        "delivered_at": None,
        "returned_at": None,
        "created_at": "2026-10-01T00:00:00+00:00",
    }
    order.update(overrides)
    return order
