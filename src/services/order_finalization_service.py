"""Turn a paid payment into an order."""

import logging
import secrets
import time
from decimal import Decimal
from typing import Any

from src.api.middleware.error_handler import ValidationError
from src.models.status import ShipmentStatus
from src.services.order_store import OrderStore
from src.services.shipment_updates import utc_now_iso

logger = logging.getLogger(__name__)


def generate_order_number() -> str:
    return f"ORD-{int(time.time() * 1000)}-{secrets.randbelow(10000)}"


def _money(value: Any) -> Decimal:
    return Decimal(str(value or 0))


def build_order(payment: dict[str, Any]) -> dict[str, Any]:
    """Build an order row from the checkout snapshot stored on a payment.

    Line items come only from ``payment.metadata.items``; the customer's
    live cart may have changed since checkout. One pending shipment is
    created per contributing shop, in the order the shops first appear.

    Raises:
        ValidationError: If the snapshot has no items.
    """
    metadata = payment.get("metadata") or {}
    items = metadata.get("items") or []
    if not items:
        raise ValidationError("No items in payment metadata")

    line_items = [
        {
            "product_id": str(item["product_id"]),
            "shop_id": str(item["shop_id"]),
            "name": item.get("name", ""),
            "sku": item.get("sku"),
            "quantity": int(item["quantity"]),
            "price": float(item["price"]),
            "shipping_cost": float(item.get("shipping_cost") or 0),
        }
        for item in items
    ]

    subtotal = sum((_money(i["price"]) * i["quantity"] for i in line_items), Decimal("0"))
    shipping = sum((_money(i["shipping_cost"]) for i in line_items), Decimal("0"))

    now = utc_now_iso()
    shop_ids = list(dict.fromkeys(i["shop_id"] for i in line_items))
    shipments = [
        {
            "shop_id": shop_id,
            "carrier": None,
            "tracking_id": None,
            "shipment_id": None,
            "status": ShipmentStatus.PENDING.value,
            "last_updated": now,
            "last_webhook_event_id": None,
            "last_status": None,
            "status_history": [],
        }
        for shop_id in shop_ids
    ]

    return {
        "order_number": generate_order_number(),
        "customer_id": str(payment["customer_id"]),
        "items": line_items,
        "shipments": shipments,
        "subtotal": float(subtotal),
        "shipping": float(shipping),
        "total": float(payment["amount"]),
        "payment_id": str(payment["id"]),
        "payment_method": payment["gateway"],
        "shipping_address": metadata.get("address") or {},
        "notes": metadata.get("notes"),
        "status": ShipmentStatus.PENDING.value,
        "version": 1,
    }


class OrderFinalizationService:
    """Create the order for a paid payment, at most once."""

    def __init__(self, store: OrderStore | None = None) -> None:
        """Initialize finalization service."""
        self.store = store or OrderStore()

    async def finalize(self, payment: dict[str, Any]) -> dict[str, Any]:
        """Finalize a paid payment into an order.

        Returns the existing order when the payment was already finalized.
        Stock decrement and the payment link happen in the same transaction
        as the insert.

        Args:
            payment: The paid payment row.

        Returns:
            dict: The order for this payment.

        Raises:
            ValidationError: If the payment has no checkout snapshot.
        """
        existing = await self.store.find_order_by_payment_id(payment["id"])
        if existing:
            logger.info("Payment %s already finalized as order %s", payment["id"], existing["id"])
            return existing

        order = build_order(payment)
        saved = await self.store.finalize_order(order, payment["id"])
        logger.info(
            "Order %s finalized from payment %s",
            saved.get("order_number"),
            payment["id"],
            extra={"order_id": saved.get("id"), "shops": len(order["shipments"])},
        )
        return saved
