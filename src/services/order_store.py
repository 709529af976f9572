"""Order, payment and return request persistence on Supabase.

Every read-modify-write is conditional. Order updates filter on the row's
``version`` column and bump it; payment transitions filter on the current
status. An update that matches no row returns ``None`` and the caller decides
whether to re-read and retry. Multi-row atomic units are Postgres functions
defined in ``supabase/migrations`` and invoked through ``rpc``.
"""

import json
import logging
from typing import Any

from src.core.supabase import get_supabase_client
from src.models.order import Order, Payment, ReturnRequest
from src.models.status import OPEN_PAYMENT_STATUSES, PaymentStatus, ReturnStatus

logger = logging.getLogger(__name__)

# Return requests in these states block a new request for the same product.
BLOCKING_RETURN_STATUSES = (ReturnStatus.PROCESSING.value, ReturnStatus.COMPLETED.value)


def _first(response: Any) -> dict[str, Any] | None:
    if response is None or not response.data:
        return None
    data = response.data
    return data[0] if isinstance(data, list) else data


class OrderStore:
    """Data access for orders, payments, return requests and shops."""

    def __init__(self) -> None:
        """Initialize the store with the shared Supabase client."""
        self.client = get_supabase_client()

    # Orders

    async def get_order(self, order_id: str) -> Order | None:
        response = self.client.table("orders").select("*").eq("id", str(order_id)).limit(1).execute()
        return _first(response)

    async def find_order_by_tracking_id(self, tracking_id: str) -> Order | None:
        """Find the order that embeds a shipment with the given tracking id.

        Args:
            tracking_id: Carrier tracking id (FedEx/UPS tracking number, Shiprocket AWB).

        Returns:
            dict | None: The order row, or None if no shipment carries it.
        """
        containment = json.dumps([{"tracking_id": tracking_id}])
        response = (
            self.client.table("orders")
            .select("*")
            .filter("shipments", "cs", containment)
            .limit(1)
            .execute()
        )
        return _first(response)

    async def find_order_by_payment_id(self, payment_id: str) -> Order | None:
        response = (
            self.client.table("orders").select("*").eq("payment_id", str(payment_id)).limit(1).execute()
        )
        return _first(response)

    async def update_order(
        self,
        order_id: str,
        expected_version: int,
        changes: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Update an order only if nobody else wrote it since it was read.

        Args:
            order_id: Order id.
            expected_version: The version the caller read.
            changes: Columns to set.

        Returns:
            dict | None: The updated row, or None if the version check failed.
        """
        data = {**changes, "version": expected_version + 1}
        response = (
            self.client.table("orders")
            .update(data)
            .eq("id", str(order_id))
            .eq("version", expected_version)
            .execute()
        )
        return _first(response)

    async def cancel_order_with_restock(
        self,
        order_id: str,
        expected_version: int,
        shipments: list[dict[str, Any]],
        cancelled_by: str,
        cancelled_at: str,
    ) -> dict[str, Any] | None:
        """Commit a cancellation and restore stock for every line item in one transaction.

        Returns:
            dict | None: The cancelled order, or None if the version check failed.
        """
        response = self.client.rpc(
            "cancel_order_with_restock",
            {
                "p_order_id": str(order_id),
                "p_expected_version": expected_version,
                "p_shipments": shipments,
                "p_cancelled_by": str(cancelled_by),
                "p_cancelled_at": cancelled_at,
            },
        ).execute()
        return response.data or None

    async def finalize_order(self, order: dict[str, Any], payment_id: str) -> Order:
        """Insert an order, decrement stock and link the payment in one transaction.

        The function returns the already linked order when the payment was
        finalized by a concurrent delivery.
        """
        response = self.client.rpc(
            "finalize_order",
            {"p_order": order, "p_payment_id": str(payment_id)},
        ).execute()
        return response.data

    # Payments

    async def get_payment(self, payment_id: str) -> Payment | None:
        response = self.client.table("payments").select("*").eq("id", str(payment_id)).limit(1).execute()
        return _first(response)

    async def find_payment_by_gateway_order_id(
        self, gateway: str, gateway_order_id: str
    ) -> dict[str, Any] | None:
        response = (
            self.client.table("payments")
            .select("*")
            .eq("gateway", gateway)
            .eq("gateway_order_id", gateway_order_id)
            .limit(1)
            .execute()
        )
        return _first(response)

    async def find_payment_by_gateway_payment_id(
        self, gateway: str, gateway_payment_id: str
    ) -> dict[str, Any] | None:
        response = (
            self.client.table("payments")
            .select("*")
            .eq("gateway", gateway)
            .eq("gateway_payment_id", gateway_payment_id)
            .limit(1)
            .execute()
        )
        return _first(response)

    async def find_payment_by_order_ref(self, gateway: str, order_ref: str) -> Payment | None:
        response = (
            self.client.table("payments")
            .select("*")
            .eq("gateway", gateway)
            .eq("metadata->>order_ref", order_ref)
            .limit(1)
            .execute()
        )
        return _first(response)

    async def mark_payment_paid(
        self,
        payment_id: str,
        gateway_payment_id: str | None,
        paid_at: str,
    ) -> dict[str, Any] | None:
        """Transition a payment to paid unless it already is.

        Returns:
            dict | None: The updated payment, or None if it was already paid.
        """
        data: dict[str, Any] = {"status": PaymentStatus.PAID.value, "paid_at": paid_at}
        if gateway_payment_id:
            data["gateway_payment_id"] = gateway_payment_id
        response = (
            self.client.table("payments")
            .update(data)
            .eq("id", str(payment_id))
            .neq("status", PaymentStatus.PAID.value)
            .execute()
        )
        return _first(response)

    async def close_payment(self, payment_id: str, status: PaymentStatus) -> dict[str, Any] | None:
        """Move an open payment to failed or cancelled.

        Returns:
            dict | None: The updated payment, or None if it was no longer open.
        """
        response = (
            self.client.table("payments")
            .update({"status": status.value})
            .eq("id", str(payment_id))
            .in_("status", [s.value for s in OPEN_PAYMENT_STATUSES])
            .execute()
        )
        return _first(response)

    # Return requests

    async def get_return_request(self, return_id: str) -> ReturnRequest | None:
        response = (
            self.client.table("return_requests").select("*").eq("id", str(return_id)).limit(1).execute()
        )
        return _first(response)

    async def find_blocking_return_request(self, order_id: str, product_id: str) -> dict[str, Any] | None:
        response = (
            self.client.table("return_requests")
            .select("id, status")
            .eq("order_id", str(order_id))
            .eq("product_id", str(product_id))
            .in_("status", list(BLOCKING_RETURN_STATUSES))
            .limit(1)
            .execute()
        )
        return _first(response)

    async def insert_return_request(self, data: dict[str, Any]) -> ReturnRequest:
        response = self.client.table("return_requests").insert(data).execute()
        return response.data[0]

    async def update_return_request(self, return_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
        response = (
            self.client.table("return_requests").update(changes).eq("id", str(return_id)).execute()
        )
        return _first(response)

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
        """Record a shopkeeper decision in one transaction.

        For an approval the caller passes the order's new shipments and the
        version they were computed from; the function writes them and restores
        the returned quantity to stock.

        Returns:
            dict | None: The updated return request, or None if the request was
            no longer processing or the order version check failed.
        """
        response = self.client.rpc(
            "decide_return_request",
            {
                "p_return_id": str(return_id),
                "p_status": status,
                "p_comment": comment,
                "p_processed_by": str(processed_by),
                "p_processed_at": processed_at,
                "p_order_version": order_version,
                "p_shipments": shipments,
                "p_order_status": order_status,
                "p_returned_at": returned_at,
            },
        ).execute()
        return response.data or None

    async def list_return_requests_for_customer(self, customer_id: str) -> list[ReturnRequest]:
        response = (
            self.client.table("return_requests")
            .select("*")
            .eq("customer_id", str(customer_id))
            .order("created_at", desc=True)
            .execute()
        )
        return response.data or []

    async def list_return_requests_for_shop(self, shop_id: str) -> list[ReturnRequest]:
        response = (
            self.client.table("return_requests")
            .select("*")
            .eq("shop_id", str(shop_id))
            .order("created_at", desc=True)
            .execute()
        )
        return response.data or []

    # Shops

    async def get_shop(self, shop_id: str) -> dict[str, Any] | None:
        response = (
            self.client.table("shops")
            .select("id, owner_id, name, is_active, pickup_address")
            .eq("id", str(shop_id))
            .limit(1)
            .execute()
        )
        return _first(response)
