"""Order read access for customers and shopkeepers."""

import logging
from typing import Any

from src.api.middleware.error_handler import AuthorizationError, NotFoundError
from src.services.order_store import OrderStore

logger = logging.getLogger(__name__)


class OrderService:
    """Load orders and enforce who may act on them."""

    def __init__(self, store: OrderStore | None = None) -> None:
        """Initialize order service with an order store."""
        self.store = store or OrderStore()

    async def get_order(self, order_id: str) -> dict[str, Any]:
        """Get an order by ID.

        Raises:
            NotFoundError: If the order does not exist.
        """
        order = await self.store.get_order(order_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    async def get_order_for_customer(self, order_id: str, customer_id: str) -> dict[str, Any]:
        """Get an order that belongs to the given customer.

        Args:
            order_id: The order's UUID.
            customer_id: The requesting user's UUID.

        Returns:
            dict: The order data.

        Raises:
            NotFoundError: If the order does not exist.
            AuthorizationError: If the order belongs to someone else.
        """
        order = await self.get_order(order_id)
        if str(order["customer_id"]) != str(customer_id):
            logger.warning("User %s attempted to access order %s", customer_id, order_id)
            raise AuthorizationError("You do not have access to this order")
        return order

    async def get_owned_shop(self, shop_id: str, user_id: str) -> dict[str, Any]:
        """Get a shop owned by the given user.

        Raises:
            NotFoundError: If the shop does not exist.
            AuthorizationError: If the user does not own the shop.
        """
        shop = await self.store.get_shop(shop_id)
        if not shop:
            raise NotFoundError("Shop not found")
        if str(shop["owner_id"]) != str(user_id):
            raise AuthorizationError("You do not own this shop")
        return shop
