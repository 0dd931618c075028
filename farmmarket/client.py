"""
HTTP client for the public storefront endpoints of the Farm Market API.

This module provides catalog browsing, checkout and order tracking for a
shopper-facing frontend.
"""
import logging
from typing import Optional
import httpx

from .cart import Cart
from .config import STOREFRONT_API_URL, STOREFRONT_TIMEOUT

logger = logging.getLogger(__name__)


class StorefrontError(Exception):
    """Raised when the API answers with a non-2xx status."""

    def __init__(self, status_code: int, detail: str, errors: Optional[list] = None):
        self.status_code = status_code
        self.detail = detail
        self.errors = errors or []
        super().__init__(f"{status_code}: {detail}")


class StorefrontClient:
    """
    Async client for the storefront API.

    Args:
        base_url: API root, e.g. "http://localhost:8000"
        timeout: Request timeout in seconds
        transport: Optional httpx transport (used to stub the network in tests)
    """

    def __init__(
        self,
        base_url: str = STOREFRONT_API_URL,
        timeout: float = STOREFRONT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def _request(self, method: str, path: str, **kwargs):
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self.transport
        ) as client:
            response = await client.request(method, path, **kwargs)

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {"detail": response.text}
            detail = body.get("detail", response.reason_phrase)
            logger.warning(f"{method} {path} failed with {response.status_code}: {detail}")
            raise StorefrontError(response.status_code, detail, body.get("errors"))
        return response.json()

    async def list_products(self, **filters) -> dict:
        """
        Browse the catalog.

        Args:
            **filters: Query parameters (category, search, minPrice, maxPrice,
                featured, inStock, sort, page, limit); None values are dropped

        Returns:
            {"products": [...], "pagination": {...}}
        """
        params = {key: value for key, value in filters.items() if value is not None}
        return await self._request("GET", "/api/products", params=params)

    async def get_product(self, product_id: int) -> dict:
        return await self._request("GET", f"/api/products/{product_id}")

    async def place_order(self, cart: Cart, customer: dict) -> dict:
        """
        Check out a cart.

        Args:
            cart: Cart to order; it is left untouched so the caller decides when to clear it
            customer: Checkout fields (customerName, customerPhone, deliveryAddress,
                and optionally customerEmail, paymentMethod, notes)

        Returns:
            The created order

        Raises:
            ValueError: if the cart is empty (no request is sent)
            StorefrontError: if the API rejects the order
        """
        if cart.is_empty:
            raise ValueError("Cart is empty")
        payload = dict(customer)
        payload["items"] = cart.to_order_items()
        order = await self._request("POST", "/api/orders", json=payload)
        logger.info(f"Placed order {order.get('orderNumber')} with {len(cart)} line(s)")
        return order

    async def track_order(self, order_number: str) -> dict:
        return await self._request("GET", f"/api/orders/track/{order_number}")
