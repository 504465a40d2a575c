"""WooCommerce REST API client."""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from woo_ledger.config.constants import (
    WOOCOMMERCE_API_PATH,
    WOOCOMMERCE_MAX_PAGES,
    WOOCOMMERCE_MAX_RETRIES,
    WOOCOMMERCE_PAGE_SIZE,
    WOOCOMMERCE_RETRY_BASE_DELAY_SECONDS,
)
from woo_ledger.config.settings import WooCommerceConfig
from woo_ledger.core.exceptions import WooCommerceAPIError
from woo_ledger.core.logger import setup_logger

logger = setup_logger(__name__)


def _format_since(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.strftime("%Y-%m-%dT%H:%M:%S")


class WooCommerceClient:
    """Async HTTP client for the WooCommerce v3 REST API."""

    def __init__(
        self,
        config: WooCommerceConfig,
        max_retries: int = WOOCOMMERCE_MAX_RETRIES,
        retry_base_delay: float = WOOCOMMERCE_RETRY_BASE_DELAY_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize API client with store credentials."""
        self.base_url = config.store_url.rstrip("/") + WOOCOMMERCE_API_PATH
        self.consumer_key = config.consumer_key
        self.consumer_secret = config.consumer_secret
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.client = httpx.AsyncClient(timeout=30.0, transport=transport)

    async def close(self):
        await self.client.aclose()

    async def _make_request(
        self,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> Any:
        """
        Make authenticated GET request with retry.

        Network errors and 5xx responses are retried with exponential backoff
        (base delay x 2^attempt). 4xx responses fail immediately.

        Args:
            endpoint: Resource path (e.g., "/orders")
            params: Query parameters

        Returns:
            Parsed JSON response
        """
        query_params = {
            "consumer_key": self.consumer_key,
            "consumer_secret": self.consumer_secret,
        }
        if params:
            query_params.update({k: v for k, v in params.items() if v is not None})

        url = f"{self.base_url}{endpoint}"
        last_error: Optional[WooCommerceAPIError] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.get(url, params=query_params)
            except httpx.HTTPError as e:
                last_error = WooCommerceAPIError(f"Network error calling {endpoint}: {e}")
            else:
                if response.status_code < 400:
                    return response.json()
                last_error = WooCommerceAPIError(
                    f"WooCommerce API error {response.status_code} calling {endpoint}: "
                    f"{response.text[:500]}",
                    status_code=response.status_code,
                )

            if not last_error.retryable or attempt >= self.max_retries:
                break

            delay = self.retry_base_delay * (2 ** attempt)
            logger.warning(
                f"{last_error} - retrying in {delay:.1f}s "
                f"(attempt {attempt + 1}/{self.max_retries})"
            )
            await asyncio.sleep(delay)

        logger.error(str(last_error))
        raise last_error

    async def _fetch_page(
        self,
        endpoint: str,
        page: int,
        per_page: int,
        after: Optional[datetime],
        before: Optional[datetime],
        extra: Optional[dict] = None,
    ) -> List[dict]:
        params = {
            "page": page,
            "per_page": per_page,
            "orderby": "modified",
            "order": "asc",
            "modified_after": _format_since(after),
            "modified_before": _format_since(before),
        }
        # Watermarks are naive UTC; without this flag the store reads them as local time
        if after is not None or before is not None:
            params["dates_are_gmt"] = "true"
        if extra:
            params.update(extra)
        data = await self._make_request(endpoint, params)
        return data if isinstance(data, list) else []

    async def fetch_orders(
        self,
        page: int = 1,
        per_page: int = WOOCOMMERCE_PAGE_SIZE,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
        status: Optional[str] = None,
    ) -> List[dict]:
        """Fetch one page of orders, oldest modification first."""
        extra = {"status": status} if status else None
        return await self._fetch_page("/orders", page, per_page, after, before, extra)

    async def fetch_products(
        self,
        page: int = 1,
        per_page: int = WOOCOMMERCE_PAGE_SIZE,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
    ) -> List[dict]:
        return await self._fetch_page("/products", page, per_page, after, before)

    async def fetch_coupons(
        self,
        page: int = 1,
        per_page: int = WOOCOMMERCE_PAGE_SIZE,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
    ) -> List[dict]:
        return await self._fetch_page("/coupons", page, per_page, after, before)

    async def fetch_all_pages(
        self,
        resource: str,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
        per_page: int = WOOCOMMERCE_PAGE_SIZE,
        max_pages: int = WOOCOMMERCE_MAX_PAGES,
    ) -> List[dict]:
        """
        Fetch every page of a resource.

        Stops on an empty page, a short page, or after max_pages.
        """
        fetchers = {
            "orders": self.fetch_orders,
            "products": self.fetch_products,
            "coupons": self.fetch_coupons,
        }
        if resource not in fetchers:
            raise ValueError(f"Unknown WooCommerce resource: {resource}")
        fetch = fetchers[resource]

        items: List[dict] = []
        page = 1
        while page <= max_pages:
            batch = await fetch(page=page, per_page=per_page, after=after, before=before)
            if not batch:
                break
            items.extend(batch)
            logger.info(f"Fetched {resource} page {page}: {len(batch)} items ({len(items)} total)")
            if len(batch) < per_page:
                break
            page += 1
        else:
            logger.warning(f"Stopped fetching {resource} at the {max_pages}-page limit")

        return items

    async def get_order(self, order_id: int) -> Dict[str, Any]:
        """Fetch a single order by WooCommerce id."""
        return await self._make_request(f"/orders/{order_id}")

    async def get_product(self, product_id: int) -> Dict[str, Any]:
        return await self._make_request(f"/products/{product_id}")

    async def fetch_products_by_ids(self, product_ids: List[int]) -> Dict[int, dict]:
        """Fetch products by id in batches of one page. Returns {id: product}."""
        unique_ids = sorted({int(i) for i in product_ids if i})
        products: Dict[int, dict] = {}
        for start in range(0, len(unique_ids), WOOCOMMERCE_PAGE_SIZE):
            batch = unique_ids[start:start + WOOCOMMERCE_PAGE_SIZE]
            data = await self._make_request(
                "/products",
                {"include": ",".join(str(i) for i in batch), "per_page": WOOCOMMERCE_PAGE_SIZE},
            )
            for product in data if isinstance(data, list) else []:
                products[int(product.get("id"))] = product
        return products
