"""Tests for the WooCommerce REST client using httpx.MockTransport."""

from datetime import datetime

import httpx
import pytest

from woo_ledger.api.woocommerce_client import WooCommerceClient
from woo_ledger.config.settings import WooCommerceConfig
from woo_ledger.core.exceptions import WooCommerceAPIError

CONFIG = WooCommerceConfig(
    store_url="https://shop.example.com/",
    consumer_key="ck_test",
    consumer_secret="cs_test",
)


def make_client(handler, max_retries=3):
    return WooCommerceClient(
        CONFIG,
        max_retries=max_retries,
        retry_base_delay=0,
        transport=httpx.MockTransport(handler),
    )


class TestRequests:

    async def test_auth_and_filters_in_query(self):
        seen = []

        def handler(request):
            seen.append(request.url)
            return httpx.Response(200, json=[])

        client = make_client(handler)
        await client.fetch_orders(after=datetime(2024, 3, 1, 8, 30))
        await client.close()

        url = seen[0]
        assert url.path == "/wp-json/wc/v3/orders"
        assert url.params["consumer_key"] == "ck_test"
        assert url.params["modified_after"] == "2024-03-01T08:30:00"
        assert url.params["dates_are_gmt"] == "true"
        assert url.params["orderby"] == "modified"
        assert "modified_before" not in url.params

    async def test_unfiltered_page_omits_gmt_flag(self):
        seen = []

        def handler(request):
            seen.append(request.url)
            return httpx.Response(200, json=[])

        client = make_client(handler)
        await client.fetch_all_pages("orders", before=datetime(2024, 3, 2))
        await client.fetch_products()
        await client.close()

        assert seen[0].params["modified_before"] == "2024-03-02T00:00:00"
        assert seen[0].params["dates_are_gmt"] == "true"
        assert "dates_are_gmt" not in seen[1].params

    async def test_server_errors_are_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json={"id": 7})

        client = make_client(handler)
        assert await client.get_order(7) == {"id": 7}
        assert len(calls) == 3

    async def test_client_errors_fail_immediately(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, text="bad key")

        client = make_client(handler)
        with pytest.raises(WooCommerceAPIError) as excinfo:
            await client.get_order(7)

        assert excinfo.value.status_code == 401
        assert excinfo.value.retryable is False
        assert len(calls) == 1

    async def test_retries_exhausted(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler, max_retries=2)
        with pytest.raises(WooCommerceAPIError) as excinfo:
            await client.get_product(1)

        assert excinfo.value.status_code is None
        assert len(calls) == 3


class TestPagination:

    async def test_stops_on_short_page(self):
        pages = []

        def handler(request):
            page = int(request.url.params["page"])
            pages.append(page)
            size = 2 if page < 3 else 1
            return httpx.Response(200, json=[{"id": page * 10 + i} for i in range(size)])

        client = make_client(handler)
        items = await client.fetch_all_pages("products", per_page=2)

        assert pages == [1, 2, 3]
        assert [item["id"] for item in items] == [10, 11, 20, 21, 30]

    async def test_stops_on_empty_page(self):
        def handler(request):
            page = int(request.url.params["page"])
            return httpx.Response(200, json=[{"id": 1}, {"id": 2}] if page == 1 else [])

        client = make_client(handler)
        assert len(await client.fetch_all_pages("coupons", per_page=2)) == 2

    async def test_page_limit(self):
        def handler(request):
            return httpx.Response(200, json=[{"id": 1}])

        client = make_client(handler)
        items = await client.fetch_all_pages("orders", per_page=1, max_pages=4)
        assert len(items) == 4

    async def test_unknown_resource(self):
        client = make_client(lambda request: httpx.Response(200, json=[]))
        with pytest.raises(ValueError):
            await client.fetch_all_pages("refunds")


class TestProductsById:

    async def test_batches_include_ids(self):
        def handler(request):
            ids = [int(i) for i in request.url.params["include"].split(",")]
            return httpx.Response(200, json=[{"id": i, "weight": "1"} for i in ids])

        client = make_client(handler)
        products = await client.fetch_products_by_ids([3, 1, 3, 0])

        assert sorted(products) == [1, 3]
