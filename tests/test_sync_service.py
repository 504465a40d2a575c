"""Tests for the WooCommerce sync orchestrator, against a fake client."""

import pytest
from sqlalchemy import func, select

from woo_ledger.config.settings import SyncConfig
from woo_ledger.db.models import Order, OrderLine, Product, ShippingSyncOutbox
from woo_ledger.db.repository import OrderRepository, SyncStateRepository
from woo_ledger.services.sync_service import SyncOptions, WooCommerceSyncService


@pytest.fixture
def service(fake_woo, session_factory):
    return WooCommerceSyncService(fake_woo, session_factory, SyncConfig(item_delay_seconds=0))


async def _order(session_factory, number="Order #1001"):
    async with session_factory() as session:
        return await OrderRepository(session).get(number)


async def _count(session_factory, model):
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


# ────────────────────────────────────────────
# ORDERS
# ────────────────────────────────────────────


class TestOrderSync:

    async def test_order_totals_use_internal_cost(self, service, fake_woo, session_factory, add_product, make_woo_order):
        await add_product(501, our_cost=20.0)
        fake_woo.resources["orders"] = [make_woo_order()]

        result = await service.incremental_sync()

        assert result.success
        assert result.orders.synced == 1
        order = await _order(session_factory)
        assert order.order_subtotal == 100.0
        assert order.order_product_cost == 40.0
        assert order.order_total == 110.0
        assert order.order_profit == pytest.approx(70.0)

    async def test_resync_is_idempotent(self, service, fake_woo, session_factory, add_product, make_woo_order):
        await add_product(501, our_cost=20.0)
        fake_woo.resources["orders"] = [make_woo_order()]

        await service.incremental_sync()
        await service.incremental_sync()

        assert await _count(session_factory, Order) == 1
        assert await _count(session_factory, OrderLine) == 1

    async def test_removed_lines_are_pruned(self, service, fake_woo, session_factory, add_product, make_woo_order):
        await add_product(501)
        await add_product(502)
        fake_woo.resources["orders"] = [make_woo_order(line_items=[
            {"id": 1, "product_id": 501, "quantity": 1, "price": 10},
            {"id": 2, "product_id": 502, "quantity": 1, "price": 10},
        ])]
        await service.incremental_sync()

        fake_woo.resources["orders"] = [make_woo_order(line_items=[
            {"id": 1, "product_id": 501, "quantity": 3, "price": 10},
        ])]
        await service.incremental_sync()

        async with session_factory() as session:
            lines = await OrderRepository(session).get_lines("Order #1001")
        assert [(line.line_key, line.qty_ordered) for line in lines] == [("woo:1", 3)]

    async def test_unknown_product_gets_placeholder(self, service, fake_woo, session_factory, make_woo_order):
        fake_woo.resources["orders"] = [make_woo_order(line_items=[
            {"id": 7, "product_id": 777, "quantity": 1, "price": "12.00"},
        ])]

        await service.incremental_sync()

        async with session_factory() as session:
            product = (await session.execute(select(Product).where(Product.product_id == 777))).scalar_one()
        assert product.product_name == "Product 777"
        assert product.our_cost is None
        assert product.retail_price == 12.0
        order = await _order(session_factory)
        assert order.order_product_cost == 0.0

    async def test_stored_coupon_rule_overrides_source_discount(
        self, service, fake_woo, session_factory, add_product, add_coupon, make_woo_order
    ):
        await add_product(501, our_cost=20.0)
        await add_coupon("SAVE10", "Percent", 10)
        fake_woo.resources["orders"] = [make_woo_order(
            coupon_lines=[{"code": "save10", "discount": "5.00"}],
            discount_total="5.00",
        )]

        await service.incremental_sync()

        order = await _order(session_factory)
        assert order.coupon_discount == pytest.approx(10.0)
        assert order.order_total == pytest.approx(100.0)

    async def test_dropped_lines_are_counted(self, service, fake_woo, add_product, make_woo_order):
        await add_product(501)
        fake_woo.resources["orders"] = [make_woo_order(line_items=[
            {"id": 1, "product_id": 501, "quantity": 1, "price": 10},
            {"id": 2, "product_id": 0, "quantity": 1, "price": 10},
        ])]

        result = await service.incremental_sync()

        assert result.orders.dropped_lines == 1
        assert result.orders.errors == 0

    async def test_repeated_lines_without_ids_merge(self, service, fake_woo, session_factory, add_product, make_woo_order):
        await add_product(501, our_cost=4.0)
        fake_woo.resources["orders"] = [make_woo_order(line_items=[
            {"product_id": 501, "quantity": 1, "price": 10},
            {"product_id": 501, "quantity": 2, "price": 10},
        ])]

        result = await service.incremental_sync()

        assert result.orders.errors == 0
        async with session_factory() as session:
            [line] = await OrderRepository(session).get_lines("Order #1001")
        assert line.line_key == "p:501:4.0000:10.0000"
        assert (line.qty_ordered, line.line_total, line.line_profit) == (3, 30.0, 18.0)
        order = await _order(session_factory)
        assert order.order_product_cost == 12.0

    async def test_renumbered_order_replaces_old_row(self, service, fake_woo, session_factory, add_product, make_woo_order):
        await add_product(501)
        fake_woo.resources["orders"] = [make_woo_order(number="1001")]
        await service.incremental_sync()

        fake_woo.resources["orders"] = [make_woo_order(number="1001-A")]
        await service.incremental_sync()

        assert await _order(session_factory, "Order #1001") is None
        assert await _order(session_factory, "Order #1001-A") is not None
        assert await _count(session_factory, OrderLine) == 1

    async def test_carrier_cost_survives_resync(self, service, fake_woo, session_factory, add_product, make_woo_order):
        await add_product(501, our_cost=20.0)
        fake_woo.resources["orders"] = [make_woo_order(shipping_total="0.00")]
        await service.incremental_sync()

        async with session_factory() as session:
            order = await OrderRepository(session).get("Order #1001")
            order.shipping_cost = 7.25
            order.shipping_cost_source = "shippo_rate_estimate"
            order.shippo_rate_id = "rate_cheap"
            await session.commit()

        await service.incremental_sync()

        order = await _order(session_factory)
        assert order.shipping_cost == 7.25
        assert order.shippo_rate_id == "rate_cheap"
        assert order.shipping_net_cost_absorbed == 7.25
        assert order.order_profit == pytest.approx(100.0 - 40.0 - 7.25)


# ────────────────────────────────────────────
# RUN BEHAVIOUR
# ────────────────────────────────────────────


class TestSyncRuns:

    async def test_products_keep_internal_cost(self, service, fake_woo, session_factory, add_product):
        await add_product(501, our_cost=20.0, retail_price=30.0)
        fake_woo.resources["products"] = [{"id": 501, "name": "Renamed", "regular_price": "35.00"}]

        await service.incremental_sync()

        async with session_factory() as session:
            product = (await session.execute(select(Product).where(Product.product_id == 501))).scalar_one()
        assert product.product_name == "Renamed"
        assert product.retail_price == 35.0
        assert product.our_cost == 20.0

    async def test_incremental_uses_last_successful_sync(self, service, fake_woo, session_factory):
        await service.incremental_sync()
        async with session_factory() as session:
            state = await SyncStateRepository(session).get("orders")

        await service.incremental_sync()

        assert state.last_successful_sync is not None
        assert fake_woo.fetch_calls[-1] == ("orders", state.last_successful_sync)

    async def test_full_sync_skips_known_orders(self, service, fake_woo, add_product, make_woo_order):
        await add_product(501)
        fake_woo.resources["orders"] = [make_woo_order()]
        await service.full_sync()

        fake_woo.resources["orders"] = [make_woo_order(), make_woo_order(order_id=102, number="1002")]
        result = await service.full_sync()

        assert result.orders.fetched == 2
        assert result.orders.skipped == 1
        assert result.orders.synced == 1

    async def test_failing_resource_does_not_stop_others(self, service, fake_woo, add_product, make_woo_order):
        await add_product(501)
        fake_woo.fail_resources.add("coupons")
        fake_woo.resources["orders"] = [make_woo_order()]

        result = await service.incremental_sync()

        assert result.success is False
        assert "coupons" in result.error
        assert result.orders.synced == 1

    async def test_failed_items_recorded_on_sync_state(self, service, fake_woo, session_factory):
        fake_woo.resources["coupons"] = [{"id": 1, "code": ""}]

        result = await service.sync(SyncOptions(resources=["coupons"]))

        assert result.coupons.errors == 1
        async with session_factory() as session:
            state = await SyncStateRepository(session).get("coupons")
        assert "1 errors" in state.last_error

    async def test_concurrent_run_is_rejected(self, service):
        async with service._lock:
            result = await service.incremental_sync()
        assert result.success is False
        assert result.error == "Sync already in progress"

    async def test_invalid_mode(self, service):
        result = await service.sync(SyncOptions(mode="weekly"))
        assert result.success is False
        assert "Invalid sync mode" in result.error

    async def test_status_includes_history(self, service):
        await service.incremental_sync()
        status = await service.get_sync_status()

        assert status["sync_in_progress"] is False
        assert set(status["resources"]) == {"products", "coupons", "orders"}
        assert status["history"][0]["mode"] == "incremental"


class TestShippingEnqueue:

    async def test_orders_enqueued_once(self, fake_woo, session_factory, add_product, make_woo_order):
        service = WooCommerceSyncService(
            fake_woo, session_factory, SyncConfig(item_delay_seconds=0), enqueue_shipping=True
        )
        await add_product(501)
        fake_woo.resources["orders"] = [make_woo_order()]

        await service.incremental_sync()
        await service.incremental_sync()

        async with session_factory() as session:
            entries = (await session.execute(select(ShippingSyncOutbox))).scalars().all()
        assert [(e.order_number, e.woo_order_id, e.status) for e in entries] == [("Order #1001", 101, "pending")]
