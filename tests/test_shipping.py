"""Tests for carrier-rate selection, parcels, the shipping cost service and the outbox."""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from woo_ledger.api.shippo_client import normalize_address, normalize_country, select_rate
from woo_ledger.config.settings import ParcelDefaults
from woo_ledger.db.models import Expense, ShippingSyncOutbox
from woo_ledger.db.repository import OrderRepository
from woo_ledger.services.outbox_service import ShippingOutboxProcessor, next_retry_delay
from woo_ledger.services.shipping_service import (
    ShippingCostService,
    build_address_to,
    build_parcels,
)
from woo_ledger.utils.parsers import utcnow

RATES = [
    {"object_id": "r1", "amount": "12.50", "currency": "USD", "estimated_days": 2},
    {"object_id": "r2", "amount": "7.25", "currency": "USD", "estimated_days": 5},
    {"object_id": "r3", "amount": "9.00", "currency": "USD"},
    {"object_id": "r4", "amount": "3.00", "currency": "CAD", "estimated_days": 1},
]


# ────────────────────────────────────────────
# RATES AND ADDRESSES
# ────────────────────────────────────────────


class TestSelectRate:

    def test_cheapest_in_currency(self):
        assert select_rate(RATES, "USD", "cheapest")["object_id"] == "r2"

    def test_fastest_breaks_ties_on_amount(self):
        rates = RATES + [{"object_id": "r5", "amount": "11.00", "currency": "USD", "estimated_days": 2}]
        assert select_rate(rates, "USD", "fastest")["object_id"] == "r5"

    def test_unknown_days_sort_last(self):
        rates = [RATES[2], RATES[1]]
        assert select_rate(rates, "USD", "fastest")["object_id"] == "r2"

    def test_currency_fallback_returns_first_rate(self):
        assert select_rate(RATES, "EUR")["object_id"] == "r1"

    def test_no_rates(self):
        assert select_rate([]) is None


class TestAddresses:

    @pytest.mark.parametrize("raw, expected", [
        ("United States", "US"),
        ("usa", "US"),
        ("ca", "CA"),
        ("Canada", "CA"),
        (None, "US"),
        ("Narnia", "Narnia"),
    ])
    def test_normalize_country(self, raw, expected):
        assert normalize_country(raw) == expected

    def test_address_to_from_woo_shipping(self):
        address = build_address_to({
            "first_name": "Ada", "last_name": "Lovelace", "address_1": "12 Elm St",
            "address_2": "", "city": "Boston", "state": "MA", "postcode": "02101",
            "country": "united states",
        })
        assert address["name"] == "Ada Lovelace"
        assert address["street2"] is None
        assert address["zip"] == "02101"
        assert address["country"] == "US"

    def test_normalized_address_carries_both_field_sets(self):
        address = normalize_address({"street1": "1 Main St", "city": "Austin", "state": "TX", "zip": "78701"})
        assert address["address_line_1"] == "1 Main St"
        assert address["postal_code"] == "78701"
        assert address["country_code"] == "US"
        assert "street2" not in address


class TestBuildParcels:

    def test_weight_is_sum_of_items(self):
        plan = build_parcels(
            [{"product_id": 1, "quantity": 2}, {"product_id": 2, "quantity": 1}],
            {1: {"weight": "0.5"}, 2: {"weight": "1.25 lb"}},
            ParcelDefaults(),
        )
        assert plan.parcels[0]["weight"] == "2.25"
        assert plan.parcels[0]["mass_unit"] == "lb"
        assert plan.snapshot["total_items"] == 3
        assert plan.snapshot["fallback_used"] is False

    def test_missing_weight_uses_default(self):
        plan = build_parcels(
            [{"product_id": 1, "quantity": 3}],
            {},
            ParcelDefaults(weight=2.0),
        )
        assert plan.snapshot["total_weight"] == 6.0
        assert plan.snapshot["fallback_used"] is True
        assert plan.parcels[0]["length"] == "10.0"


# ────────────────────────────────────────────
# SHIPPING COST SERVICE
# ────────────────────────────────────────────


@pytest.fixture
def shipping_service(session_factory, fake_shippo, fake_woo, make_woo_order):
    fake_woo.order_details[101] = make_woo_order()
    fake_woo.product_details[501] = {"id": 501, "weight": "0.5"}
    return ShippingCostService(session_factory, fake_shippo, fake_woo)


async def _shipping_expenses(session_factory):
    async with session_factory() as session:
        query = select(Expense).where(Expense.category == "shipping")
        return list((await session.execute(query)).scalars().all())


class TestShippingCostService:

    async def test_records_cheapest_rate(self, shipping_service, session_factory, fake_shippo, add_order):
        await add_order(1001, total=100.0, profit=60.0, woo_order_id=101, free_shipping=True)

        result = await shipping_service.sync_shipping_cost_for_order(101, "Order #1001")

        assert result.success
        assert result.shipping_cost == 7.25
        assert result.rate_id == "rate_cheap"
        assert fake_shippo.shipments[0].parcels[0]["weight"] == "1.0"

        async with session_factory() as session:
            order = await OrderRepository(session).get("Order #1001")
        assert order.shipping_cost_source == "shippo_rate_estimate"
        assert order.shippo_shipment_id == "shp_1"
        assert order.shipping_net_cost_absorbed == 7.25
        assert order.order_cost == pytest.approx(47.25)
        assert order.order_profit == pytest.approx(52.75)
        assert order.parcel_snapshot["total_items"] == 2

        expenses = await _shipping_expenses(session_factory)
        assert len(expenses) == 1
        assert expenses[0].amount == 7.25
        assert expenses[0].order_number == "Order #1001"
        assert expenses[0].expense_date == datetime(2024, 3, 15)
        assert expenses[0].extra_metadata["carrier"] == "USPS"

    async def test_fresh_cost_is_skipped_unless_forced(self, shipping_service, session_factory, fake_shippo, add_order):
        await add_order(1001, woo_order_id=101)

        await shipping_service.sync_shipping_cost_for_order(101, "Order #1001")
        skipped = await shipping_service.sync_shipping_cost_for_order(101, "Order #1001")
        forced = await shipping_service.sync_shipping_cost_for_order(101, "Order #1001", force=True)

        assert skipped.skipped is True
        assert skipped.shipping_cost == 7.25
        assert forced.success and not forced.skipped
        assert len(fake_shippo.shipments) == 2
        assert len(await _shipping_expenses(session_factory)) == 1

    async def test_missing_shipping_address(self, shipping_service, fake_woo, make_woo_order, add_order):
        await add_order(1001, woo_order_id=101)
        fake_woo.order_details[101] = make_woo_order(shipping={})

        result = await shipping_service.sync_shipping_cost_for_order(101, "Order #1001")

        assert result.success is False
        assert result.error == "Order missing shipping address"

    async def test_no_rates(self, shipping_service, fake_shippo, add_order):
        fake_shippo.rates = []
        await add_order(1001, woo_order_id=101)

        result = await shipping_service.sync_shipping_cost_for_order(101, "Order #1001")

        assert result.success is False
        assert "No shipping rates" in result.error

    async def test_unknown_order(self, shipping_service):
        result = await shipping_service.sync_shipping_cost_for_order(101, "Order #404")
        assert result.success is False
        assert "not found" in result.error


# ────────────────────────────────────────────
# OUTBOX
# ────────────────────────────────────────────


class ScriptedShippingService:
    """Returns queued results in order, recording calls."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def sync_shipping_cost_for_order(self, woo_order_id, order_number, force=False):
        self.calls.append((woo_order_id, order_number, force))
        success = self.outcomes.pop(0)
        return SimpleNamespace(success=success, error=None if success else "carrier down")


async def _entries(session_factory):
    async with session_factory() as session:
        return list((await session.execute(select(ShippingSyncOutbox))).scalars().all())


class TestOutbox:

    def test_backoff_doubles(self):
        assert next_retry_delay(1, 60) == timedelta(seconds=60)
        assert next_retry_delay(2, 60) == timedelta(seconds=120)
        assert next_retry_delay(4, 60) == timedelta(seconds=480)

    async def test_success_marks_done(self, session_factory):
        service = ScriptedShippingService(True)
        processor = ShippingOutboxProcessor(session_factory, service)
        await processor.enqueue("Order #1", 1, force=True)

        result = await processor.process_pending()

        assert (result.processed, result.succeeded) == (1, 1)
        assert service.calls == [(1, "Order #1", True)]
        assert await processor.get_status() == {"done": 1}

    async def test_failure_is_retried_later(self, session_factory):
        processor = ShippingOutboxProcessor(session_factory, ScriptedShippingService(False))
        await processor.enqueue("Order #1", 1)

        first = await processor.process_pending()
        second = await processor.process_pending()

        assert first.retried == 1
        assert second.processed == 0
        [entry] = await _entries(session_factory)
        assert entry.status == "pending"
        assert entry.attempts == 1
        assert entry.last_error == "carrier down"
        assert entry.next_attempt_at > utcnow()

    async def test_fails_after_max_attempts(self, session_factory):
        processor = ShippingOutboxProcessor(session_factory, ScriptedShippingService(False, False), max_attempts=2)
        await processor.enqueue("Order #1", 1)

        await processor.process_pending()
        async with session_factory() as session:
            entry = (await session.execute(select(ShippingSyncOutbox))).scalar_one()
            entry.next_attempt_at = datetime(2000, 1, 1)
            await session.commit()
        result = await processor.process_pending()

        assert result.failed == 1
        assert result.errors == ["Order #1: carrier down"]
        [entry] = await _entries(session_factory)
        assert entry.status == "failed"
        assert entry.attempts == 2

    async def test_enqueue_deduplicates_pending(self, session_factory):
        processor = ShippingOutboxProcessor(session_factory, ScriptedShippingService())
        await processor.enqueue("Order #1", 1)
        await processor.enqueue("Order #1", 1, force=True)

        [entry] = await _entries(session_factory)
        assert entry.force is True
