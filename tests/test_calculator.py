"""Tests for the pure financial calculations."""

import pytest

from woo_ledger.services.calculator import (
    average_order_value,
    coupon_discount,
    format_currency,
    format_percent,
    line_financials,
    order_financials,
    period_change,
    profit_margin,
    roi,
    shipping_absorbed,
)


# ────────────────────────────────────────────
# COUPONS
# ────────────────────────────────────────────


class TestCouponDiscount:

    @pytest.mark.parametrize("discount_type", ["Percent", "percent", "percentage"])
    def test_percent_of_subtotal(self, discount_type):
        assert coupon_discount(100.0, discount_type, 10) == pytest.approx(10.0)

    def test_fixed_amount(self):
        assert coupon_discount(100.0, "Fixed", 15) == 15.0

    def test_never_exceeds_subtotal(self):
        assert coupon_discount(20.0, "Fixed", 50) == 20.0
        assert coupon_discount(20.0, "Percent", 150) == 20.0

    def test_never_negative(self):
        assert coupon_discount(20.0, "Fixed", -5) == 0.0
        assert coupon_discount(0.0, "Percent", 10) == 0.0


# ────────────────────────────────────────────
# ORDER TOTALS
# ────────────────────────────────────────────


class TestOrderFinancials:

    def test_end_to_end_order(self):
        """$100 subtotal, $10 charged, $15 carrier cost, SAVE10 at 10%, $40 product cost."""
        discount = coupon_discount(100.0, "Percent", 10)
        result = order_financials(
            subtotal=100.0,
            shipping_charged=10.0,
            shipping_cost=15.0,
            free_shipping=False,
            discount=discount,
            product_cost=40.0,
        )
        assert result.coupon_discount == pytest.approx(10.0)
        assert result.order_total == pytest.approx(100.0)
        assert result.shipping_net_cost_absorbed == pytest.approx(5.0)
        assert result.order_cost == pytest.approx(45.0)
        assert result.order_profit == pytest.approx(55.0)

    def test_free_shipping_absorbs_full_cost(self):
        result = order_financials(50.0, 0.0, 8.0, True, 0.0, 20.0)
        assert result.shipping_net_cost_absorbed == 8.0
        assert result.order_profit == pytest.approx(22.0)

    def test_discount_clamped_to_subtotal(self):
        result = order_financials(30.0, 5.0, 0.0, False, 100.0, 10.0)
        assert result.coupon_discount == 30.0
        assert result.order_total == pytest.approx(5.0)

    def test_shipping_charged_above_cost_is_not_negative(self):
        assert shipping_absorbed(False, 5.0, 12.0) == 0.0


class TestLineFinancials:

    def test_totals(self):
        line = line_financials(3, 4.0, 10.0)
        assert line.line_total == 30.0
        assert line.line_cost == 12.0
        assert line.line_profit == 18.0


# ────────────────────────────────────────────
# RATIOS AND FORMATTING
# ────────────────────────────────────────────


class TestRatios:

    def test_net_profit_margin(self):
        """Revenue $1,000 with $300 of expenses nets $700 at 70%."""
        net = 1000.0 - 300.0
        assert net == 700.0
        assert profit_margin(1000.0, net) == pytest.approx(70.0)

    def test_zero_revenue(self):
        assert profit_margin(0.0, 50.0) == 0.0
        assert average_order_value(0.0, 0) == 0.0

    def test_roi(self):
        assert roi(50.0, 100.0) == pytest.approx(50.0)
        assert roi(50.0, 0.0) is None

    def test_period_change(self):
        assert period_change(150.0, 100.0) == {"value": 50.0, "percent": pytest.approx(50.0)}
        assert period_change(10.0, 0.0)["percent"] == 100.0
        assert period_change(0.0, 0.0)["percent"] == 0.0


class TestFormatting:

    def test_currency(self):
        assert format_currency(1234.5) == "$1,234.50"
        assert format_currency(-5) == "-$5.00"
        assert format_currency(None) == "$0.00"

    def test_percent(self):
        assert format_percent(12.3456) == "12.3%"
        assert format_percent(12.3456, 2) == "12.35%"
        assert format_percent(None) == "0.0%"
