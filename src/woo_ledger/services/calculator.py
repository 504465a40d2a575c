"""
Financial calculations for orders, lines and aggregate metrics.

All functions are pure. Monetary results are rounded to cents only by the
display helpers; stored values keep full float precision.
"""

from dataclasses import dataclass
from typing import Optional

from woo_ledger.config.constants import CURRENCY_DECIMAL_PLACES

PERCENT_TYPES = ("percent", "percentage")


@dataclass
class LineFinancials:
    """Derived money fields for one order line."""
    line_total: float
    line_cost: float
    line_profit: float


@dataclass
class OrderFinancials:
    """Derived money fields for one order."""
    coupon_discount: float
    order_total: float
    order_product_cost: float
    shipping_net_cost_absorbed: float
    order_cost: float
    order_profit: float


def profit_margin(revenue: float, profit: float) -> float:
    """Profit as a percentage of revenue, 0 when there is no revenue."""
    if not revenue:
        return 0.0
    return profit / revenue * 100


def average_order_value(revenue: float, order_count: int) -> float:
    if not order_count:
        return 0.0
    return revenue / order_count


def period_change(current: float, previous: float) -> dict:
    """
    Change between two periods.

    Returns:
        {"value": current - previous, "percent": relative change in percent}
        Percent is 100 when growing from zero, 0 when both are zero.
    """
    value = current - previous
    if previous == 0:
        return {"value": value, "percent": 100.0 if current > 0 else 0.0}
    return {"value": value, "percent": (current - previous) / abs(previous) * 100}


def roi(profit: float, cost: float) -> Optional[float]:
    """Return on investment in percent, None when there is no cost basis."""
    if not cost:
        return None
    return profit / cost * 100


def is_percent_discount(discount_type: Optional[str]) -> bool:
    return (discount_type or "").strip().lower() in PERCENT_TYPES


def coupon_discount(subtotal: float, discount_type: Optional[str], value: float) -> float:
    """
    Recompute a coupon discount from its rule.

    The discount never exceeds the subtotal and is never negative.
    """
    subtotal = max(0.0, subtotal or 0.0)
    value = max(0.0, value or 0.0)
    if is_percent_discount(discount_type):
        return min(subtotal * value / 100, subtotal)
    return min(value, subtotal)


def shipping_absorbed(free_shipping: bool, shipping_cost: float, shipping_charged: float) -> float:
    """Portion of the carrier cost not recovered from the customer."""
    if free_shipping:
        return shipping_cost or 0.0
    return max(0.0, (shipping_cost or 0.0) - (shipping_charged or 0.0))


def line_financials(qty: int, unit_cost: float, unit_price: float) -> LineFinancials:
    line_total = qty * (unit_price or 0.0)
    line_cost = qty * (unit_cost or 0.0)
    return LineFinancials(
        line_total=line_total,
        line_cost=line_cost,
        line_profit=line_total - line_cost,
    )


def order_financials(
    subtotal: float,
    shipping_charged: float,
    shipping_cost: float,
    free_shipping: bool,
    discount: float,
    product_cost: float,
) -> OrderFinancials:
    """
    Compute order totals.

    total = subtotal + shipping_charged - discount
    cost = product_cost + shipping absorbed
    profit = total - cost
    """
    discount = min(max(0.0, discount or 0.0), max(0.0, subtotal or 0.0))
    absorbed = shipping_absorbed(free_shipping, shipping_cost, shipping_charged)
    total = (subtotal or 0.0) + (shipping_charged or 0.0) - discount
    cost = (product_cost or 0.0) + absorbed
    return OrderFinancials(
        coupon_discount=discount,
        order_total=total,
        order_product_cost=product_cost or 0.0,
        shipping_net_cost_absorbed=absorbed,
        order_cost=cost,
        order_profit=total - cost,
    )


def format_currency(value: Optional[float]) -> str:
    """Format as "$1,234.56" ("-$5.00" for negatives)."""
    amount = value or 0.0
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.{CURRENCY_DECIMAL_PLACES}f}"


def format_percent(value: Optional[float], decimals: int = 1) -> str:
    return f"{(value or 0.0):.{decimals}f}%"
