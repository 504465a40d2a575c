"""
Dashboard metrics.

Read-only aggregations over stored orders, lines, products and expenses.
Every revenue or profit figure excludes EXCLUDED_ORDER_STATUSES.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from woo_ledger.config.constants import EXCLUDED_ORDER_STATUSES, STOCK_IN
from woo_ledger.core.logger import setup_logger
from woo_ledger.db.models import Expense, Order, OrderLine, Product
from woo_ledger.services.calculator import (
    average_order_value,
    period_change,
    profit_margin,
)
from woo_ledger.utils.parsers import utcnow

logger = setup_logger(__name__)

PERIODS = ("all", "month", "week")


def counted_order():
    """SQL filter: order status is not one of the excluded statuses."""
    return func.lower(func.trim(Order.order_status)).not_in(EXCLUDED_ORDER_STATUSES)


def is_counted_status(status: Optional[str]) -> bool:
    return (status or "").strip().lower() not in EXCLUDED_ORDER_STATUSES


@dataclass
class NetProfitMetrics:
    total_revenue: float
    total_expenses: float
    net_profit: float
    net_profit_margin: float
    expense_ratio: float


@dataclass
class DashboardKPIs:
    total_revenue: float
    total_orders: int
    total_profit: float
    profit_margin: float
    average_order_value: float
    active_products: int
    total_expenses: float
    net_profit: float
    net_profit_margin: float
    period_change: Dict[str, dict]

    def to_dict(self) -> dict:
        return asdict(self)


def period_windows(
    period: str, now: datetime
) -> Tuple[Optional[datetime], datetime, datetime]:
    """
    Current-period start and the comparison window for a KPI period.

    Returns:
        (start, previous_start, previous_end); start is None for "all".
        month: previous calendar month; week: the 7 days before the last 7;
        all: the trailing 30 days.
    """
    if period == "month":
        start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        previous_end = start
        previous_start = (start - timedelta(days=1)).replace(day=1)
        return start, previous_start, previous_end
    if period == "week":
        start = now - timedelta(days=7)
        return start, start - timedelta(days=7), start
    return None, now - timedelta(days=30), now


async def _order_totals(
    session: AsyncSession,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Tuple[float, float, int]:
    """(revenue, profit, count) over counted orders in [start, end)."""
    query = select(
        func.coalesce(func.sum(Order.order_total), 0.0),
        func.coalesce(func.sum(Order.order_profit), 0.0),
        func.count(Order.order_number),
    ).where(counted_order())
    if start is not None:
        query = query.where(Order.order_date >= start)
    if end is not None:
        query = query.where(Order.order_date < end)

    revenue, profit, count = (await session.execute(query)).one()
    return float(revenue), float(profit), int(count)


async def _expense_total(
    session: AsyncSession,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> float:
    query = select(func.coalesce(func.sum(Expense.amount), 0.0))
    if start is not None:
        query = query.where(Expense.expense_date >= start)
    if end is not None:
        query = query.where(Expense.expense_date <= end)
    return float((await session.execute(query)).scalar_one())


async def count_active_products(session: AsyncSession) -> int:
    """Products in stock with positive stock on hand."""
    query = select(func.count(Product.id)).where(
        func.upper(func.trim(Product.stock_status)) == STOCK_IN.upper(),
        Product.current_stock > 0,
    )
    return int((await session.execute(query)).scalar_one())


async def calculate_net_profit(
    session: AsyncSession,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> NetProfitMetrics:
    """
    Net profit for a period: revenue minus expenses.

    Defaults to the first of the current month through now.
    """
    now = utcnow()
    if start is None:
        start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if end is None:
        end = now

    revenue, _, _ = await _order_totals(session, start, end + timedelta(microseconds=1))
    expenses = await _expense_total(session, start, end)
    net = revenue - expenses

    return NetProfitMetrics(
        total_revenue=revenue,
        total_expenses=expenses,
        net_profit=net,
        net_profit_margin=profit_margin(revenue, net),
        expense_ratio=profit_margin(revenue, expenses),
    )


async def get_kpis(
    session: AsyncSession,
    period: str = "all",
    now: Optional[datetime] = None,
) -> DashboardKPIs:
    """All dashboard KPIs for a period ("all", "month" or "week")."""
    if period not in PERIODS:
        raise ValueError(f"Invalid period: {period}")

    now = now or utcnow()
    start, previous_start, previous_end = period_windows(period, now)

    # Same [start, now] window as the net profit figure
    revenue, profit, orders = await _order_totals(session, start, now + timedelta(microseconds=1))
    prev_revenue, prev_profit, prev_orders = await _order_totals(session, previous_start, previous_end)

    net = await calculate_net_profit(session, start or datetime(1970, 1, 1), now)

    return DashboardKPIs(
        total_revenue=revenue,
        total_orders=orders,
        total_profit=profit,
        profit_margin=profit_margin(revenue, profit),
        average_order_value=average_order_value(revenue, orders),
        active_products=await count_active_products(session),
        total_expenses=net.total_expenses,
        net_profit=net.net_profit,
        net_profit_margin=net.net_profit_margin,
        period_change={
            "revenue": period_change(revenue, prev_revenue),
            "orders": period_change(orders, prev_orders),
            "profit": period_change(profit, prev_profit),
        },
    )


def _day_buckets(days: int, now: datetime) -> Dict[str, dict]:
    first = (now - timedelta(days=days - 1)).date()
    return {
        (first + timedelta(days=offset)).isoformat(): {}
        for offset in range(days)
    }


def _window_start(days: int, now: datetime) -> datetime:
    first = (now - timedelta(days=days - 1)).date()
    return datetime(first.year, first.month, first.day)


async def get_revenue_over_time(
    session: AsyncSession,
    days: int = 30,
    now: Optional[datetime] = None,
) -> List[dict]:
    """Daily revenue, profit and order count, zero-filled, oldest first."""
    now = now or utcnow()
    buckets = {
        day: {"date": day, "revenue": 0.0, "profit": 0.0, "orders": 0}
        for day in _day_buckets(days, now)
    }

    query = (
        select(Order.order_date, Order.order_total, Order.order_profit)
        .where(counted_order(), Order.order_date >= _window_start(days, now))
    )
    for order_date, total, profit in (await session.execute(query)).all():
        bucket = buckets.get(order_date.date().isoformat())
        if bucket is None:
            continue
        bucket["revenue"] += total or 0.0
        bucket["profit"] += profit or 0.0
        bucket["orders"] += 1

    return list(buckets.values())


async def get_expenses_over_time(
    session: AsyncSession,
    days: int = 30,
    now: Optional[datetime] = None,
) -> List[dict]:
    """Daily expense totals, zero-filled, oldest first."""
    now = now or utcnow()
    buckets = {day: {"date": day, "expenses": 0.0} for day in _day_buckets(days, now)}

    query = select(Expense.expense_date, Expense.amount).where(
        Expense.expense_date >= _window_start(days, now)
    )
    for expense_date, amount in (await session.execute(query)).all():
        bucket = buckets.get(expense_date.date().isoformat())
        if bucket is not None:
            bucket["expenses"] += amount or 0.0

    return list(buckets.values())


async def get_net_profit_over_time(
    session: AsyncSession,
    days: int = 30,
    now: Optional[datetime] = None,
) -> List[dict]:
    """Daily revenue, expenses and net profit, zero-filled."""
    revenue = await get_revenue_over_time(session, days, now)
    expenses = await get_expenses_over_time(session, days, now)
    return [
        {
            "date": r["date"],
            "revenue": r["revenue"],
            "expenses": e["expenses"],
            "net_profit": r["revenue"] - e["expenses"],
        }
        for r, e in zip(revenue, expenses)
    ]


async def get_top_products(
    session: AsyncSession,
    limit: int = 10,
    days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[dict]:
    """
    Best sellers by revenue across counted orders.

    Aggregates line totals, profit and quantity per product, sorted by
    revenue descending.
    """
    query = (
        select(
            OrderLine.product_id,
            func.sum(OrderLine.line_total),
            func.sum(OrderLine.line_profit),
            func.sum(OrderLine.qty_ordered),
        )
        .join(Order, Order.order_number == OrderLine.order_number)
        .where(counted_order())
        .group_by(OrderLine.product_id)
    )
    if days:
        query = query.where(Order.order_date >= (now or utcnow()) - timedelta(days=days))

    rows = (await session.execute(query)).all()
    if not rows:
        return []

    names_query = select(Product.product_id, Product.product_name, Product.variant_strength).where(
        Product.product_id.in_([row[0] for row in rows])
    )
    names = {}
    for product_id, name, strength in (await session.execute(names_query)).all():
        names[product_id] = f"{name} {strength}".strip() if strength else name

    products = [
        {
            "product_id": product_id,
            "product_name": names.get(product_id, f"Product {product_id}"),
            "revenue": float(revenue or 0.0),
            "profit": float(profit or 0.0),
            "qty_sold": int(qty or 0),
        }
        for product_id, revenue, profit, qty in rows
    ]
    products.sort(key=lambda p: p["revenue"], reverse=True)
    return products[:limit]
