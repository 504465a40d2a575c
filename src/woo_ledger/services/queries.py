"""Read-side queries for orders, products, expenses and search."""

import csv
import io
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import asc, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from woo_ledger.config.constants import EXPENSE_CATEGORIES, STOCK_IN, STOCK_LOW, STOCK_OUT
from woo_ledger.core.logger import setup_logger
from woo_ledger.db.models import Coupon, Expense, Order, OrderLine, Product, TieredPricing
from woo_ledger.db.repository import OrderRepository
from woo_ledger.services.calculator import profit_margin, roi
from woo_ledger.services.metrics import counted_order
from woo_ledger.services.order_resolver import resolve_order_number

logger = setup_logger(__name__)

ORDER_SORT_COLUMNS = {
    "order_date": Order.order_date,
    "order_total": Order.order_total,
    "order_profit": Order.order_profit,
    "order_number": Order.order_number,
    "customer_name": Order.customer_name,
}

ORDER_EXPORT_COLUMNS = [
    "order_number",
    "woo_order_id",
    "order_date",
    "customer_name",
    "customer_email",
    "order_status",
    "payment_method",
    "order_subtotal",
    "shipping_charged",
    "shipping_cost",
    "free_shipping",
    "coupon_code",
    "coupon_discount",
    "order_total",
    "order_product_cost",
    "shipping_net_cost_absorbed",
    "order_cost",
    "order_profit",
]


@dataclass
class OrderFilters:
    status: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    customer_email: Optional[str] = None
    search: Optional[str] = None


def _row(instance, columns: List[str]) -> Dict[str, Any]:
    return {column: getattr(instance, column) for column in columns}


def _filtered_orders(filters: OrderFilters):
    query = select(Order)
    if filters.status:
        query = query.where(func.lower(Order.order_status) == filters.status.strip().lower())
    if filters.date_from:
        query = query.where(Order.order_date >= filters.date_from)
    if filters.date_to:
        query = query.where(Order.order_date <= filters.date_to)
    if filters.customer_email:
        query = query.where(Order.customer_email.ilike(f"%{filters.customer_email}%"))
    if filters.search:
        pattern = f"%{filters.search}%"
        query = query.where(or_(
            Order.order_number.ilike(pattern),
            Order.customer_name.ilike(pattern),
            Order.customer_email.ilike(pattern),
        ))
    return query


async def get_orders(
    session: AsyncSession,
    filters: Optional[OrderFilters] = None,
    page: int = 1,
    page_size: int = 20,
    sort_by: str = "order_date",
    sort_order: str = "desc",
) -> dict:
    """Paginated order list with per-order margin and line counts."""
    filters = filters or OrderFilters()
    page = max(1, page)
    base = _filtered_orders(filters)

    total = (await session.execute(
        select(func.count()).select_from(base.subquery())
    )).scalar_one()

    column = ORDER_SORT_COLUMNS.get(sort_by, Order.order_date)
    ordering = asc(column) if sort_order == "asc" else desc(column)
    query = base.order_by(ordering).offset((page - 1) * page_size).limit(page_size)
    orders = list((await session.execute(query)).scalars().all())

    counts = {}
    if orders:
        count_query = (
            select(OrderLine.order_number, func.count(OrderLine.line_id))
            .where(OrderLine.order_number.in_([o.order_number for o in orders]))
            .group_by(OrderLine.order_number)
        )
        counts = dict((await session.execute(count_query)).all())

    rows = []
    for order in orders:
        row = _row(order, ORDER_EXPORT_COLUMNS)
        row["profit_margin"] = profit_margin(order.order_total, order.order_profit)
        row["line_items_count"] = counts.get(order.order_number, 0)
        rows.append(row)

    return {
        "orders": rows,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": math.ceil(total / page_size) if page_size else 0,
    }


async def get_order_detail(session: AsyncSession, identifier: str) -> dict:
    """Order with its lines, resolving loosely formatted identifiers."""
    order_number = await resolve_order_number(session, identifier)
    repository = OrderRepository(session)
    order = await repository.get(order_number)
    lines = await repository.get_lines(order_number)

    products = {}
    if lines:
        product_query = select(Product).where(Product.product_id.in_([line.product_id for line in lines]))
        products = {p.product_id: p for p in (await session.execute(product_query)).scalars().all()}

    detail = _row(order, ORDER_EXPORT_COLUMNS + [
        "notes",
        "shipping_cost_source",
        "shipping_cost_currency",
        "shippo_shipment_id",
        "parcel_snapshot",
    ])
    detail["profit_margin"] = profit_margin(order.order_total, order.order_profit)
    detail["lines"] = [
        {
            "line_id": line.line_id,
            "product_id": line.product_id,
            "product_name": (
                products[line.product_id].product_name
                if line.product_id in products
                else line.name or f"Product {line.product_id}"
            ),
            "sku": line.sku,
            "qty_ordered": line.qty_ordered,
            "our_cost_per_unit": line.our_cost_per_unit,
            "customer_paid_per_unit": line.customer_paid_per_unit,
            "line_total": line.line_total,
            "line_cost": line.line_cost,
            "line_profit": line.line_profit,
        }
        for line in lines
    ]
    return detail


async def update_order_status(session: AsyncSession, identifier: str, status: str) -> dict:
    """Manually set an order's status. Commits."""
    order_number = await resolve_order_number(session, identifier)
    new_status = status.strip().lower()
    if not new_status:
        raise ValueError("Status must not be empty")
    order = await OrderRepository(session).update_status(order_number, new_status)
    await session.commit()
    logger.info(f"Order {order_number} status set to {new_status}")
    return {"order_number": order.order_number, "order_status": order.order_status}


async def export_orders_csv(session: AsyncSession, filters: Optional[OrderFilters] = None) -> str:
    """All matching orders as CSV text, newest first."""
    query = _filtered_orders(filters or OrderFilters()).order_by(desc(Order.order_date))
    orders = (await session.execute(query)).scalars().all()

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=ORDER_EXPORT_COLUMNS)
    writer.writeheader()
    for order in orders:
        row = _row(order, ORDER_EXPORT_COLUMNS)
        row["order_date"] = order.order_date.isoformat() if order.order_date else ""
        writer.writerow(row)
    return buffer.getvalue()


async def get_products(
    session: AsyncSession,
    stock_status: Optional[str] = None,
    search: Optional[str] = None,
) -> List[dict]:
    """
    Products with sales metrics aggregated from counted orders.

    stock_status accepts a stored label or the shorthands "low" / "out".
    """
    query = select(Product)
    if stock_status == "low":
        query = query.where(Product.stock_status == STOCK_LOW)
    elif stock_status == "out":
        query = query.where(Product.stock_status == STOCK_OUT)
    elif stock_status:
        query = query.where(Product.stock_status == stock_status)
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(Product.product_name.ilike(pattern), Product.sku_code.ilike(pattern)))
    products = list((await session.execute(query.order_by(Product.product_name))).scalars().all())

    sales_query = (
        select(
            OrderLine.product_id,
            func.sum(OrderLine.qty_ordered),
            func.sum(OrderLine.line_total),
            func.sum(OrderLine.line_cost),
            func.sum(OrderLine.line_profit),
        )
        .join(Order, Order.order_number == OrderLine.order_number)
        .where(counted_order())
        .group_by(OrderLine.product_id)
    )
    sales = {row[0]: row[1:] for row in (await session.execute(sales_query)).all()}

    rows = []
    for product in products:
        qty, revenue, cost, profit = sales.get(product.product_id, (0, 0.0, 0.0, 0.0))
        rows.append({
            "product_id": product.product_id,
            "woo_product_id": product.woo_product_id,
            "product_name": product.product_name,
            "variant_strength": product.variant_strength,
            "sku_code": product.sku_code,
            "our_cost": product.our_cost,
            "retail_price": product.retail_price,
            "current_stock": product.current_stock or 0,
            "reorder_level": product.reorder_level,
            "stock_status": product.stock_status,
            "qty_sold": int(qty or 0),
            "total_revenue": float(revenue or 0.0),
            "total_cost": float(cost or 0.0),
            "total_profit": float(profit or 0.0),
            "roi_percent": roi(float(profit or 0.0), float(cost or 0.0)),
        })
    return rows


async def get_stock_summary(session: AsyncSession) -> dict:
    statuses = (await session.execute(select(Product.stock_status))).scalars().all()
    summary = {"in_stock": 0, "low_stock": 0, "out_of_stock": 0, "total": len(statuses)}
    for status in statuses:
        label = (status or "").strip().upper()
        if label == STOCK_IN.upper():
            summary["in_stock"] += 1
        elif label == STOCK_LOW:
            summary["low_stock"] += 1
        elif label == STOCK_OUT:
            summary["out_of_stock"] += 1
    return summary


def _expense_row(expense: Expense) -> dict:
    return {
        "expense_id": expense.expense_id,
        "expense_date": expense.expense_date.date().isoformat(),
        "category": expense.category,
        "description": expense.description,
        "amount": expense.amount,
        "vendor": expense.vendor,
        "notes": expense.notes,
        "order_number": expense.order_number,
        "source": expense.source,
    }


async def get_expenses(
    session: AsyncSession,
    category: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    search: Optional[str] = None,
) -> List[dict]:
    query = select(Expense)
    if category:
        query = query.where(Expense.category == category)
    if date_from:
        query = query.where(Expense.expense_date >= date_from)
    if date_to:
        query = query.where(Expense.expense_date <= date_to)
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(Expense.description.ilike(pattern), Expense.vendor.ilike(pattern)))
    query = query.order_by(desc(Expense.expense_date), desc(Expense.expense_id))
    return [_expense_row(e) for e in (await session.execute(query)).scalars().all()]


async def get_expense_summary(
    session: AsyncSession,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> dict:
    """Total plus breakdowns by category (largest first) and by month."""
    query = select(Expense.expense_date, Expense.category, Expense.amount)
    if date_from:
        query = query.where(Expense.expense_date >= date_from)
    if date_to:
        query = query.where(Expense.expense_date <= date_to)
    rows = (await session.execute(query)).all()

    by_category: Dict[str, dict] = {}
    by_month: Dict[str, float] = {}
    total = 0.0
    for expense_date, category, amount in rows:
        amount = amount or 0.0
        total += amount
        entry = by_category.setdefault(category or "Uncategorized", {"total": 0.0, "count": 0})
        entry["total"] += amount
        entry["count"] += 1
        month = expense_date.strftime("%Y-%m")
        by_month[month] = by_month.get(month, 0.0) + amount

    return {
        "total_expenses": total,
        "expenses_by_category": sorted(
            ({"category": k, **v} for k, v in by_category.items()),
            key=lambda item: item["total"],
            reverse=True,
        ),
        "expenses_by_month": [
            {"month": month, "total": by_month[month]} for month in sorted(by_month)
        ],
    }


async def get_expense_categories(session: AsyncSession) -> List[str]:
    """Known categories plus any custom ones already used."""
    used = (await session.execute(select(Expense.category).distinct())).scalars().all()
    extra = sorted(c for c in used if c and c not in EXPENSE_CATEGORIES)
    return EXPENSE_CATEGORIES + extra


async def search_all(session: AsyncSession, term: str, limit: int = 10) -> dict:
    """Case-insensitive search across orders, products and expenses."""
    term = (term or "").strip()
    if not term:
        return {"orders": [], "products": [], "expenses": []}
    pattern = f"%{term}%"

    orders = (await session.execute(
        select(Order)
        .where(or_(
            Order.order_number.ilike(pattern),
            Order.customer_name.ilike(pattern),
            Order.customer_email.ilike(pattern),
        ))
        .order_by(desc(Order.order_date))
        .limit(limit)
    )).scalars().all()

    products = (await session.execute(
        select(Product)
        .where(or_(Product.product_name.ilike(pattern), Product.sku_code.ilike(pattern)))
        .order_by(Product.product_name)
        .limit(limit)
    )).scalars().all()

    expenses = (await session.execute(
        select(Expense)
        .where(or_(
            Expense.description.ilike(pattern),
            Expense.vendor.ilike(pattern),
            Expense.category.ilike(pattern),
        ))
        .order_by(desc(Expense.expense_date))
        .limit(limit)
    )).scalars().all()

    return {
        "orders": [
            {
                "order_number": o.order_number,
                "customer_name": o.customer_name,
                "order_total": o.order_total,
                "order_status": o.order_status,
            }
            for o in orders
        ],
        "products": [
            {"product_id": p.product_id, "product_name": p.product_name, "sku_code": p.sku_code}
            for p in products
        ],
        "expenses": [_expense_row(e) for e in expenses],
    }


async def table_counts(session: AsyncSession) -> Dict[str, int]:
    """Row counts per ledger table."""
    counts = {}
    for name, model in (
        ("products", Product),
        ("orders", Order),
        ("order_lines", OrderLine),
        ("expenses", Expense),
        ("coupons", Coupon),
        ("tiered_pricing", TieredPricing),
    ):
        counts[name] = (await session.execute(select(func.count()).select_from(model))).scalar_one()
    return counts
