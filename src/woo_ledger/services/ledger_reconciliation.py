"""
Ledger reconciliation.

Recomputes headline metrics directly from the spreadsheet CSV export and
compares them with the aggregates stored in the database. Currency fields
must agree within CURRENCY_TOLERANCE, percentages within PERCENT_TOLERANCE,
and counts exactly.
"""

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Dict, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from woo_ledger.config.constants import (
    CURRENCY_TOLERANCE,
    PERCENT_TOLERANCE,
    RECONCILIATION_REPORT_FILE,
)
from woo_ledger.core.logger import setup_logger
from woo_ledger.db.models import Expense, Order, OrderLine
from woo_ledger.services.calculator import (
    average_order_value,
    coupon_discount,
    format_currency,
    format_percent,
    is_percent_discount,
    profit_margin,
    shipping_absorbed,
)
from woo_ledger.services.csv_importer import group_order_rows, is_valid_expense_row
from woo_ledger.services.metrics import counted_order, is_counted_status
from woo_ledger.utils.csv_files import csv_path, read_csv, read_expense_csv
from woo_ledger.utils.parsers import parse_money, parse_percent

logger = setup_logger(__name__)

COUNT_FIELDS = ("total_orders", "total_units_sold")
PERCENT_FIELDS = ("profit_margin", "roi_percent")


@dataclass
class LedgerMetrics:
    total_revenue: float = 0.0
    total_product_cost: float = 0.0
    total_shipping_cost_absorbed: float = 0.0
    total_profit: float = 0.0
    total_orders: int = 0
    total_units_sold: int = 0
    average_order_value: float = 0.0
    profit_margin: float = 0.0
    roi_percent: float = 0.0
    total_expenses: float = 0.0
    net_profit: float = 0.0


@dataclass
class ReconciliationReport:
    csv_metrics: LedgerMetrics
    db_metrics: LedgerMetrics
    differences: Dict[str, float]
    failures: list
    passed: bool

    def to_dict(self) -> dict:
        return asdict(self)


def _finish(metrics: LedgerMetrics) -> LedgerMetrics:
    """Fill the derived ratios from the summed totals."""
    metrics.average_order_value = average_order_value(metrics.total_revenue, metrics.total_orders)
    metrics.profit_margin = profit_margin(metrics.total_revenue, metrics.total_profit)
    total_cost = metrics.total_product_cost + metrics.total_shipping_cost_absorbed
    metrics.roi_percent = metrics.total_profit / total_cost * 100 if total_cost > 0 else 0.0
    metrics.net_profit = metrics.total_profit - metrics.total_expenses
    return metrics


def reconcile_coupon_discount(
    subtotal: float,
    coupon_code: Optional[str],
    provided_discount: float,
    coupons: Dict[str, dict],
) -> float:
    """Discount from the coupon rule, else the provided value capped at the subtotal."""
    coupon = coupons.get(coupon_code.lower()) if coupon_code else None
    if coupon is not None:
        return coupon_discount(subtotal, coupon["type"], coupon["value"])
    return min(max(0.0, provided_discount), subtotal)


def compute_csv_metrics(directory: Union[str, Path]) -> LedgerMetrics:
    """Metrics recomputed from scratch from the exported sheets."""
    coupons = {}
    for row in read_csv(csv_path(directory, "coupons")):
        if row.get("Coupon_Code"):
            coupons[row["Coupon_Code"].lower()] = {
                "type": "Percent" if is_percent_discount(row.get("Discount_Type") or "Percent") else "Fixed",
                "value": parse_percent(row.get("Discount_Value")) or parse_money(row.get("Discount_Value")),
            }

    metrics = LedgerMetrics()
    for group in group_order_rows(read_csv(csv_path(directory, "orders"))).values():
        order = group["order"]
        if not is_counted_status(order["order_status"]):
            continue

        subtotal = sum(line["qty_ordered"] * line["customer_paid_per_unit"] for line in group["lines"])
        product_cost = sum(line["qty_ordered"] * line["our_cost_per_unit"] for line in group["lines"])
        absorbed = shipping_absorbed(order["free_shipping"], order["shipping_cost"], order["shipping_charged"])
        discount = reconcile_coupon_discount(subtotal, order["coupon_code"], group["provided_discount"], coupons)
        order_total = subtotal + order["shipping_charged"] - discount

        metrics.total_revenue += order_total
        metrics.total_product_cost += product_cost
        metrics.total_shipping_cost_absorbed += absorbed
        metrics.total_profit += order_total - (product_cost + absorbed)
        metrics.total_orders += 1
        metrics.total_units_sold += sum(line["qty_ordered"] for line in group["lines"])

    expense_rows = read_expense_csv(csv_path(directory, "expenses")) or []
    metrics.total_expenses = sum(
        parse_money(row.get("Amount")) for row in expense_rows if is_valid_expense_row(row)
    )
    return _finish(metrics)


async def query_db_metrics(session: AsyncSession) -> LedgerMetrics:
    """The same metrics from the stored ledger."""
    revenue, product_cost, absorbed, profit, orders = (await session.execute(
        select(
            func.coalesce(func.sum(Order.order_total), 0.0),
            func.coalesce(func.sum(Order.order_product_cost), 0.0),
            func.coalesce(func.sum(Order.shipping_net_cost_absorbed), 0.0),
            func.coalesce(func.sum(Order.order_profit), 0.0),
            func.count(Order.order_number),
        ).where(counted_order())
    )).one()

    units = (await session.execute(
        select(func.coalesce(func.sum(OrderLine.qty_ordered), 0))
        .join(Order, Order.order_number == OrderLine.order_number)
        .where(counted_order())
    )).scalar_one()

    expenses = (await session.execute(
        select(func.coalesce(func.sum(Expense.amount), 0.0))
    )).scalar_one()

    return _finish(LedgerMetrics(
        total_revenue=float(revenue),
        total_product_cost=float(product_cost),
        total_shipping_cost_absorbed=float(absorbed),
        total_profit=float(profit),
        total_orders=int(orders),
        total_units_sold=int(units),
        total_expenses=float(expenses),
    ))


def compare_metrics(csv_metrics: LedgerMetrics, db_metrics: LedgerMetrics) -> ReconciliationReport:
    differences = {}
    failures = []
    for metric in fields(LedgerMetrics):
        name = metric.name
        difference = abs(getattr(csv_metrics, name) - getattr(db_metrics, name))
        differences[name] = difference

        if name in COUNT_FIELDS:
            ok = difference == 0
        elif name in PERCENT_FIELDS:
            ok = difference <= PERCENT_TOLERANCE
        else:
            ok = difference <= CURRENCY_TOLERANCE
        if not ok:
            failures.append(name)

    return ReconciliationReport(
        csv_metrics=csv_metrics,
        db_metrics=db_metrics,
        differences=differences,
        failures=failures,
        passed=not failures,
    )


def format_report(report: ReconciliationReport) -> list:
    """Console lines comparing each metric."""
    lines = []
    for metric in fields(LedgerMetrics):
        name = metric.name
        if name in COUNT_FIELDS:
            fmt = str
        elif name in PERCENT_FIELDS:
            fmt = lambda value: format_percent(value, 2)  # noqa: E731
        else:
            fmt = format_currency
        status = "FAIL" if name in report.failures else "ok"
        lines.append(
            f"{name.replace('_', ' ').title():<30} csv={fmt(getattr(report.csv_metrics, name)):>14} "
            f"db={fmt(getattr(report.db_metrics, name)):>14} diff={fmt(report.differences[name]):>12} {status}"
        )
    return lines


def write_report(report: ReconciliationReport, path: Union[str, Path] = RECONCILIATION_REPORT_FILE) -> Path:
    path = Path(path)
    path.write_text(json.dumps(report.to_dict(), indent=2))
    return path


async def reconcile(
    session_factory,
    directory: Union[str, Path],
    report_path: Union[str, Path] = RECONCILIATION_REPORT_FILE,
) -> ReconciliationReport:
    """Compute both sides, compare, and write the JSON report."""
    logger.info(f"Reconciling ledger against CSV export in {directory}")
    csv_metrics = compute_csv_metrics(directory)
    async with session_factory() as session:
        db_metrics = await query_db_metrics(session)

    report = compare_metrics(csv_metrics, db_metrics)
    written = write_report(report, report_path)

    if report.passed:
        logger.info(f"Reconciliation passed, report saved to {written}")
    else:
        logger.error(f"Reconciliation failed on {', '.join(report.failures)}, report saved to {written}")
    return report
