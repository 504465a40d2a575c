"""
Spreadsheet CSV import.

Loads the five exported sheets in dependency order: products, tiered
pricing, coupons, orders, expenses. Orders arrive denormalized (one row per
line item) and are grouped into orders plus order lines.
"""

import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, List, Union

from woo_ledger.core.logger import setup_logger
from woo_ledger.db.repository import (
    CouponRepository,
    ExpenseRepository,
    OrderRepository,
    ProductRepository,
)
from woo_ledger.services.calculator import (
    coupon_discount,
    is_percent_discount,
    order_financials,
)
from woo_ledger.services.normalizer import build_line_key, merge_lines
from woo_ledger.utils.csv_files import csv_path, read_csv, read_expense_csv
from woo_ledger.utils.parsers import (
    normalize_order_number,
    normalize_order_status,
    parse_boolean,
    parse_date,
    parse_int,
    parse_money,
    parse_percent,
)

logger = setup_logger(__name__)

# (column, min_qty, max_qty) for the tiered pricing sheet
PRICE_TIERS = (
    ("Price_1_Unit", 1, 1),
    ("Price_2_Units", 2, 2),
    ("Price_3_Units", 3, 4),
    ("Price_5_Plus", 5, None),
)

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")


@dataclass
class ImportCounts:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass
class ImportSummary:
    """Per-sheet counts for one import run."""
    products: ImportCounts = field(default_factory=ImportCounts)
    tiered_pricing: ImportCounts = field(default_factory=ImportCounts)
    coupons: ImportCounts = field(default_factory=ImportCounts)
    orders: ImportCounts = field(default_factory=ImportCounts)
    order_lines: ImportCounts = field(default_factory=ImportCounts)
    expenses: ImportCounts = field(default_factory=ImportCounts)

    @property
    def total_errors(self) -> int:
        return sum(getattr(self, name).errors for name in self.__dataclass_fields__)

    def to_dict(self) -> dict:
        return asdict(self)


def group_order_rows(rows: List[Dict[str, str]]) -> Dict[str, dict]:
    """
    Group denormalized order rows by normalized order number.

    Order-level fields come from the first row of each order. Rows with an
    empty order number or invalid date are skipped, as are lines with an
    invalid product id.
    """
    grouped: Dict[str, dict] = {}
    for row in rows:
        order_number = normalize_order_number(row.get("Order_#"))
        if not order_number:
            logger.warning("Skipping row with empty Order_#")
            continue

        if order_number not in grouped:
            order_date = parse_date(row.get("Order_Date"))
            if order_date is None:
                logger.warning(f"Skipping order {order_number} with invalid date: {row.get('Order_Date')}")
                continue
            grouped[order_number] = {
                "order": {
                    "order_number": order_number,
                    "order_date": order_date,
                    "customer_name": row.get("Customer_Name") or None,
                    "customer_email": row.get("Customer_Email") or None,
                    "shipping_charged": parse_money(row.get("Shipping_Charged")),
                    "shipping_cost": parse_money(row.get("Shipping_Cost")),
                    "free_shipping": parse_boolean(row.get("Free_Shipping?")),
                    "coupon_code": row.get("Coupon_Code") or None,
                    "payment_method": row.get("Payment_Method") or None,
                    "order_status": normalize_order_status(row.get("Order_Status")),
                    "notes": row.get("Notes") or None,
                },
                "provided_discount": parse_money(row.get("Coupon_Discount")),
                "lines": [],
            }

        product_id = parse_int(row.get("Product_ID"))
        if not product_id:
            logger.warning(f"Skipping line on {order_number} with invalid Product_ID: {row.get('Product_ID')}")
            continue

        grouped[order_number]["lines"].append({
            "product_id": product_id,
            "qty_ordered": parse_int(row.get("Qty_Ordered")),
            "our_cost_per_unit": parse_money(row.get("Our_Cost_Per_Unit")),
            "customer_paid_per_unit": parse_money(row.get("Customer_Paid_Per_Unit")),
        })
    return grouped


def is_valid_expense_row(row: Dict[str, str]) -> bool:
    """Expense rows need an ISO-dated Date and a positive Amount."""
    date_text = row.get("Date") or row.get("Expense_Date") or ""
    if not _ISO_DATE.match(date_text) or parse_date(date_text) is None:
        return False
    return parse_money(row.get("Amount")) > 0


class CsvImporter:
    """Imports an exported spreadsheet directory into the ledger."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def run(self, directory: Union[str, Path]) -> ImportSummary:
        directory = Path(directory)
        summary = ImportSummary()

        logger.info(f"Starting CSV import from {directory}")
        summary.products = await self.import_products(csv_path(directory, "products"))
        summary.tiered_pricing = await self.import_tiered_pricing(csv_path(directory, "tiered_pricing"))
        summary.coupons = await self.import_coupons(csv_path(directory, "coupons"))
        summary.orders, summary.order_lines = await self.import_orders(csv_path(directory, "orders"))
        summary.expenses = await self.import_expenses(csv_path(directory, "expenses"))

        logger.info(f"CSV import complete: {summary.to_dict()}")
        return summary

    async def import_products(self, path: Path) -> ImportCounts:
        counts = ImportCounts()
        async with self.session_factory() as session:
            products = ProductRepository(session)
            for row in read_csv(path):
                product_id = parse_int(row.get("Product_ID"))
                if not product_id:
                    logger.warning(f"Skipping product row with invalid Product_ID: {row.get('Product_ID')}")
                    counts.errors += 1
                    continue

                exists = await products.get_by_product_id(product_id) is not None
                await products.upsert({
                    "product_id": product_id,
                    "product_name": row.get("Product_Name") or f"Product {product_id}",
                    "variant_strength": row.get("Variant_Strength") or None,
                    "sku_code": row.get("SKU_Code") or None,
                    "starting_qty": parse_int(row["Starting_Qty"]) if row.get("Starting_Qty") else None,
                    "current_stock": parse_int(row.get("Current_Stock")),
                    "reorder_level": parse_int(row["Reorder_Level"]) if row.get("Reorder_Level") else None,
                    "stock_status": row.get("Stock_Status") or None,
                    "our_cost": parse_money(row["Our_Cost"]) if row.get("Our_Cost") else None,
                    "retail_price": parse_money(row["Retail_Price"]) if row.get("Retail_Price") else None,
                })
                if exists:
                    counts.updated += 1
                else:
                    counts.inserted += 1
            await session.commit()

        logger.info(f"Products: {counts.inserted} inserted, {counts.updated} updated, {counts.errors} errors")
        return counts

    async def import_tiered_pricing(self, path: Path) -> ImportCounts:
        counts = ImportCounts()
        async with self.session_factory() as session:
            products = ProductRepository(session)
            for row in read_csv(path):
                product_id = parse_int(row.get("Product_ID"))
                if not product_id or await products.get_by_product_id(product_id) is None:
                    logger.warning(f"Product {row.get('Product_ID')} not found, skipping tiered pricing")
                    counts.errors += 1
                    continue

                for column, min_qty, max_qty in PRICE_TIERS:
                    if not row.get(column):
                        continue
                    await products.upsert_tier({
                        "product_id": product_id,
                        "min_qty": min_qty,
                        "max_qty": max_qty,
                        "price_per_unit": parse_money(row[column]),
                    })
                counts.inserted += 1
            await session.commit()

        logger.info(f"Tiered pricing: {counts.inserted} products, {counts.errors} errors")
        return counts

    async def import_coupons(self, path: Path) -> ImportCounts:
        counts = ImportCounts()
        async with self.session_factory() as session:
            coupons = CouponRepository(session)
            for row in read_csv(path):
                code = row.get("Coupon_Code")
                if not code:
                    logger.warning("Skipping coupon row with empty Coupon_Code")
                    counts.errors += 1
                    continue

                exists = await coupons.get_by_code(code) is not None
                await coupons.upsert({
                    "coupon_code": code,
                    "discount_type": "Percent" if is_percent_discount(row.get("Discount_Type") or "Percent") else "Fixed",
                    "discount_value": parse_percent(row.get("Discount_Value")) or parse_money(row.get("Discount_Value")),
                    "notes": row.get("Description") or None,
                    "active": parse_boolean(row.get("Active")),
                })
                if exists:
                    counts.updated += 1
                else:
                    counts.inserted += 1
            await session.commit()

        logger.info(f"Coupons: {counts.inserted} inserted, {counts.updated} updated, {counts.errors} errors")
        return counts

    async def import_orders(self, path: Path):
        """Returns (order counts, line counts). Each order is its own transaction."""
        order_counts = ImportCounts()
        line_counts = ImportCounts()

        for order_number, group in group_order_rows(read_csv(path)).items():
            try:
                async with self.session_factory() as session:
                    inserted, written, skipped = await self._write_order(session, group)
                    await session.commit()
            except Exception as e:
                order_counts.errors += 1
                logger.error(f"Error importing order {order_number}: {e}", exc_info=True)
                continue

            if inserted:
                order_counts.inserted += 1
            else:
                order_counts.updated += 1
            line_counts.inserted += written
            line_counts.skipped += skipped

        logger.info(
            f"Orders: {order_counts.inserted} inserted, {order_counts.updated} updated, "
            f"{line_counts.inserted} lines, {line_counts.skipped} lines skipped, {order_counts.errors} errors"
        )
        return order_counts, line_counts

    async def _write_order(self, session, group: dict):
        order = dict(group["order"])
        order_number = order["order_number"]
        orders = OrderRepository(session)
        products = ProductRepository(session)

        known = await products.map_by_product_ids(line["product_id"] for line in group["lines"])
        keyed = []
        skipped = 0
        for line in group["lines"]:
            if line["product_id"] not in known:
                logger.warning(f"Product {line['product_id']} not found, skipping line on {order_number}")
                skipped += 1
                continue
            key = build_line_key(None, line["product_id"], line["our_cost_per_unit"], line["customer_paid_per_unit"])
            keyed.append({**line, "order_number": order_number, "line_key": key})

        # Repeated rows for the same product and price are one line
        lines = merge_lines(keyed)

        subtotal = sum(line["line_total"] for line in lines)
        discount = 0.0
        if order["coupon_code"]:
            coupon = await CouponRepository(session).get_by_code(order["coupon_code"])
            if coupon is None:
                logger.warning(f"Coupon {order['coupon_code']} not found on {order_number}, clearing it")
                order["coupon_code"] = None
            else:
                discount = coupon_discount(subtotal, coupon.discount_type, coupon.discount_value)

        financials = order_financials(
            subtotal=subtotal,
            shipping_charged=order["shipping_charged"],
            shipping_cost=order["shipping_cost"],
            free_shipping=order["free_shipping"],
            discount=discount,
            product_cost=sum(line["line_cost"] for line in lines),
        )

        inserted = await orders.get(order_number) is None
        await orders.upsert({**order, "order_subtotal": subtotal, **asdict(financials)})
        await orders.upsert_lines(order_number, lines)
        return inserted, len(lines), skipped

    async def import_expenses(self, path: Path) -> ImportCounts:
        counts = ImportCounts()
        rows = read_expense_csv(path)
        if rows is None:
            return counts

        valid = [row for row in rows if is_valid_expense_row(row)]
        counts.skipped = len(rows) - len(valid)
        logger.info(f"Found {len(valid)} valid expense rows out of {len(rows)}")

        async with self.session_factory() as session:
            expenses = ExpenseRepository(session)
            for row in valid:
                values = {
                    "expense_date": parse_date(row.get("Date") or row.get("Expense_Date")),
                    "category": row.get("Category") or "Other",
                    "description": row.get("Description") or None,
                    "amount": parse_money(row.get("Amount")),
                    "vendor": row.get("Vendor") or None,
                    "notes": row.get("Notes") or None,
                    "source": "csv",
                }
                existing = await expenses.find_existing(
                    values["expense_date"], values["category"], values["description"], values["amount"]
                )
                if existing is not None:
                    counts.updated += 1
                    continue
                await expenses.create(values)
                counts.inserted += 1
            await session.commit()

        logger.info(f"Expenses: {counts.inserted} inserted, {counts.updated} already present")
        return counts


def summarize(summary: ImportSummary) -> List[str]:
    """Human-readable summary lines for the CLI."""
    return [
        f"Products:        {summary.products.inserted} inserted, {summary.products.updated} updated, {summary.products.errors} errors",
        f"Tiered Pricing:  {summary.tiered_pricing.inserted} products, {summary.tiered_pricing.errors} errors",
        f"Coupons:         {summary.coupons.inserted} inserted, {summary.coupons.updated} updated, {summary.coupons.errors} errors",
        f"Orders:          {summary.orders.inserted} inserted, {summary.orders.updated} updated, {summary.orders.errors} errors",
        f"Order Lines:     {summary.order_lines.inserted} written, {summary.order_lines.skipped} skipped",
        f"Expenses:        {summary.expenses.inserted} inserted, {summary.expenses.updated} already present",
        f"Total Errors:    {summary.total_errors}",
    ]
