"""Shared fixtures: a throwaway SQLite ledger per test and fake API clients."""

import os

# Keep test runs from writing log files
os.environ.setdefault("LOG_TO_FILE", "false")

from datetime import datetime  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from woo_ledger.config.settings import ParcelDefaults  # noqa: E402
from woo_ledger.db import create_tables, get_session_factory  # noqa: E402
from woo_ledger.db.models import Coupon, Expense, Order, OrderLine, Product  # noqa: E402


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"


@pytest.fixture
async def engine(database_url):
    # NullPool: connections are never shared across event loops (TestClient runs its own)
    engine = create_async_engine(database_url, poolclass=NullPool)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# ────────────────────────────────────────────
# SEED HELPERS
# ────────────────────────────────────────────


@pytest.fixture
def add_product(session_factory):
    async def _add(product_id, our_cost=10.0, retail_price=25.0, **values):
        values.setdefault("product_name", f"Product {product_id}")
        values.setdefault("woo_product_id", product_id)
        values.setdefault("stock_status", "In Stock")
        values.setdefault("current_stock", 10)
        async with session_factory() as session:
            product = Product(product_id=product_id, our_cost=our_cost, retail_price=retail_price, **values)
            session.add(product)
            await session.commit()
            return product
    return _add


@pytest.fixture
def add_coupon(session_factory):
    async def _add(code, discount_type="Fixed", value=10.0):
        async with session_factory() as session:
            coupon = Coupon(coupon_code=code, discount_type=discount_type, discount_value=value)
            session.add(coupon)
            await session.commit()
            return coupon
    return _add


@pytest.fixture
def add_order(session_factory):
    """Insert an order with consistent money fields and optional lines."""

    async def _add(
        number,
        total=100.0,
        profit=40.0,
        status="completed",
        order_date=None,
        lines=(),
        **values,
    ):
        order_number = number if str(number).startswith("Order #") else f"Order #{number}"
        async with session_factory() as session:
            order = Order(
                order_number=order_number,
                order_date=order_date or datetime(2024, 3, 15, 12, 0),
                order_status=status,
                order_subtotal=total,
                order_total=total,
                order_cost=total - profit,
                order_product_cost=total - profit,
                order_profit=profit,
                **values,
            )
            session.add(order)
            for index, (product_id, qty, cost, price) in enumerate(lines):
                session.add(OrderLine(
                    order_number=order_number,
                    line_key=f"p:{product_id}:{cost:.4f}:{price:.4f}:{index}",
                    product_id=product_id,
                    qty_ordered=qty,
                    our_cost_per_unit=cost,
                    customer_paid_per_unit=price,
                    line_total=qty * price,
                    line_cost=qty * cost,
                    line_profit=qty * (price - cost),
                ))
            await session.commit()
            return order
    return _add


@pytest.fixture
def add_expense(session_factory):
    async def _add(amount, category="Marketing", expense_date=None, **values):
        async with session_factory() as session:
            expense = Expense(
                expense_date=expense_date or datetime(2024, 3, 10),
                category=category,
                amount=amount,
                **values,
            )
            session.add(expense)
            await session.commit()
            return expense
    return _add


# ────────────────────────────────────────────
# FAKE CLIENTS
# ────────────────────────────────────────────


class FakeWooClient:
    """In-memory WooCommerce client recording fetch calls."""

    def __init__(self, orders=None, products=None, coupons=None, order_details=None, product_details=None):
        self.resources = {
            "orders": list(orders or []),
            "products": list(products or []),
            "coupons": list(coupons or []),
        }
        self.order_details = order_details or {}
        self.product_details = product_details or {}
        self.fetch_calls = []
        self.fail_resources = set()

    async def fetch_all_pages(self, resource, after=None, before=None):
        self.fetch_calls.append((resource, after))
        if resource in self.fail_resources:
            raise RuntimeError(f"{resource} endpoint unavailable")
        return list(self.resources[resource])

    async def get_order(self, order_id):
        return self.order_details[order_id]

    async def fetch_products_by_ids(self, product_ids):
        return {pid: self.product_details[pid] for pid in product_ids if pid in self.product_details}

    async def close(self):
        pass


class FakeShippoClient:
    """Returns canned shipments and records requests."""

    def __init__(self, rates=None):
        self.address_from = {"street1": "1 Main St", "city": "Austin", "state": "TX", "zip": "78701", "country": "US"}
        self.parcel_defaults = ParcelDefaults()
        self.rates = rates if rates is not None else [
            {"object_id": "rate_fast", "amount": "12.50", "currency": "USD", "provider": "UPS",
             "servicelevel": {"name": "Ground"}, "estimated_days": 2},
            {"object_id": "rate_cheap", "amount": "7.25", "currency": "USD", "provider": "USPS",
             "servicelevel": {"name": "Priority"}, "estimated_days": 3},
        ]
        self.shipments = []

    async def create_shipment(self, address_from, address_to, parcels):
        self.shipments.append(SimpleNamespace(address_to=address_to, parcels=parcels))
        return {"object_id": f"shp_{len(self.shipments)}", "rates": self.rates}

    async def close(self):
        pass


@pytest.fixture
def fake_woo():
    return FakeWooClient()


@pytest.fixture
def fake_shippo():
    return FakeShippoClient()


def woo_order_payload(order_id=101, number="1001", line_items=None, **overrides):
    """A WooCommerce REST order body."""
    payload = {
        "id": order_id,
        "number": number,
        "status": "processing",
        "date_created_gmt": "2024-03-15T14:30:00",
        "billing": {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com"},
        "shipping": {
            "first_name": "Ada", "last_name": "Lovelace", "address_1": "12 Elm St",
            "city": "Boston", "state": "MA", "postcode": "02101", "country": "US",
        },
        "payment_method_title": "Credit Card",
        "shipping_total": "10.00",
        "shipping_tax": "0.00",
        "discount_total": "0.00",
        "total": "110.00",
        "coupon_lines": [],
        "line_items": line_items if line_items is not None else [
            {"id": 9001, "product_id": 501, "quantity": 2, "price": 50.0, "subtotal": "100.00", "name": "Widget"},
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_woo_order():
    return woo_order_payload


# ────────────────────────────────────────────
# SPREADSHEET EXPORT
# ────────────────────────────────────────────

CSV_SHEETS = {
    "Product_Inventory": """\
Product_ID,Product_Name,Variant_Strength,SKU_Code,Starting_Qty,Current_Stock,Reorder_Level,Stock_Status,Our_Cost,Retail_Price
1,Alpha,5mg,ALP-5,20,15,5,In Stock,$10.00,$25.00
2,Beta,,BET-1,10,0,2,OUT OF STOCK,$4.00,$12.00
abc,Broken,,,,,,,,
""",
    "Tiered_Pricing": """\
Product_ID,Price_1_Unit,Price_2_Units,Price_3_Units,Price_5_Plus
1,$25.00,$23.00,$21.00,$19.00
99,$1.00,$1.00,$1.00,$1.00
""",
    "Coupons": """\
Coupon_Code,Discount_Type,Discount_Value,Description,Active
SAVE10,Percent,10%,Ten percent off,Yes
FLAT5,Fixed,$5.00,Five off,Yes
,Fixed,$1.00,,No
""",
    "Orders": """\
Order_#,Order_Date,Customer_Name,Customer_Email,Product_ID,Qty_Ordered,Our_Cost_Per_Unit,Customer_Paid_Per_Unit,Shipping_Charged,Shipping_Cost,Free_Shipping?,Coupon_Code,Coupon_Discount,Payment_Method,Order_Status,Notes
Order #1001,2024-03-01,Ada Lovelace,ada@example.com,1,2,$10.00,$25.00,$5.00,$8.00,No,SAVE10,$6.20,Card,completed,
Order #1001,2024-03-01,Ada Lovelace,ada@example.com,2,1,$4.00,$12.00,$5.00,$8.00,No,SAVE10,$6.20,Card,completed,
1002,2024-03-02 2:05 PM,Alan Turing,alan@example.com,1,1,$10.00,$25.00,$0.00,$6.00,Yes,FLAT5,$5.00,Card,Processing,Gift
Order #1003,2024-03-03,Grace Hopper,grace@example.com,2,3,$4.00,$12.00,$5.00,$5.00,No,,,Card,cancelled,
Order #1004,not a date,Nobody,,1,1,$10.00,$25.00,$0.00,$0.00,No,,,Card,completed,
""",
    "Expenses": """\
Vici Expense Tracker,,,,,
Total,$150.00,,,,
,,,,,
Date,Category,Description,Amount,Vendor,Notes
2024-03-01,Packaging,Boxes,$50.00,Uline,
2024-03-05,Marketing,Ads,$100.00,Meta,Spring push
Total,,,$150.00,,
2024-03-07,Other,Nothing,$0.00,,
""",
}


@pytest.fixture
def csv_export(tmp_path):
    """
    A spreadsheet export directory.

    Counted orders: 1001 (total 60.80, profit 33.80) and 1002 (total 20.00,
    profit 4.00); 1003 is cancelled and 1004 has an invalid date.
    """
    directory = tmp_path / "export"
    directory.mkdir()
    for sheet, text in CSV_SHEETS.items():
        (directory / f"Vici_Order_Tracker_with_Expenses_v2 - {sheet}.csv").write_text(text, encoding="utf-8")
    return directory
