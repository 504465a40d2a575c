"""Repositories for ledger data access.

Upserts are select-then-update so the same code runs on PostgreSQL and
SQLite. Repositories flush but never commit; the calling service owns the
transaction.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from woo_ledger.config.constants import SHIPPING_EXPENSE_CATEGORY, STOCK_OUT
from woo_ledger.utils.parsers import utcnow

from .models import (
    Coupon,
    Expense,
    IngestionAudit,
    Order,
    OrderLine,
    Product,
    ShippingSyncOutbox,
    SyncState,
    TieredPricing,
)


def _assign(instance, values: Dict[str, Any]) -> None:
    for key, value in values.items():
        setattr(instance, key, value)


class OrderRepository:
    """Data access layer for orders and their lines."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with async session."""
        self.session = session

    async def get(self, order_number: str) -> Optional[Order]:
        return await self.session.get(Order, order_number)

    async def get_by_woo_id(self, woo_order_id: int) -> Optional[Order]:
        query = select(Order).where(Order.woo_order_id == woo_order_id)
        result = await self.session.execute(query)
        return result.scalars().first()

    async def existing_woo_ids(self) -> Set[int]:
        query = select(Order.woo_order_id).where(Order.woo_order_id.is_not(None))
        result = await self.session.execute(query)
        return set(result.scalars().all())

    async def search_order_numbers(self, fragment: str, limit: int = 5) -> List[str]:
        """Case-insensitive substring search over order numbers."""
        query = (
            select(Order.order_number)
            .where(Order.order_number.ilike(f"%{fragment}%"))
            .order_by(Order.order_number)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def delete(self, order_number: str) -> int:
        """Delete an order and its lines. Returns count of deleted orders."""
        await self.session.execute(
            delete(OrderLine).where(OrderLine.order_number == order_number)
        )
        result = await self.session.execute(
            delete(Order).where(Order.order_number == order_number)
        )
        await self.session.flush()
        return result.rowcount

    async def upsert(self, values: Dict[str, Any]) -> Order:
        """Insert or overwrite an order keyed by order_number."""
        order = await self.get(values["order_number"])
        if order is None:
            order = Order(**values)
            self.session.add(order)
        else:
            _assign(order, values)
        await self.session.flush()
        return order

    async def get_lines(self, order_number: str) -> List[OrderLine]:
        query = (
            select(OrderLine)
            .where(OrderLine.order_number == order_number)
            .order_by(OrderLine.line_id)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def upsert_lines(
        self,
        order_number: str,
        lines: List[Dict[str, Any]],
        prune: bool = True,
    ) -> List[OrderLine]:
        """
        Upsert lines by (order_number, line_key).

        With prune, lines no longer present in the source are removed so a
        re-synced order mirrors the source exactly.
        """
        existing = {line.line_key: line for line in await self.get_lines(order_number)}
        seen = set()
        saved = []

        for values in lines:
            key = values["line_key"]
            seen.add(key)
            line = existing.get(key)
            if line is None:
                line = OrderLine(**values)
                self.session.add(line)
            else:
                _assign(line, values)
            saved.append(line)

        if prune:
            for key, line in existing.items():
                if key not in seen:
                    await self.session.delete(line)

        await self.session.flush()
        return saved

    async def update_status(self, order_number: str, status: str) -> Optional[Order]:
        order = await self.get(order_number)
        if order is None:
            return None
        order.order_status = status
        await self.session.flush()
        return order

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(Order))
        return result.scalar_one()


class ProductRepository:
    """Data access layer for products and tiered pricing."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_product_id(self, product_id: int) -> Optional[Product]:
        query = select(Product).where(Product.product_id == product_id)
        result = await self.session.execute(query)
        return result.scalars().first()

    async def get_by_woo_id(self, woo_product_id: int) -> Optional[Product]:
        query = select(Product).where(Product.woo_product_id == woo_product_id)
        result = await self.session.execute(query)
        return result.scalars().first()

    async def map_by_woo_ids(self, woo_product_ids: Iterable[int]) -> Dict[int, Product]:
        """Batch lookup keyed by woo_product_id."""
        ids = {int(i) for i in woo_product_ids if i and i > 0}
        if not ids:
            return {}
        query = select(Product).where(Product.woo_product_id.in_(ids))
        result = await self.session.execute(query)
        return {product.woo_product_id: product for product in result.scalars().all()}

    async def map_by_product_ids(self, product_ids: Iterable[int]) -> Dict[int, Product]:
        ids = {int(i) for i in product_ids if i}
        if not ids:
            return {}
        query = select(Product).where(Product.product_id.in_(ids))
        result = await self.session.execute(query)
        return {product.product_id: product for product in result.scalars().all()}

    async def existing_woo_ids(self) -> Set[int]:
        query = select(Product.woo_product_id).where(Product.woo_product_id.is_not(None))
        result = await self.session.execute(query)
        return set(result.scalars().all())

    async def upsert_from_source(self, values: Dict[str, Any]) -> Product:
        """
        Upsert a synced product on woo_product_id.

        Internal fields (our_cost, starting_qty, reorder_level) are kept from
        the stored row; the source does not carry them.
        """
        product = await self.get_by_woo_id(values["woo_product_id"])
        if product is None:
            product = await self.get_by_product_id(values["product_id"])

        if product is None:
            product = Product(**values)
            self.session.add(product)
        else:
            preserved = {"our_cost", "starting_qty", "reorder_level", "product_id"}
            _assign(product, {k: v for k, v in values.items() if k not in preserved})
            if product.starting_qty is None:
                product.starting_qty = values.get("starting_qty")
        await self.session.flush()
        return product

    async def upsert(self, values: Dict[str, Any]) -> Product:
        """Upsert on the internal product_id (flat-file import path)."""
        product = await self.get_by_product_id(values["product_id"])
        if product is None:
            product = Product(**values)
            self.session.add(product)
        else:
            _assign(product, values)
        await self.session.flush()
        return product

    async def create_placeholder(self, product_id: int, retail_price: float) -> Product:
        """Minimal product standing in for an unknown id referenced by a sale."""
        product = Product(
            product_id=product_id,
            woo_product_id=product_id,
            product_name=f"Product {product_id}",
            our_cost=None,
            retail_price=retail_price,
            current_stock=None,
            stock_status=STOCK_OUT,
        )
        self.session.add(product)
        await self.session.flush()
        return product

    async def delete(self, product_id: int) -> int:
        result = await self.session.execute(
            delete(Product).where(Product.product_id == product_id)
        )
        await self.session.flush()
        return result.rowcount

    async def upsert_tier(self, values: Dict[str, Any]) -> TieredPricing:
        query = select(TieredPricing).where(
            TieredPricing.product_id == values["product_id"],
            TieredPricing.min_qty == values["min_qty"],
        )
        tier = (await self.session.execute(query)).scalars().first()
        if tier is None:
            tier = TieredPricing(**values)
            self.session.add(tier)
        else:
            _assign(tier, values)
        await self.session.flush()
        return tier


class CouponRepository:
    """Data access layer for coupons."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        query = select(Coupon).where(func.lower(Coupon.coupon_code) == code.strip().lower())
        result = await self.session.execute(query)
        return result.scalars().first()

    async def all_by_code(self) -> Dict[str, Coupon]:
        """All coupons keyed by lower-cased code."""
        result = await self.session.execute(select(Coupon))
        return {coupon.coupon_code.lower(): coupon for coupon in result.scalars().all()}

    async def existing_woo_ids(self) -> Set[int]:
        query = select(Coupon.woo_coupon_id).where(Coupon.woo_coupon_id.is_not(None))
        result = await self.session.execute(query)
        return set(result.scalars().all())

    async def upsert(self, values: Dict[str, Any]) -> Coupon:
        coupon = await self.get_by_code(values["coupon_code"])
        if coupon is None:
            coupon = Coupon(**values)
            self.session.add(coupon)
        else:
            _assign(coupon, values)
        await self.session.flush()
        return coupon


class ExpenseRepository:
    """Data access layer for expenses."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, values: Dict[str, Any]) -> Expense:
        expense = Expense(**values)
        self.session.add(expense)
        await self.session.flush()
        return expense

    async def get(self, expense_id: int) -> Optional[Expense]:
        return await self.session.get(Expense, expense_id)

    async def delete(self, expense_id: int) -> int:
        result = await self.session.execute(
            delete(Expense).where(Expense.expense_id == expense_id)
        )
        await self.session.flush()
        return result.rowcount

    async def find_existing(
        self, expense_date: datetime, category: str, description: Optional[str], amount: float
    ) -> Optional[Expense]:
        query = select(Expense).where(
            Expense.expense_date == expense_date,
            Expense.category == category,
            Expense.description == description,
            Expense.amount == amount,
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    async def upsert_shipping_expense(self, order_number: str, values: Dict[str, Any]) -> Expense:
        """One shipping expense per order, matched on order_number + category."""
        query = select(Expense).where(
            Expense.order_number == order_number,
            Expense.category == SHIPPING_EXPENSE_CATEGORY,
        )
        expense = (await self.session.execute(query)).scalars().first()
        values = {**values, "order_number": order_number, "category": SHIPPING_EXPENSE_CATEGORY}
        if expense is None:
            expense = Expense(**values)
            self.session.add(expense)
        else:
            _assign(expense, values)
        await self.session.flush()
        return expense


class SyncStateRepository:
    """Per-resource watermarks for incremental sync."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, resource: str) -> Optional[SyncState]:
        return await self.session.get(SyncState, resource)

    async def all(self) -> List[SyncState]:
        result = await self.session.execute(select(SyncState).order_by(SyncState.resource))
        return list(result.scalars().all())

    async def update(
        self,
        resource: str,
        synced_at: datetime,
        count: int,
        error: Optional[str] = None,
    ) -> SyncState:
        state = await self.get(resource)
        if state is None:
            state = SyncState(resource=resource)
            self.session.add(state)
        state.last_successful_sync = synced_at
        state.last_sync_count = count
        state.last_error = error
        state.updated_at = utcnow()
        await self.session.flush()
        return state


class OutboxRepository:
    """Data access layer for the shipping sync outbox."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(self, order_number: str, woo_order_id: int, force: bool = False) -> ShippingSyncOutbox:
        """Add a pending entry unless one is already pending for the order."""
        query = select(ShippingSyncOutbox).where(
            ShippingSyncOutbox.order_number == order_number,
            ShippingSyncOutbox.status == "pending",
        )
        entry = (await self.session.execute(query)).scalars().first()
        if entry is None:
            entry = ShippingSyncOutbox(
                order_number=order_number,
                woo_order_id=woo_order_id,
                status="pending",
                force=force,
                next_attempt_at=utcnow(),
            )
            self.session.add(entry)
        elif force:
            entry.force = True
        await self.session.flush()
        return entry

    async def due(self, limit: int, now: Optional[datetime] = None) -> List[ShippingSyncOutbox]:
        query = (
            select(ShippingSyncOutbox)
            .where(
                ShippingSyncOutbox.status == "pending",
                ShippingSyncOutbox.next_attempt_at <= (now or utcnow()),
            )
            .order_by(ShippingSyncOutbox.next_attempt_at, ShippingSyncOutbox.id)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def counts_by_status(self) -> Dict[str, int]:
        query = select(ShippingSyncOutbox.status, func.count()).group_by(ShippingSyncOutbox.status)
        result = await self.session.execute(query)
        return {status: count for status, count in result.all()}


class AuditRepository:
    """Webhook ingestion audit trail."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(self, **values) -> IngestionAudit:
        entry = IngestionAudit(**values)
        self.session.add(entry)
        await self.session.flush()
        return entry
