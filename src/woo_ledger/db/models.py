"""SQLAlchemy models for the order ledger."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from woo_ledger.utils.parsers import utcnow

from .base import Base


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class Order(TimestampMixin, Base):
    """
    One customer transaction.

    Money invariants maintained by the sync and import services:
    order_total = order_subtotal + shipping_charged - coupon_discount
    order_cost = order_product_cost + shipping_net_cost_absorbed
    order_profit = order_total - order_cost
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(String(64), primary_key=True)
    woo_order_id: Mapped[Optional[int]] = mapped_column(Integer, unique=True, nullable=True)

    order_date: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), index=True, nullable=True)
    order_status: Mapped[str] = mapped_column(String(50), default="pending", nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Money fields
    order_subtotal: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    shipping_charged: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    shipping_cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    free_shipping: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    coupon_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    coupon_discount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    order_total: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    order_product_cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    shipping_net_cost_absorbed: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    order_cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    order_profit: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    # Carrier rate sync
    shippo_shipment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    shippo_rate_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    shipping_cost_currency: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    shipping_cost_source: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    shipping_cost_last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    parcel_snapshot: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    lines: Mapped[List["OrderLine"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class OrderLine(TimestampMixin, Base):
    """
    One product line within an order.

    Unique on (order_number, line_key); see normalizer.build_line_key.
    """

    __tablename__ = "order_lines"
    __table_args__ = (
        UniqueConstraint("order_number", "line_key", name="uq_order_lines_order_line_key"),
    )

    line_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_number: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("orders.order_number", ondelete="CASCADE", onupdate="CASCADE"),
        index=True,
        nullable=False,
    )
    line_key: Mapped[str] = mapped_column(String(100), nullable=False)
    woo_line_item_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    product_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)

    qty_ordered: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    our_cost_per_unit: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    customer_paid_per_unit: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    line_total: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    line_cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    line_profit: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    name: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    raw_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    order: Mapped["Order"] = relationship(back_populates="lines")


class Product(TimestampMixin, Base):
    """
    One catalog item.

    Sales figures are aggregated from order lines on read, never stored.
    """

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    woo_product_id: Mapped[Optional[int]] = mapped_column(Integer, unique=True, nullable=True)

    product_name: Mapped[str] = mapped_column(String(500), nullable=False)
    variant_strength: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    sku_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    our_cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    retail_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    starting_qty: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    current_stock: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reorder_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    stock_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    weight: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    images: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)


class TieredPricing(TimestampMixin, Base):
    """Quantity price breaks for a product."""

    __tablename__ = "tiered_pricing"
    __table_args__ = (
        UniqueConstraint("product_id", "min_qty", name="uq_tiered_pricing_product_min_qty"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    min_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    max_qty: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price_per_unit: Mapped[float] = mapped_column(Float, nullable=False)


class Coupon(TimestampMixin, Base):
    """Discount rule; discount_type is "Percent" or "Fixed"."""

    __tablename__ = "coupons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    coupon_code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    woo_coupon_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    discount_type: Mapped[str] = mapped_column(String(20), default="Fixed", nullable=False)
    discount_value: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Expense(TimestampMixin, Base):
    """A recorded cost, manual or carrier-synced."""

    __tablename__ = "expenses"

    expense_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    expense_date: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    vendor: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    order_number: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    source: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    external_ref: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    extra_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)


class SyncState(Base):
    """Watermark for incremental sync, one row per resource."""

    __tablename__ = "sync_state"

    resource: Mapped[str] = mapped_column(String(50), primary_key=True)
    last_successful_sync: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_sync_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class ShippingSyncOutbox(TimestampMixin, Base):
    """Pending carrier-rate syncs, drained by the outbox processor."""

    __tablename__ = "shipping_sync_outbox"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_number: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    woo_order_id: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    force: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    next_attempt_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class IngestionAudit(Base):
    """Record of every webhook payload received."""

    __tablename__ = "ingestion_audit"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    order_number: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    lines_ingested: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
