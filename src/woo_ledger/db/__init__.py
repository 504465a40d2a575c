"""Database module."""

from .base import Base, create_tables, get_engine, get_session_factory
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
from .repository import (
    AuditRepository,
    CouponRepository,
    ExpenseRepository,
    OrderRepository,
    OutboxRepository,
    ProductRepository,
    SyncStateRepository,
)

__all__ = [
    "Base",
    "create_tables",
    "get_engine",
    "get_session_factory",
    "Coupon",
    "Expense",
    "IngestionAudit",
    "Order",
    "OrderLine",
    "Product",
    "ShippingSyncOutbox",
    "SyncState",
    "TieredPricing",
    "AuditRepository",
    "CouponRepository",
    "ExpenseRepository",
    "OrderRepository",
    "OutboxRepository",
    "ProductRepository",
    "SyncStateRepository",
]
