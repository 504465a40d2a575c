"""Pydantic models."""

from .requests import (
    ExpenseCreate,
    ShippingSyncRequest,
    StatusUpdate,
    SyncRequest,
    WooLineItemPayload,
    WooOrderPayload,
)

__all__ = [
    "ExpenseCreate",
    "ShippingSyncRequest",
    "StatusUpdate",
    "SyncRequest",
    "WooLineItemPayload",
    "WooOrderPayload",
]
