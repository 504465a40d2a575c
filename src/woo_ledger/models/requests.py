"""Pydantic models for API request bodies."""

from datetime import date
from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from woo_ledger.config.constants import SYNC_MODES, SYNC_RESOURCES


class ExpenseCreate(BaseModel):
    """Manual expense entry."""

    expense_date: date
    category: str = Field(..., min_length=1)
    description: Optional[str] = None
    amount: float = Field(..., gt=0)
    vendor: Optional[str] = None
    notes: Optional[str] = None
    order_number: Optional[str] = None


class StatusUpdate(BaseModel):
    """Manual order status change."""

    status: str = Field(..., min_length=1)


class SyncRequest(BaseModel):
    """Manual WooCommerce sync trigger."""

    mode: str = "incremental"
    resources: List[str] = Field(default_factory=lambda: list(SYNC_RESOURCES))
    background: bool = False

    @field_validator("mode")
    @classmethod
    def check_mode(cls, value: str) -> str:
        if value not in SYNC_MODES:
            raise ValueError(f"mode must be one of {', '.join(SYNC_MODES)}")
        return value

    @field_validator("resources")
    @classmethod
    def check_resources(cls, value: List[str]) -> List[str]:
        unknown = [resource for resource in value if resource not in SYNC_RESOURCES]
        if unknown:
            raise ValueError(f"Unknown resources: {', '.join(unknown)}")
        return value


class ShippingSyncRequest(BaseModel):
    """Carrier cost sync for one order, or an outbox drain when empty."""

    order_number: Optional[str] = None
    woo_order_id: Optional[int] = None
    force: bool = False


class WooLineItemPayload(BaseModel):
    """Line item as sent by WooCommerce webhooks."""

    id: Optional[int] = None
    product_id: Optional[int] = None
    quantity: Optional[int] = None
    price: Optional[Union[float, str]] = None

    class Config:
        extra = "allow"


class WooOrderPayload(BaseModel):
    """
    WooCommerce order webhook body.

    Only the fields the ledger reads are declared; everything else passes
    through untouched.
    """

    id: Optional[int] = None
    number: Optional[Union[int, str]] = None
    status: Optional[str] = None
    line_items: Optional[List[WooLineItemPayload]] = None
    line_item: Optional[WooLineItemPayload] = None

    class Config:
        extra = "allow"
