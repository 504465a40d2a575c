"""
WooCommerce payload normalization.

Maps raw WooCommerce order, product and coupon JSON onto the column shape of
the ledger tables. Financial totals are filled in later by the sync service,
once product costs and coupon rules are known.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from woo_ledger.config.constants import (
    DEFAULT_ORDER_STATUS,
    ORDER_NUMBER_PREFIX,
    STOCK_IN,
    STOCK_LOW,
    STOCK_OUT,
)
from woo_ledger.core.logger import setup_logger
from woo_ledger.services.calculator import line_financials, shipping_absorbed
from woo_ledger.utils.parsers import (
    normalize_order_status,
    parse_date,
    parse_int,
    parse_money,
    utcnow,
)

logger = setup_logger(__name__)


@dataclass
class NormalizedOrder:
    """One order plus its valid lines; dropped_lines counts rejected lines."""
    order: Dict[str, Any]
    lines: List[Dict[str, Any]] = field(default_factory=list)
    dropped_lines: int = 0


def build_line_key(
    woo_line_item_id: Optional[int],
    product_id: int,
    our_cost_per_unit: float,
    customer_paid_per_unit: float,
) -> str:
    """
    Stable identity of an order line within its order.

    Lines from the API carry their own id; flat-file lines fall back to the
    product and per-unit money fields.
    """
    if woo_line_item_id:
        return f"woo:{int(woo_line_item_id)}"
    return f"p:{int(product_id)}:{our_cost_per_unit:.4f}:{customer_paid_per_unit:.4f}"


def merge_lines(lines: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Collapse lines sharing a line_key into one, summing qty_ordered.

    Line money fields are recomputed from the merged quantity. First-seen
    order is kept.
    """
    merged: Dict[str, Dict[str, Any]] = {}
    for line in lines:
        key = line["line_key"]
        if key in merged:
            merged[key]["qty_ordered"] += line["qty_ordered"]
        else:
            merged[key] = dict(line)

    result = []
    for line in merged.values():
        money = line_financials(line["qty_ordered"], line["our_cost_per_unit"], line["customer_paid_per_unit"])
        result.append({**line, **asdict(money)})
    return result


def format_order_number(number: Any) -> str:
    return f"{ORDER_NUMBER_PREFIX}{number}"


def _customer_name(payload: dict) -> Optional[str]:
    billing = payload.get("billing") or {}
    shipping = payload.get("shipping") or {}
    first = billing.get("first_name")
    last = billing.get("last_name")
    if first and last:
        return f"{first} {last}".strip()
    name = first or last or shipping.get("first_name") or shipping.get("last_name")
    return str(name) if name else None


def _iso_or_now(value: Any):
    return parse_date(value) or utcnow()


def normalize_line_item(order_number: str, item: dict) -> Optional[Dict[str, Any]]:
    """Normalize a single WooCommerce line item, or None when it is unusable."""
    product_id = parse_int(item.get("product_id"))
    quantity = parse_int(item.get("quantity")) if item.get("quantity") is not None else 1

    if product_id <= 0 or quantity <= 0:
        logger.warning(
            f"Dropping line item {item.get('id')} on {order_number}: "
            f"product_id={product_id}, quantity={quantity}",
            extra={"order_number": order_number},
        )
        return None

    unit_price = parse_money(item.get("price"))
    if unit_price <= 0:
        unit_price = parse_money(item.get("subtotal")) / quantity

    line_item_id = parse_int(item.get("id")) or None

    return {
        "order_number": order_number,
        "woo_line_item_id": line_item_id,
        "product_id": product_id,
        "qty_ordered": quantity,
        "our_cost_per_unit": 0.0,
        "customer_paid_per_unit": unit_price,
        "name": item.get("name"),
        "sku": item.get("sku") or None,
        "raw_json": item,
    }


def normalize_order(payload: dict) -> NormalizedOrder:
    """Normalize a WooCommerce order payload."""
    order_number = format_order_number(payload.get("number") or payload.get("id"))

    shipping_total = parse_money(payload.get("shipping_total"))
    shipping_tax = parse_money(payload.get("shipping_tax"))
    shipping_charged = shipping_total + shipping_tax
    shipping_cost = 0.0
    free_shipping = shipping_charged == 0

    coupon_lines = payload.get("coupon_lines") or []
    coupon_code = coupon_lines[0].get("code") if coupon_lines else None
    coupon_discount = parse_money(payload.get("discount_total"))

    raw_items = payload.get("line_items") or []
    if payload.get("subtotal") is not None:
        subtotal = parse_money(payload.get("subtotal"))
    else:
        subtotal = sum(parse_money(item.get("subtotal")) for item in raw_items)

    payment_method = payload.get("payment_method_title") or payload.get("payment_method")

    order = {
        "woo_order_id": parse_int(payload.get("id")) or None,
        "order_number": order_number,
        "order_date": _iso_or_now(payload.get("date_created_gmt") or payload.get("date_created")),
        "customer_name": _customer_name(payload),
        "customer_email": (payload.get("billing") or {}).get("email") or None,
        "order_status": normalize_order_status(payload.get("status") or DEFAULT_ORDER_STATUS),
        "payment_method": str(payment_method) if payment_method else None,
        "shipping_charged": shipping_charged,
        "shipping_cost": shipping_cost,
        "free_shipping": free_shipping,
        "coupon_code": coupon_code or None,
        "coupon_discount": coupon_discount,
        "notes": payload.get("customer_note") or None,
        "order_subtotal": subtotal,
        "order_total": parse_money(payload.get("total")),
        "order_product_cost": 0.0,
        "shipping_net_cost_absorbed": shipping_absorbed(free_shipping, shipping_cost, shipping_charged),
        "order_cost": 0.0,
        "order_profit": 0.0,
    }

    lines = []
    dropped = 0
    for item in raw_items:
        line = normalize_line_item(order_number, item)
        if line is None:
            dropped += 1
            continue
        lines.append(line)

    if raw_items and not lines:
        logger.warning(
            f"Order {order_number} normalized to 0 lines from {len(raw_items)} items",
            extra={"order_number": order_number},
        )

    return NormalizedOrder(order=order, lines=lines, dropped_lines=dropped)


def _variant_strength(attributes: List[dict]) -> Optional[str]:
    for attribute in attributes:
        name = str(attribute.get("name") or "").lower()
        if "strength" in name or "mg" in name:
            options = attribute.get("options") or []
            if options:
                return ", ".join(str(option) for option in options)
            if attribute.get("option"):
                return str(attribute["option"])
    return None


def _stock_status(value: Optional[str]) -> str:
    if value == "instock":
        return STOCK_IN
    if value == "onbackorder":
        return STOCK_LOW
    return STOCK_OUT


def normalize_product(payload: dict) -> Dict[str, Any]:
    """Normalize a WooCommerce product. Internal cost is never set here."""
    woo_id = parse_int(payload.get("id"))

    sale_price = parse_money(payload.get("sale_price"))
    regular_price = parse_money(payload.get("regular_price"))
    retail_price = sale_price or regular_price or parse_money(payload.get("price")) or None

    manage_stock = bool(payload.get("manage_stock"))
    stock_quantity = payload.get("stock_quantity")
    stock = parse_int(stock_quantity) if manage_stock and stock_quantity is not None else None

    images = [
        {
            "id": parse_int(image.get("id")) or None,
            "src": str(image.get("src") or ""),
            "alt": str(image.get("alt") or ""),
            "name": str(image.get("name") or ""),
        }
        for image in (payload.get("images") or [])
    ]

    weight = parse_money(payload.get("weight")) or None

    return {
        "woo_product_id": woo_id,
        "product_id": woo_id,
        "product_name": str(payload.get("name") or "Unnamed Product"),
        "variant_strength": _variant_strength(payload.get("attributes") or []),
        "sku_code": payload.get("sku") or None,
        "retail_price": retail_price,
        "our_cost": None,
        "starting_qty": stock,
        "current_stock": stock,
        "stock_status": _stock_status(payload.get("stock_status")),
        "images": images or None,
        "weight": weight,
    }


def normalize_coupon(payload: dict) -> Dict[str, Any]:
    """Normalize a WooCommerce coupon."""
    return {
        "woo_coupon_id": parse_int(payload.get("id")),
        "coupon_code": str(payload.get("code") or ""),
        "discount_type": str(payload.get("discount_type") or "fixed_cart"),
        "discount_amount": parse_money(payload.get("amount")),
        "usage_count": parse_int(payload.get("usage_count")),
        "date_created": _iso_or_now(payload.get("date_created")),
        "date_modified": _iso_or_now(payload.get("date_modified")),
    }
