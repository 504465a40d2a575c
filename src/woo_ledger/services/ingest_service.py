"""Order ingestion from WooCommerce webhooks."""

import hashlib
import json
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from woo_ledger.core.exceptions import IngestValidationError
from woo_ledger.core.logger import setup_logger
from woo_ledger.db.repository import (
    AuditRepository,
    CouponRepository,
    OrderRepository,
    ProductRepository,
)
from woo_ledger.services.calculator import coupon_discount, line_financials, order_financials
from woo_ledger.services.normalizer import (
    build_line_key,
    format_order_number,
    merge_lines,
    normalize_line_item,
)
from woo_ledger.services.sync_service import CARRIER_FIELDS
from woo_ledger.utils.parsers import (
    normalize_order_status,
    parse_date,
    parse_int,
    parse_money,
    utcnow,
)

logger = setup_logger(__name__)


@dataclass
class IngestResult:
    """Outcome of one ingested payload."""
    order_number: str
    lines_ingested: int
    lines_dropped: int
    order_total: float
    order_profit: float


def payload_hash(body: Dict[str, Any]) -> str:
    """sha256 of the canonical JSON payload."""
    encoded = json.dumps(body, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def expand_single_line_payload(body: Dict[str, Any]) -> Dict[str, Any]:
    """
    Rebuild an order payload from an iterator-style body.

    Automation tools post one request per line item with a single
    `line_item` object and flattened order fields.
    """
    customer_name = (body.get("customer_name") or "").split(" ")
    return {
        "id": body.get("id") or body.get("order_id") or 0,
        "number": body.get("number") or body.get("order_number") or str(body.get("id") or body.get("order_id") or ""),
        "status": body.get("status") or "processing",
        "date_created": body.get("date_created"),
        "billing": body.get("billing") or {
            "first_name": customer_name[0],
            "last_name": " ".join(customer_name[1:]),
            "email": body.get("customer_email") or "",
        },
        "line_items": [body["line_item"]],
        "shipping_lines": body.get("shipping_lines") or [],
        "coupon_lines": body.get("coupon_lines") or [],
        "total": body.get("total") or "0",
        "payment_method": body.get("payment_method") or "",
        "payment_method_title": body.get("payment_method_title") or body.get("payment_method") or "",
        "customer_note": body.get("customer_note") or body.get("notes"),
    }


def _meta_cost(item: Dict[str, Any]) -> Optional[float]:
    """Per-unit cost from line meta_data, when a key mentions cost."""
    for meta in item.get("meta_data") or []:
        key = str(meta.get("key") or "").lower()
        if "cost" in key and meta.get("value") not in (None, ""):
            return parse_money(meta.get("value"))
    return None


def parse_webhook_order(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Order-level columns from a webhook payload (financials computed later)."""
    billing = payload.get("billing") or {}
    customer_name = f"{billing.get('first_name') or ''} {billing.get('last_name') or ''}".strip()

    shipping_lines = payload.get("shipping_lines") or []
    shipping_charged = parse_money(shipping_lines[0].get("total")) if shipping_lines else 0.0

    coupon_lines = payload.get("coupon_lines") or []
    coupon_line = coupon_lines[0] if coupon_lines else {}

    return {
        "woo_order_id": parse_int(payload.get("id")) or None,
        "order_number": format_order_number(payload.get("number") or payload.get("id")),
        "order_date": parse_date(payload.get("date_created")) or utcnow(),
        "customer_name": customer_name or "Unknown Customer",
        "customer_email": billing.get("email") or None,
        "order_status": normalize_order_status(payload.get("status")),
        "payment_method": payload.get("payment_method_title") or payload.get("payment_method") or "Unknown",
        "notes": payload.get("customer_note") or None,
        "shipping_charged": shipping_charged,
        # Until a carrier rate is synced the charge stands in for the cost
        "shipping_cost": shipping_charged,
        "free_shipping": shipping_charged == 0,
        "coupon_code": coupon_line.get("code") or None,
        "coupon_discount": parse_money(coupon_line.get("discount")),
    }


class OrderIngestService:
    """Writes webhook orders into the ledger and keeps an audit trail."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def ingest(self, body: Dict[str, Any], source: str = "webhook") -> IngestResult:
        """
        Ingest one webhook body.

        Raises:
            IngestValidationError: payload lacks an id/number or line items
        """
        digest = payload_hash(body)
        single_line = bool(body.get("line_item")) and not body.get("line_items")
        payload = expand_single_line_payload(body) if single_line else body

        try:
            if not payload.get("id") and not payload.get("number"):
                raise IngestValidationError("Missing required field: order id or number")
            if not payload.get("line_items"):
                raise IngestValidationError("Order must have at least one line item")

            result = await self._write_order(payload, prune=not single_line)
        except Exception as e:
            await self._audit(source, None, digest, "error", error=str(e))
            if isinstance(e, IngestValidationError):
                logger.warning(f"Rejected {source} payload: {e}")
            else:
                logger.error(f"Failed to ingest {source} payload: {e}", exc_info=True)
            raise

        await self._audit(source, result.order_number, digest, "success", lines=result.lines_ingested)
        logger.info(
            f"Ingested {result.order_number} with {result.lines_ingested} lines",
            extra={"order_number": result.order_number},
        )
        return result

    async def _write_order(self, payload: Dict[str, Any], prune: bool) -> IngestResult:
        order = parse_webhook_order(payload)
        order_number = order["order_number"]

        async with self.session_factory() as session:
            orders = OrderRepository(session)
            products = ProductRepository(session)

            stored = await orders.get(order_number)
            if stored is not None and stored.shipping_cost_source:
                for name in CARRIER_FIELDS:
                    order[name] = getattr(stored, name)
            if stored is None:
                # Financials are filled in below once all lines are known
                await orders.upsert({**order, "order_total": 0.0})

            lines, dropped = await self._build_lines(products, order_number, payload["line_items"])
            await orders.upsert_lines(order_number, lines, prune=prune)

            all_lines = await orders.get_lines(order_number)
            subtotal = sum(line.line_total for line in all_lines)

            discount = order["coupon_discount"]
            if order["coupon_code"]:
                coupon = await CouponRepository(session).get_by_code(order["coupon_code"])
                if coupon is not None:
                    discount = coupon_discount(subtotal, coupon.discount_type, coupon.discount_value)

            financials = order_financials(
                subtotal=subtotal,
                shipping_charged=order["shipping_charged"],
                shipping_cost=order["shipping_cost"],
                free_shipping=order["free_shipping"],
                discount=discount,
                product_cost=sum(line.line_cost for line in all_lines),
            )
            saved = await orders.upsert({**order, "order_subtotal": subtotal, **asdict(financials)})
            await session.commit()

            return IngestResult(
                order_number=order_number,
                lines_ingested=len(lines),
                lines_dropped=dropped,
                order_total=saved.order_total,
                order_profit=saved.order_profit,
            )

    async def _build_lines(
        self, products: ProductRepository, order_number: str, items: List[dict]
    ) -> tuple:
        lines = []
        dropped = 0
        for item in items:
            line = normalize_line_item(order_number, item)
            if line is None:
                dropped += 1
                continue

            product = await products.get_by_woo_id(line["product_id"])
            if product is None:
                product = await products.get_by_product_id(line["product_id"])
            if product is None:
                product = await products.create_placeholder(line["product_id"], line["customer_paid_per_unit"])

            unit_cost = _meta_cost(item)
            if unit_cost is None:
                unit_cost = product.our_cost or 0.0

            money = line_financials(line["qty_ordered"], unit_cost, line["customer_paid_per_unit"])
            lines.append({
                **line,
                "product_id": product.product_id,
                "our_cost_per_unit": unit_cost,
                "line_key": build_line_key(
                    line["woo_line_item_id"],
                    product.product_id,
                    unit_cost,
                    line["customer_paid_per_unit"],
                ),
                **asdict(money),
            })
        return merge_lines(lines), dropped

    async def _audit(
        self,
        source: str,
        order_number: Optional[str],
        digest: str,
        status: str,
        error: Optional[str] = None,
        lines: int = 0,
    ) -> None:
        async with self.session_factory() as session:
            await AuditRepository(session).record(
                source=source,
                order_number=order_number,
                payload_hash=digest,
                status=status,
                error=error,
                lines_ingested=lines,
            )
            await session.commit()
