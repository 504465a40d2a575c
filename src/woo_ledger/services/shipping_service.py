"""
Shipping Cost Service.

Quotes the carrier cost of an order through Shippo and records it on the
order (recomputing absorbed shipping and profit) and as a shipping expense.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from woo_ledger.api.shippo_client import ShippoClient, normalize_country, select_rate
from woo_ledger.api.woocommerce_client import WooCommerceClient
from woo_ledger.config.constants import (
    DEFAULT_RATE_CURRENCY,
    SHIPPING_COST_SOURCE,
    SHIPPING_RESYNC_INTERVAL_SECONDS,
)
from woo_ledger.config.settings import ParcelDefaults
from woo_ledger.core.logger import setup_logger
from woo_ledger.core.monitoring import capture_exception, set_sync_context
from woo_ledger.db.repository import ExpenseRepository, OrderRepository
from woo_ledger.services.calculator import order_financials
from woo_ledger.utils.parsers import parse_date, parse_int, parse_money, utcnow

logger = setup_logger(__name__)


@dataclass
class ShippingSyncResult:
    """Outcome of a single order's carrier-cost sync."""
    order_number: str
    success: bool
    skipped: bool = False
    shipping_cost: Optional[float] = None
    currency: Optional[str] = None
    shipment_id: Optional[str] = None
    rate_id: Optional[str] = None
    expense_id: Optional[int] = None
    error: Optional[str] = None


@dataclass
class ParcelPlan:
    parcels: List[dict]
    snapshot: Dict[str, Any] = field(default_factory=dict)


def build_address_to(shipping: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a WooCommerce shipping block to a carrier address."""
    name = f"{shipping.get('first_name') or ''} {shipping.get('last_name') or ''}".strip()
    return {
        "name": name,
        "company": shipping.get("company") or None,
        "street1": shipping.get("address_1"),
        "street2": shipping.get("address_2") or None,
        "city": shipping.get("city"),
        "state": shipping.get("state"),
        "zip": shipping.get("postcode"),
        "country": normalize_country(shipping.get("country")),
        "phone": shipping.get("phone") or None,
        "email": shipping.get("email") or None,
    }


def _product_weight(product: Optional[dict]) -> Tuple[Optional[float], str]:
    """Numeric weight of a WooCommerce product, or None with a reason."""
    if not product or not product.get("weight"):
        return None, "missing weight"
    digits = "".join(ch for ch in str(product["weight"]) if ch.isdigit() or ch == ".")
    weight = parse_money(digits)
    if weight <= 0:
        return None, f"invalid weight {product['weight']!r}"
    return weight, ""


def build_parcels(
    line_items: List[dict],
    products: Dict[int, dict],
    defaults: ParcelDefaults,
) -> ParcelPlan:
    """
    Build a single parcel for an order.

    Dimensions come from the defaults. Weight is the sum of product weight x
    quantity, with the default weight per item where a product has none.
    """
    total_weight = 0.0
    total_items = 0
    fallback_used = False
    items = []

    for line in line_items:
        product_id = parse_int(line.get("product_id"))
        quantity = parse_int(line.get("quantity")) or 1
        weight, reason = _product_weight(products.get(product_id))
        if weight is None:
            fallback_used = True
            weight = defaults.weight
            logger.warning(
                f"Product {product_id} has {reason}, using fallback "
                f"{defaults.weight} {defaults.mass_unit}"
            )

        total_weight += weight * quantity
        total_items += quantity
        items.append({"product_id": product_id, "quantity": quantity, "weight": weight})

    parcel = {
        "length": str(defaults.length),
        "width": str(defaults.width),
        "height": str(defaults.height),
        "distance_unit": defaults.distance_unit,
        "weight": str(total_weight),
        "mass_unit": defaults.mass_unit,
    }
    snapshot = {
        "parcels": [{
            "length": defaults.length,
            "width": defaults.width,
            "height": defaults.height,
            "weight": total_weight,
            "distance_unit": defaults.distance_unit,
            "mass_unit": defaults.mass_unit,
            "items": items,
        }],
        "total_weight": total_weight,
        "total_items": total_items,
        "fallback_used": fallback_used,
    }
    return ParcelPlan(parcels=[parcel], snapshot=snapshot)


class ShippingCostService:
    """Syncs carrier shipping costs onto orders and expenses."""

    def __init__(
        self,
        session_factory,
        shippo_client: ShippoClient,
        woo_client: WooCommerceClient,
        currency: str = DEFAULT_RATE_CURRENCY,
    ):
        self.session_factory = session_factory
        self.shippo_client = shippo_client
        self.woo_client = woo_client
        self.currency = currency

    async def sync_shipping_cost_for_order(
        self,
        woo_order_id: int,
        order_number: str,
        force: bool = False,
    ) -> ShippingSyncResult:
        """
        Quote and record the shipping cost of one order.

        Skips orders costed within the last hour unless forced. Idempotent:
        the order keeps a single shipping expense.
        """
        set_sync_context("shipping", order_number=order_number)

        try:
            async with self.session_factory() as session:
                orders = OrderRepository(session)
                order = await orders.get(order_number)
                if order is None:
                    raise LookupError(f"Order not found: {order_number}")

                if not force and self._recently_synced(order):
                    logger.debug(f"Shipping cost for {order_number} is fresh, skipping")
                    return ShippingSyncResult(
                        order_number=order_number,
                        success=True,
                        skipped=True,
                        shipping_cost=order.shipping_cost,
                        currency=order.shipping_cost_currency,
                    )

            woo_order = await self.woo_client.get_order(woo_order_id)
            shipping = woo_order.get("shipping") or {}
            if not shipping.get("address_1"):
                raise ValueError("Order missing shipping address")

            line_items = woo_order.get("line_items") or []
            products = await self.woo_client.fetch_products_by_ids(
                [parse_int(item.get("product_id")) for item in line_items]
            )
            plan = build_parcels(line_items, products, self.shippo_client.parcel_defaults)

            shipment = await self.shippo_client.create_shipment(
                address_from=self.shippo_client.address_from,
                address_to=build_address_to(shipping),
                parcels=plan.parcels,
            )
            rates = shipment.get("rates") or []
            if not rates:
                raise ValueError("No shipping rates available from Shippo")

            rate = select_rate(rates, self.currency, "cheapest")
            shipping_cost = parse_money(rate.get("amount"))
            currency = rate.get("currency") or self.currency

            async with self.session_factory() as session:
                orders = OrderRepository(session)
                expenses = ExpenseRepository(session)

                order = await orders.get(order_number)
                if order is None:
                    raise LookupError(f"Order not found: {order_number}")

                order.shippo_shipment_id = shipment.get("object_id")
                order.shippo_rate_id = rate.get("object_id")
                order.shipping_cost = shipping_cost
                order.shipping_cost_currency = currency
                order.shipping_cost_source = SHIPPING_COST_SOURCE
                order.shipping_cost_last_synced_at = utcnow()
                order.parcel_snapshot = plan.snapshot

                financials = order_financials(
                    subtotal=order.order_subtotal,
                    shipping_charged=order.shipping_charged,
                    shipping_cost=shipping_cost,
                    free_shipping=order.free_shipping,
                    discount=order.coupon_discount,
                    product_cost=order.order_product_cost,
                )
                order.shipping_net_cost_absorbed = financials.shipping_net_cost_absorbed
                order.order_cost = financials.order_cost
                order.order_profit = financials.order_profit

                expense_date = parse_date(woo_order.get("date_created")) or order.order_date
                expense = await expenses.upsert_shipping_expense(
                    order_number,
                    {
                        "expense_date": expense_date.replace(hour=0, minute=0, second=0, microsecond=0),
                        "description": f"Shipping cost for {order_number}",
                        "vendor": "Shippo",
                        "amount": shipping_cost,
                        "source": "shippo",
                        "external_ref": shipment.get("object_id"),
                        "extra_metadata": {
                            "carrier": rate.get("provider"),
                            "servicelevel": (rate.get("servicelevel") or {}).get("name"),
                            "rate_id": rate.get("object_id"),
                            "shipment_id": shipment.get("object_id"),
                            "estimated_days": rate.get("estimated_days"),
                            "currency": currency,
                        },
                    },
                )
                await session.commit()

            logger.info(
                f"Synced shipping cost for {order_number}: {shipping_cost:.2f} {currency} "
                f"via {rate.get('provider')}",
                extra={"order_number": order_number},
            )
            return ShippingSyncResult(
                order_number=order_number,
                success=True,
                shipping_cost=shipping_cost,
                currency=currency,
                shipment_id=shipment.get("object_id"),
                rate_id=rate.get("object_id"),
                expense_id=expense.expense_id,
            )

        except Exception as e:
            logger.error(
                f"Error syncing shipping cost for {order_number}: {e}",
                exc_info=True,
                extra={"order_number": order_number},
            )
            capture_exception(e, {"order_number": order_number, "woo_order_id": woo_order_id})
            return ShippingSyncResult(order_number=order_number, success=False, error=str(e))

    @staticmethod
    def _recently_synced(order) -> bool:
        if not (order.shipping_cost and order.shipping_cost_source):
            return False
        last_synced = order.shipping_cost_last_synced_at
        if last_synced is None:
            return False
        return last_synced > utcnow() - timedelta(seconds=SHIPPING_RESYNC_INTERVAL_SECONDS)
