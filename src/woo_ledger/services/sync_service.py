"""
WooCommerce Sync Service.

Pulls products, coupons and orders from WooCommerce into the ledger.
Provides full and incremental runs, a run lock, and recent-run history
for the dashboard.
"""

import asyncio
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from woo_ledger.config.constants import SYNC_HISTORY_SIZE, SYNC_MODES, SYNC_RESOURCES
from woo_ledger.config.settings import SyncConfig
from woo_ledger.core.logger import setup_logger
from woo_ledger.core.monitoring import capture_exception, set_sync_context
from woo_ledger.db.repository import (
    CouponRepository,
    OrderRepository,
    OutboxRepository,
    ProductRepository,
    SyncStateRepository,
)
from woo_ledger.services.calculator import (
    coupon_discount,
    is_percent_discount,
    line_financials,
    order_financials,
)
from woo_ledger.services.normalizer import (
    build_line_key,
    merge_lines,
    normalize_coupon,
    normalize_order,
    normalize_product,
)
from woo_ledger.utils.parsers import parse_int, utcnow

logger = setup_logger(__name__)

# Carrier fields owned by the shipping sync; an order re-sync must not reset them
CARRIER_FIELDS = (
    "shipping_cost",
    "shippo_shipment_id",
    "shippo_rate_id",
    "shipping_cost_currency",
    "shipping_cost_source",
    "shipping_cost_last_synced_at",
    "parcel_snapshot",
)


@dataclass
class SyncOptions:
    """What to sync and how."""
    mode: str = "incremental"  # "full" or "incremental"
    resources: Sequence[str] = SYNC_RESOURCES
    after: Optional[datetime] = None
    before: Optional[datetime] = None


@dataclass
class ResourceSyncResult:
    """Counts for one resource within a run."""
    resource: str
    fetched: int = 0
    synced: int = 0
    skipped: int = 0
    errors: int = 0
    dropped_lines: int = 0
    error_messages: List[str] = field(default_factory=list)


@dataclass
class SyncResult:
    """Result of a sync operation."""
    success: bool
    mode: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    orders: Optional[ResourceSyncResult] = None
    products: Optional[ResourceSyncResult] = None
    coupons: Optional[ResourceSyncResult] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class WooCommerceSyncService:
    """
    Synchronizes WooCommerce resources into the ledger.

    Each resource runs independently: a failing resource is reported in the
    result without stopping the others. Within a resource, a failing item is
    counted and logged without stopping the batch. Each order (with its lines
    and any placeholder products) is written in a single transaction.
    """

    def __init__(
        self,
        client,
        session_factory,
        config: Optional[SyncConfig] = None,
        enqueue_shipping: bool = False,
    ):
        self.client = client
        self.session_factory = session_factory
        self.config = config or SyncConfig()
        self.enqueue_shipping = enqueue_shipping
        self._lock = asyncio.Lock()
        self._history = deque(maxlen=SYNC_HISTORY_SIZE)

    @property
    def sync_in_progress(self) -> bool:
        return self._lock.locked()

    async def sync(self, options: Optional[SyncOptions] = None) -> SyncResult:
        """
        Run a sync.

        Steps:
        1. Acquire run lock (prevent concurrent syncs)
        2. Sync each requested resource: products, coupons, then orders
        3. Record result in history
        """
        options = options or SyncOptions()
        started_at = utcnow()

        if options.mode not in SYNC_MODES:
            return SyncResult(
                success=False,
                mode=options.mode,
                started_at=started_at,
                completed_at=utcnow(),
                error=f"Invalid sync mode: {options.mode}",
            )

        if self._lock.locked():
            logger.warning("Sync already in progress, skipping")
            return SyncResult(
                success=False,
                mode=options.mode,
                started_at=started_at,
                completed_at=utcnow(),
                error="Sync already in progress",
            )

        async with self._lock:
            logger.info(f"Starting {options.mode} sync of {', '.join(options.resources)}")
            result = SyncResult(success=True, mode=options.mode, started_at=started_at)
            failures = []

            # Products and coupons first so orders can resolve them
            for resource in SYNC_RESOURCES:
                if resource not in options.resources:
                    continue
                try:
                    resource_result = await self._sync_resource(resource, options)
                except Exception as e:
                    logger.error(f"Sync of {resource} failed: {e}", exc_info=True)
                    capture_exception(e, {"resource": resource, "mode": options.mode})
                    resource_result = ResourceSyncResult(resource=resource, errors=1, error_messages=[str(e)])
                    failures.append(f"{resource}: {e}")
                setattr(result, resource, resource_result)

            result.completed_at = utcnow()
            if failures:
                result.success = False
                result.error = "; ".join(failures)

            self._history.appendleft(result.to_dict())
            logger.info(
                f"Sync completed: "
                + ", ".join(
                    f"{r.resource} {r.synced} synced/{r.errors} errors"
                    for r in (result.products, result.coupons, result.orders)
                    if r is not None
                )
            )
            return result

    async def full_sync(self) -> SyncResult:
        return await self.sync(SyncOptions(mode="full"))

    async def incremental_sync(self) -> SyncResult:
        return await self.sync(SyncOptions(mode="incremental"))

    async def _sync_resource(self, resource: str, options: SyncOptions) -> ResourceSyncResult:
        set_sync_context(resource, mode=options.mode)
        run_started = utcnow()
        result = ResourceSyncResult(resource=resource)

        after = options.after
        if options.mode == "incremental" and after is None:
            async with self.session_factory() as session:
                state = await SyncStateRepository(session).get(resource)
                if state and state.last_successful_sync:
                    after = state.last_successful_sync

        logger.info(
            f"Fetching {resource}" + (f" modified after {after.isoformat()}" if after else ""),
            extra={"resource": resource, "sync_mode": options.mode},
        )
        items = await self.client.fetch_all_pages(resource, after=after, before=options.before)
        result.fetched = len(items)

        if options.mode == "full":
            existing = await self._existing_ids(resource)
            pending = [item for item in items if parse_int(item.get("id")) not in existing]
            result.skipped = len(items) - len(pending)
            items = pending

        handler = {
            "products": self._sync_product,
            "coupons": self._sync_coupon,
            "orders": self._sync_order,
        }[resource]

        for index, item in enumerate(items):
            if index % 10 == 0:
                logger.info(f"Processing {resource} {index + 1}/{len(items)}")
            try:
                result.dropped_lines += await handler(item) or 0
                result.synced += 1
            except Exception as e:
                result.errors += 1
                message = f"Error syncing {resource[:-1]} {item.get('id')}: {e}"
                result.error_messages.append(message)
                logger.error(message, exc_info=True)

            await asyncio.sleep(self.config.item_delay_seconds)

        error_summary = None
        if result.errors:
            error_summary = f"{result.errors} errors: " + "; ".join(result.error_messages[:5])

        async with self.session_factory() as session:
            await SyncStateRepository(session).update(
                resource,
                synced_at=run_started,
                count=result.synced,
                error=error_summary,
            )
            await session.commit()

        logger.info(
            f"Synced {result.synced}/{result.fetched} {resource} "
            f"({result.skipped} skipped, {result.errors} errors, {result.dropped_lines} lines dropped)"
        )
        return result

    async def _existing_ids(self, resource: str) -> set:
        async with self.session_factory() as session:
            if resource == "orders":
                return await OrderRepository(session).existing_woo_ids()
            if resource == "products":
                return await ProductRepository(session).existing_woo_ids()
            return await CouponRepository(session).existing_woo_ids()

    async def _sync_product(self, payload: dict) -> int:
        values = normalize_product(payload)
        if values["woo_product_id"] <= 0:
            raise ValueError("Product payload has no id")

        async with self.session_factory() as session:
            await ProductRepository(session).upsert_from_source(values)
            await session.commit()
        return 0

    async def _sync_coupon(self, payload: dict) -> int:
        normalized = normalize_coupon(payload)
        if not normalized["coupon_code"]:
            raise ValueError("Coupon payload has no code")

        values = {
            "coupon_code": normalized["coupon_code"],
            "woo_coupon_id": normalized["woo_coupon_id"] or None,
            "discount_type": "Percent" if is_percent_discount(normalized["discount_type"]) else "Fixed",
            "discount_value": normalized["discount_amount"],
            "usage_count": normalized["usage_count"],
            "active": True,
        }
        async with self.session_factory() as session:
            await CouponRepository(session).upsert(values)
            await session.commit()
        return 0

    async def _sync_order(self, payload: dict) -> int:
        """Upsert one order with its lines. Returns the number of dropped lines."""
        normalized = normalize_order(payload)
        order = normalized.order
        order_number = order["order_number"]
        set_sync_context("orders", order_number=order_number)

        async with self.session_factory() as session:
            orders = OrderRepository(session)
            products = ProductRepository(session)

            stored = None
            if order["woo_order_id"]:
                stored = await orders.get_by_woo_id(order["woo_order_id"])
                if stored and stored.order_number != order_number:
                    logger.info(f"Order number changed {stored.order_number} -> {order_number}, replacing")
                    await orders.delete(stored.order_number)
                    stored = None
            if stored is None:
                stored = await orders.get(order_number)

            if stored is not None and stored.shipping_cost_source:
                for name in CARRIER_FIELDS:
                    order[name] = getattr(stored, name)

            lines = await self._resolve_lines(products, normalized.lines)

            discount = order["coupon_discount"]
            if order["coupon_code"]:
                coupon = await CouponRepository(session).get_by_code(order["coupon_code"])
                if coupon is not None:
                    discount = coupon_discount(
                        order["order_subtotal"], coupon.discount_type, coupon.discount_value
                    )

            financials = order_financials(
                subtotal=order["order_subtotal"],
                shipping_charged=order["shipping_charged"],
                shipping_cost=order["shipping_cost"],
                free_shipping=order["free_shipping"],
                discount=discount,
                product_cost=sum(line["line_cost"] for line in lines),
            )
            order.update(asdict(financials))

            await orders.upsert(order)
            await orders.upsert_lines(order_number, lines)

            if self.enqueue_shipping and order["woo_order_id"] and not order.get("shipping_cost_source"):
                await OutboxRepository(session).enqueue(order_number, order["woo_order_id"])

            await session.commit()

        return normalized.dropped_lines

    async def _resolve_lines(self, products: ProductRepository, lines: List[dict]) -> List[dict]:
        """
        Attach internal product ids and costs to normalized lines.

        Lookup order: woo_product_id, then internal product_id, then a
        placeholder product is created so the sale is not lost.
        """
        source_ids = [line["product_id"] for line in lines]
        by_woo = await products.map_by_woo_ids(source_ids)
        by_internal = await products.map_by_product_ids(
            [pid for pid in source_ids if pid not in by_woo]
        )

        resolved = []
        for line in lines:
            source_id = line["product_id"]
            product = by_woo.get(source_id) or by_internal.get(source_id)
            if product is None:
                logger.warning(f"Unknown product {source_id} on {line['order_number']}, creating placeholder")
                product = await products.create_placeholder(source_id, line["customer_paid_per_unit"])
                by_woo[source_id] = product

            unit_cost = product.our_cost or 0.0
            money = line_financials(line["qty_ordered"], unit_cost, line["customer_paid_per_unit"])
            resolved.append({
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
        return merge_lines(resolved)

    async def get_sync_status(self) -> Dict:
        """Returns current sync state for dashboard."""
        async with self.session_factory() as session:
            states = await SyncStateRepository(session).all()

        return {
            "sync_in_progress": self.sync_in_progress,
            "resources": {
                state.resource: {
                    "last_successful_sync": state.last_successful_sync,
                    "last_sync_count": state.last_sync_count,
                    "last_error": state.last_error,
                    "updated_at": state.updated_at,
                }
                for state in states
            },
            "history": list(self._history),
        }
