"""API routes for the ledger service."""

import asyncio
from dataclasses import asdict
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from woo_ledger.core.exceptions import IngestValidationError, OrderNotFoundError
from woo_ledger.core.logger import setup_logger
from woo_ledger.db.repository import ExpenseRepository, OrderRepository
from woo_ledger.models import ExpenseCreate, ShippingSyncRequest, StatusUpdate, SyncRequest, WooOrderPayload
from woo_ledger.services import metrics, queries
from woo_ledger.services.ingest_service import OrderIngestService
from woo_ledger.services.order_resolver import resolve_order_number
from woo_ledger.services.outbox_service import ShippingOutboxProcessor
from woo_ledger.services.shipping_service import ShippingCostService
from woo_ledger.services.sync_scheduler import SyncScheduler
from woo_ledger.services.sync_service import SyncOptions, WooCommerceSyncService
from woo_ledger.utils.parsers import utcnow

logger = setup_logger(__name__)
router = APIRouter()

# Global instances (initialized in app.py on startup)
sync_service: Optional[WooCommerceSyncService] = None
sync_scheduler: Optional[SyncScheduler] = None
shipping_service: Optional[ShippingCostService] = None
outbox_processor: Optional[ShippingOutboxProcessor] = None
ingest_service: Optional[OrderIngestService] = None


async def get_db_session_stub() -> AsyncSession:
    """Placeholder dependency; app.py overrides it with the real session factory."""
    raise RuntimeError("Database not initialized")


def set_sync_service(service: WooCommerceSyncService):
    """Set the global sync service instance."""
    global sync_service
    sync_service = service


def set_sync_scheduler(scheduler: SyncScheduler):
    global sync_scheduler
    sync_scheduler = scheduler


def set_shipping_services(service: ShippingCostService, processor: ShippingOutboxProcessor):
    """Set the carrier cost service and its outbox processor."""
    global shipping_service, outbox_processor
    shipping_service = service
    outbox_processor = processor


def set_ingest_service(service: OrderIngestService):
    global ingest_service
    ingest_service = service


def _parse_day(value: Optional[str], end_of_day: bool = False) -> Optional[datetime]:
    if not value:
        return None
    try:
        day = datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid date format: {value}")
    if end_of_day:
        return day.replace(hour=23, minute=59, second=59)
    return day


@router.get("/")
async def root() -> dict:
    """Root endpoint with basic service info."""
    return {
        "service": "WooCommerce Ledger",
        "version": "1.0.0",
        "endpoints": {
            "health": "GET /health",
            "metrics": "GET /api/metrics",
            "orders": "GET /api/orders",
            "products": "GET /api/products",
            "expenses": "GET /api/expenses",
            "sync": "POST /api/sync/woocommerce",
            "ingest": "POST /api/ingest/order",
            "docs": "GET /docs",
        },
    }


@router.get("/health")
async def health_check(session: AsyncSession = Depends(get_db_session_stub)) -> dict:
    """Health check endpoint for monitoring."""
    try:
        await session.execute(select(1))
        database = "ok"
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        database = "error"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "service": "woo-ledger",
        "database": database,
        "woocommerce_sync": "enabled" if sync_service else "disabled",
        "shipping_sync": "enabled" if shipping_service else "disabled",
        "scheduler": "running" if sync_scheduler and sync_scheduler.is_running else "stopped",
    }


@router.get("/api/healthcheck")
async def table_healthcheck(session: AsyncSession = Depends(get_db_session_stub)) -> dict:
    """Row counts for every ledger table."""
    try:
        counts = await queries.table_counts(session)
    except Exception as e:
        logger.error(f"Healthcheck failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}
    return {"success": True, "timestamp": utcnow().isoformat(), "counts": counts}


# ==============================================================================
# METRICS
# ==============================================================================

@router.get("/api/metrics")
async def get_metrics(
    period: str = Query("all", description="all, month or week"),
    session: AsyncSession = Depends(get_db_session_stub),
) -> dict:
    """Dashboard KPIs with period-over-period change."""
    try:
        kpis = await metrics.get_kpis(session, period)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "period": period, "kpis": kpis.to_dict()}


@router.get("/api/metrics/revenue")
async def get_revenue_series(
    days: int = Query(30, ge=1, le=365),
    session: AsyncSession = Depends(get_db_session_stub),
) -> dict:
    """Daily revenue, expenses and net profit."""
    return {
        "success": True,
        "days": days,
        "series": await metrics.get_net_profit_over_time(session, days),
    }


@router.get("/api/metrics/top-products")
async def get_top_products(
    limit: int = Query(10, ge=1, le=100),
    days: Optional[int] = Query(None, ge=1, le=365),
    session: AsyncSession = Depends(get_db_session_stub),
) -> dict:
    return {
        "success": True,
        "products": await metrics.get_top_products(session, limit=limit, days=days),
    }


# ==============================================================================
# ORDERS
# ==============================================================================

def _order_filters(
    status: Optional[str],
    date_from: Optional[str],
    date_to: Optional[str],
    customer_email: Optional[str],
    search: Optional[str],
) -> queries.OrderFilters:
    return queries.OrderFilters(
        status=status,
        date_from=_parse_day(date_from),
        date_to=_parse_day(date_to, end_of_day=True),
        customer_email=customer_email,
        search=search,
    )


@router.get("/api/orders")
async def list_orders(
    status: Optional[str] = None,
    date_from: Optional[str] = Query(None, description="YYYY-MM-DD"),
    date_to: Optional[str] = Query(None, description="YYYY-MM-DD"),
    customer_email: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    sort_by: str = "order_date",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    session: AsyncSession = Depends(get_db_session_stub),
) -> dict:
    filters = _order_filters(status, date_from, date_to, customer_email, search)
    result = await queries.get_orders(session, filters, page, page_size, sort_by, sort_order)
    return {"success": True, **result}


@router.get("/api/orders/export")
async def export_orders(
    status: Optional[str] = None,
    date_from: Optional[str] = Query(None, description="YYYY-MM-DD"),
    date_to: Optional[str] = Query(None, description="YYYY-MM-DD"),
    customer_email: Optional[str] = None,
    search: Optional[str] = None,
    session: AsyncSession = Depends(get_db_session_stub),
) -> Response:
    """Orders as a CSV download."""
    filters = _order_filters(status, date_from, date_to, customer_email, search)
    content = await queries.export_orders_csv(session, filters)
    filename = f"orders-{utcnow().strftime('%Y-%m-%d')}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/api/orders/{order_number}")
async def get_order(order_number: str, session: AsyncSession = Depends(get_db_session_stub)) -> dict:
    """Order detail; accepts encoded or bare order numbers."""
    try:
        order = await queries.get_order_detail(session, order_number)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "order": order}


@router.patch("/api/orders/{order_number}")
async def patch_order_status(
    order_number: str,
    update: StatusUpdate,
    session: AsyncSession = Depends(get_db_session_stub),
) -> dict:
    try:
        result = await queries.update_order_status(session, order_number, update.status)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, **result}


# ==============================================================================
# PRODUCTS
# ==============================================================================

@router.get("/api/products")
async def list_products(
    stock_status: Optional[str] = Query(None, description="low, out, or a stored status label"),
    search: Optional[str] = None,
    session: AsyncSession = Depends(get_db_session_stub),
) -> dict:
    return {
        "success": True,
        "products": await queries.get_products(session, stock_status, search),
        "stock_summary": await queries.get_stock_summary(session),
    }


# ==============================================================================
# EXPENSES
# ==============================================================================

@router.get("/api/expenses")
async def list_expenses(
    category: Optional[str] = None,
    date_from: Optional[str] = Query(None, description="YYYY-MM-DD"),
    date_to: Optional[str] = Query(None, description="YYYY-MM-DD"),
    search: Optional[str] = None,
    session: AsyncSession = Depends(get_db_session_stub),
) -> dict:
    start = _parse_day(date_from)
    end = _parse_day(date_to, end_of_day=True)
    return {
        "success": True,
        "expenses": await queries.get_expenses(session, category, start, end, search),
        "summary": await queries.get_expense_summary(session, start, end),
        "categories": await queries.get_expense_categories(session),
    }


@router.post("/api/expenses", status_code=201)
async def create_expense(
    expense: ExpenseCreate,
    session: AsyncSession = Depends(get_db_session_stub),
) -> dict:
    values = expense.model_dump()
    values["expense_date"] = datetime(expense.expense_date.year, expense.expense_date.month, expense.expense_date.day)
    values["source"] = "manual"

    created = await ExpenseRepository(session).create(values)
    await session.commit()
    logger.info(f"Created expense {created.expense_id}: {created.category} {created.amount:.2f}")
    return {"success": True, "expense_id": created.expense_id}


@router.delete("/api/expenses/{expense_id}")
async def delete_expense(expense_id: int, session: AsyncSession = Depends(get_db_session_stub)) -> dict:
    deleted = await ExpenseRepository(session).delete(expense_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Expense not found: {expense_id}")
    await session.commit()
    return {"success": True, "deleted": expense_id}


# ==============================================================================
# SEARCH
# ==============================================================================

@router.get("/api/search")
async def search(
    q: str = Query(..., min_length=1),
    limit: int = Query(10, ge=1, le=50),
    session: AsyncSession = Depends(get_db_session_stub),
) -> dict:
    return {"success": True, "query": q, "results": await queries.search_all(session, q, limit)}


# ==============================================================================
# SYNC ENDPOINTS
# ==============================================================================

@router.post("/api/sync/woocommerce")
async def trigger_sync(request: SyncRequest) -> dict:
    """
    Trigger a WooCommerce sync.

    With background=true the run is started and the call returns at once;
    progress shows up in GET /api/sync/woocommerce.
    """
    if not sync_service:
        return {"success": False, "error": "WooCommerce sync not configured"}

    if sync_service.sync_in_progress:
        return {"success": False, "error": "Sync already in progress"}

    options = SyncOptions(mode=request.mode, resources=request.resources)

    if request.background:
        from woo_ledger.server.app import track_task

        track_task(asyncio.create_task(sync_service.sync(options)))
        return {"success": True, "started": True, "mode": request.mode}

    try:
        result = await sync_service.sync(options)
        return {"success": result.success, "result": result.to_dict()}
    except Exception as e:
        logger.error(f"Error in manual sync: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@router.get("/api/sync/woocommerce")
async def get_sync_status(
    limit: int = Query(10, ge=1, le=50, description="Number of history entries"),
) -> dict:
    """Sync state per resource, recent runs and next scheduled runs."""
    if not sync_service:
        return {"success": False, "error": "WooCommerce sync not configured"}

    try:
        status = await sync_service.get_sync_status()
        status["history"] = status["history"][:limit]
        status["next_runs"] = sync_scheduler.get_next_run_times() if sync_scheduler else {}
        if outbox_processor:
            status["shipping_outbox"] = await outbox_processor.get_status()
        return {"success": True, "status": status}
    except Exception as e:
        logger.error(f"Error getting sync status: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@router.post("/api/admin/sync-shipping")
async def sync_shipping(
    request: ShippingSyncRequest,
    session: AsyncSession = Depends(get_db_session_stub),
):
    """Sync the carrier cost of one order, or drain the outbox when no order is given."""
    if not shipping_service or not outbox_processor:
        return JSONResponse(status_code=503, content={"success": False, "error": "Shipping sync not configured"})

    if not request.order_number and not request.woo_order_id:
        result = await outbox_processor.process_pending()
        return {"success": True, "outbox": asdict(result)}

    orders = OrderRepository(session)
    order = None
    if request.order_number:
        try:
            order = await orders.get(await resolve_order_number(session, request.order_number))
        except OrderNotFoundError:
            order = None
    elif request.woo_order_id:
        order = await orders.get_by_woo_id(request.woo_order_id)

    if order is None or not order.woo_order_id:
        return JSONResponse(status_code=404, content={"success": False, "error": "Order not found in database"})

    result = await shipping_service.sync_shipping_cost_for_order(
        woo_order_id=order.woo_order_id,
        order_number=order.order_number,
        force=request.force,
    )
    if not result.success:
        return JSONResponse(status_code=500, content={"success": False, "error": result.error})
    return {"success": True, "result": asdict(result)}


# ==============================================================================
# INGESTION
# ==============================================================================

@router.post("/api/ingest/order")
async def ingest_order(request: Request):
    """Ingest a WooCommerce order webhook (full order or single line item)."""
    if not ingest_service:
        return JSONResponse(status_code=503, content={"success": False, "error": "Ingestion not initialized"})

    try:
        body = await request.json()
        WooOrderPayload.model_validate(body)
    except (ValueError, ValidationError) as e:
        return JSONResponse(status_code=400, content={"success": False, "error": f"Invalid payload: {e}"})

    try:
        result = await ingest_service.ingest(body)
    except IngestValidationError as e:
        return JSONResponse(status_code=400, content={"success": False, "error": str(e)})
    except Exception as e:
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    return {
        "success": True,
        "order_number": result.order_number,
        "message": "Order ingested successfully",
        "data": asdict(result),
    }
