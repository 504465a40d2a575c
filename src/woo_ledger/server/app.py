"""FastAPI application setup and configuration."""

import asyncio

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession

from woo_ledger.config.settings import settings
from woo_ledger.core.exceptions import ConfigurationError
from woo_ledger.core.logger import setup_logger
from woo_ledger.core.monitoring import init_monitoring
from woo_ledger.db import create_tables, get_engine, get_session_factory

logger = setup_logger(__name__)

# Global variables for resource management
_engine = None
_session_factory = None
_clients = []
_scheduler = None
_pending_tasks = set()


async def get_db_session() -> AsyncSession:
    """Dependency for getting database session."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized")

    async with _session_factory() as session:
        yield session


def track_task(task: asyncio.Task) -> None:
    """
    Track a background task for graceful shutdown.

    Args:
        task: The asyncio Task to track
    """
    _pending_tasks.add(task)
    task.add_done_callback(_pending_tasks.discard)


async def _start_services(routes) -> None:
    """Build clients and services from settings and hand them to the routes."""
    global _scheduler

    from woo_ledger.api.shippo_client import ShippoClient
    from woo_ledger.api.woocommerce_client import WooCommerceClient
    from woo_ledger.services.ingest_service import OrderIngestService
    from woo_ledger.services.outbox_service import ShippingOutboxProcessor
    from woo_ledger.services.shipping_service import ShippingCostService
    from woo_ledger.services.sync_scheduler import SyncScheduler
    from woo_ledger.services.sync_service import WooCommerceSyncService

    routes.set_ingest_service(OrderIngestService(_session_factory))
    logger.info("✓ Order ingestion initialized")

    woo_config = settings.woocommerce_config()
    if woo_config is None:
        logger.warning("WooCommerce credentials not set, sync endpoints disabled")
        return

    woo_client = WooCommerceClient(woo_config)
    _clients.append(woo_client)
    logger.info(f"✓ WooCommerce client initialized ({woo_config.store_url})")

    outbox = None
    shippo_config = settings.shippo_config()
    if shippo_config is None:
        logger.info("Shippo not configured, shipping cost sync disabled")
    else:
        try:
            shippo_client = ShippoClient(shippo_config)
        except ConfigurationError as e:
            logger.error(f"Shippo client not started: {e}")
        else:
            _clients.append(shippo_client)
            shipping = ShippingCostService(_session_factory, shippo_client, woo_client)
            outbox = ShippingOutboxProcessor(_session_factory, shipping)
            routes.set_shipping_services(shipping, outbox)
            logger.info("✓ Shipping cost sync initialized")

    sync_service = WooCommerceSyncService(
        woo_client,
        _session_factory,
        settings.sync_config(),
        enqueue_shipping=outbox is not None,
    )
    routes.set_sync_service(sync_service)
    logger.info("✓ WooCommerce sync service initialized")

    if settings.scheduler_enabled:
        _scheduler = SyncScheduler(sync_service, outbox)
        await _scheduler.start()
        routes.set_sync_scheduler(_scheduler)
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title="WooCommerce Ledger",
        version="1.0.0",
        description="Order ledger and profit analytics for a WooCommerce store",
    )

    init_monitoring(settings.glitchtip_dsn, settings.environment)

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Import router AFTER defining get_db_session
    from woo_ledger.server import routes

    app.include_router(routes.router)

    # Override the stub dependency with the actual get_db_session
    app.dependency_overrides[routes.get_db_session_stub] = get_db_session

    @app.on_event("startup")
    async def startup():
        """
        Initialize database and services on startup.

        Steps:
        1. Create engine and tables
        2. Initialize ingestion, WooCommerce sync and (optional) shipping sync
        3. Start scheduler when enabled
        """
        global _engine, _session_factory

        try:
            logger.info("=" * 60)
            logger.info("Starting WooCommerce Ledger...")
            logger.info("=" * 60)

            _engine = get_engine(settings.database_url)
            _session_factory = get_session_factory(_engine)
            await create_tables(_engine)
            logger.info("✓ Database initialized")

            await _start_services(routes)

            logger.info("=" * 60)
            logger.info("WooCommerce Ledger started successfully!")
            logger.info("=" * 60)
        except Exception as e:
            logger.error(f"Failed to start service: {e}", exc_info=True)
            raise

    @app.on_event("shutdown")
    async def shutdown_handler():
        """
        Gracefully shut down all resources.

        1. Stop the scheduler
        2. Wait for pending background syncs to complete
        3. Close HTTP clients and database connections
        """
        logger.info("Starting graceful shutdown...")

        try:
            if _scheduler:
                await _scheduler.stop()

            if _pending_tasks:
                logger.info(f"Waiting for {len(_pending_tasks)} pending tasks to complete...")
                await asyncio.gather(*_pending_tasks, return_exceptions=True)

            for client in _clients:
                await client.close()
            _clients.clear()

            if _engine:
                logger.info("Closing database connections...")
                await _engine.dispose()

            logger.info("Graceful shutdown completed successfully")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)

    return app
