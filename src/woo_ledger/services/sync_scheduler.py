"""
Sync Scheduler using APScheduler.

Manages scheduled jobs:
- Incremental sync: every SYNC_INTERVAL_MINUTES
- Daily full sync: at DAILY_SYNC_HOUR (3 AM by default)
- Shipping outbox drain: every OUTBOX_POLL_INTERVAL_SECONDS
"""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from woo_ledger.config.constants import (
    DAILY_SYNC_HOUR,
    OUTBOX_POLL_INTERVAL_SECONDS,
    SYNC_INTERVAL_MINUTES,
)
from woo_ledger.core.logger import setup_logger
from woo_ledger.services.outbox_service import ShippingOutboxProcessor
from woo_ledger.services.sync_service import WooCommerceSyncService

logger = setup_logger(__name__)


class SyncScheduler:
    """Manages scheduled sync jobs using APScheduler."""

    def __init__(
        self,
        sync_service: WooCommerceSyncService,
        outbox_processor: Optional[ShippingOutboxProcessor] = None,
    ):
        self.sync_service = sync_service
        self.outbox_processor = outbox_processor
        self.scheduler = AsyncIOScheduler()
        self._started = False

    async def start(self):
        if self._started:
            logger.warning("Scheduler already started")
            return

        self.scheduler.add_job(
            self._run_incremental_sync,
            IntervalTrigger(minutes=SYNC_INTERVAL_MINUTES),
            id="incremental_sync",
            name="Incremental WooCommerce Sync",
            replace_existing=True,
            max_instances=1,
        )
        logger.info(f"Added incremental sync job (every {SYNC_INTERVAL_MINUTES} minutes)")

        self.scheduler.add_job(
            self._run_daily_sync,
            CronTrigger(hour=DAILY_SYNC_HOUR, minute=0),
            id="daily_full_sync",
            name="Daily Full WooCommerce Sync",
            replace_existing=True,
        )
        logger.info(f"Added daily full sync job (at {DAILY_SYNC_HOUR:02d}:00)")

        if self.outbox_processor is not None:
            self.scheduler.add_job(
                self._drain_outbox,
                IntervalTrigger(seconds=OUTBOX_POLL_INTERVAL_SECONDS),
                id="shipping_outbox",
                name="Shipping Cost Outbox",
                replace_existing=True,
                max_instances=1,
            )
            logger.info(f"Added shipping outbox job (every {OUTBOX_POLL_INTERVAL_SECONDS}s)")

        self.scheduler.start()
        self._started = True
        logger.info("Sync scheduler started")

    async def stop(self):
        """Gracefully stop scheduler."""
        if not self._started:
            return

        self.scheduler.shutdown(wait=True)
        self._started = False
        logger.info("Sync scheduler stopped")

    async def _run_incremental_sync(self):
        try:
            logger.info("Scheduled incremental sync triggered")
            result = await self.sync_service.incremental_sync()
            if result.success:
                logger.info("Scheduled incremental sync completed")
            else:
                logger.warning(f"Scheduled incremental sync had issues: {result.error}")
        except Exception as e:
            logger.error(f"Scheduled incremental sync failed: {e}", exc_info=True)

    async def _run_daily_sync(self):
        try:
            logger.info("Daily full sync triggered")
            result = await self.sync_service.full_sync()
            if result.success:
                logger.info("Daily full sync completed")
            else:
                logger.warning(f"Daily full sync had issues: {result.error}")
        except Exception as e:
            logger.error(f"Daily full sync failed: {e}", exc_info=True)

    async def _drain_outbox(self):
        try:
            result = await self.outbox_processor.process_pending()
            if result.failed:
                logger.warning(f"Shipping outbox: {result.failed} entries failed permanently")
        except Exception as e:
            logger.error(f"Shipping outbox drain failed: {e}", exc_info=True)

    def get_next_run_times(self) -> dict:
        """Next scheduled run per job, for the status endpoint."""
        result = {}
        for job in self.scheduler.get_jobs():
            next_run = job.next_run_time
            result[job.id] = next_run.strftime("%Y-%m-%d %H:%M:%S") if next_run else None
        return result

    @property
    def is_running(self) -> bool:
        return self._started and self.scheduler.running
