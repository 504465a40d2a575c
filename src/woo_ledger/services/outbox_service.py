"""
Shipping Sync Outbox.

Order syncs enqueue carrier-cost work here instead of calling the carrier
inline. The processor drains due entries and retries failures with
exponential backoff until OUTBOX_MAX_ATTEMPTS, then marks them failed.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from woo_ledger.config.constants import (
    OUTBOX_BATCH_SIZE,
    OUTBOX_MAX_ATTEMPTS,
    OUTBOX_RETRY_BASE_SECONDS,
)
from woo_ledger.core.logger import setup_logger
from woo_ledger.core.monitoring import capture_message
from woo_ledger.db.models import ShippingSyncOutbox
from woo_ledger.db.repository import OutboxRepository
from woo_ledger.utils.parsers import utcnow

logger = setup_logger(__name__)


@dataclass
class OutboxRunResult:
    """Summary of one drain pass."""
    processed: int = 0
    succeeded: int = 0
    retried: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


def next_retry_delay(attempts: int, base_seconds: int = OUTBOX_RETRY_BASE_SECONDS) -> timedelta:
    """Backoff after the given number of failed attempts (1 -> base, 2 -> 2x base, ...)."""
    return timedelta(seconds=base_seconds * (2 ** max(0, attempts - 1)))


class ShippingOutboxProcessor:
    """Drains the shipping_sync_outbox table through the shipping cost service."""

    def __init__(
        self,
        session_factory,
        shipping_service,
        max_attempts: int = OUTBOX_MAX_ATTEMPTS,
        batch_size: int = OUTBOX_BATCH_SIZE,
    ):
        self.session_factory = session_factory
        self.shipping_service = shipping_service
        self.max_attempts = max_attempts
        self.batch_size = batch_size

    async def enqueue(self, order_number: str, woo_order_id: int, force: bool = False) -> None:
        async with self.session_factory() as session:
            await OutboxRepository(session).enqueue(order_number, woo_order_id, force=force)
            await session.commit()

    async def process_pending(self, limit: Optional[int] = None) -> OutboxRunResult:
        """Run every due entry once."""
        result = OutboxRunResult()

        async with self.session_factory() as session:
            entries = await OutboxRepository(session).due(limit or self.batch_size)
            jobs = [(entry.id, entry.order_number, entry.woo_order_id, entry.force) for entry in entries]

        if not jobs:
            return result

        logger.info(f"Processing {len(jobs)} shipping outbox entries")

        for entry_id, order_number, woo_order_id, force in jobs:
            result.processed += 1
            sync_result = await self.shipping_service.sync_shipping_cost_for_order(
                woo_order_id=woo_order_id,
                order_number=order_number,
                force=force,
            )

            async with self.session_factory() as session:
                entry = await session.get(ShippingSyncOutbox, entry_id)
                if entry is None:
                    continue

                entry.attempts += 1
                if sync_result.success:
                    entry.status = "done"
                    entry.last_error = None
                    result.succeeded += 1
                elif entry.attempts >= self.max_attempts:
                    entry.status = "failed"
                    entry.last_error = sync_result.error
                    result.failed += 1
                    result.errors.append(f"{order_number}: {sync_result.error}")
                    logger.error(
                        f"Shipping sync for {order_number} failed permanently after "
                        f"{entry.attempts} attempts: {sync_result.error}"
                    )
                    capture_message(
                        f"Shipping sync failed permanently for {order_number}",
                        level="warning",
                        context={"order_number": order_number, "attempts": entry.attempts, "error": sync_result.error},
                    )
                else:
                    entry.last_error = sync_result.error
                    entry.next_attempt_at = utcnow() + next_retry_delay(entry.attempts)
                    result.retried += 1
                    logger.warning(
                        f"Shipping sync for {order_number} failed (attempt {entry.attempts}), "
                        f"retrying at {entry.next_attempt_at.isoformat()}"
                    )
                await session.commit()

        logger.info(
            f"Outbox pass completed: {result.succeeded} done, {result.retried} retrying, "
            f"{result.failed} failed"
        )
        return result

    async def get_status(self) -> dict:
        async with self.session_factory() as session:
            return await OutboxRepository(session).counts_by_status()
