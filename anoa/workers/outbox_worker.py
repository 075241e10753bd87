"""
Outbox worker.

Polls due PENDING outbox tasks and runs their handlers. A failed task is
retried with exponential backoff until outbox_max_attempts is reached or
its error is permanent, then marked FAILED. Task failures are logged and
recorded on the task only.
"""

import asyncio
import logging
from contextlib import AbstractAsyncContextManager
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.retry_utils import ErrorType, calculate_backoff_delay, classify_error
from ..db.repositories import OutboxRepository
from ..services.outbox import OutboxHandlers

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

RETRY_BASE_DELAY = 5.0
RETRY_MAX_DELAY = 300.0


class OutboxWorker:
    """
    Usage:
        worker = OutboxWorker(AsyncSessionLocal, OutboxHandlers.default(AsyncSessionLocal, http))
        await worker.run_forever(stop_event)
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        handlers: OutboxHandlers,
        poll_interval: Optional[float] = None,
        batch_size: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.handlers = handlers
        self.poll_interval = poll_interval or settings.outbox_poll_interval
        self.batch_size = batch_size or settings.outbox_batch_size
        self.max_attempts = max_attempts or settings.outbox_max_attempts

    async def run_once(self) -> dict[str, int]:
        """Process one batch of due tasks. Returns counts per outcome."""
        counts = {"done": 0, "retry": 0, "failed": 0}

        async with self.session_factory() as session:
            repo = OutboxRepository(session)
            tasks = await repo.claim_due(self.batch_size)

            for task in tasks:
                try:
                    await self.handlers.dispatch(task)
                except Exception as e:
                    error = f"{type(e).__name__}: {e}"
                    attempt = task.attempts + 1
                    permanent = isinstance(e, LookupError) or classify_error(e) == ErrorType.PERMANENT
                    if permanent or attempt >= self.max_attempts:
                        await repo.mark_failed(task, error)
                        counts["failed"] += 1
                        logger.error(
                            f"Outbox task {task.id} ({task.kind}) failed after "
                            f"{attempt} attempt(s): {error}"
                        )
                    else:
                        delay = calculate_backoff_delay(
                            task.attempts, RETRY_BASE_DELAY, RETRY_MAX_DELAY, jitter=False
                        )
                        await repo.mark_retry(task, error, delay)
                        counts["retry"] += 1
                        logger.warning(
                            f"Outbox task {task.id} ({task.kind}) attempt {attempt} failed, "
                            f"retrying in {delay:.0f}s: {error}"
                        )
                    continue

                await repo.mark_done(task)
                counts["done"] += 1

            await session.commit()

        if any(counts.values()):
            logger.info(f"Outbox batch: {counts}")
        return counts

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        logger.info(f"Outbox worker started: handlers {self.handlers.kinds}")
        while not stop_event.is_set():
            try:
                counts = await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Outbox poll failed: {e}")
                counts = {}

            # A full batch means more may be due; poll again immediately
            if sum(counts.values()) >= self.batch_size:
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Outbox worker stopped")
