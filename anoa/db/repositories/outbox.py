"""Outbox repository

Side effects of a settlement are inserted here inside the settlement
transaction and picked up by the outbox worker after commit.
"""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import OutboxStatus, OutboxTaskDB


class OutboxRepository:
    """Repository for OutboxTask rows"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(
        self,
        kind: str,
        payload: dict,
        delay_seconds: float = 0,
    ) -> OutboxTaskDB:
        task = OutboxTaskDB(
            kind=kind,
            payload=payload,
            status=OutboxStatus.PENDING.value,
            attempts=0,
            available_at=datetime.now(UTC) + timedelta(seconds=delay_seconds),
        )
        self.session.add(task)
        await self.session.flush()
        return task

    async def get_by_id(self, task_id: uuid.UUID) -> Optional[OutboxTaskDB]:
        result = await self.session.execute(
            select(OutboxTaskDB).where(OutboxTaskDB.id == task_id)
        )
        return result.scalar_one_or_none()

    async def claim_due(self, limit: int = 20) -> list[OutboxTaskDB]:
        """
        Pending tasks whose available_at has passed, oldest first.

        Rows are locked with SKIP LOCKED on PostgreSQL so several workers
        never pick the same task.
        """
        query = (
            select(OutboxTaskDB)
            .where(
                OutboxTaskDB.status == OutboxStatus.PENDING.value,
                OutboxTaskDB.available_at <= datetime.now(UTC),
            )
            .order_by(OutboxTaskDB.available_at, OutboxTaskDB.created_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def mark_done(self, task: OutboxTaskDB) -> None:
        task.status = OutboxStatus.DONE.value
        task.attempts += 1
        task.last_error = None
        task.completed_at = datetime.now(UTC)
        await self.session.flush()

    async def mark_retry(self, task: OutboxTaskDB, error: str, delay_seconds: float) -> None:
        """Record a failed attempt and push the task back by delay_seconds."""
        task.attempts += 1
        task.last_error = error
        task.available_at = datetime.now(UTC) + timedelta(seconds=delay_seconds)
        await self.session.flush()

    async def mark_failed(self, task: OutboxTaskDB, error: str) -> None:
        task.status = OutboxStatus.FAILED.value
        task.attempts += 1
        task.last_error = error
        task.completed_at = datetime.now(UTC)
        await self.session.flush()

    async def count_by_status(self) -> dict[str, int]:
        result = await self.session.execute(
            select(OutboxTaskDB.status, func.count(OutboxTaskDB.id)).group_by(OutboxTaskDB.status)
        )
        return {status: count for status, count in result.all()}
