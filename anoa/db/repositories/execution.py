"""Execution repository

Persists trade attempts and enforces their one-way state machine:
EXECUTING -> SUCCESS | FAILED. Also answers the daily-history queries the
risk guard runs before every trade.
"""

import uuid
from datetime import UTC, datetime, time
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...core.errors import ErrorCode, LedgerError
from ...models.signal import ExecutionStatus
from ..models import ExecutionDB


def utc_day_start(now: Optional[datetime] = None) -> datetime:
    """Midnight UTC of the current day"""
    now = now or datetime.now(UTC)
    return datetime.combine(now.astimezone(UTC).date(), time.min, tzinfo=UTC)


class ExecutionRepository:
    """Repository for Execution records"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        agent_id: uuid.UUID,
        type: str,
        params: dict,
    ) -> ExecutionDB:
        """Create an execution in EXECUTING status."""
        execution = ExecutionDB(
            agent_id=agent_id,
            type=type,
            params=params,
            status=ExecutionStatus.EXECUTING.value,
        )
        self.session.add(execution)
        await self.session.flush()
        await self.session.refresh(execution)
        return execution

    async def get_by_id(self, execution_id: uuid.UUID) -> Optional[ExecutionDB]:
        result = await self.session.execute(
            select(ExecutionDB).where(ExecutionDB.id == execution_id)
        )
        return result.scalar_one_or_none()

    async def _get_executing(self, execution_id: uuid.UUID) -> ExecutionDB:
        execution = await self.get_by_id(execution_id)
        if execution is None:
            raise LedgerError(
                f"Execution {execution_id} not found",
                details={"execution_id": str(execution_id)},
            )
        if ExecutionStatus(execution.status).is_terminal:
            raise LedgerError(
                f"Execution {execution_id} is already {execution.status}",
                code=ErrorCode.ILLEGAL_TRANSITION,
                details={"execution_id": str(execution_id), "status": execution.status},
            )
        return execution

    async def mark_success(
        self,
        execution_id: uuid.UUID,
        tx_hash: str,
        pnl_usd: float,
        gas_used: Optional[int],
        result: dict,
    ) -> ExecutionDB:
        """Finalize as SUCCESS. Raises LedgerError if already terminal."""
        execution = await self._get_executing(execution_id)
        execution.status = ExecutionStatus.SUCCESS.value
        execution.tx_hash = tx_hash
        execution.pnl_usd = pnl_usd
        execution.gas_used = gas_used
        execution.result = result
        execution.completed_at = datetime.now(UTC)
        await self.session.flush()
        return execution

    async def mark_failed(
        self,
        execution_id: uuid.UUID,
        error_msg: str,
        result: Optional[dict] = None,
    ) -> ExecutionDB:
        """Finalize as FAILED. Raises LedgerError if already terminal."""
        execution = await self._get_executing(execution_id)
        execution.status = ExecutionStatus.FAILED.value
        execution.error_msg = error_msg
        execution.result = result
        execution.completed_at = datetime.now(UTC)
        await self.session.flush()
        return execution

    async def get_today_realized_pnl(self, agent_id: uuid.UUID) -> float:
        """Sum of pnl_usd over today's (UTC) successful executions."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(ExecutionDB.pnl_usd), 0.0)).where(
                ExecutionDB.agent_id == agent_id,
                ExecutionDB.status == ExecutionStatus.SUCCESS.value,
                ExecutionDB.executed_at >= utc_day_start(),
            )
        )
        return float(result.scalar_one() or 0.0)

    async def count_today_trades(self, agent_id: uuid.UUID) -> int:
        """Number of executions started today (UTC), whatever their status."""
        result = await self.session.execute(
            select(func.count(ExecutionDB.id)).where(
                ExecutionDB.agent_id == agent_id,
                ExecutionDB.executed_at >= utc_day_start(),
            )
        )
        return int(result.scalar_one() or 0)

    async def get_successful_pnls(self, agent_id: uuid.UUID) -> list[float]:
        """PnL series of all successful executions, oldest first."""
        result = await self.session.execute(
            select(ExecutionDB.pnl_usd)
            .where(
                ExecutionDB.agent_id == agent_id,
                ExecutionDB.status == ExecutionStatus.SUCCESS.value,
            )
            .order_by(ExecutionDB.executed_at, ExecutionDB.completed_at)
        )
        return [float(p or 0.0) for p in result.scalars().all()]

    async def list_recent(self, agent_id: uuid.UUID, limit: int = 20) -> list[ExecutionDB]:
        result = await self.session.execute(
            select(ExecutionDB)
            .where(ExecutionDB.agent_id == agent_id)
            .order_by(ExecutionDB.executed_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
