"""Agent repository for database operations

Handles agent lookup for the scheduler and the metric writes performed by
settlement.
"""

import uuid
from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import AgentDB


class AgentRepository:
    """Repository for Agent operations"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        name: str,
        strategy: str,
        risk_level: str = "medium",
        total_capital: float = 0.0,
        wallet_address: Optional[str] = None,
        auto_execute: bool = False,
        daily_loss_limit: float = 10.0,
        max_daily_trades: int = 50,
        fee_bps: int = 2000,
        erc8004_agent_id: Optional[int] = None,
    ) -> AgentDB:
        """Create a new agent in ACTIVE status."""
        agent = AgentDB(
            name=name,
            strategy=strategy,
            risk_level=risk_level,
            total_capital=total_capital,
            wallet_address=wallet_address,
            auto_execute=auto_execute,
            daily_loss_limit=daily_loss_limit,
            max_daily_trades=max_daily_trades,
            fee_bps=fee_bps,
            erc8004_agent_id=erc8004_agent_id,
            status="ACTIVE",
        )
        self.session.add(agent)
        await self.session.flush()
        await self.session.refresh(agent)
        return agent

    async def get_by_id(self, agent_id: uuid.UUID) -> Optional[AgentDB]:
        result = await self.session.execute(
            select(AgentDB).where(AgentDB.id == agent_id)
        )
        return result.scalar_one_or_none()

    async def get_active_agents(self) -> list[AgentDB]:
        """Get all active agents (for worker scheduling)"""
        query = (
            select(AgentDB)
            .where(AgentDB.status == "ACTIVE")
            .order_by(AgentDB.created_at, AgentDB.id)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def update_status(
        self,
        agent_id: uuid.UUID,
        status: str,
        error_message: Optional[str] = None,
    ) -> bool:
        """Update agent status"""
        stmt = (
            update(AgentDB)
            .where(AgentDB.id == agent_id)
            .values(
                status=status,
                error_message=error_message,
                updated_at=datetime.now(UTC),
            )
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.rowcount > 0

    async def mark_run(self, agent_id: uuid.UUID) -> None:
        """Record the start of an evaluation cycle (cooldown anchor)."""
        stmt = (
            update(AgentDB)
            .where(AgentDB.id == agent_id)
            .values(last_run_at=datetime.now(UTC))
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def update_capital(self, agent_id: uuid.UUID, total_capital: float) -> bool:
        """Reconcile the capital base with the on-chain portfolio value."""
        stmt = (
            update(AgentDB)
            .where(AgentDB.id == agent_id)
            .values(total_capital=max(0.0, total_capital), updated_at=datetime.now(UTC))
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.rowcount > 0

    async def apply_trade_metrics(
        self,
        agent_id: uuid.UUID,
        pnl_change: float,
        sharpe_ratio: float,
        max_drawdown: float,
        win_rate: float,
        total_trades: int,
    ) -> bool:
        """
        Apply the rolling metrics recomputed after a settled trade.

        total_pnl is incremented, the other metrics are replaced.
        """
        agent = await self.get_by_id(agent_id)
        if not agent:
            return False

        agent.total_pnl = (agent.total_pnl or 0.0) + pnl_change
        agent.sharpe_ratio = sharpe_ratio
        agent.max_drawdown = max_drawdown
        agent.win_rate = win_rate
        agent.total_trades = total_trades

        await self.session.flush()
        return True
