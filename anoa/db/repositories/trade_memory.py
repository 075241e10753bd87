"""Trade memory repository"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import TradeMemoryDB


class TradeMemoryRepository:
    """Stores one outcome record per settled trade"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        agent_id: uuid.UUID,
        execution_id: uuid.UUID,
        strategy: str,
        action: str,
        token_address: str,
        token_symbol: str,
        confidence: int,
        pnl_usd: float,
        reason: str = "",
    ) -> TradeMemoryDB:
        """Insert a memory, skipping duplicates for the same execution."""
        existing = await self.session.execute(
            select(TradeMemoryDB).where(TradeMemoryDB.execution_id == execution_id)
        )
        found = existing.scalar_one_or_none()
        if found:
            return found

        if pnl_usd > 0:
            outcome = "win"
        elif pnl_usd < 0:
            outcome = "loss"
        else:
            outcome = "flat"

        memory = TradeMemoryDB(
            agent_id=agent_id,
            execution_id=execution_id,
            strategy=strategy,
            action=action,
            token_address=token_address,
            token_symbol=token_symbol,
            confidence=confidence,
            pnl_usd=pnl_usd,
            outcome=outcome,
            reason=reason,
        )
        self.session.add(memory)
        await self.session.flush()
        return memory

    async def recent_for_agent(self, agent_id: uuid.UUID, limit: int = 20) -> list[TradeMemoryDB]:
        result = await self.session.execute(
            select(TradeMemoryDB)
            .where(TradeMemoryDB.agent_id == agent_id)
            .order_by(TradeMemoryDB.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
