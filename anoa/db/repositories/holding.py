"""Token holding repository (per-agent cost basis)"""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import TokenHoldingDB


class HoldingRepository:
    """Repository for TokenHolding rows, keyed by (agent, lowercase address)"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, agent_id: uuid.UUID, token_address: str) -> Optional[TokenHoldingDB]:
        result = await self.session.execute(
            select(TokenHoldingDB).where(
                TokenHoldingDB.agent_id == agent_id,
                TokenHoldingDB.token_address == token_address.lower(),
            )
        )
        return result.scalar_one_or_none()

    async def get_for_agent(
        self,
        agent_id: uuid.UUID,
        only_open: bool = True,
    ) -> list[TokenHoldingDB]:
        query = select(TokenHoldingDB).where(TokenHoldingDB.agent_id == agent_id)
        if only_open:
            query = query.where(TokenHoldingDB.balance > 0)
        result = await self.session.execute(query.order_by(TokenHoldingDB.token_address))
        return list(result.scalars().all())

    async def create(
        self,
        agent_id: uuid.UUID,
        token_address: str,
        symbol: str,
        balance: float,
        total_cost: float,
    ) -> TokenHoldingDB:
        holding = TokenHoldingDB(
            agent_id=agent_id,
            token_address=token_address.lower(),
            symbol=symbol,
            balance=balance,
            total_cost=total_cost,
            avg_buy_price=total_cost / balance if balance > 0 else 0.0,
            realized_pnl=0.0,
        )
        self.session.add(holding)
        await self.session.flush()
        return holding

    async def save(self, holding: TokenHoldingDB) -> TokenHoldingDB:
        """Flush in-place changes of a loaded holding."""
        await self.session.flush()
        return holding
