"""Delegation repository"""

import uuid
from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import DelegationDB, DelegationStatus


class DelegationRepository:
    """Repository for capital delegations"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        agent_id: uuid.UUID,
        delegator: str,
        amount: float,
        lockup_ends_at: Optional[datetime] = None,
        on_chain_delegation_id: Optional[int] = None,
    ) -> DelegationDB:
        delegation = DelegationDB(
            agent_id=agent_id,
            delegator=delegator,
            amount=amount,
            status=DelegationStatus.ACTIVE.value,
            accumulated_pnl=0.0,
            lockup_ends_at=lockup_ends_at,
            on_chain_delegation_id=on_chain_delegation_id,
        )
        self.session.add(delegation)
        await self.session.flush()
        await self.session.refresh(delegation)
        return delegation

    async def get_by_id(self, delegation_id: uuid.UUID) -> Optional[DelegationDB]:
        result = await self.session.execute(
            select(DelegationDB).where(DelegationDB.id == delegation_id)
        )
        return result.scalar_one_or_none()

    async def get_active_for_agent(self, agent_id: uuid.UUID) -> list[DelegationDB]:
        result = await self.session.execute(
            select(DelegationDB)
            .where(
                DelegationDB.agent_id == agent_id,
                DelegationDB.status == DelegationStatus.ACTIVE.value,
            )
            .order_by(DelegationDB.created_at, DelegationDB.id)
        )
        return list(result.scalars().all())

    async def apply_pnl_batch(self, adjustments: dict[uuid.UUID, float]) -> int:
        """
        Add PnL deltas to several delegations.

        Runs inside the caller's transaction: either every adjustment of the
        batch is committed with the settlement, or none is.
        """
        if not adjustments:
            return 0

        result = await self.session.execute(
            select(DelegationDB).where(DelegationDB.id.in_(list(adjustments.keys())))
        )
        delegations = list(result.scalars().all())
        now = datetime.now(UTC)
        for delegation in delegations:
            delegation.accumulated_pnl = (delegation.accumulated_pnl or 0.0) + adjustments[delegation.id]
            delegation.updated_at = now

        await self.session.flush()
        return len(delegations)

    async def withdraw(self, delegation_id: uuid.UUID) -> bool:
        """Mark a delegation as withdrawn; it stops sharing PnL."""
        delegation = await self.get_by_id(delegation_id)
        if not delegation or delegation.status != DelegationStatus.ACTIVE.value:
            return False
        delegation.status = DelegationStatus.WITHDRAWN.value
        await self.session.flush()
        return True
