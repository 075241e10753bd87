"""Trade proposal repository

Human-in-the-loop approval queue for manual agents:
PENDING -> APPROVED -> EXECUTED, PENDING -> REJECTED | EXPIRED.
"""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ...core.errors import ErrorCode, LedgerError
from ...models.signal import TradeSignal
from ..models import ProposalStatus, TradeProposalDB

DEFAULT_PROPOSAL_TTL_SECONDS = 15 * 60
MAX_LIST_LIMIT = 100


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class TradeProposalRepository:
    """Repository for TradeProposal records"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        agent_id: uuid.UUID,
        signal: TradeSignal,
        slippage_bps: int,
        proposed_by: str = "system",
        ttl_seconds: float = DEFAULT_PROPOSAL_TTL_SECONDS,
    ) -> TradeProposalDB:
        """Create a PENDING proposal expiring ttl_seconds from now."""
        proposal = TradeProposalDB(
            agent_id=agent_id,
            action=signal.execution_type.value,
            token_address=signal.token_address,
            token_symbol=signal.token_symbol,
            amount=signal.amount,
            confidence=signal.confidence,
            slippage_bps=slippage_bps,
            signal=signal.to_params(),
            proposed_by=proposed_by,
            status=ProposalStatus.PENDING.value,
            expires_at=datetime.now(UTC) + timedelta(seconds=ttl_seconds),
        )
        self.session.add(proposal)
        await self.session.flush()
        await self.session.refresh(proposal)
        return proposal

    async def get_by_id(self, proposal_id: uuid.UUID) -> Optional[TradeProposalDB]:
        result = await self.session.execute(
            select(TradeProposalDB).where(TradeProposalDB.id == proposal_id)
        )
        return result.scalar_one_or_none()

    async def expire_stale(self) -> int:
        """Mark PENDING proposals past their expiry as EXPIRED."""
        result = await self.session.execute(
            update(TradeProposalDB)
            .where(
                TradeProposalDB.status == ProposalStatus.PENDING.value,
                TradeProposalDB.expires_at < datetime.now(UTC),
            )
            .values(status=ProposalStatus.EXPIRED.value, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session="fetch")
        )
        await self.session.flush()
        return result.rowcount or 0

    async def list_proposals(
        self,
        agent_id: Optional[uuid.UUID] = None,
        status: Optional[ProposalStatus] = None,
        limit: int = 20,
    ) -> list[TradeProposalDB]:
        """Newest first. Stale PENDING proposals are expired before listing."""
        await self.expire_stale()
        query = select(TradeProposalDB)
        if agent_id is not None:
            query = query.where(TradeProposalDB.agent_id == agent_id)
        if status is not None:
            query = query.where(TradeProposalDB.status == status.value)
        query = query.order_by(TradeProposalDB.created_at.desc()).limit(
            min(limit, MAX_LIST_LIMIT)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def _get_pending(self, proposal_id: uuid.UUID) -> TradeProposalDB:
        """
        Load a proposal that can still be decided.

        An expired PENDING proposal is flipped to EXPIRED (flushed, not
        committed) before the LedgerError is raised.
        """
        proposal = await self.get_by_id(proposal_id)
        if proposal is None:
            raise LedgerError(
                f"Proposal {proposal_id} not found",
                details={"proposal_id": str(proposal_id)},
            )
        if proposal.status != ProposalStatus.PENDING.value:
            raise LedgerError(
                f"Proposal is not pending (current: {proposal.status})",
                code=ErrorCode.ILLEGAL_TRANSITION,
                details={"proposal_id": str(proposal_id), "status": proposal.status},
            )
        if _as_utc(proposal.expires_at) <= datetime.now(UTC):
            proposal.status = ProposalStatus.EXPIRED.value
            await self.session.flush()
            raise LedgerError(
                "Proposal has expired",
                code=ErrorCode.ILLEGAL_TRANSITION,
                details={"proposal_id": str(proposal_id), "status": proposal.status},
            )
        return proposal

    async def approve(self, proposal_id: uuid.UUID, approved_by: str) -> TradeProposalDB:
        proposal = await self._get_pending(proposal_id)
        proposal.status = ProposalStatus.APPROVED.value
        proposal.approved_by = approved_by
        await self.session.flush()
        return proposal

    async def reject(self, proposal_id: uuid.UUID, reason: str) -> TradeProposalDB:
        proposal = await self._get_pending(proposal_id)
        proposal.status = ProposalStatus.REJECTED.value
        proposal.rejected_reason = reason
        await self.session.flush()
        return proposal

    async def record_execution(
        self,
        proposal_id: uuid.UUID,
        execution_id: uuid.UUID,
        error: Optional[str] = None,
    ) -> Optional[TradeProposalDB]:
        """
        Link the execution of an APPROVED proposal.

        A successful execution moves it to EXECUTED; a failed one keeps it
        APPROVED with the failure noted.
        """
        proposal = await self.get_by_id(proposal_id)
        if proposal is None:
            return None
        proposal.execution_id = execution_id
        if error is None:
            proposal.status = ProposalStatus.EXECUTED.value
        else:
            proposal.rejected_reason = f"Execution failed: {error}"
        await self.session.flush()
        return proposal
