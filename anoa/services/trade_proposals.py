"""
Trade proposals - human-in-the-loop approval for manual agents.

Agents without auto-execute do not trade on their own. A signal that clears
the tier's confidence threshold is stored as a PENDING proposal with a
15-minute TTL; a human approves it (the stored signal is executed and
settled like any other trade) or rejects it. Undecided proposals expire.
"""

import logging
import uuid
from contextlib import AbstractAsyncContextManager
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import LedgerError
from ..db.models import ProposalStatus, TradeProposalDB
from ..db.repositories import TradeProposalRepository
from ..db.repositories.proposal import DEFAULT_PROPOSAL_TTL_SECONDS
from ..models.signal import TradeSignal
from .trade_execution_service import TradeExecutionService, TradeOutcome

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class ProposalService:
    """
    Usage:
        proposals = ProposalService(AsyncSessionLocal, executor)
        proposal = await proposals.create_proposal(agent_id, signal, slippage_bps=100)
        outcome = await proposals.approve(proposal.id, approved_by="0xreviewer")
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        executor: Optional[TradeExecutionService] = None,
        ttl_seconds: float = DEFAULT_PROPOSAL_TTL_SECONDS,
    ):
        self.session_factory = session_factory
        self.executor = executor
        self.ttl_seconds = ttl_seconds

    async def create_proposal(
        self,
        agent_id: uuid.UUID,
        signal: TradeSignal,
        slippage_bps: int,
        proposed_by: Optional[str] = None,
    ) -> TradeProposalDB:
        async with self.session_factory() as session:
            proposal = await TradeProposalRepository(session).create(
                agent_id,
                signal,
                slippage_bps,
                proposed_by=proposed_by or f"strategy-engine:{signal.strategy.value}",
                ttl_seconds=self.ttl_seconds,
            )
            await session.commit()
        logger.info(
            f"Proposal {proposal.id} for agent {agent_id}: {signal.action.value} "
            f"{signal.amount} {signal.token_symbol}, awaiting approval"
        )
        return proposal

    async def approve(self, proposal_id: uuid.UUID, approved_by: str) -> TradeOutcome:
        """
        Approve a PENDING proposal and execute its signal.

        Raises:
            LedgerError: unknown, already decided or expired proposal
        """
        if self.executor is None:
            raise RuntimeError("ProposalService was created without an executor")

        async with self.session_factory() as session:
            repo = TradeProposalRepository(session)
            try:
                proposal = await repo.approve(proposal_id, approved_by)
            except LedgerError:
                # Keeps an EXPIRED flip made while checking
                await session.commit()
                raise
            signal = TradeSignal.model_validate(proposal.signal)
            agent_id = proposal.agent_id
            slippage_bps = proposal.slippage_bps
            await session.commit()

        logger.info(f"Proposal {proposal_id} approved by {approved_by}")
        outcome = await self.executor.execute_signal(agent_id, signal, slippage_bps=slippage_bps)

        async with self.session_factory() as session:
            await TradeProposalRepository(session).record_execution(
                proposal_id, outcome.execution_id, error=None if outcome.success else outcome.error
            )
            await session.commit()
        return outcome

    async def reject(self, proposal_id: uuid.UUID, reason: str) -> TradeProposalDB:
        async with self.session_factory() as session:
            repo = TradeProposalRepository(session)
            try:
                proposal = await repo.reject(proposal_id, reason)
            except LedgerError:
                await session.commit()
                raise
            await session.commit()
        logger.info(f"Proposal {proposal_id} rejected: {reason}")
        return proposal

    async def list_proposals(
        self,
        agent_id: Optional[uuid.UUID] = None,
        status: Optional[ProposalStatus] = None,
        limit: int = 20,
    ) -> list[TradeProposalDB]:
        async with self.session_factory() as session:
            proposals = await TradeProposalRepository(session).list_proposals(
                agent_id, status, limit
            )
            await session.commit()
        return proposals
