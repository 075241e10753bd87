"""
P&L Service - settlement of executed trades.

Provides services for:
- Computing a trade's USD PnL from its swap legs
- Finalizing the Execution record (SUCCESS / FAILED)
- Recomputing the agent's rolling metrics
- Maintaining per-token cost basis
- Distributing PnL pro-rata to active delegators, net of the performance fee
- Enqueueing best-effort side effects into the outbox

Everything for one trade runs on the caller's session; the caller commits
once, so the ledger either reflects the whole settlement or none of it.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import LedgerError
from ..db.models import AgentDB
from ..db.repositories import (
    AgentRepository,
    DelegationRepository,
    ExecutionRepository,
    HoldingRepository,
    OutboxRepository,
)
from ..models.signal import TradeAction, TradeSignal
from .execution_router import RouteResult
from .outbox import enqueue_failure_side_effects, enqueue_success_side_effects
from .risk_metrics import TradeMetrics, calculate_all_metrics

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = 10000


def compute_trade_pnl(
    action: TradeAction,
    amount_in: float,
    amount_out: float,
    mon_price_usd: float,
    token_price_usd: Optional[float] = None,
) -> float:
    """
    USD value received minus USD value given up.

    The native leg is valued at the MON/USD reference price, the token leg
    at token_price_usd when known and 0 otherwise. Over a buy followed by a
    sell this sums to the net MON gained or lost, valued in USD.
    """
    token_price = token_price_usd or 0.0
    if action == TradeAction.BUY:
        return amount_out * token_price - amount_in * mon_price_usd
    return amount_out * mon_price_usd - amount_in * token_price


@dataclass
class SettlementResult:
    execution_id: uuid.UUID
    pnl_usd: float
    metrics: Optional[TradeMetrics] = None
    realized_pnl_mon: Optional[float] = None
    delegator_adjustments: dict[uuid.UUID, float] = field(default_factory=dict)
    outbox_tasks: int = 0


class PnLService:
    """Service for trade settlement."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.agents = AgentRepository(db)
        self.executions = ExecutionRepository(db)
        self.delegations = DelegationRepository(db)
        self.holdings = HoldingRepository(db)
        self.outbox = OutboxRepository(db)

    # =========================================================================
    # Settlement
    # =========================================================================

    async def settle_success(
        self,
        execution_id: uuid.UUID,
        agent_id: uuid.UUID,
        signal: TradeSignal,
        route: RouteResult,
        mon_price_usd: float,
        token_price_usd: Optional[float] = None,
    ) -> SettlementResult:
        """
        Settle a confirmed swap.

        Raises:
            LedgerError: the execution is missing or already terminal,
                or the agent does not exist
        """
        agent = await self.agents.get_by_id(agent_id)
        if agent is None:
            raise LedgerError(f"Agent {agent_id} not found", details={"agent_id": str(agent_id)})

        pnl_usd = compute_trade_pnl(
            signal.action, route.amount_in, route.amount_out, mon_price_usd, token_price_usd
        )
        result_payload = {**route.to_dict(), "pnl_usd": pnl_usd, "mon_price": mon_price_usd}
        await self.executions.mark_success(
            execution_id,
            tx_hash=route.tx_hash,
            pnl_usd=pnl_usd,
            gas_used=route.gas_used,
            result=result_payload,
        )

        # Capital base of the distribution is the one the trade was sized on
        capital_before = agent.total_capital or 0.0

        metrics = await self.update_agent_metrics(agent, pnl_usd, mon_price_usd)

        if signal.is_buy:
            tokens, mon = route.amount_out, route.amount_in
        else:
            tokens, mon = route.amount_in, route.amount_out
        realized = await self.update_cost_basis(
            agent.id, signal.token_address, signal.token_symbol, signal.action, tokens, mon
        )

        adjustments = await self.distribute_to_delegators(
            agent.id, capital_before, agent.fee_bps, pnl_usd
        )

        tasks = await enqueue_success_side_effects(
            self.outbox,
            agent=agent,
            execution_id=execution_id,
            signal=signal,
            route=route,
            pnl_usd=pnl_usd,
        )

        logger.info(
            f"Settled execution {execution_id}: {signal.action.value} {signal.token_symbol} "
            f"pnl=${pnl_usd:.4f} via {route.venue.value}, "
            f"{len(adjustments)} delegation(s) adjusted"
        )
        return SettlementResult(
            execution_id=execution_id,
            pnl_usd=pnl_usd,
            metrics=metrics,
            realized_pnl_mon=realized,
            delegator_adjustments=adjustments,
            outbox_tasks=len(tasks),
        )

    async def settle_failure(
        self,
        execution_id: uuid.UUID,
        agent_id: uuid.UUID,
        signal: TradeSignal,
        error_msg: str,
        result: Optional[dict] = None,
    ) -> SettlementResult:
        """Finalize a failed trade. No PnL, metrics or holdings change."""
        await self.executions.mark_failed(execution_id, error_msg, result=result)

        agent = await self.agents.get_by_id(agent_id)
        tasks = []
        if agent is not None:
            tasks = await enqueue_failure_side_effects(
                self.outbox,
                agent=agent,
                execution_id=execution_id,
                signal=signal,
                error_msg=error_msg,
            )

        logger.info(f"Execution {execution_id} marked FAILED: {error_msg}")
        return SettlementResult(execution_id=execution_id, pnl_usd=0.0, outbox_tasks=len(tasks))

    # =========================================================================
    # Metrics
    # =========================================================================

    async def update_agent_metrics(
        self,
        agent: AgentDB,
        pnl_usd: float,
        mon_price_usd: float,
    ) -> TradeMetrics:
        """Recompute rolling metrics from every SUCCESS execution and increment totalPnl."""
        pnls = await self.executions.get_successful_pnls(agent.id)
        capital_base_usd = (agent.total_capital or 0.0) * mon_price_usd
        metrics = calculate_all_metrics(pnls, capital_base_usd)

        await self.agents.apply_trade_metrics(
            agent.id,
            pnl_change=pnl_usd,
            sharpe_ratio=metrics.sharpe_ratio,
            max_drawdown=metrics.max_drawdown,
            win_rate=metrics.win_rate,
            total_trades=metrics.total_trades,
        )
        return metrics

    # =========================================================================
    # Cost basis
    # =========================================================================

    async def update_cost_basis(
        self,
        agent_id: uuid.UUID,
        token_address: str,
        symbol: str,
        action: TradeAction,
        token_amount: float,
        mon_amount: float,
    ) -> Optional[float]:
        """
        Update the weighted-average cost basis of a holding.

        BUY: avg = (oldTotalCost + monSpent) / (oldBalance + tokensBought).
        SELL: realizes (sellPrice - avg) * tokensSold and reduces balance and
        total cost; avg is unchanged. A sell without a holding is a no-op.

        Returns:
            MON realized by a sell, None otherwise
        """
        if token_amount <= 0:
            return None

        holding = await self.holdings.get(agent_id, token_address)

        if action == TradeAction.BUY:
            if holding is None:
                await self.holdings.create(
                    agent_id, token_address, symbol, balance=token_amount, total_cost=mon_amount
                )
                return None

            holding.total_cost = (holding.total_cost or 0.0) + mon_amount
            holding.balance = (holding.balance or 0.0) + token_amount
            holding.avg_buy_price = holding.total_cost / holding.balance
            if symbol and holding.symbol == "UNKNOWN":
                holding.symbol = symbol
            await self.holdings.save(holding)
            return None

        if holding is None:
            logger.warning(f"Sell of {token_address} for agent {agent_id} without a holding record")
            return None

        avg = holding.avg_buy_price or 0.0
        sell_price = mon_amount / token_amount
        realized = (sell_price - avg) * token_amount

        holding.balance = max(0.0, (holding.balance or 0.0) - token_amount)
        holding.total_cost = max(0.0, (holding.total_cost or 0.0) - avg * token_amount)
        holding.realized_pnl = (holding.realized_pnl or 0.0) + realized
        await self.holdings.save(holding)
        return realized

    # =========================================================================
    # Delegator distribution
    # =========================================================================

    async def distribute_to_delegators(
        self,
        agent_id: uuid.UUID,
        total_capital: float,
        fee_bps: Optional[int],
        pnl_usd: float,
    ) -> dict[uuid.UUID, float]:
        """
        Credit each ACTIVE delegation with its pro-rata share of the trade PnL.

        share = amount / totalCapital * pnl. Positive shares are reduced by
        the performance fee; losses are passed through unchanged. All
        adjustments are applied as one batch.
        """
        if pnl_usd == 0 or total_capital <= 0:
            return {}

        delegations = await self.delegations.get_active_for_agent(agent_id)
        if not delegations:
            return {}

        fee_rate = (fee_bps if fee_bps is not None else 0) / BPS_DENOMINATOR
        adjustments: dict[uuid.UUID, float] = {}
        for delegation in delegations:
            share = delegation.amount / total_capital * pnl_usd
            net = share * (1 - fee_rate) if share > 0 else share
            if net != 0:
                adjustments[delegation.id] = net

        await self.delegations.apply_pnl_batch(adjustments)
        return adjustments
