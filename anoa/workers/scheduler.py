"""
Agent scheduler.

Each cycle:
1. Builds the token pool: discovered nad.fun tokens (default list when
   discovery yields nothing), plus registry tokens the agent's strategy
   trades, capped at MAX_POOL_SIZE.
2. Runs every ACTIVE agent concurrently, at most one cycle per agent at a
   time (per-agent asyncio.Lock) and at most one per cooldown period.
3. Per agent: reads the wallet balance, reconciles capital, evaluates the
   strategy, and for auto-execute agents gates the signal through the risk
   guard before executing and settling it. Manual agents get a proposal
   awaiting human approval instead.

The cycle timeout covers evaluation and the risk check. Execution runs
outside it, so a broadcast trade always reaches a terminal record.

An agent whose cycles keep failing is moved to ERROR.
"""

import asyncio
import logging
import random
import uuid
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Callable, Optional, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.circuit_breaker import get_circuit_breaker_health
from ..core.config import get_settings
from ..core.retry_utils import ErrorWindow
from ..core.tokens import KNOWN_TOKENS, get_token_by_symbol
from ..db.models import AgentDB
from ..db.repositories import (
    AgentRepository,
    ExecutionRepository,
    HoldingRepository,
    TradeMemoryRepository,
)
from ..models.agent import AgentContext, AgentStatus, Holding, RiskLevel, StrategyType
from ..models.signal import TradeSignal
from ..services.market_snapshot import TokenDiscovery
from ..services.risk_guard import RiskGuard
from ..services.risk_params import get_risk_params
from ..services.strategy_engine import DCA_TOKENS, YIELD_TOKENS, StrategyEngine
from ..services.trade_execution_service import TradeExecutionService
from ..services.trade_proposals import ProposalService
from ..traders.chain import ChainClient

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

MAX_DEFAULT_TOKENS = 5
MAX_POOL_SIZE = 10
# Random registry tokens added for strategies without a fixed universe
DIVERSITY_TOKENS = 3
# Capital is only rewritten when on-chain value drifts by more than this (MON)
CAPITAL_DRIFT_THRESHOLD = 0.1
# Window of the per-agent error tracker (seconds)
ERROR_WINDOW_SECONDS = 3600

# Strategies that only trade a fixed set of registry tokens
STRATEGY_UNIVERSE: dict[StrategyType, list[str]] = {
    StrategyType.YIELD: YIELD_TOKENS,
    StrategyType.DCA: DCA_TOKENS,
}
# Majors added to the hedge pool so the market average is not only meme tokens
HEDGE_REFERENCE_TOKENS = ["WMON", "WETH", "WBTC"]


@dataclass
class AgentCycleResult:
    agent_id: str
    status: str  # e.g. "executed", "risk_blocked", "skipped_cooldown"
    signal: Optional[str] = None
    detail: Optional[str] = None


@dataclass
class ApprovedTrade:
    """A signal that passed evaluation and the risk guard"""
    signal: TradeSignal
    slippage_bps: int


def describe_signal(signal: Optional[TradeSignal]) -> Optional[str]:
    if signal is None:
        return None
    return f"{signal.action.value} {signal.token_symbol} (confidence: {signal.confidence})"


def build_token_pool(
    strategy: StrategyType,
    discovered: Sequence[str],
    default_tokens: Sequence[str],
    rng: Optional[random.Random] = None,
) -> list[str]:
    """
    Token addresses an agent evaluates this cycle.

    YIELD and DCA evaluate their registry universe first. Other strategies
    evaluate discovered tokens (up to MAX_DEFAULT_TOKENS defaults when none
    were discovered) plus reference majors for HEDGE or a few random
    registry tokens otherwise. Deduplicated, capped at MAX_POOL_SIZE.
    """
    base = list(discovered) or list(default_tokens)[:MAX_DEFAULT_TOKENS]

    def addresses(symbols: Sequence[str]) -> list[str]:
        return [info.address for s in symbols if (info := get_token_by_symbol(s))]

    universe = STRATEGY_UNIVERSE.get(strategy)
    if universe is not None:
        ordered = [*addresses(universe), *base]
    elif strategy == StrategyType.HEDGE:
        ordered = [*base, *addresses(HEDGE_REFERENCE_TOKENS)]
    else:
        symbols = sorted(KNOWN_TOKENS)
        (rng or random).shuffle(symbols)
        ordered = [*base, *addresses(symbols[:DIVERSITY_TOKENS])]

    pool: list[str] = []
    seen: set[str] = set()
    for address in ordered:
        key = address.lower()
        if key in seen:
            continue
        seen.add(key)
        pool.append(address)
    return pool[:MAX_POOL_SIZE]


def build_memory_loader(session_factory: SessionFactory, limit: int = 10):
    """Loader of recent trade outcomes for the signal enhancer prompt."""

    async def load(agent_id: str) -> list[str]:
        async with session_factory() as session:
            memories = await TradeMemoryRepository(session).recent_for_agent(
                uuid.UUID(agent_id), limit=limit
            )
        return [
            f"{m.outcome} {m.action} {m.token_symbol} {m.pnl_usd:+.2f} USD ({m.strategy})"
            for m in memories
        ]

    return load


class AgentScheduler:
    """
    Periodic evaluation loop for all active agents.

    Usage:
        scheduler = AgentScheduler(AsyncSessionLocal, engine, executor, chain, discovery)
        await scheduler.run_forever(stop_event)
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        engine: StrategyEngine,
        executor: TradeExecutionService,
        chain: ChainClient,
        discovery: Optional[TokenDiscovery] = None,
        proposals: Optional[ProposalService] = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.engine = engine
        self.executor = executor
        self.chain = chain
        self.discovery = discovery
        self.proposals = proposals or ProposalService(session_factory, executor)
        self.interval = settings.scheduler_interval_seconds
        self.cooldown = timedelta(seconds=settings.agent_cooldown_seconds)
        self.cycle_timeout = settings.scheduler_cycle_timeout
        self.max_errors = settings.worker_max_consecutive_errors
        self.default_tokens = settings.get_default_tokens()
        self._semaphore = asyncio.Semaphore(settings.scheduler_max_concurrent_agents)
        self._locks: dict[str, asyncio.Lock] = {}
        self._error_windows: dict[str, ErrorWindow] = {}

    def _lock_for(self, agent_id: str) -> asyncio.Lock:
        return self._locks.setdefault(agent_id, asyncio.Lock())

    def _errors_for(self, agent_id: str) -> ErrorWindow:
        return self._error_windows.setdefault(
            agent_id,
            ErrorWindow(window_seconds=ERROR_WINDOW_SECONDS, max_errors=self.max_errors),
        )

    # ==================== Cycle ====================

    async def discover_tokens(self) -> tuple[list[str], dict[str, int]]:
        if self.discovery is None:
            return [], {}
        try:
            found = await self.discovery.discover()
        except Exception as e:
            logger.warning(f"Token discovery failed, falling back to default tokens: {e}")
            return [], {}
        creation_blocks = {
            t.address.lower(): t.created_at_block for t in found if t.created_at_block is not None
        }
        return [t.address for t in found], creation_blocks

    async def run_cycle(self) -> list[AgentCycleResult]:
        """One pass over all ACTIVE agents."""
        discovered, creation_blocks = await self.discover_tokens()

        async with self.session_factory() as session:
            agents = await AgentRepository(session).get_active_agents()
        if not agents:
            logger.debug("No active agents")
            return []

        async def run_limited(agent: AgentDB) -> AgentCycleResult:
            async with self._semaphore:
                return await self.run_agent(agent, discovered, creation_blocks)

        results = await asyncio.gather(*(run_limited(a) for a in agents))

        counts: dict[str, int] = {}
        for r in results:
            counts[r.status] = counts.get(r.status, 0) + 1
        logger.info(f"Scheduler cycle: {len(agents)} agents, {counts}")

        health = get_circuit_breaker_health()
        if not health["healthy"]:
            logger.warning(f"{health['open_breakers']} circuit breaker(s) open")
        return list(results)

    async def run_agent(
        self,
        agent: AgentDB,
        discovered: Sequence[str] = (),
        creation_blocks: Optional[dict[str, int]] = None,
    ) -> AgentCycleResult:
        agent_id = str(agent.id)
        lock = self._lock_for(agent_id)
        if lock.locked():
            return AgentCycleResult(agent_id, "skipped_busy")

        async with lock:
            if agent.last_run_at is not None:
                last_run = agent.last_run_at
                if last_run.tzinfo is None:
                    last_run = last_run.replace(tzinfo=UTC)
                if datetime.now(UTC) - last_run < self.cooldown:
                    return AgentCycleResult(agent_id, "skipped_cooldown")

            errors = self._errors_for(agent_id)
            try:
                # The timeout bounds evaluation only; a trade that reaches the
                # router is never cancelled by the scheduler
                result = await asyncio.wait_for(
                    self._evaluate_agent(agent, discovered, creation_blocks),
                    timeout=self.cycle_timeout,
                )
                if isinstance(result, ApprovedTrade):
                    result = await self._execute(agent, result)
            except Exception as e:
                if isinstance(e, asyncio.TimeoutError):
                    message = f"Cycle timed out after {self.cycle_timeout}s"
                else:
                    message = str(e) or type(e).__name__
                logger.exception(f"Agent {agent_id} cycle failed: {message}")
                errors.record_error()
                if errors.should_stop:
                    logger.error(f"Too many errors ({errors}), moving agent {agent_id} to ERROR")
                    async with self.session_factory() as session:
                        await AgentRepository(session).update_status(
                            agent.id, AgentStatus.ERROR.value, message
                        )
                        await session.commit()
                return AgentCycleResult(agent_id, "error", detail=message)

            errors.reset()
            return result

    async def _wallet_balance(self, agent: AgentDB) -> Optional[float]:
        if not agent.wallet_address:
            return None
        try:
            return await self.chain.get_native_balance(agent.wallet_address)
        except Exception as e:
            logger.warning(f"Wallet balance unavailable for agent {agent.id}: {e}")
            return None

    async def _load_context(self, agent: AgentDB) -> AgentContext:
        wallet_balance = await self._wallet_balance(agent)

        async with self.session_factory() as session:
            agents = AgentRepository(session)
            await agents.mark_run(agent.id)
            rows = await HoldingRepository(session).get_for_agent(agent.id)

            holdings = [
                Holding(token_address=h.token_address, symbol=h.symbol, balance=h.balance)
                for h in rows
            ]

            capital = agent.total_capital or 0.0
            if wallet_balance is not None:
                # Holdings are valued at cost basis (MON)
                on_chain_value = wallet_balance + sum(
                    h.balance * (h.avg_buy_price or 0.0) for h in rows
                )
                if abs(on_chain_value - capital) > CAPITAL_DRIFT_THRESHOLD:
                    await agents.update_capital(agent.id, on_chain_value)
                    logger.info(
                        f"Capital reconciled for agent {agent.id}: "
                        f"{capital:.4f} -> {on_chain_value:.4f} MON"
                    )
                    capital = on_chain_value
            await session.commit()

        try:
            risk_level = RiskLevel(str(agent.risk_level).lower())
        except ValueError:
            risk_level = RiskLevel.MEDIUM

        return AgentContext(
            id=str(agent.id),
            strategy=StrategyType(agent.strategy),
            risk_level=risk_level,
            total_capital=max(0.0, capital),
            total_pnl=agent.total_pnl or 0.0,
            max_drawdown=min(1.0, max(0.0, agent.max_drawdown or 0.0)),
            wallet_address=agent.wallet_address,
            wallet_balance=wallet_balance,
            holdings=holdings,
            daily_loss_limit=agent.daily_loss_limit if agent.daily_loss_limit is not None else 10.0,
            max_daily_trades=agent.max_daily_trades if agent.max_daily_trades is not None else 50,
        )

    async def _evaluate_agent(
        self,
        agent: AgentDB,
        discovered: Sequence[str],
        creation_blocks: Optional[dict[str, int]],
    ) -> Union[AgentCycleResult, ApprovedTrade]:
        """Evaluation and gating; returns a final result or the trade to execute."""
        agent_id = str(agent.id)
        context = await self._load_context(agent)
        tokens = build_token_pool(context.strategy, discovered, self.default_tokens)

        evaluation = await self.engine.evaluate_strategy(
            context,
            tokens,
            auto_propose=not agent.auto_execute,
            creation_blocks=creation_blocks,
        )
        signal = evaluation.signal
        summary = describe_signal(signal)

        if signal is None:
            return AgentCycleResult(agent_id, "no_signal", detail=evaluation.reason)

        params = get_risk_params(context.risk_level)

        if not agent.auto_execute:
            if not evaluation.should_propose:
                return AgentCycleResult(
                    agent_id, "no_signal", signal=summary, detail=evaluation.reason
                )
            proposal = await self.proposals.create_proposal(
                agent.id, signal, slippage_bps=params.slippage_tolerance_bps
            )
            return AgentCycleResult(
                agent_id,
                "proposed",
                signal=summary,
                detail=f"Proposal {proposal.id} awaiting approval",
            )

        if signal.confidence < params.min_confidence:
            return AgentCycleResult(
                agent_id,
                "no_signal",
                signal=summary,
                detail=f"Confidence {signal.confidence} below {params.min_confidence}",
            )

        async with self.session_factory() as session:
            check = await RiskGuard(ExecutionRepository(session)).check_risk_limits(context, signal)
        if not check.ok:
            logger.info(f"Agent {agent_id} signal blocked by risk guard: {check.reason}")
            return AgentCycleResult(agent_id, "risk_blocked", signal=summary, detail=check.reason)

        return ApprovedTrade(signal=signal, slippage_bps=params.slippage_tolerance_bps)

    async def _execute(self, agent: AgentDB, trade: ApprovedTrade) -> AgentCycleResult:
        agent_id = str(agent.id)
        summary = describe_signal(trade.signal)
        outcome = await self.executor.execute_signal(
            agent.id, trade.signal, slippage_bps=trade.slippage_bps
        )
        if outcome.success:
            return AgentCycleResult(
                agent_id, "executed", signal=summary, detail=outcome.tx_hash
            )
        return AgentCycleResult(agent_id, "execution_failed", signal=summary, detail=outcome.error)

    # ==================== Loop ====================

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        logger.info(
            f"Scheduler started: interval {self.interval}s, "
            f"cooldown {self.cooldown.total_seconds():.0f}s"
        )
        while not stop_event.is_set():
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Scheduler cycle failed: {e}")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler stopped")
