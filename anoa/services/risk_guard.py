"""
Risk Guard - pre-trade gate.

Validates a candidate signal against the agent's limits and today's
trading history. Checks run in order and the first failure wins:

1. Running max drawdown within the tier limit
2. Today's realized loss within dailyLossLimit (% of capital)
3. Today's successful trade count below maxDailyTrades
4. Amount is a real number of at least the minimum trade size
5. A buy never commits more than half of total capital

The guard fails closed: if the ledger cannot be read, the loss is taken as
-inf and the count as +inf, so the trade is blocked.
"""

import logging
import math
import uuid

from ..core.config import get_settings
from ..db.repositories.execution import ExecutionRepository
from ..models.agent import AgentContext
from ..models.signal import RiskCheckResult, TradeSignal
from .risk_params import get_risk_params

logger = logging.getLogger(__name__)

# A single buy may use at most this fraction of total capital
MAX_BUY_CAPITAL_FRACTION = 0.5


class RiskGuard:
    """
    Usage:
        guard = RiskGuard(ExecutionRepository(session))
        result = await guard.check_risk_limits(agent, signal)
        if not result.ok:
            logger.info(result.reason)
    """

    def __init__(self, executions: ExecutionRepository):
        self.executions = executions

    async def _today_pnl(self, agent_id: uuid.UUID) -> float:
        try:
            return await self.executions.get_today_realized_pnl(agent_id)
        except Exception as e:
            logger.error(f"Risk guard could not read today's PnL for {agent_id}: {e}")
            return -math.inf

    async def _today_trades(self, agent_id: uuid.UUID) -> float:
        try:
            return await self.executions.count_today_trades(agent_id)
        except Exception as e:
            logger.error(f"Risk guard could not read today's trades for {agent_id}: {e}")
            return math.inf

    async def check_risk_limits(self, agent: AgentContext, signal: TradeSignal) -> RiskCheckResult:
        params = get_risk_params(agent.risk_level)
        agent_id = uuid.UUID(str(agent.id))

        if agent.max_drawdown > params.max_drawdown_limit:
            return RiskCheckResult.blocked(
                f"Max drawdown {agent.max_drawdown * 100:.1f}% exceeds "
                f"{params.max_drawdown_limit * 100:.0f}% limit"
            )

        today_pnl = await self._today_pnl(agent_id)
        if today_pnl < 0:
            if math.isinf(today_pnl) or agent.total_capital <= 0:
                loss_pct = math.inf
            else:
                loss_pct = abs(today_pnl) / agent.total_capital * 100
            if loss_pct > agent.daily_loss_limit:
                return RiskCheckResult.blocked(
                    f"Daily loss limit reached: {loss_pct:.1f}% > {agent.daily_loss_limit:.1f}%"
                )

        today_trades = await self._today_trades(agent_id)
        if today_trades >= agent.max_daily_trades:
            return RiskCheckResult.blocked(
                f"Max daily trades reached ({today_trades}/{agent.max_daily_trades})"
            )

        min_trade = get_settings().min_trade_size
        if math.isnan(signal.amount) or signal.amount < min_trade:
            return RiskCheckResult.blocked(f"Trade amount {signal.amount} below minimum {min_trade}")

        if (
            signal.is_buy
            and agent.total_capital > 0
            and signal.amount > agent.total_capital * MAX_BUY_CAPITAL_FRACTION
        ):
            return RiskCheckResult.blocked(
                f"Trade amount {signal.amount} exceeds {MAX_BUY_CAPITAL_FRACTION * 100:.0f}% "
                f"of capital ({agent.total_capital})"
            )

        return RiskCheckResult.passed()
