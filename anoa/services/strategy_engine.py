"""
Strategy Engine - rule-based signal generation for trading agents.

Implements six strategy families, each a pure evaluator mapping
(agent, markets) to at most one TradeSignal:
- MomentumStrategy: multi-timeframe momentum with bonding-curve awareness
- YieldStrategy: dip buying / spike selling of yield-bearing tokens
- ArbitrageStrategy: short-term dislocation between 5m and 1h moves
- DCAStrategy: accumulation of blue chips, weighted toward discounts
- GridStrategy: range trading between support and resistance
- HedgeStrategy: rotation into USDC in broad sell-offs and back on recovery

StrategyEngine.evaluate_strategy() runs one cycle for one agent:
drawdown halt, snapshots, evaluation, optional enhancement and the
proposal decision.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional, Sequence

from ..core.config import get_settings
from ..core.errors import AppError, ErrorCode
from ..core.tokens import USDC_ADDRESS, get_token_by_symbol, is_known_token
from ..models.agent import AgentContext, RiskLevel, StrategyType
from ..models.market import MarketSnapshot, TimeframeMetrics
from ..models.signal import (
    ArbitrageMetadata,
    DcaMetadata,
    EvaluationResult,
    GridMetadata,
    HedgeMetadata,
    MomentumMetadata,
    TradeAction,
    TradeSignal,
    YieldMetadata,
    round_half_up,
)
from .risk_params import RiskParams, get_risk_params, safe_position_size

if TYPE_CHECKING:
    from .market_snapshot import SnapshotBuilder
    from .signal_enhancer import SignalEnhancer

logger = logging.getLogger(__name__)

# Yield-bearing tokens: MON LSTs, ETH LSTs and yield stablecoins
YIELD_TOKENS = [
    "APRMON", "GMON", "SMON", "SHMON", "EARNMON", "LVMON", "MCMON",
    "WSTETH", "WEETH", "EZETH", "PUFETH",
    "EARNAUSD", "SAUSD", "SUUSD", "SYZUSD", "WSRUSD", "LVUSD", "YZUSD",
]

# Blue-chip / high-liquidity tokens suitable for DCA
DCA_TOKENS = [
    "WMON", "WBTC", "WETH", "WSTETH", "WEETH", "EZETH",
    "SOL", "LBTC", "APRMON", "GMON", "SMON",
]

HEDGE_STABLE_SYMBOLS = {"USDC", "USDT", "USDT0", "AUSD", "EARNAUSD"}

ARBITRAGE_THRESHOLDS = {
    RiskLevel.HIGH: 1.5,
    RiskLevel.MEDIUM: 2.0,
    RiskLevel.LOW: 3.0,
}


def _fmt_pct(value: float, digits: int = 1) -> str:
    return f"{'+' if value > 0 else ''}{value:.{digits}f}%"


def round_amount(amount: float) -> float:
    """Truncate to 4 decimals so a rounded amount never exceeds its source."""
    return math.floor(amount * 10000) / 10000


def find_market(markets: Sequence[MarketSnapshot], symbol: str) -> Optional[MarketSnapshot]:
    """Find a registry token's market by address or uppercase symbol."""
    info = get_token_by_symbol(symbol)
    if info is None:
        return None
    for market in markets:
        if (
            market.token_address.lower() == info.address.lower()
            or market.symbol.upper() == symbol
        ):
            return market
    return None


class StrategyEvaluator(ABC):
    """
    Base class for strategy evaluators.

    evaluate() must be pure with respect to its inputs and return at most
    one signal: the best candidate that clears the tier's minConfidence.
    """

    strategy_type: StrategyType

    @abstractmethod
    def evaluate(
        self,
        agent: AgentContext,
        markets: Sequence[MarketSnapshot],
    ) -> Optional[TradeSignal]:
        pass

    @staticmethod
    def buy_size(agent: AgentContext, params: RiskParams, multiplier: float = 1.0) -> float:
        desired = agent.total_capital * params.max_position_pct * multiplier
        return round_amount(safe_position_size(desired, agent.wallet_balance))

    @staticmethod
    def sell_size(agent: AgentContext, token_address: str) -> float:
        return round_amount(agent.holding_balance(token_address))

    def signal(
        self,
        action: TradeAction,
        market_or_token: MarketSnapshot | tuple[str, str],
        amount: float,
        confidence: int,
        reason: str,
        metadata=None,
    ) -> TradeSignal:
        if isinstance(market_or_token, MarketSnapshot):
            token_address, symbol = market_or_token.token_address, market_or_token.symbol
        else:
            token_address, symbol = market_or_token
        return TradeSignal(
            action=action,
            token_address=token_address,
            token_symbol=symbol,
            amount=amount,
            confidence=confidence,
            reason=reason,
            strategy=self.strategy_type,
            metadata=metadata,
        )


class MomentumStrategy(StrategyEvaluator):
    """Buy strong multi-timeframe momentum, sell reversals and pre-graduation."""

    strategy_type = StrategyType.MOMENTUM

    @staticmethod
    def score(m5m: TimeframeMetrics, m1h: TimeframeMetrics, m4h: Optional[TimeframeMetrics]) -> float:
        """Weighted momentum score before volume and quality adjustments."""
        if m4h is not None:
            return (
                m5m.price_change_pct * 0.30
                + m1h.price_change_pct * 0.40
                + m4h.price_change_pct * 0.30
            )
        return m5m.price_change_pct * 0.45 + m1h.price_change_pct * 0.55

    def evaluate(self, agent, markets):
        params = get_risk_params(agent.risk_level)
        gas_reserve = get_settings().gas_reserve
        best: Optional[TradeSignal] = None
        best_confidence = 0

        for market in markets:
            if market.is_locked or market.is_too_new:
                continue

            m5m, m1h, m4h = market.metric("5m"), market.metric("1h"), market.metric("4h")
            if m5m is None or m1h is None:
                continue

            score = self.score(m5m, m1h, m4h)
            score *= 1.2 if m5m.volume_change_pct > 0 else 0.8

            progress = market.progress_pct
            if not market.is_graduated and progress > 0:
                if 50 <= progress <= 70 and score > 0:
                    score *= 1.10

                # Take profit before the graduation lock
                if progress > 85:
                    balance = self.sell_size(agent, market.token_address)
                    if balance > 0:
                        confidence = min(90, round_half_up(60 + progress * 0.3))
                        if confidence > best_confidence and confidence >= params.min_confidence:
                            best_confidence = confidence
                            best = self.signal(
                                TradeAction.SELL,
                                market,
                                balance,
                                confidence,
                                f"Pre-graduation sell: progress {progress:.0f}%, "
                                f"take profit before graduation lock",
                                MomentumMetadata(
                                    score=score,
                                    price_change_5m=m5m.price_change_pct,
                                    price_change_1h=m1h.price_change_pct,
                                    price_change_4h=m4h.price_change_pct if m4h else None,
                                    bonding_curve_progress=progress,
                                    graduation_exit=True,
                                ),
                            )
                        continue

            if score > 0:
                if market.volume_24h > 1000:
                    score *= 1.15
                if market.holders > 50:
                    score *= 1.10
            if 0 < market.market_cap < 100 or 0 < market.liquidity < 50:
                continue
            if m4h is not None and score > 0 and m4h.price_change_pct > 0:
                score *= 1.08

            # Portfolio guard, only with a known wallet balance
            if agent.wallet_balance is not None:
                if score > 0 and agent.wallet_balance <= gas_reserve:
                    continue
                if score < 0 and agent.holding_balance(market.token_address) <= 0:
                    continue

            metadata = MomentumMetadata(
                score=score,
                price_change_5m=m5m.price_change_pct,
                price_change_1h=m1h.price_change_pct,
                price_change_4h=m4h.price_change_pct if m4h else None,
                bonding_curve_progress=progress,
            )
            tf4h = f", 4h {_fmt_pct(m4h.price_change_pct)}" if m4h else ""

            if score > 3 and m5m.tx_count >= 5:
                confidence = min(95, round_half_up(50 + score * 5))
                if confidence > best_confidence and confidence >= params.min_confidence:
                    amount = self.buy_size(agent, params)
                    if amount <= 0:
                        continue
                    best_confidence = confidence
                    best = self.signal(
                        TradeAction.BUY,
                        market,
                        amount,
                        confidence,
                        f"Strong momentum: 5m {_fmt_pct(m5m.price_change_pct)}, "
                        f"1h {_fmt_pct(m1h.price_change_pct)}{tf4h}, "
                        f"vol {'rising' if m5m.volume_change_pct > 0 else 'falling'}",
                        metadata,
                    )

            if score < -3 and m5m.tx_count >= 3:
                confidence = min(95, round_half_up(50 + abs(score) * 5))
                if confidence > best_confidence and confidence >= params.min_confidence:
                    amount = self.sell_size(agent, market.token_address)
                    if amount <= 0:
                        continue
                    best_confidence = confidence
                    best = self.signal(
                        TradeAction.SELL,
                        market,
                        amount,
                        confidence,
                        f"Momentum reversal: 5m {_fmt_pct(m5m.price_change_pct)}, "
                        f"1h {_fmt_pct(m1h.price_change_pct)}{tf4h}, selling to protect capital",
                        metadata,
                    )

        return best


class YieldStrategy(StrategyEvaluator):
    """Accumulate yield-bearing tokens on dips, take profit on spikes."""

    strategy_type = StrategyType.YIELD

    def evaluate(self, agent, markets):
        params = get_risk_params(agent.risk_level)
        best: Optional[TradeSignal] = None
        best_confidence = 0

        for symbol in YIELD_TOKENS:
            info = get_token_by_symbol(symbol)
            market = find_market(markets, symbol)
            if info is None or market is None or market.is_locked:
                continue

            m1h, m4h = market.metric("1h"), market.metric("4h")
            if m1h is None:
                continue
            primary, label = (m4h, "4h") if m4h is not None else (m1h, "1h")
            change = primary.price_change_pct
            token = (info.address, symbol)

            if change < -3 and market.liquidity > 0 and not market.is_too_new:
                confidence = min(85, round_half_up(60 + abs(change) * 2.5))
                amount = self.buy_size(agent, params)
                if confidence > best_confidence and confidence >= params.min_confidence and amount > 0:
                    best_confidence = confidence
                    best = self.signal(
                        TradeAction.BUY,
                        token,
                        amount,
                        confidence,
                        f"{symbol} dipped {change:.1f}% in {label}, buying for yield accumulation",
                        YieldMetadata(
                            timeframe=label, price_change=change, price_change_1h=m1h.price_change_pct
                        ),
                    )

            if change > 5 and m1h.price_change_pct < 2:
                confidence = min(80, round_half_up(55 + change * 2))
                amount = self.sell_size(agent, info.address)
                if confidence > best_confidence and confidence >= params.min_confidence and amount > 0:
                    best_confidence = confidence
                    best = self.signal(
                        TradeAction.SELL,
                        token,
                        amount,
                        confidence,
                        f"{symbol} spiked {_fmt_pct(change)} in {label}, taking profit on yield token",
                        YieldMetadata(
                            timeframe=label, price_change=change, price_change_1h=m1h.price_change_pct
                        ),
                    )

        return best


class ArbitrageStrategy(StrategyEvaluator):
    """
    Trade against short-term dislocations.

    The spread compares the 5m move with the 1h move rescaled to 5 minutes
    (1h / 12), a rough proxy for a temporary mispricing between venues.
    """

    strategy_type = StrategyType.ARBITRAGE

    def evaluate(self, agent, markets):
        params = get_risk_params(agent.risk_level)
        threshold = ARBITRAGE_THRESHOLDS.get(agent.risk_level, ARBITRAGE_THRESHOLDS[RiskLevel.MEDIUM])

        for market in markets:
            if market.is_locked or market.is_too_new:
                continue
            m5m, m1h = market.metric("5m"), market.metric("1h")
            if m5m is None or m1h is None:
                continue

            spread = abs(m5m.price_change_pct - m1h.price_change_pct / 12)
            if spread <= threshold or m5m.tx_count < 3:
                continue

            confidence = min(90, round_half_up(55 + spread * 8))
            if confidence < params.min_confidence:
                continue

            action = TradeAction.SELL if m5m.price_change_pct > 0 else TradeAction.BUY
            if action == TradeAction.SELL:
                amount = self.sell_size(agent, market.token_address)
            else:
                amount = self.buy_size(agent, params)
            if amount <= 0:
                continue

            venues = ["nadfun"]
            if is_known_token(market.token_address):
                venues += ["lifi", "relay"]

            return self.signal(
                action,
                market,
                amount,
                confidence,
                f"Price spread detected: 5m {_fmt_pct(m5m.price_change_pct, 2)} vs 1h trend, "
                f"potential cross-venue arbitrage ({'/'.join(venues)})",
                ArbitrageMetadata(spread=spread, threshold=threshold, venues=venues),
            )

        return None


class DCAStrategy(StrategyEvaluator):
    """Always accumulate; pick the blue chip trading at the deepest discount."""

    strategy_type = StrategyType.DCA

    def evaluate(self, agent, markets):
        params = get_risk_params(agent.risk_level)
        best_target = None

        for symbol in DCA_TOKENS:
            info = get_token_by_symbol(symbol)
            market = find_market(markets, symbol)
            if info is None or market is None:
                continue
            if market.is_locked or market.is_too_new:
                continue
            m4h, m1h = market.metric("4h"), market.metric("1h")
            primary, label = (m4h, "4h") if m4h is not None else (m1h, "1h")
            if primary is None:
                continue

            discount = -primary.price_change_pct
            if best_target is None or discount > best_target[2]:
                best_target = ((info.address, market.symbol or symbol), label, discount)

        if best_target is None:
            return None

        token, label, discount = best_target
        confidence = round_half_up(65 + min(20, max(0, discount * 3)))
        if confidence < params.min_confidence:
            return None

        amount = self.buy_size(agent, params, multiplier=0.5)
        if amount <= 0:
            return None

        detail = f"{discount:.1f}% below {label} avg" if discount > 0 else "at current price"
        return self.signal(
            TradeAction.BUY,
            token,
            amount,
            confidence,
            f"DCA buy: {token[1]} {detail}",
            DcaMetadata(timeframe=label, discount=discount),
        )


class GridStrategy(StrategyEvaluator):
    """Buy near the bottom of the recent range, sell near the top."""

    strategy_type = StrategyType.GRID

    def evaluate(self, agent, markets):
        params = get_risk_params(agent.risk_level)

        for market in markets:
            if market.is_locked or market.is_too_new:
                continue
            m4h, m1h, m5m = market.metric("4h"), market.metric("1h"), market.metric("5m")
            if m1h is None or m5m is None or market.volume_24h < 1000:
                continue

            range_tf, label = (m4h, "4h") if m4h is not None else (m1h, "1h")
            position = range_tf.price_change_pct
            short = m5m.price_change_pct
            metadata = GridMetadata(timeframe=label, range_change=position, short_change=short)

            if position < -4 and short > -1:
                confidence = min(85, round_half_up(55 + abs(position) * 3))
                if confidence >= params.min_confidence:
                    amount = self.buy_size(agent, params)
                    if amount <= 0:
                        continue
                    return self.signal(
                        TradeAction.BUY,
                        market,
                        amount,
                        confidence,
                        f"Grid buy zone: {market.symbol} near {label} low ({position:.1f}%), "
                        f"5m stabilizing at {_fmt_pct(short)}",
                        metadata,
                    )

            if position > 6 and short < 1:
                confidence = min(85, round_half_up(55 + position * 2.5))
                if confidence >= params.min_confidence:
                    amount = self.sell_size(agent, market.token_address)
                    if amount <= 0:
                        continue
                    return self.signal(
                        TradeAction.SELL,
                        market,
                        amount,
                        confidence,
                        f"Grid sell zone: {market.symbol} near {label} high ({_fmt_pct(position)}), "
                        f"momentum fading",
                        metadata,
                    )

        return None


class HedgeStrategy(StrategyEvaluator):
    """
    Rotate into USDC when the market broadly declines, back into the
    strongest recovering token when it turns.

    Market-wide changes are averaged weighted by market cap; when no market
    reports a market cap the plain mean is used.
    """

    strategy_type = StrategyType.HEDGE

    @staticmethod
    def weighted_change(markets: Sequence[MarketSnapshot], timeframe: str) -> float:
        def change(m: MarketSnapshot) -> float:
            metric = m.metric(timeframe)
            return metric.price_change_pct if metric else 0.0

        total_weight = sum(max(0.0, m.market_cap) for m in markets)
        if total_weight > 0:
            return sum(change(m) * max(0.0, m.market_cap) for m in markets) / total_weight
        return sum(change(m) for m in markets) / len(markets)

    def evaluate(self, agent, markets):
        params = get_risk_params(agent.risk_level)
        tradable = [
            m for m in markets
            if m.symbol.upper() not in HEDGE_STABLE_SYMBOLS and not m.is_locked
        ]
        if not tradable:
            return None

        has_4h = any(m.metric("4h") is not None for m in tradable)
        label = "4h" if has_4h else "1h"
        confirm = self.weighted_change(tradable, "1h")
        primary = self.weighted_change(tradable, "4h") if has_4h else confirm

        if primary < -5 and confirm < -1:
            confidence = min(90, round_half_up(55 + abs(primary) * 3))
            if confidence < params.min_confidence:
                return None
            amount = self.buy_size(agent, params, multiplier=1.5)
            if amount <= 0:
                return None
            return self.signal(
                TradeAction.BUY,
                (USDC_ADDRESS, "USDC"),
                amount,
                confidence,
                f"Market hedge: avg {label} change {primary:.1f}%, 1h {confirm:.1f}%, moving to USDC",
                HedgeMetadata(
                    mode="defensive",
                    primary_change=primary,
                    confirm_change=confirm,
                    markets_considered=len(tradable),
                ),
            )

        if primary > 3 and confirm > 0.5:
            confidence = min(85, round_half_up(50 + primary * 4))
            if confidence < params.min_confidence:
                return None
            amount = self.buy_size(agent, params)
            if amount <= 0:
                return None

            def recovery(m: MarketSnapshot) -> float:
                metric = m.metric(label)
                return metric.price_change_pct if metric else 0.0

            candidates = [m for m in tradable if not m.is_too_new]
            if not candidates:
                return None
            best = candidates[0]
            for market in candidates[1:]:
                if recovery(market) > recovery(best):
                    best = market

            return self.signal(
                TradeAction.BUY,
                best,
                amount,
                confidence,
                f"Hedge exit: market recovering (avg {label} {_fmt_pct(primary)}), "
                f"re-entering {best.symbol}",
                HedgeMetadata(
                    mode="recovery",
                    primary_change=primary,
                    confirm_change=confirm,
                    markets_considered=len(tradable),
                ),
            )

        return None


STRATEGY_REGISTRY: dict[StrategyType, StrategyEvaluator] = {
    StrategyType.MOMENTUM: MomentumStrategy(),
    StrategyType.YIELD: YieldStrategy(),
    StrategyType.ARBITRAGE: ArbitrageStrategy(),
    StrategyType.DCA: DCAStrategy(),
    StrategyType.GRID: GridStrategy(),
    StrategyType.HEDGE: HedgeStrategy(),
}


def get_strategy(strategy_type: StrategyType | str) -> StrategyEvaluator:
    try:
        return STRATEGY_REGISTRY[StrategyType(strategy_type)]
    except (KeyError, ValueError) as e:
        raise AppError(
            ErrorCode.UNKNOWN_STRATEGY,
            f"Unknown strategy: {strategy_type}",
            details={"strategy": str(strategy_type)},
        ) from e


class StrategyEngine:
    """
    Runs one evaluation cycle for an agent.

    Usage:
        engine = StrategyEngine(snapshot_builder, enhancer)
        result = await engine.evaluate_strategy(agent, tokens, auto_propose=True)
    """

    def __init__(
        self,
        snapshot_builder: "SnapshotBuilder",
        enhancer: Optional["SignalEnhancer"] = None,
    ):
        self.snapshot_builder = snapshot_builder
        self.enhancer = enhancer

    async def evaluate_strategy(
        self,
        agent: AgentContext,
        tokens: Sequence[str],
        auto_propose: bool = True,
        creation_blocks: Optional[dict[str, int]] = None,
    ) -> EvaluationResult:
        strategy = get_strategy(agent.strategy)
        params = get_risk_params(agent.risk_level)

        if agent.max_drawdown > params.max_drawdown_limit:
            return EvaluationResult(
                agent_id=agent.id,
                reason=(
                    f"Trading halted: max drawdown {agent.max_drawdown * 100:.1f}% exceeds "
                    f"{agent.risk_level.value} limit of {params.max_drawdown_limit * 100:.0f}%"
                ),
            )

        markets = await self.snapshot_builder.build(tokens, creation_blocks)
        if not markets:
            return EvaluationResult(
                agent_id=agent.id,
                reason="No market data available for analyzed tokens",
            )

        signal = strategy.evaluate(agent, markets)
        if signal is None:
            return EvaluationResult(
                agent_id=agent.id,
                markets_evaluated=len(markets),
                reason=(
                    f"No actionable signal found across {len(markets)} tokens "
                    f"for {agent.strategy.value} strategy"
                ),
            )

        original_confidence = signal.confidence
        enhanced = False
        reason = f"Signal generated: {signal.action.value} {signal.token_symbol} - {signal.reason}"

        if self.enhancer is not None:
            enhancement = await self.enhancer.enhance(signal, markets, agent)
            signal = signal.with_confidence(enhancement.adjusted_confidence)
            enhanced = enhancement.used
            if enhancement.used:
                reason += f" [AI {enhancement.provider}: {enhancement.reasoning}]"

        should_propose = auto_propose and signal.confidence >= params.min_confidence
        logger.info(
            f"Agent {agent.id} {agent.strategy.value}: {signal.action.value} "
            f"{signal.token_symbol} amount={signal.amount} confidence={signal.confidence} "
            f"(was {original_confidence}) propose={should_propose}"
        )

        return EvaluationResult(
            agent_id=agent.id,
            signal=signal,
            original_confidence=original_confidence,
            enhanced=enhanced,
            should_propose=should_propose,
            markets_evaluated=len(markets),
            reason=reason,
        )
