"""
Tests for the strategy evaluators and the evaluation cycle.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from anoa.core.errors import AppError, ErrorCode
from anoa.core.tokens import USDC_ADDRESS, get_token_by_symbol
from anoa.models.agent import Holding, RiskLevel, StrategyType
from anoa.models.market import TimeframeMetrics
from anoa.models.signal import EnhancementResult, TradeAction
from anoa.services.risk_params import get_risk_params, safe_position_size
from anoa.services.strategy_engine import (
    STRATEGY_REGISTRY,
    ArbitrageStrategy,
    DCAStrategy,
    GridStrategy,
    HedgeStrategy,
    MomentumStrategy,
    StrategyEngine,
    YieldStrategy,
    find_market,
    get_strategy,
    round_amount,
)

CHOG = "0x350035555E10d9AfAF1566AaebfCeD5BA6C27777"
MEME = "0x1111111111111111111111111111111111111111"


def registry(symbol: str) -> str:
    return get_token_by_symbol(symbol).address


@pytest.mark.unit
class TestPositionSizing:
    """Tests for risk parameters and safe position sizing."""

    def test_gas_reserve_caps_size(self):
        """walletBalance=10, gasReserve=5, desired 8 -> 5."""
        assert safe_position_size(8, 10, gas_reserve=5) == 5

    def test_unknown_balance_sizes_to_zero(self):
        """A missing wallet balance never counts as enough."""
        assert safe_position_size(8, None, gas_reserve=5) == 0.0

    def test_balance_below_reserve(self):
        assert safe_position_size(8, 3, gas_reserve=5) == 0.0

    def test_default_reserve_from_settings(self):
        assert safe_position_size(100, 20) == 15.0

    @pytest.mark.parametrize(
        "level,min_confidence",
        [(RiskLevel.LOW, 75), ("medium", 60), ("HIGH", 45), ("extreme", 60), (None, 60)],
    )
    def test_risk_params_lookup(self, level, min_confidence):
        """Unknown tiers fall back to medium."""
        assert get_risk_params(level).min_confidence == min_confidence

    def test_round_amount_truncates(self):
        assert round_amount(1.23456789) == 1.2345
        assert round_amount(0.99999) == 0.9999


@pytest.mark.unit
class TestMomentumStrategy:
    """Tests for MomentumStrategy."""

    def test_score_without_4h(self):
        """5m=+6%, 1h=+4%, no 4h -> 6*0.45 + 4*0.55 = 4.9."""
        score = MomentumStrategy.score(
            TimeframeMetrics(price_change_pct=6.0),
            TimeframeMetrics(price_change_pct=4.0),
            None,
        )
        assert score == pytest.approx(4.9)

    def test_score_with_4h(self):
        score = MomentumStrategy.score(
            TimeframeMetrics(price_change_pct=6.0),
            TimeframeMetrics(price_change_pct=4.0),
            TimeframeMetrics(price_change_pct=2.0),
        )
        assert score == pytest.approx(6 * 0.30 + 4 * 0.40 + 2 * 0.30)

    def test_strong_momentum_buy(self, make_agent, make_market):
        """Positive momentum above the threshold becomes a BUY."""
        signal = MomentumStrategy().evaluate(make_agent(), [make_market(m5=6.0, h1=4.0)])

        assert signal is not None
        assert signal.action == TradeAction.BUY
        assert signal.token_address == MEME
        assert signal.amount == 10.0
        # 4.9 * 1.2 (rising volume) * 1.15 (volume) * 1.10 (holders) -> 87
        assert signal.confidence == 87
        assert signal.metadata.kind == "momentum"

    def test_locked_token_never_selected(self, make_agent, make_market):
        """The strongest token is skipped when its curve is locked."""
        markets = [
            make_market(token_address=MEME, m5=20.0, h1=20.0, is_locked=True),
            make_market(token_address=CHOG, symbol="CHOG", m5=6.0, h1=4.0),
        ]
        signal = MomentumStrategy().evaluate(make_agent(), markets)
        assert signal.token_address == CHOG

    def test_too_new_token_skipped(self, make_agent, make_market):
        market = make_market(m5=6.0, h1=4.0, created_at_block=995, latest_block=1000)
        assert MomentumStrategy().evaluate(make_agent(), [market]) is None

    def test_unknown_wallet_balance_blocks_buy(self, make_agent, make_market):
        agent = make_agent(wallet_balance=None)
        assert MomentumStrategy().evaluate(agent, [make_market(m5=6.0, h1=4.0)]) is None

    def test_wallet_at_gas_reserve_blocks_buy(self, make_agent, make_market):
        agent = make_agent(wallet_balance=5.0)
        assert MomentumStrategy().evaluate(agent, [make_market(m5=6.0, h1=4.0)]) is None

    def test_reversal_sells_holding(self, make_agent, make_market):
        """Negative momentum sells the full holding."""
        agent = make_agent(holdings=[(MEME, 250.123456)])
        market = make_market(m5=-6.0, h1=-4.0, volume_change=-10.0)

        signal = MomentumStrategy().evaluate(agent, [market])

        assert signal.action == TradeAction.SELL
        assert signal.amount == 250.1234
        # -4.9 * 0.8 = -3.92 -> 50 + 19.6
        assert signal.confidence == 70

    def test_reversal_without_holding(self, make_agent, make_market):
        market = make_market(m5=-6.0, h1=-4.0, volume_change=-10.0)
        assert MomentumStrategy().evaluate(make_agent(), [market]) is None

    def test_pre_graduation_sell(self, make_agent, make_market):
        """Above 85% curve progress the holding is sold before the lock."""
        agent = make_agent(holdings=[(MEME, 500.0)])
        market = make_market(m5=2.0, h1=1.0, bonding_curve_progress=9000)

        signal = MomentumStrategy().evaluate(agent, [market])

        assert signal.action == TradeAction.SELL
        assert signal.amount == 500.0
        assert signal.confidence == 87
        assert signal.metadata.graduation_exit is True

    def test_pre_graduation_without_holding_scores_normally(self, make_agent, make_market):
        """Without a holding the curve zone does not force an exit."""
        market = make_market(m5=6.0, h1=4.0, bonding_curve_progress=9000)
        signal = MomentumStrategy().evaluate(make_agent(), [market])
        assert signal.action == TradeAction.BUY
        assert signal.metadata.graduation_exit is False

    def test_min_confidence_gate(self, make_agent, make_market):
        """A confidence 70 signal passes medium (60) but not low (75)."""
        market = make_market(m5=6.0, h1=4.0, volume_change=0.0, volume_24h=500.0, holders=10)

        medium = MomentumStrategy().evaluate(make_agent(), [market])
        low = MomentumStrategy().evaluate(make_agent(risk_level=RiskLevel.LOW), [market])

        assert medium.confidence == 70
        assert low is None

    def test_tiny_market_skipped(self, make_agent, make_market):
        market = make_market(m5=6.0, h1=4.0, market_cap=50.0)
        assert MomentumStrategy().evaluate(make_agent(), [market]) is None


@pytest.mark.unit
class TestYieldStrategy:
    """Tests for YieldStrategy."""

    def test_dip_buy(self, make_agent, make_market):
        market = make_market(
            token_address=registry("APRMON"), symbol="APRMON", h1=-1.0, h4=-6.0, liquidity=1000.0
        )
        signal = YieldStrategy().evaluate(make_agent(strategy=StrategyType.YIELD), [market])

        assert signal.action == TradeAction.BUY
        assert signal.token_symbol == "APRMON"
        assert signal.confidence == 75
        assert signal.metadata.timeframe == "4h"

    def test_spike_sell(self, make_agent, make_market):
        address = registry("GMON")
        agent = make_agent(strategy=StrategyType.YIELD, holdings=[(address, 40.0)])
        market = make_market(token_address=address, symbol="GMON", h1=1.0, h4=8.0)

        signal = YieldStrategy().evaluate(agent, [market])

        assert signal.action == TradeAction.SELL
        assert signal.amount == 40.0
        assert signal.confidence == 71

    def test_locked_yield_token_skipped(self, make_agent, make_market):
        market = make_market(
            token_address=registry("APRMON"), symbol="APRMON", h1=-1.0, h4=-6.0,
            liquidity=1000.0, is_locked=True,
        )
        assert YieldStrategy().evaluate(make_agent(), [market]) is None

    def test_non_yield_tokens_ignored(self, make_agent, make_market):
        market = make_market(h1=-1.0, h4=-6.0, liquidity=1000.0)
        assert YieldStrategy().evaluate(make_agent(), [market]) is None


@pytest.mark.unit
class TestArbitrageStrategy:
    """Tests for ArbitrageStrategy."""

    def test_dislocation_buy(self, make_agent, make_market):
        """5m -4% against a flat hour: spread 4 > 2."""
        signal = ArbitrageStrategy().evaluate(make_agent(), [make_market(m5=-4.0, h1=0.0)])

        assert signal.action == TradeAction.BUY
        assert signal.confidence == 87
        assert signal.metadata.spread == pytest.approx(4.0)
        assert signal.metadata.venues == ["nadfun"]

    def test_dislocation_sell_known_token(self, make_agent, make_market):
        agent = make_agent(holdings=[(CHOG, 100.0)])
        market = make_market(token_address=CHOG, symbol="CHOG", m5=4.0, h1=12.0)

        signal = ArbitrageStrategy().evaluate(agent, [market])

        assert signal.action == TradeAction.SELL
        assert signal.confidence == 79
        assert signal.metadata.venues == ["nadfun", "lifi", "relay"]

    def test_threshold_depends_on_tier(self, make_agent, make_market):
        """A 2.5 spread clears high (1.5) and medium (2.0) but not low (3.0)."""
        market = make_market(m5=-2.5, h1=0.0)
        assert ArbitrageStrategy().evaluate(make_agent(risk_level=RiskLevel.HIGH), [market])
        assert ArbitrageStrategy().evaluate(make_agent(risk_level=RiskLevel.LOW), [market]) is None

    def test_locked_skipped(self, make_agent, make_market):
        market = make_market(m5=-4.0, h1=0.0, is_locked=True)
        assert ArbitrageStrategy().evaluate(make_agent(), [market]) is None


@pytest.mark.unit
class TestDCAStrategy:
    """Tests for DCAStrategy."""

    def test_picks_deepest_discount(self, make_agent, make_market):
        markets = [
            make_market(token_address=registry("WMON"), symbol="WMON", h4=-2.0),
            make_market(token_address=registry("WETH"), symbol="WETH", h4=-5.0),
        ]
        signal = DCAStrategy().evaluate(make_agent(strategy=StrategyType.DCA), markets)

        assert signal.token_symbol == "WETH"
        assert signal.confidence == 80
        # Half of the normal position size
        assert signal.amount == 5.0
        assert "below 4h avg" in signal.reason

    def test_buys_without_discount(self, make_agent, make_market):
        market = make_market(token_address=registry("WBTC"), symbol="WBTC", h4=2.0)
        signal = DCAStrategy().evaluate(make_agent(), [market])
        assert signal.confidence == 65
        assert "at current price" in signal.reason

    def test_low_tier_needs_discount(self, make_agent, make_market):
        market = make_market(token_address=registry("WBTC"), symbol="WBTC", h4=2.0)
        assert DCAStrategy().evaluate(make_agent(risk_level=RiskLevel.LOW), [market]) is None

    def test_locked_skipped(self, make_agent, make_market):
        market = make_market(token_address=registry("WBTC"), symbol="WBTC", h4=-5.0, is_locked=True)
        assert DCAStrategy().evaluate(make_agent(), [market]) is None


@pytest.mark.unit
class TestGridStrategy:
    """Tests for GridStrategy."""

    def test_buy_zone(self, make_agent, make_market):
        signal = GridStrategy().evaluate(make_agent(), [make_market(m5=0.5, h1=-2.0, h4=-6.0)])
        assert signal.action == TradeAction.BUY
        assert signal.confidence == 73

    def test_sell_zone(self, make_agent, make_market):
        agent = make_agent(holdings=[(MEME, 80.0)])
        signal = GridStrategy().evaluate(agent, [make_market(m5=0.2, h1=2.0, h4=8.0)])
        assert signal.action == TradeAction.SELL
        assert signal.confidence == 75
        assert signal.amount == 80.0

    def test_low_volume_skipped(self, make_agent, make_market):
        market = make_market(m5=0.5, h1=-2.0, h4=-6.0, volume_24h=500.0)
        assert GridStrategy().evaluate(make_agent(), [market]) is None


@pytest.mark.unit
class TestHedgeStrategy:
    """Tests for HedgeStrategy."""

    def test_weighted_change_uses_market_cap(self, make_market):
        markets = [
            make_market(h4=-8.0, market_cap=1000.0),
            make_market(h4=-6.0, market_cap=3000.0),
        ]
        assert HedgeStrategy.weighted_change(markets, "4h") == pytest.approx(-6.5)

    def test_weighted_change_falls_back_to_mean(self, make_market):
        markets = [make_market(h1=2.0), make_market(h1=4.0)]
        assert HedgeStrategy.weighted_change(markets, "1h") == pytest.approx(3.0)

    def test_defensive_rotation_to_usdc(self, make_agent, make_market):
        markets = [
            make_market(h1=-3.0, h4=-8.0, market_cap=1000.0),
            make_market(token_address=CHOG, symbol="CHOG", h1=-2.0, h4=-6.0, market_cap=3000.0),
        ]
        signal = HedgeStrategy().evaluate(make_agent(strategy=StrategyType.HEDGE), markets)

        assert signal.action == TradeAction.BUY
        assert signal.token_address == USDC_ADDRESS
        assert signal.amount == 15.0
        assert signal.confidence == 75
        assert signal.metadata.mode == "defensive"

    def test_recovery_reenters_strongest(self, make_agent, make_market):
        markets = [
            make_market(h1=1.0, h4=5.0),
            make_market(token_address=CHOG, symbol="CHOG", h1=1.0, h4=2.0),
        ]
        signal = HedgeStrategy().evaluate(make_agent(), markets)

        assert signal.metadata.mode == "recovery"
        assert signal.token_address == MEME
        assert signal.confidence == 64

    def test_recovery_skips_too_new(self, make_agent, make_market):
        markets = [
            make_market(h1=1.0, h4=5.0, created_at_block=995, latest_block=1000),
            make_market(token_address=CHOG, symbol="CHOG", h1=1.0, h4=2.0),
        ]
        signal = HedgeStrategy().evaluate(make_agent(), markets)
        assert signal.token_address == CHOG

    def test_stables_and_locked_excluded(self, make_agent, make_market):
        markets = [
            make_market(token_address=USDC_ADDRESS, symbol="USDC", h1=-3.0, h4=-8.0),
            make_market(h1=-3.0, h4=-8.0, is_locked=True),
        ]
        assert HedgeStrategy().evaluate(make_agent(), markets) is None

    def test_calm_market(self, make_agent, make_market):
        assert HedgeStrategy().evaluate(make_agent(), [make_market(h1=0.2, h4=1.0)]) is None


@pytest.mark.unit
class TestLockedTokens:
    """A locked token is never proposed, whatever the strategy."""

    @pytest.mark.parametrize("strategy", list(StrategyType))
    def test_no_strategy_trades_locked_tokens(self, strategy, make_agent, make_market):
        agent = make_agent(
            strategy=strategy,
            holdings=[Holding(token_address=registry("WETH"), balance=10.0)],
        )
        markets = [
            make_market(
                token_address=registry("WETH"), symbol="WETH",
                m5=-8.0, h1=-10.0, h4=-12.0, is_locked=True, liquidity=1000.0,
            )
        ]
        signal = STRATEGY_REGISTRY[strategy].evaluate(agent, markets)
        assert signal is None or signal.token_address != registry("WETH")


@pytest.mark.unit
class TestStrategyRegistry:
    def test_get_strategy(self):
        assert isinstance(get_strategy("GRID"), GridStrategy)
        assert isinstance(get_strategy(StrategyType.HEDGE), HedgeStrategy)

    def test_unknown_strategy(self):
        with pytest.raises(AppError) as exc_info:
            get_strategy("SCALPING")
        assert exc_info.value.code == ErrorCode.UNKNOWN_STRATEGY

    def test_find_market_by_symbol(self, make_market):
        market = make_market(token_address="0xother", symbol="WETH")
        assert find_market([market], "WETH") is market
        assert find_market([market], "NOPE") is None


@pytest.mark.unit
class TestStrategyEngine:
    """Tests for StrategyEngine.evaluate_strategy."""

    @pytest.fixture
    def builder(self):
        builder = MagicMock()
        builder.build = AsyncMock(return_value=[])
        return builder

    @pytest.mark.asyncio
    async def test_drawdown_halts_trading(self, builder, make_agent):
        """Above the tier drawdown limit nothing is fetched or proposed."""
        engine = StrategyEngine(builder)
        result = await engine.evaluate_strategy(make_agent(max_drawdown=0.25), [MEME])

        assert result.signal is None
        assert "Trading halted" in result.reason
        builder.build.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_market_data(self, builder, make_agent):
        result = await StrategyEngine(builder).evaluate_strategy(make_agent(), [MEME])
        assert result.reason == "No market data available for analyzed tokens"

    @pytest.mark.asyncio
    async def test_no_signal(self, builder, make_agent, make_market):
        builder.build.return_value = [make_market(m5=0.1, h1=0.1)]
        result = await StrategyEngine(builder).evaluate_strategy(make_agent(), [MEME])

        assert result.signal is None
        assert result.markets_evaluated == 1
        assert "No actionable signal" in result.reason

    @pytest.mark.asyncio
    async def test_signal_is_proposed(self, builder, make_agent, make_market):
        builder.build.return_value = [make_market(m5=6.0, h1=4.0)]
        result = await StrategyEngine(builder).evaluate_strategy(
            make_agent(), [MEME], creation_blocks={MEME: 10}
        )

        assert result.should_propose is True
        assert result.original_confidence == 87
        assert result.enhanced is False
        builder.build.assert_awaited_once_with([MEME], {MEME: 10})

    @pytest.mark.asyncio
    async def test_auto_propose_disabled(self, builder, make_agent, make_market):
        builder.build.return_value = [make_market(m5=6.0, h1=4.0)]
        result = await StrategyEngine(builder).evaluate_strategy(
            make_agent(), [MEME], auto_propose=False
        )
        assert result.signal is not None
        assert result.should_propose is False

    @pytest.mark.asyncio
    async def test_enhancer_can_drop_below_threshold(self, builder, make_agent, make_market):
        """An enhanced confidence below minConfidence is not proposed."""
        builder.build.return_value = [make_market(m5=6.0, h1=4.0)]
        enhancer = MagicMock()
        enhancer.enhance = AsyncMock(
            return_value=EnhancementResult(
                adjusted_confidence=50, used=True, provider="zai", reasoning="avoid, high risk"
            )
        )

        result = await StrategyEngine(builder, enhancer).evaluate_strategy(make_agent(), [MEME])

        assert result.signal.confidence == 50
        assert result.original_confidence == 87
        assert result.enhanced is True
        assert result.should_propose is False
        assert "[AI zai" in result.reason
