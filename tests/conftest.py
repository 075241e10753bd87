"""
Pytest configuration and fixtures for ANOA tests.
"""

from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from anoa.core.circuit_breaker import AsyncCircuitBreaker
from anoa.core.config import get_settings
from anoa.core.tokens import NATIVE_TOKEN_ADDRESS, to_base_units
from anoa.db.models import AgentDB, Base
from anoa.db.repositories import AgentRepository
from anoa.models.agent import AgentContext, Holding, RiskLevel, StrategyType
from anoa.models.market import MarketSnapshot, TimeframeMetrics
from anoa.models.signal import TradeAction, TradeSignal
from anoa.services.execution_router import RouteResult
from anoa.traders.base import Quote, SwapResult, VenueName


# Use an in-memory SQLite database for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

AGENT_UUID = "6f1c2a3e-8d4b-4c1e-9a7f-2b3c4d5e6f70"
CHOG = "0x350035555E10d9AfAF1566AaebfCeD5BA6C27777"
MEME = "0x1111111111111111111111111111111111111111"


@pytest.fixture(autouse=True)
def reset_global_state():
    """Fresh settings and circuit breakers for every test."""
    get_settings.cache_clear()
    AsyncCircuitBreaker._breakers.clear()
    yield
    get_settings.cache_clear()
    AsyncCircuitBreaker._breakers.clear()


@pytest.fixture
def override_settings(monkeypatch):
    """Set environment variables and reload settings."""

    def apply(**values):
        for key, value in values.items():
            monkeypatch.setenv(key.upper(), str(value))
        get_settings.cache_clear()
        return get_settings()

    return apply


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test engine (what services receive)."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def test_agent(db_session: AsyncSession) -> AgentDB:
    """Create a MOMENTUM agent with 100 MON of capital."""
    agent = await AgentRepository(db_session).create(
        name="Test Agent",
        strategy="MOMENTUM",
        risk_level="medium",
        total_capital=100.0,
        wallet_address="0x9999999999999999999999999999999999999999",
        auto_execute=True,
    )
    await db_session.commit()
    return agent


@pytest.fixture
def make_agent():
    """Build an AgentContext with sensible defaults."""

    def factory(**overrides) -> AgentContext:
        holdings = overrides.pop("holdings", [])
        values = {
            "id": AGENT_UUID,
            "strategy": StrategyType.MOMENTUM,
            "risk_level": RiskLevel.MEDIUM,
            "total_capital": 100.0,
            "wallet_balance": 100.0,
            "holdings": [
                h if isinstance(h, Holding) else Holding(token_address=h[0], balance=h[1])
                for h in holdings
            ],
        }
        values.update(overrides)
        return AgentContext(**values)

    return factory


@pytest.fixture
def make_market():
    """Build a MarketSnapshot from per-timeframe price changes."""

    def factory(
        token_address: str = MEME,
        symbol: str = "MEME",
        m5: float | None = None,
        h1: float | None = None,
        h4: float | None = None,
        volume_change: float = 10.0,
        tx_count: int = 10,
        **fields,
    ) -> MarketSnapshot:
        metrics = {}
        for label, change in (("5m", m5), ("1h", h1), ("4h", h4)):
            if change is not None:
                metrics[label] = TimeframeMetrics(
                    price_change_pct=change,
                    volume_change_pct=volume_change,
                    tx_count=tx_count,
                )
        values = {
            "volume_24h": 5000.0,
            "holders": 100,
            "market_cap": 0.0,
            "liquidity": 0.0,
        }
        values.update(fields)
        return MarketSnapshot(
            token_address=token_address,
            symbol=symbol,
            metrics=metrics,
            **values,
        )

    return factory


@pytest.fixture
def buy_signal() -> TradeSignal:
    """A BUY signal for CHOG."""
    return TradeSignal(
        action=TradeAction.BUY,
        token_address=CHOG,
        token_symbol="CHOG",
        amount=10.0,
        confidence=80,
        reason="Strong momentum",
        strategy=StrategyType.MOMENTUM,
    )


@pytest.fixture
def sell_signal() -> TradeSignal:
    """A SELL signal for CHOG."""
    return TradeSignal(
        action=TradeAction.SELL,
        token_address=CHOG,
        token_symbol="CHOG",
        amount=1000.0,
        confidence=75,
        reason="Momentum reversal",
        strategy=StrategyType.MOMENTUM,
    )


@pytest.fixture
def mock_chain():
    """Create a mock chain client for venue tests."""
    chain = MagicMock()
    chain.address = "0x9999999999999999999999999999999999999999"
    chain.checksum = MagicMock(side_effect=lambda a: a)
    chain.encode_call = MagicMock(return_value="0xdeadbeef")
    chain.send_transaction = AsyncMock(return_value="0xtxhash")
    chain.wait_for_receipt = AsyncMock(return_value={"status": 1, "gasUsed": 21000})
    chain.approve = AsyncMock(return_value="0xapprove")
    chain.sign_permit = AsyncMock(return_value=(27, b"\x01" * 32, b"\x02" * 32))
    chain.get_allowance = AsyncMock(return_value=0)
    chain.get_block_number = AsyncMock(return_value=1000)
    chain.get_native_balance = AsyncMock(return_value=50.0)
    return chain


@pytest.fixture
def make_route():
    """Build a confirmed RouteResult for a nad.fun swap."""

    def factory(
        action: TradeAction = TradeAction.BUY,
        amount_in: float = 10.0,
        amount_out: float = 1000.0,
        token_address: str = CHOG,
        tx_hash: str = "0xtxhash",
        attempts: int = 1,
    ) -> RouteResult:
        if action == TradeAction.BUY:
            from_token, to_token = NATIVE_TOKEN_ADDRESS, token_address
        else:
            from_token, to_token = token_address, NATIVE_TOKEN_ADDRESS
        quote = Quote(
            venue=VenueName.NADFUN,
            from_token=from_token,
            to_token=to_token,
            amount_in=amount_in,
            amount_in_wei=to_base_units(amount_in, 18),
            amount_out=amount_out,
            amount_out_wei=to_base_units(amount_out, 18),
            router="0x6F6B8F1a20703309951a5127c45B49b1CD981A22",
        )
        swap = SwapResult(
            tx_hash=tx_hash,
            venue=VenueName.NADFUN,
            amount_in=amount_in,
            amount_out=amount_out,
            gas_used=21000,
            router=quote.router,
            method="buy" if action == TradeAction.BUY else "sellPermit",
        )
        return RouteResult(
            tx_hash=tx_hash,
            venue=VenueName.NADFUN,
            amount_in=amount_in,
            amount_out=amount_out,
            gas_used=21000,
            attempts=attempts,
            slippage_bps=100,
            quote=quote,
            swap=swap,
        )

    return factory
