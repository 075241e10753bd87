"""
Agent models for the evaluation cycle.

An AgentContext is the read model of one autonomous trading identity,
loaded fresh before each cycle. It is never mutated by the pipeline itself:
only Settlement changes the persisted agent, and the next cycle reloads it.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class StrategyType(str, Enum):
    """Strategy family an agent runs (exactly one per agent)"""

    MOMENTUM = "MOMENTUM"
    YIELD = "YIELD"
    ARBITRAGE = "ARBITRAGE"
    DCA = "DCA"
    GRID = "GRID"
    HEDGE = "HEDGE"


class RiskLevel(str, Enum):
    """Risk tier selecting the limits in the risk parameter table"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AgentStatus(str, Enum):
    """Agent lifecycle status"""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    STOPPED = "STOPPED"
    ERROR = "ERROR"


class Holding(BaseModel):
    """A token balance held by the agent wallet"""

    model_config = ConfigDict(frozen=True)

    token_address: str
    symbol: str = "UNKNOWN"
    balance: float = Field(default=0.0, ge=0)
    value_usd: float = 0.0


class AgentContext(BaseModel):
    """
    Agent entity as seen by the strategies and the risk guard.

    wallet_balance is the native MON balance. None means it could not be
    read, and every sizing rule treats that as "do not trade".
    """

    model_config = ConfigDict(frozen=True)

    id: str
    strategy: StrategyType
    risk_level: RiskLevel = RiskLevel.MEDIUM

    # Capital & performance
    total_capital: float = Field(default=0.0, ge=0)
    total_pnl: float = 0.0
    max_drawdown: float = Field(default=0.0, ge=0, le=1)

    # Portfolio
    wallet_address: Optional[str] = None
    wallet_balance: Optional[float] = None
    holdings: list[Holding] = Field(default_factory=list)

    # Limits
    daily_loss_limit: float = Field(default=10.0, ge=0)  # % of capital
    max_daily_trades: int = Field(default=50, ge=0)

    def get_holding(self, token_address: str) -> Optional[Holding]:
        """Find a holding by address (case-insensitive)"""
        wanted = token_address.lower()
        for holding in self.holdings:
            if holding.token_address.lower() == wanted:
                return holding
        return None

    def holding_balance(self, token_address: str) -> float:
        """Balance held for a token, 0 when there is no holding"""
        holding = self.get_holding(token_address)
        return holding.balance if holding else 0.0
