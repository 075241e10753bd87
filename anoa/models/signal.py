"""
Trade signal models.

A TradeSignal is the unit of intent produced by a strategy evaluator. Its
metadata is a per-strategy variant discriminated by ``kind`` so downstream
consumers (enhancer prompt, execution record, trade memory) can rely on the
fields each strategy actually sets.

Confidence is an integer in [0, 100]; every construction path and every
confidence update goes through clamp_confidence.
"""

import math
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .agent import StrategyType


class TradeAction(str, Enum):
    BUY = "buy"
    SELL = "sell"


class ExecutionType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class ExecutionStatus(str, Enum):
    """Execution lifecycle: EXECUTING -> SUCCESS | FAILED (terminal)"""

    EXECUTING = "EXECUTING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self != ExecutionStatus.EXECUTING


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (2.5 -> 3)"""
    return math.floor(value + 0.5)


def clamp_confidence(value: float) -> int:
    """Round and clamp a confidence value into [0, 100]"""
    if math.isnan(value):
        return 0
    if math.isinf(value):
        return 100 if value > 0 else 0
    return max(0, min(100, round_half_up(value)))


# ==================== Per-strategy metadata ====================


class MomentumMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["momentum"] = "momentum"
    score: float
    price_change_5m: float
    price_change_1h: float
    price_change_4h: Optional[float] = None
    bonding_curve_progress: float = 0.0  # percent
    graduation_exit: bool = False


class YieldMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["yield"] = "yield"
    timeframe: str
    price_change: float
    price_change_1h: float


class ArbitrageMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["arbitrage"] = "arbitrage"
    spread: float
    threshold: float
    venues: list[str] = Field(default_factory=lambda: ["nadfun"])


class DcaMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["dca"] = "dca"
    timeframe: str
    discount: float


class GridMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["grid"] = "grid"
    timeframe: str
    range_change: float
    short_change: float


class HedgeMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["hedge"] = "hedge"
    mode: Literal["defensive", "recovery"]
    primary_change: float
    confirm_change: float
    markets_considered: int


SignalMetadata = Annotated[
    Union[
        MomentumMetadata,
        YieldMetadata,
        ArbitrageMetadata,
        DcaMetadata,
        GridMetadata,
        HedgeMetadata,
    ],
    Field(discriminator="kind"),
]


# ==================== Signal ====================


class TradeSignal(BaseModel):
    """
    A single trade proposal.

    amount is in native MON for buys and in token units for sells.
    """

    model_config = ConfigDict(frozen=True)

    action: TradeAction
    token_address: str
    token_symbol: str = "UNKNOWN"
    amount: float
    confidence: int
    reason: str = ""
    strategy: StrategyType
    metadata: Optional[SignalMetadata] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp(cls, v) -> int:
        return clamp_confidence(float(v))

    @property
    def is_buy(self) -> bool:
        return self.action == TradeAction.BUY

    @property
    def execution_type(self) -> ExecutionType:
        return ExecutionType.BUY if self.is_buy else ExecutionType.SELL

    def with_confidence(self, confidence: float) -> "TradeSignal":
        """Copy of this signal with a new (clamped) confidence"""
        return self.model_copy(update={"confidence": clamp_confidence(confidence)})

    def to_params(self) -> dict:
        """Signal inputs as persisted on the execution record"""
        return {
            "action": self.action.value,
            "token_address": self.token_address,
            "token_symbol": self.token_symbol,
            "amount": self.amount,
            "confidence": self.confidence,
            "reason": self.reason,
            "strategy": self.strategy.value,
            "metadata": self.metadata.model_dump() if self.metadata else None,
        }


# ==================== Pipeline results ====================


class RiskCheckResult(BaseModel):
    """Outcome of the pre-trade risk gate"""

    ok: bool
    reason: Optional[str] = None

    @classmethod
    def passed(cls) -> "RiskCheckResult":
        return cls(ok=True)

    @classmethod
    def blocked(cls, reason: str) -> "RiskCheckResult":
        return cls(ok=False, reason=reason)


class EnhancementResult(BaseModel):
    """Outcome of the optional confidence oracle"""

    adjusted_confidence: int
    used: bool = False
    provider: Optional[str] = None
    reasoning: Optional[str] = None

    @field_validator("adjusted_confidence", mode="before")
    @classmethod
    def clamp(cls, v) -> int:
        return clamp_confidence(float(v))


class EvaluationResult(BaseModel):
    """Result of one evaluation cycle for one agent"""

    agent_id: str
    signal: Optional[TradeSignal] = None
    original_confidence: Optional[int] = None
    enhanced: bool = False
    should_propose: bool = False
    markets_evaluated: int = 0
    reason: Optional[str] = None
