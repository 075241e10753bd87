"""Data models for agents, market snapshots and trade signals"""

from .agent import AgentContext, AgentStatus, Holding, RiskLevel, StrategyType
from .market import ANTI_SNIPE_BLOCKS, MarketSnapshot, TimeframeMetrics
from .signal import (
    ArbitrageMetadata,
    DcaMetadata,
    EnhancementResult,
    EvaluationResult,
    ExecutionStatus,
    ExecutionType,
    GridMetadata,
    HedgeMetadata,
    MomentumMetadata,
    RiskCheckResult,
    SignalMetadata,
    TradeAction,
    TradeSignal,
    YieldMetadata,
    clamp_confidence,
    round_half_up,
)

__all__ = [
    # Agent models
    "AgentContext",
    "AgentStatus",
    "Holding",
    "RiskLevel",
    "StrategyType",
    # Market models
    "ANTI_SNIPE_BLOCKS",
    "MarketSnapshot",
    "TimeframeMetrics",
    # Signal models
    "ArbitrageMetadata",
    "DcaMetadata",
    "EnhancementResult",
    "EvaluationResult",
    "ExecutionStatus",
    "ExecutionType",
    "GridMetadata",
    "HedgeMetadata",
    "MomentumMetadata",
    "RiskCheckResult",
    "SignalMetadata",
    "TradeAction",
    "TradeSignal",
    "YieldMetadata",
    "clamp_confidence",
    "round_half_up",
]
