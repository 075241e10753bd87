"""Services module - Trading pipeline and external integrations"""

from .execution_router import ExecutionRouter, RouteResult, RoutingFailedError
from .market_snapshot import NadFunClient, SnapshotBuilder, TokenDiscovery
from .pnl_service import PnLService, SettlementResult, compute_trade_pnl
from .price_feed import PriceFeed
from .risk_guard import RiskGuard
from .risk_params import RISK_PARAMS, RiskParams, get_risk_params
from .signal_enhancer import SignalEnhancer
from .strategy_engine import STRATEGY_REGISTRY, StrategyEngine, get_strategy
from .trade_execution_service import TradeExecutionService, TradeOutcome

__all__ = [
    "ExecutionRouter",
    "NadFunClient",
    "PnLService",
    "PriceFeed",
    "RISK_PARAMS",
    "RiskGuard",
    "RiskParams",
    "RouteResult",
    "RoutingFailedError",
    "STRATEGY_REGISTRY",
    "SettlementResult",
    "SignalEnhancer",
    "SnapshotBuilder",
    "StrategyEngine",
    "TokenDiscovery",
    "TradeExecutionService",
    "TradeOutcome",
    "compute_trade_pnl",
    "get_risk_params",
    "get_strategy",
]
