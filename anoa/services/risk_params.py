"""
Risk parameter table and position sizing.

Static lookup from risk tier to trading limits, plus the sizing rule every
strategy applies to a desired buy size.
"""

from dataclasses import dataclass
from typing import Optional, Union

from ..core.config import get_settings
from ..models.agent import RiskLevel


@dataclass(frozen=True)
class RiskParams:
    """Trading limits for one risk tier"""
    max_position_pct: float      # fraction of total capital per trade
    min_confidence: int          # signals below this are discarded
    max_drawdown_limit: float    # fraction; trading halts above it
    slippage_tolerance_bps: int


RISK_PARAMS: dict[RiskLevel, RiskParams] = {
    RiskLevel.LOW: RiskParams(
        max_position_pct=0.05,
        min_confidence=75,
        max_drawdown_limit=0.10,
        slippage_tolerance_bps=50,
    ),
    RiskLevel.MEDIUM: RiskParams(
        max_position_pct=0.10,
        min_confidence=60,
        max_drawdown_limit=0.20,
        slippage_tolerance_bps=100,
    ),
    RiskLevel.HIGH: RiskParams(
        max_position_pct=0.20,
        min_confidence=45,
        max_drawdown_limit=0.35,
        slippage_tolerance_bps=150,
    ),
}


def get_risk_params(risk_level: Union[RiskLevel, str, None]) -> RiskParams:
    """Look up the limits for a tier; unknown tiers fall back to medium."""
    try:
        level = RiskLevel(str(getattr(risk_level, "value", risk_level)).lower())
    except ValueError:
        level = RiskLevel.MEDIUM
    return RISK_PARAMS[level]


def safe_position_size(
    desired_size: float,
    wallet_balance: Optional[float],
    gas_reserve: Optional[float] = None,
) -> float:
    """
    Cap a desired buy size so the wallet keeps its gas reserve.

    An unknown wallet balance sizes to 0: a missing balance must never be
    read as "enough".
    """
    if wallet_balance is None:
        return 0.0
    if gas_reserve is None:
        gas_reserve = get_settings().gas_reserve
    available = max(0.0, wallet_balance - gas_reserve)
    return max(0.0, min(desired_size, available))
