"""
Rolling performance metrics recomputed after every settled trade.

All functions take the PnL series (USD) of an agent's successful
executions, oldest first.
"""

import math
import statistics
from dataclasses import dataclass
from typing import Sequence

TRADING_DAYS_PER_YEAR = 250
SHARPE_BOUND = 5.0
# Sharpe reported for a constant, positive PnL series
PERFECT_CONSISTENCY_SHARPE = 3.0


@dataclass(frozen=True)
class TradeMetrics:
    sharpe_ratio: float
    max_drawdown: float  # fraction 0-1
    win_rate: float  # percent
    total_trades: int


def calculate_sharpe_ratio(pnls: Sequence[float]) -> float:
    """
    Annualized Sharpe ratio with a zero risk-free rate.

    Uses the sample standard deviation; clamped to [-5, 5].
    """
    if len(pnls) < 2:
        return 0.0

    mean = statistics.fmean(pnls)
    std = statistics.stdev(pnls)
    if std == 0:
        return PERFECT_CONSISTENCY_SHARPE if mean > 0 else 0.0

    sharpe = round(mean / std * math.sqrt(TRADING_DAYS_PER_YEAR), 4)
    return max(-SHARPE_BOUND, min(SHARPE_BOUND, sharpe))


def calculate_max_drawdown(pnls: Sequence[float], capital_base_usd: float) -> float:
    """
    Largest peak-to-trough decline of the equity curve, as a fraction of peak.

    Equity starts at capital_base_usd and moves by each trade's PnL.
    Returns 0 when peak equity never becomes positive.
    """
    equity = capital_base_usd
    peak = equity
    max_dd = 0.0

    for pnl in pnls:
        equity += pnl
        if equity > peak:
            peak = equity
        if peak > 0:
            max_dd = max(max_dd, (peak - equity) / peak)

    return round(max(0.0, min(1.0, max_dd)), 6)


def calculate_win_rate(pnls: Sequence[float]) -> float:
    """Percent of trades with pnl > 0, 2 decimals."""
    if not pnls:
        return 0.0
    wins = sum(1 for p in pnls if p > 0)
    return round(wins / len(pnls) * 100, 2)


def calculate_all_metrics(pnls: Sequence[float], capital_base_usd: float) -> TradeMetrics:
    return TradeMetrics(
        sharpe_ratio=calculate_sharpe_ratio(pnls),
        max_drawdown=calculate_max_drawdown(pnls, capital_base_usd),
        win_rate=calculate_win_rate(pnls),
        total_trades=len(pnls),
    )
