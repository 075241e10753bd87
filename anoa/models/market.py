"""
Market snapshot models.

A MarketSnapshot is the normalized, per-cycle view of one tradable token:
nad.fun market data, per-timeframe metrics and the on-chain bonding-curve
state. Snapshots are immutable once built and discarded after the cycle.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# Tokens younger than this many blocks are never traded (anti-sniping)
ANTI_SNIPE_BLOCKS = 20


class TimeframeMetrics(BaseModel):
    """Price / volume change over one timeframe window"""

    model_config = ConfigDict(frozen=True)

    price_change_pct: float = 0.0
    volume_change_pct: float = 0.0
    tx_count: int = 0


class MarketSnapshot(BaseModel):
    """Normalized market state for one token"""

    model_config = ConfigDict(frozen=True)

    token_address: str
    symbol: str = "UNKNOWN"
    price_usd: float = 0.0
    volume_24h: float = 0.0
    holders: int = 0
    market_cap: float = 0.0
    liquidity: float = 0.0

    # Keyed by timeframe label: "5m", "1h", "4h"
    metrics: dict[str, TimeframeMetrics] = Field(default_factory=dict)

    # Bonding curve state
    bonding_curve_progress: int = Field(default=0, ge=0, le=10000)  # bps
    is_graduated: bool = False
    is_locked: bool = False

    # Anti-sniping
    created_at_block: Optional[int] = None
    latest_block: Optional[int] = None

    def metric(self, timeframe: str) -> Optional[TimeframeMetrics]:
        return self.metrics.get(timeframe)

    @property
    def progress_pct(self) -> float:
        """Bonding curve progress as a percentage (0-100)"""
        return self.bonding_curve_progress / 100

    @property
    def is_too_new(self) -> bool:
        """
        True when the token is younger than ANTI_SNIPE_BLOCKS.

        A known creation block with an unknown latest block counts as too
        new; no creation block means the age is simply not checked.
        """
        if self.created_at_block is None:
            return False
        if self.latest_block is None:
            return True
        return self.latest_block - self.created_at_block < ANTI_SNIPE_BLOCKS
