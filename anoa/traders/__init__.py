"""Swap venues and chain access for Monad"""

from .base import (
    BaseVenue,
    ExecutionFailedError,
    Quote,
    QuoteInvalidError,
    SwapResult,
    TradeError,
    VenueName,
)
from .chain import ChainClient
from .lifi import LiFiVenue
from .nadfun import NadFunLens, NadFunVenue
from .relay import RelayVenue


def create_venues(chain: ChainClient) -> dict[VenueName, BaseVenue]:
    """Build one client per venue sharing the same chain client"""
    return {
        VenueName.NADFUN: NadFunVenue(chain),
        VenueName.LIFI: LiFiVenue(chain),
        VenueName.RELAY: RelayVenue(chain),
    }


__all__ = [
    "BaseVenue",
    "ChainClient",
    "create_venues",
    "ExecutionFailedError",
    "LiFiVenue",
    "NadFunLens",
    "NadFunVenue",
    "Quote",
    "QuoteInvalidError",
    "RelayVenue",
    "SwapResult",
    "TradeError",
    "VenueName",
]
