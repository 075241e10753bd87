"""
Base venue abstract class.

Defines the interface for all swap venues. Each venue (nad.fun bonding
curve, LiFi aggregator, Relay solver network) implements this interface:
quote, then execute the quote at a given slippage tolerance.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

from ..core.errors import ErrorCode
from ..core.tokens import NATIVE_TOKEN_ADDRESS

logger = logging.getLogger(__name__)


class VenueName(str, Enum):
    """Execution venue"""
    NADFUN = "nadfun"    # nad.fun bonding curve / DEX router via Lens
    LIFI = "lifi"        # LiFi DEX aggregator
    RELAY = "relay"      # Relay solver network


class TradeError(Exception):
    """Trading error with context"""
    def __init__(self, message: str, code: Optional[str] = None, details: Optional[dict] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)


class QuoteInvalidError(TradeError):
    """
    The venue's quote cannot be executed (zero router, zero output,
    missing or mismatched transaction data). Never retried.
    """
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, code=ErrorCode.QUOTE_INVALID.value, details=details)


class ExecutionFailedError(TradeError):
    """
    Submission, confirmation or revert failure of a built transaction.
    Retryable by the execution router.
    """
    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SUBMISSION_FAILED,
        tx_hash: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, code=code.value, details=details)
        self.tx_hash = tx_hash


@dataclass
class Quote:
    """
    A priced swap, valid for one trade.

    Amounts are kept both human-readable and in base units; the base units
    are what goes on chain.
    """
    venue: VenueName
    from_token: str
    to_token: str
    amount_in: float
    amount_in_wei: int
    amount_out: float
    amount_out_wei: int
    from_decimals: int = 18
    to_decimals: int = 18
    # nad.fun: router returned by the Lens
    router: Optional[str] = None
    # LiFi / Relay: prebuilt transaction(s) from the quote API
    transactions: list[dict] = field(default_factory=list)
    approval_address: Optional[str] = None
    amount_out_min_wei: Optional[int] = None
    slippage_bps: Optional[int] = None
    raw: Optional[dict] = None
    quoted_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_buy(self) -> bool:
        """Buying a token with native MON"""
        return self.from_token.lower() == NATIVE_TOKEN_ADDRESS


@dataclass
class SwapResult:
    """Outcome of a confirmed swap"""
    tx_hash: str
    venue: VenueName
    amount_in: float
    amount_out: float
    gas_used: Optional[int] = None
    router: Optional[str] = None
    method: Optional[str] = None  # e.g. "buy", "sellPermit", "approve+sell"
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for the execution record"""
        return {
            "tx_hash": self.tx_hash,
            "venue": self.venue.value,
            "amount_in": self.amount_in,
            "amount_out": self.amount_out,
            "gas_used": self.gas_used,
            "router": self.router,
            "method": self.method,
        }


class BaseVenue(ABC):
    """
    Abstract base class for swap venues.

    A venue quotes a swap between two tokens and executes a quote with the
    agent's signer. Quote errors raise QuoteInvalidError; submission and
    confirmation errors raise ExecutionFailedError.
    """

    name: VenueName
    # Slippage is baked into the quoted transaction; retries re-quote
    requote_on_retry: bool = False

    @abstractmethod
    async def quote(
        self,
        from_token: str,
        to_token: str,
        amount: float,
        slippage_bps: Optional[int] = None,
    ) -> Quote:
        """
        Price a swap of ``amount`` (human units of from_token).

        Aggregator venues bake slippage_bps into the prebuilt transaction;
        the bonding-curve venue applies the slippage at execution instead.

        Raises:
            QuoteInvalidError: quote cannot be executed
        """
        pass

    @abstractmethod
    async def execute(self, quote: Quote, slippage_bps: int) -> SwapResult:
        """
        Build, sign, submit and confirm the swap.

        Raises:
            ExecutionFailedError: submission/confirmation/revert (retryable)
            QuoteInvalidError: the quote turned out to be unusable
        """
        pass

    async def close(self) -> None:
        """Release HTTP clients or other resources"""
        pass

    def supports(self, token_address: str) -> bool:
        """Whether this venue can route the given token"""
        return True

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name.value}>"
