"""
Execution Router - venue selection and bounded-retry swap execution.

One trade uses exactly one venue:

    QUOTE -> BUILD -> SIGN -> SUBMIT -> AWAIT_CONFIRMATION
          -> SUCCESS | RETRYABLE_FAILURE | FATAL_FAILURE

A QuoteInvalidError (zero router, zero output, missing or foreign
transaction data) is fatal. Submission failures, reverts and confirmation
timeouts are retried once with escalated slippage. nad.fun applies the
slippage when building the transaction, so its retry reuses the quote;
aggregator quotes carry the slippage in their prebuilt transaction and
are fetched again at the escalated tolerance.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Optional

from ..core.errors import ErrorCode
from ..core.tokens import NATIVE_TOKEN_ADDRESS
from ..models.signal import TradeAction
from ..traders.base import (
    BaseVenue,
    ExecutionFailedError,
    Quote,
    SwapResult,
    VenueName,
)

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2
MAX_SLIPPAGE_BPS = 2000


def escalate_slippage(slippage_bps: int) -> int:
    """Slippage for the retry attempt: +50%, rounded half up, capped at 20%."""
    return min(math.floor(slippage_bps * 1.5 + 0.5), MAX_SLIPPAGE_BPS)


@dataclass
class RouteResult:
    """Outcome of a routed swap"""

    tx_hash: str
    venue: VenueName
    amount_in: float
    amount_out: float
    gas_used: Optional[int]
    attempts: int
    slippage_bps: int
    quote: Quote
    swap: SwapResult
    errors: list[str] = field(default_factory=list)
    completed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict:
        """Venue/amount payload stored on the execution record"""
        return {
            "tx_hash": self.tx_hash,
            "venue": self.venue.value,
            "amount_in": self.amount_in,
            "amount_out": self.amount_out,
            "gas_used": self.gas_used,
            "attempts": self.attempts,
            "slippage_bps": self.slippage_bps,
            "router": self.swap.router,
            "method": self.swap.method,
            "from_token": self.quote.from_token,
            "to_token": self.quote.to_token,
            "retry_errors": self.errors,
        }


class RoutingFailedError(ExecutionFailedError):
    """All attempts failed; carries the last attempt's error."""

    def __init__(self, last_error: ExecutionFailedError, attempts: int, venue: VenueName):
        super().__init__(
            last_error.message,
            code=ErrorCode(last_error.code),
            tx_hash=last_error.tx_hash,
            details={**last_error.details, "attempts": attempts, "venue": venue.value},
        )
        self.last_error = last_error
        self.attempts = attempts
        self.venue = venue


class ExecutionRouter:
    """
    Usage:
        router = ExecutionRouter(create_venues(chain))
        result = await router.execute(TradeAction.BUY, token, 1.5, slippage_bps=100)
    """

    def __init__(self, venues: dict[VenueName, BaseVenue]):
        if VenueName.NADFUN not in venues:
            raise ValueError("nad.fun venue is required as the default route")
        self.venues = venues

    def select_venue(
        self,
        token_address: str,
        preference: Optional[VenueName] = None,
    ) -> VenueName:
        """
        Pick the venue for a token.

        Relay when Relay supports the token and LiFi does not, LiFi when it
        supports the token, nad.fun otherwise. An explicit preference wins.
        """
        if preference is not None:
            if preference not in self.venues:
                raise ValueError(f"Venue {preference.value} is not configured")
            return preference

        relay = self.venues.get(VenueName.RELAY)
        lifi = self.venues.get(VenueName.LIFI)
        lifi_ok = lifi is not None and lifi.supports(token_address)
        if relay is not None and relay.supports(token_address) and not lifi_ok:
            return VenueName.RELAY
        if lifi_ok:
            return VenueName.LIFI
        return VenueName.NADFUN

    async def execute(
        self,
        action: TradeAction,
        token_address: str,
        amount: float,
        slippage_bps: int,
        preference: Optional[VenueName] = None,
    ) -> RouteResult:
        """
        Quote, then execute with at most MAX_ATTEMPTS attempts.

        Raises:
            QuoteInvalidError: a quote was rejected (never retried)
            RoutingFailedError: every attempt failed; the last error surfaces
        """
        venue_name = self.select_venue(token_address, preference)
        venue = self.venues[venue_name]

        if action == TradeAction.BUY:
            from_token, to_token = NATIVE_TOKEN_ADDRESS, token_address
        else:
            from_token, to_token = token_address, NATIVE_TOKEN_ADDRESS

        logger.info(
            f"Routing {action.value} {amount} of {token_address} via {venue_name.value} "
            f"(slippage {slippage_bps} bps)"
        )
        quote = await venue.quote(from_token, to_token, amount, slippage_bps)

        errors: list[str] = []
        last_error: Optional[ExecutionFailedError] = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            effective_slippage = slippage_bps if attempt == 1 else escalate_slippage(slippage_bps)
            if attempt > 1 and venue.requote_on_retry:
                quote = await venue.quote(from_token, to_token, amount, effective_slippage)
            try:
                swap = await venue.execute(quote, effective_slippage)
            except ExecutionFailedError as e:
                last_error = e
                errors.append(f"attempt {attempt}: {e.message}")
                if attempt < MAX_ATTEMPTS:
                    logger.warning(
                        f"{venue_name.value} attempt {attempt} failed ({e.code}: {e.message}), "
                        f"retrying with {escalate_slippage(slippage_bps)} bps"
                    )
                continue

            logger.info(f"{venue_name.value} swap confirmed on attempt {attempt}: {swap.tx_hash}")
            return RouteResult(
                tx_hash=swap.tx_hash,
                venue=venue_name,
                amount_in=swap.amount_in,
                amount_out=swap.amount_out,
                gas_used=swap.gas_used,
                attempts=attempt,
                slippage_bps=effective_slippage,
                quote=quote,
                swap=swap,
                errors=errors,
            )

        logger.error(f"{venue_name.value} swap failed after {MAX_ATTEMPTS} attempts: {errors}")
        raise RoutingFailedError(last_error, MAX_ATTEMPTS, venue_name)

    async def close(self) -> None:
        for venue in self.venues.values():
            await venue.close()
