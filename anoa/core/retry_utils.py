"""
Retry Utilities for External Calls and Background Work

Provides error classification, error window tracking, and exponential backoff
utilities shared by the market data client, the outbox worker and the
agent scheduler.

Key Components:
- ErrorType: Classifies errors as transient or permanent
- ErrorWindow: Tracks error frequency within a time window
- classify_error: Determines error type from exception
- calculate_backoff_delay: Computes exponential backoff with jitter
- retry_with_backoff: Runs a coroutine function until it succeeds or gives up
- try_in_order: Tries an ordered list of providers until one succeeds
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

import httpx

from .errors import AppError, ErrorCode

logger = logging.getLogger(__name__)


class ErrorType(Enum):
    """Classification of error types for retry decisions."""

    TRANSIENT = "transient"  # Temporary errors - should retry
    PERMANENT = "permanent"  # Permanent errors - should stop immediately
    UNKNOWN = "unknown"  # Unknown errors - treat as transient


_PERMANENT_CODES = {
    ErrorCode.VALIDATION_ERROR,
    ErrorCode.QUOTE_INVALID,
    ErrorCode.UNKNOWN_TOKEN,
    ErrorCode.UNKNOWN_STRATEGY,
    ErrorCode.SIGNER_NOT_CONFIGURED,
    ErrorCode.ILLEGAL_TRANSITION,
}

_TRANSIENT_CODES = {
    ErrorCode.MARKET_DATA_UNAVAILABLE,
    ErrorCode.CHAIN_READ_FAILED,
    ErrorCode.PRICE_UNAVAILABLE,
    ErrorCode.SUBMISSION_FAILED,
    ErrorCode.TRANSACTION_REVERTED,
    ErrorCode.CONFIRMATION_TIMEOUT,
    ErrorCode.SERVICE_UNAVAILABLE,
}

# Patterns for error classification
_TRANSIENT_PATTERNS = (
    # Network errors
    "connection",
    "timeout",
    "timed out",
    "network",
    "socket",
    "refused",
    "reset",
    "unreachable",
    # Rate limiting
    "rate limit",
    "too many requests",
    "throttl",
    "429",
    # Temporary service issues
    "service unavailable",
    "bad gateway",
    "gateway timeout",
    "503",
    "502",
    "504",
    # Database transient errors
    "deadlock",
    "database is locked",
    "too many connections",
    # RPC node hiccups
    "nonce too low",
    "replacement transaction underpriced",
    "header not found",
)

_PERMANENT_PATTERNS = (
    "unauthorized",
    "forbidden",
    "invalid api key",
    "401",
    "403",
    "not found",
    "invalid",
    "malformed",
    "400",
    "missing required",
    "insufficient funds",
    "execution reverted",
)


def classify_error(error: Exception) -> ErrorType:
    """
    Classify an exception as transient or permanent.

    Structured errors are classified first: application errors by code,
    HTTP errors by status (429 and 5xx retry, other 4xx stop), transport
    errors always retry. Anything else falls back to message patterns.

    Args:
        error: The exception to classify

    Returns:
        ErrorType indicating whether to retry or stop
    """
    if isinstance(error, AppError):
        if error.code in _PERMANENT_CODES:
            return ErrorType.PERMANENT
        if error.code in _TRANSIENT_CODES:
            return ErrorType.TRANSIENT

    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        if status_code == 429 or status_code >= 500:
            return ErrorType.TRANSIENT
        if 400 <= status_code < 500:
            return ErrorType.PERMANENT

    if isinstance(error, (httpx.TransportError, asyncio.TimeoutError)):
        return ErrorType.TRANSIENT

    error_str = str(error).lower()
    error_type = type(error).__name__.lower()

    # Transient first: "connection not found" style messages should retry
    for pattern in _TRANSIENT_PATTERNS:
        if pattern in error_str or pattern in error_type:
            return ErrorType.TRANSIENT

    for pattern in _PERMANENT_PATTERNS:
        if pattern in error_str or pattern in error_type:
            return ErrorType.PERMANENT

    return ErrorType.UNKNOWN


@dataclass
class ErrorWindow:
    """
    Tracks error frequency within a sliding time window.

    Used by the scheduler to pause an agent whose cycles keep failing: if
    too many errors occur within the window, the agent is marked as errored.

    Attributes:
        window_seconds: Duration of the tracking window
        max_errors: Maximum errors allowed before should_stop becomes True
    """

    window_seconds: int = 600
    max_errors: int = 5

    _error_times: list[float] = field(default_factory=list, repr=False)

    def record_error(self) -> None:
        """Record an error occurrence, pruning errors outside the window."""
        now = time.time()
        self._error_times.append(now)
        self._prune_old_errors(now)
        logger.debug(
            f"Error recorded, count in window: {self.error_count}/{self.max_errors}"
        )

    def _prune_old_errors(self, now: float) -> None:
        cutoff = now - self.window_seconds
        self._error_times = [t for t in self._error_times if t > cutoff]

    @property
    def error_count(self) -> int:
        """Current number of errors within the window."""
        self._prune_old_errors(time.time())
        return len(self._error_times)

    @property
    def should_stop(self) -> bool:
        """True once max_errors is reached within the window."""
        return self.error_count >= self.max_errors

    def reset(self) -> None:
        """Clear all recorded errors (call after a successful cycle)."""
        self._error_times.clear()

    def __str__(self) -> str:
        return (
            f"ErrorWindow(errors={self.error_count}/{self.max_errors}, "
            f"window={self.window_seconds}s)"
        )


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = 2.0,
    max_delay: float = 60.0,
    jitter: bool = True,
) -> float:
    """
    Calculate exponential backoff delay with optional jitter.

    Uses full jitter strategy: delay = random(0, min(max, base * 2^attempt))

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay cap in seconds
        jitter: Whether to add randomization

    Returns:
        Delay in seconds before next retry
    """
    delay = min(base_delay * (2**attempt), max_delay)
    if jitter:
        delay = random.uniform(0, delay)
    return delay


def retry_after_seconds(error: Exception) -> Optional[float]:
    """Seconds requested by a Retry-After header on an HTTP error, if any."""
    if not isinstance(error, httpx.HTTPStatusError):
        return None
    value = error.response.headers.get("retry-after")
    try:
        return max(float(value), 0.0) if value is not None else None
    except ValueError:
        # HTTP-date form is not used by the APIs we call
        return None


async def retry_with_backoff(
    func,
    *args,
    max_attempts: int = 3,
    base_delay: float = 2.0,
    max_delay: float = 60.0,
    jitter: bool = True,
    retry_on: tuple = (Exception,),
    **kwargs,
) -> tuple[bool, Any, Optional[Exception]]:
    """
    Execute an async function with exponential backoff retry.

    Permanent errors (see classify_error) stop immediately. A Retry-After
    header on an HTTP error replaces the computed delay.

    Args:
        func: Async function to execute
        max_attempts: Maximum number of attempts
        base_delay: Base delay for exponential backoff
        max_delay: Maximum delay cap
        jitter: Whether to add randomization
        retry_on: Tuple of exception types to retry on

    Returns:
        Tuple of (success, result, last_error)
    """
    last_error = None

    for attempt in range(max_attempts):
        try:
            result = await func(*args, **kwargs)
            return True, result, None
        except retry_on as e:
            last_error = e

            if classify_error(e) == ErrorType.PERMANENT:
                logger.warning(f"Permanent error, not retrying: {e}")
                return False, None, e

            if attempt < max_attempts - 1:
                delay = calculate_backoff_delay(attempt, base_delay, max_delay, jitter)
                retry_after = retry_after_seconds(e)
                if retry_after is not None:
                    delay = min(retry_after, max_delay)
                logger.info(
                    f"Retry attempt {attempt + 1}/{max_attempts} "
                    f"after {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)

    return False, None, last_error


P = TypeVar("P")
R = TypeVar("R")


async def try_in_order(
    providers: Sequence[P],
    call: Callable[[P], Awaitable[R]],
    label: str = "provider",
) -> tuple[P, R]:
    """
    Call each provider in order and return the first successful result.

    Args:
        providers: Ordered fallback chain (primary first)
        call: Coroutine function invoked with one provider
        label: Name used in log messages

    Returns:
        Tuple of (provider that answered, result)

    Raises:
        The last provider's exception when every provider fails,
        or LookupError when the chain is empty.
    """
    last_error: Optional[Exception] = None

    for index, provider in enumerate(providers):
        try:
            return provider, await call(provider)
        except Exception as e:
            last_error = e
            remaining = len(providers) - index - 1
            logger.warning(
                f"{label} {getattr(provider, 'name', provider)} failed "
                f"({type(e).__name__}: {e}), {remaining} fallback(s) left"
            )

    if last_error is None:
        raise LookupError(f"No {label} configured")
    raise last_error
