"""
Circuit Breaker Pattern Implementation.

Protects the pipeline from hammering external services that are down:
nad.fun market data, the swap venues, the reference price feeds and the
signal enhancer providers.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Service is down, requests fail fast
- HALF_OPEN: Testing if service has recovered

Usage:
    from anoa.core.circuit_breaker import CircuitBreakerOpen, get_venue_circuit_breaker

    breaker = get_venue_circuit_breaker("lifi")
    quote = await breaker.call(client.get_quote, params)
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Callable, Optional

import pybreaker

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker state"""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """Raised when circuit breaker is open."""

    def __init__(self, breaker_name: str, remaining_timeout: float = 0):
        self.breaker_name = breaker_name
        self.remaining_timeout = remaining_timeout
        super().__init__(
            f"Circuit breaker '{breaker_name}' is open. "
            f"Retry after {remaining_timeout:.1f}s"
        )


@dataclass
class CircuitBreakerStats:
    """Statistics for a circuit breaker."""
    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    total_calls: int
    last_failure_time: Optional[datetime] = None
    opened_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "total_calls": self.total_calls,
            "last_failure_time": self.last_failure_time.isoformat() if self.last_failure_time else None,
            "opened_at": self.opened_at.isoformat() if self.opened_at else None,
        }


def _state_name(state: Any) -> str:
    return state.name if hasattr(state, "name") else str(state)


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Logs state transitions of one breaker."""

    def __init__(self, name: str):
        self.name = name
        self.opened_at: Optional[datetime] = None
        self.last_failure_time: Optional[datetime] = None

    def state_change(
        self,
        cb: pybreaker.CircuitBreaker,
        old_state: pybreaker.CircuitBreakerState,
        new_state: pybreaker.CircuitBreakerState,
    ) -> None:
        old_name = _state_name(old_state)
        new_name = _state_name(new_state)

        if new_name == "open":
            self.opened_at = datetime.now(UTC)
            logger.error(
                f"Circuit breaker '{self.name}' OPENED - "
                f"failures={cb.fail_counter}, threshold={cb.fail_max}"
            )
        elif new_name == "closed" and old_name in ("open", "half-open"):
            logger.info(f"Circuit breaker '{self.name}' CLOSED - service recovered")
            self.opened_at = None
        else:
            logger.warning(
                f"Circuit breaker '{self.name}' state changed: {old_name} -> {new_name}"
            )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        self.last_failure_time = datetime.now(UTC)
        logger.debug(
            f"Circuit breaker '{self.name}' recorded failure: {type(exc).__name__}"
        )


class AsyncCircuitBreaker:
    """
    Async-friendly circuit breaker wrapper.

    Wraps pybreaker's CircuitBreaker state machine; the wrapped coroutine is
    awaited directly and its outcome is then fed back into pybreaker.
    """

    DEFAULT_FAIL_MAX = 5
    DEFAULT_RESET_TIMEOUT = 30

    # Global registry of circuit breakers
    _breakers: dict[str, "AsyncCircuitBreaker"] = {}

    def __init__(
        self,
        name: str,
        fail_max: int = DEFAULT_FAIL_MAX,
        reset_timeout: float = DEFAULT_RESET_TIMEOUT,
        exclude: tuple[type[Exception], ...] = (),
    ):
        """
        Initialize circuit breaker.

        Args:
            name: Unique name for this breaker
            fail_max: Number of failures before opening
            reset_timeout: Seconds before attempting recovery
            exclude: Exception types that don't count as failures
        """
        self.name = name
        self.listener = CircuitBreakerListener(name)
        self._breaker = pybreaker.CircuitBreaker(
            fail_max=fail_max,
            reset_timeout=reset_timeout,
            exclude=list(exclude),
            listeners=[self.listener],
            name=name,
        )
        self._total_calls = 0
        self._success_count = 0

    @property
    def state(self) -> CircuitState:
        state_name = _state_name(self._breaker.current_state)
        if state_name == "closed":
            return CircuitState.CLOSED
        elif state_name == "open":
            return CircuitState.OPEN
        return CircuitState.HALF_OPEN

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def failure_count(self) -> int:
        return self._breaker.fail_counter

    @property
    def stats(self) -> CircuitBreakerStats:
        return CircuitBreakerStats(
            name=self.name,
            state=self.state,
            failure_count=self._breaker.fail_counter,
            success_count=self._success_count,
            total_calls=self._total_calls,
            last_failure_time=self.listener.last_failure_time,
            opened_at=self.listener.opened_at,
        )

    def _remaining_timeout(self) -> float:
        remaining = self._breaker.reset_timeout
        storage = getattr(self._breaker, "_state_storage", None)
        opened_at = getattr(storage, "opened_at", None)
        if opened_at:
            if isinstance(opened_at, datetime):
                opened_at = opened_at.timestamp()
            remaining = max(0.0, self._breaker.reset_timeout - (time.time() - opened_at))
        return remaining

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute a function with circuit breaker protection.

        Raises:
            CircuitBreakerOpen: If circuit is open
            Exception: Whatever the function raises
        """
        self._total_calls += 1

        if _state_name(self._breaker.current_state) == "open":
            raise CircuitBreakerOpen(self.name, self._remaining_timeout())

        try:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            self._record_failure(e)
            raise

        self._success_count += 1
        self._record_success()
        return result

    def _record_success(self) -> None:
        try:
            self._breaker.call(lambda: None)
        except pybreaker.CircuitBreakerError:
            pass

    def _record_failure(self, exc: Exception) -> None:
        def raise_exc():
            raise exc
        try:
            self._breaker.call(raise_exc)
        except Exception:
            # pybreaker re-raises the original (or CircuitBreakerError on trip);
            # the caller re-raises the original itself.
            pass

    def reset(self) -> None:
        """Manually reset the circuit breaker to closed state."""
        self._breaker.close()
        logger.info(f"Circuit breaker '{self.name}' manually reset")

    @classmethod
    def get(
        cls,
        name: str,
        fail_max: int = DEFAULT_FAIL_MAX,
        reset_timeout: float = DEFAULT_RESET_TIMEOUT,
        exclude: tuple[type[Exception], ...] = (),
    ) -> "AsyncCircuitBreaker":
        """Get or create a circuit breaker by name."""
        if name not in cls._breakers:
            cls._breakers[name] = cls(name, fail_max, reset_timeout, exclude)
        return cls._breakers[name]

    @classmethod
    def get_all_stats(cls) -> list[CircuitBreakerStats]:
        return [breaker.stats for breaker in cls._breakers.values()]

    @classmethod
    def reset_all(cls) -> None:
        for breaker in cls._breakers.values():
            breaker.reset()


# ==================== Predefined Circuit Breakers ====================

def get_market_data_circuit_breaker() -> AsyncCircuitBreaker:
    """Circuit breaker for the nad.fun market data API."""
    return AsyncCircuitBreaker.get(
        name="market_data",
        fail_max=5,
        reset_timeout=15,
    )


def get_venue_circuit_breaker(venue: str) -> AsyncCircuitBreaker:
    """Circuit breaker for a swap venue's quote API (stricter)."""
    return AsyncCircuitBreaker.get(
        name=f"venue_{venue}",
        fail_max=3,
        reset_timeout=30,
    )


def get_price_feed_circuit_breaker(source: str) -> AsyncCircuitBreaker:
    """Circuit breaker for a reference price source."""
    return AsyncCircuitBreaker.get(
        name=f"price_{source}",
        fail_max=3,
        reset_timeout=60,
    )


def get_enhancer_circuit_breaker(provider: str) -> AsyncCircuitBreaker:
    """Circuit breaker for an enhancer provider (AI APIs can be slow)."""
    return AsyncCircuitBreaker.get(
        name=f"enhancer_{provider}",
        fail_max=5,
        reset_timeout=60,
        exclude=(asyncio.TimeoutError,),  # Timeouts don't trip the breaker
    )


def get_circuit_breaker_health() -> dict:
    """Health summary of all circuit breakers (logged by the scheduler)."""
    all_stats = AsyncCircuitBreaker.get_all_stats()
    open_breakers = [s for s in all_stats if s.state == CircuitState.OPEN]
    return {
        "healthy": len(open_breakers) == 0,
        "total_breakers": len(all_stats),
        "open_breakers": len(open_breakers),
        "breakers": [s.to_dict() for s in all_stats],
    }
