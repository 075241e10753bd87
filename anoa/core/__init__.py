"""Core module - configuration, errors, resilience and the token registry"""

from .circuit_breaker import (
    AsyncCircuitBreaker,
    CircuitBreakerOpen,
    CircuitBreakerStats,
    CircuitState,
    get_circuit_breaker_health,
    get_enhancer_circuit_breaker,
    get_market_data_circuit_breaker,
    get_venue_circuit_breaker,
)
from .config import Settings, get_settings
from .errors import (
    AppError,
    ErrorCode,
    LedgerError,
    MarketDataError,
    PriceUnavailableError,
)

__all__ = [
    "AppError",
    "AsyncCircuitBreaker",
    "CircuitBreakerOpen",
    "CircuitBreakerStats",
    "CircuitState",
    "ErrorCode",
    "LedgerError",
    "MarketDataError",
    "PriceUnavailableError",
    "Settings",
    "get_circuit_breaker_health",
    "get_enhancer_circuit_breaker",
    "get_market_data_circuit_breaker",
    "get_settings",
    "get_venue_circuit_breaker",
]
