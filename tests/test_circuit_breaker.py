"""
Tests for Circuit Breaker pattern implementation.
"""

import asyncio
from datetime import UTC, datetime

import pytest

from anoa.core.circuit_breaker import (
    AsyncCircuitBreaker,
    CircuitBreakerOpen,
    CircuitBreakerStats,
    CircuitState,
    get_circuit_breaker_health,
    get_enhancer_circuit_breaker,
    get_price_feed_circuit_breaker,
    get_venue_circuit_breaker,
)


async def failing_func():
    raise ValueError("Test error")


class TestAsyncCircuitBreaker:
    """Tests for AsyncCircuitBreaker class."""

    def setup_method(self):
        """Reset circuit breakers before each test."""
        AsyncCircuitBreaker._breakers.clear()

    @pytest.mark.asyncio
    async def test_initial_state_is_closed(self):
        """Circuit breaker should start in closed state."""
        breaker = AsyncCircuitBreaker("test_initial", fail_max=3)
        assert breaker.state == CircuitState.CLOSED
        assert not breaker.is_open
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_successful_calls_keep_circuit_closed(self):
        """Successful calls should not affect circuit state."""
        breaker = AsyncCircuitBreaker("test_success", fail_max=3)

        async def success_func():
            return "success"

        for _ in range(10):
            assert await breaker.call(success_func) == "success"

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_sync_callables_are_supported(self):
        """Plain functions pass through without awaiting."""
        breaker = AsyncCircuitBreaker("test_sync", fail_max=3)
        assert await breaker.call(lambda x: x * 2, 21) == 42

    @pytest.mark.asyncio
    async def test_failures_trip_circuit(self):
        """Circuit should open after fail_max failures."""
        breaker = AsyncCircuitBreaker("test_failures", fail_max=3, reset_timeout=10)

        for _ in range(2):
            with pytest.raises(ValueError):
                await breaker.call(failing_func)

        assert breaker.state == CircuitState.CLOSED

        # Third failure opens the circuit; the original error still surfaces
        with pytest.raises(ValueError):
            await breaker.call(failing_func)

        assert breaker.state == CircuitState.OPEN
        assert breaker.is_open

    @pytest.mark.asyncio
    async def test_open_circuit_raises_exception(self):
        """Open circuit should raise CircuitBreakerOpen without calling through."""
        breaker = AsyncCircuitBreaker("test_open", fail_max=1, reset_timeout=10)

        with pytest.raises(ValueError):
            await breaker.call(failing_func)

        called = False

        async def another_func():
            nonlocal called
            called = True

        with pytest.raises(CircuitBreakerOpen) as exc_info:
            await breaker.call(another_func)

        assert exc_info.value.breaker_name == "test_open"
        assert not called

    @pytest.mark.asyncio
    async def test_excluded_exceptions_dont_trip_circuit(self):
        """Excluded exceptions should not count as failures."""
        breaker = AsyncCircuitBreaker(
            "test_exclude",
            fail_max=1,
            exclude=(asyncio.TimeoutError,),
        )

        async def timeout_func():
            raise asyncio.TimeoutError("Timeout")

        for _ in range(5):
            with pytest.raises(asyncio.TimeoutError):
                await breaker.call(timeout_func)

        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_manual_reset(self):
        """Manual reset should close the circuit."""
        breaker = AsyncCircuitBreaker("test_reset", fail_max=1, reset_timeout=100)

        with pytest.raises(ValueError):
            await breaker.call(failing_func)
        assert breaker.is_open

        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert not breaker.is_open

    def test_get_creates_singleton(self):
        """get() should return the same instance for the same name."""
        assert AsyncCircuitBreaker.get("singleton_test") is AsyncCircuitBreaker.get("singleton_test")

    @pytest.mark.asyncio
    async def test_stats_tracking(self):
        """Statistics should be tracked correctly."""
        breaker = AsyncCircuitBreaker("test_stats", fail_max=5)

        async def success_func():
            return "ok"

        for _ in range(3):
            await breaker.call(success_func)
        for _ in range(2):
            with pytest.raises(ValueError):
                await breaker.call(failing_func)

        stats = breaker.stats
        assert stats.name == "test_stats"
        assert stats.state == CircuitState.CLOSED
        assert stats.total_calls == 5
        assert stats.success_count == 3
        assert stats.last_failure_time is not None


class TestPredefinedBreakers:
    """Tests for the named breakers used by the pipeline."""

    def setup_method(self):
        AsyncCircuitBreaker._breakers.clear()

    def test_venue_breakers_are_per_venue(self):
        """Each venue gets its own breaker."""
        lifi = get_venue_circuit_breaker("lifi")
        relay = get_venue_circuit_breaker("relay")
        assert lifi is not relay
        assert lifi.name == "venue_lifi"

    def test_price_feed_breaker_name(self):
        """Price sources are isolated by name."""
        assert get_price_feed_circuit_breaker("coingecko").name == "price_coingecko"

    @pytest.mark.asyncio
    async def test_enhancer_breaker_ignores_timeouts(self):
        """Slow enhancer providers do not trip their breaker."""
        breaker = get_enhancer_circuit_breaker("zai")

        async def slow():
            raise asyncio.TimeoutError()

        for _ in range(10):
            with pytest.raises(asyncio.TimeoutError):
                await breaker.call(slow)
        assert breaker.state == CircuitState.CLOSED


class TestCircuitBreakerHealth:
    """Tests for circuit breaker health reporting."""

    def setup_method(self):
        """Reset circuit breakers before each test."""
        AsyncCircuitBreaker._breakers.clear()

    def test_health_with_no_breakers(self):
        """Health should report healthy when no breakers exist."""
        health = get_circuit_breaker_health()

        assert health["healthy"] is True
        assert health["total_breakers"] == 0
        assert health["open_breakers"] == 0

    @pytest.mark.asyncio
    async def test_health_with_open_breaker(self):
        """Health should report unhealthy when any breaker is open."""
        AsyncCircuitBreaker.get("health_closed")
        breaker = AsyncCircuitBreaker.get("health_open_test", fail_max=1)

        with pytest.raises(ValueError):
            await breaker.call(failing_func)

        health = get_circuit_breaker_health()

        assert health["healthy"] is False
        assert health["total_breakers"] == 2
        assert health["open_breakers"] == 1

    @pytest.mark.asyncio
    async def test_reset_all_breakers(self):
        """reset_all() should reset all circuit breakers."""
        breaker1 = AsyncCircuitBreaker.get("reset_all_1", fail_max=1)
        breaker2 = AsyncCircuitBreaker.get("reset_all_2", fail_max=1)

        with pytest.raises(ValueError):
            await breaker1.call(failing_func)
        with pytest.raises(ValueError):
            await breaker2.call(failing_func)

        assert breaker1.is_open
        assert breaker2.is_open

        AsyncCircuitBreaker.reset_all()

        assert not breaker1.is_open
        assert not breaker2.is_open


class TestCircuitBreakerStats:
    """Tests for CircuitBreakerStats."""

    def test_to_dict_with_all_fields(self):
        """to_dict should serialize all fields correctly."""
        now = datetime.now(UTC)
        stats = CircuitBreakerStats(
            name="test_breaker",
            state=CircuitState.CLOSED,
            failure_count=5,
            success_count=100,
            total_calls=105,
            last_failure_time=now,
            opened_at=now,
        )

        d = stats.to_dict()

        assert d["name"] == "test_breaker"
        assert d["state"] == "closed"
        assert d["failure_count"] == 5
        assert d["total_calls"] == 105
        assert d["last_failure_time"] == now.isoformat()
        assert d["opened_at"] == now.isoformat()

    def test_to_dict_with_none_times(self):
        """to_dict should handle None datetime fields."""
        stats = CircuitBreakerStats(
            name="test_breaker",
            state=CircuitState.OPEN,
            failure_count=3,
            success_count=10,
            total_calls=13,
        )

        d = stats.to_dict()

        assert d["state"] == "open"
        assert d["last_failure_time"] is None
        assert d["opened_at"] is None
