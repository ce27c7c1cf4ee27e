"""Tests for the circuit breaker."""

from unittest.mock import patch

import pytest

from context_engine.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpen, CircuitState


class TestCircuitBreaker:
    """Tests for CircuitBreaker state transitions."""

    def test_opens_after_threshold(self) -> None:
        breaker = CircuitBreaker("shopify", failure_threshold=3, recovery_timeout=30)

        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitBreakerOpen):
            breaker.check()

    def test_success_resets_failures(self) -> None:
        breaker = CircuitBreaker("shopify", failure_threshold=2)
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.failure_count == 1
        assert breaker.state == CircuitState.CLOSED

    def test_half_opens_after_recovery_timeout(self) -> None:
        """An open circuit lets a trial call through once the cool-down elapses."""
        with patch("context_engine.core.circuit_breaker.time.monotonic", return_value=100.0):
            breaker = CircuitBreaker("kajabi", failure_threshold=1, recovery_timeout=10)
            breaker.record_failure()
            assert breaker.state == CircuitState.OPEN

        with patch("context_engine.core.circuit_breaker.time.monotonic", return_value=111.0):
            assert breaker.state == CircuitState.HALF_OPEN
            breaker.check()

    @pytest.mark.asyncio
    async def test_call_async_records_outcomes(self) -> None:
        breaker = CircuitBreaker("marketing", failure_threshold=1)

        async def ok() -> str:
            return "ok"

        async def boom() -> str:
            raise RuntimeError("down")

        assert await breaker.call_async(ok) == "ok"

        with pytest.raises(RuntimeError):
            await breaker.call_async(boom)

        with pytest.raises(CircuitBreakerOpen) as exc_info:
            await breaker.call_async(ok)
        assert exc_info.value.service_name == "marketing"

    def test_failed_trial_call_reopens_immediately(self) -> None:
        with patch("context_engine.core.circuit_breaker.time.monotonic", return_value=100.0):
            breaker = CircuitBreaker("supabase", failure_threshold=3, recovery_timeout=10)
            for _ in range(3):
                breaker.record_failure()

        with patch("context_engine.core.circuit_breaker.time.monotonic", return_value=111.0):
            assert breaker.state == CircuitState.HALF_OPEN
            breaker.record_failure()
            assert breaker.state == CircuitState.OPEN
            assert breaker.get_stats() == {"state": "open", "failures": 4, "trips": 2}

    def test_half_open_admits_one_caller_at_a_time(self) -> None:
        """Concurrent callers fail fast while the recovery call is in flight."""
        with patch("context_engine.core.circuit_breaker.time.monotonic", return_value=100.0):
            breaker = CircuitBreaker("shopify", failure_threshold=1, recovery_timeout=10)
            breaker.record_failure()

        with patch("context_engine.core.circuit_breaker.time.monotonic", return_value=111.0):
            breaker.check()
            with pytest.raises(CircuitBreakerOpen):
                breaker.check()

            breaker.record_success()
            breaker.check()
            breaker.check()
            assert breaker.state == CircuitState.CLOSED

    def test_unreported_half_open_call_frees_slot(self) -> None:
        with patch("context_engine.core.circuit_breaker.time.monotonic", return_value=100.0):
            breaker = CircuitBreaker("shopify", failure_threshold=1, recovery_timeout=10)
            breaker.record_failure()

        with patch("context_engine.core.circuit_breaker.time.monotonic", return_value=111.0):
            breaker.check()

        with patch("context_engine.core.circuit_breaker.time.monotonic", return_value=122.0):
            breaker.check()
            with pytest.raises(CircuitBreakerOpen):
                breaker.check()
