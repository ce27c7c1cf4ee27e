"""Circuit breaker guarding the durable store and each external data source.

A breaker opens after ``failure_threshold`` consecutive failures and stays
open for ``recovery_timeout`` seconds. After that a single trial call is let
through (half-open) while other callers keep failing fast. Success closes
the circuit, failure reopens it immediately without waiting for the
threshold again. A trial call that never reports back frees its slot after
another ``recovery_timeout``.
"""

import enum
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """Raised when a call is attempted on an open circuit."""

    def __init__(self, service_name: str) -> None:
        self.service_name = service_name
        super().__init__(f"Circuit breaker is open for {service_name}")


class CircuitBreaker:
    """Per-dependency failure gate.

    Args:
        service_name: Protected dependency, e.g. ``supabase`` or a source name.
        failure_threshold: Consecutive failures before opening.
        recovery_timeout: Seconds an open circuit waits before a trial call.
    """

    def __init__(
        self,
        service_name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
    ) -> None:
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout

        self._failure_count = 0
        self._opened_at: float | None = None
        self._state = CircuitState.CLOSED
        self._trips = 0
        self._trial_started_at: float | None = None

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if time.monotonic() - self._opened_at >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                logger.info(
                    "Circuit half-open, admitting a trial call",
                    extra={"dependency": self.service_name},
                )
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def check(self) -> None:
        """Raise CircuitBreakerOpen while calls are blocked.

        In half-open state only the first caller is admitted, as the trial call.
        """
        state = self.state
        if state == CircuitState.OPEN:
            raise CircuitBreakerOpen(self.service_name)
        if state == CircuitState.HALF_OPEN:
            now = time.monotonic()
            started = self._trial_started_at
            if started is not None and now - started < self.recovery_timeout:
                raise CircuitBreakerOpen(self.service_name)
            self._trial_started_at = now

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("Circuit closed, dependency recovered", extra={"dependency": self.service_name})
        self._failure_count = 0
        self._opened_at = None
        self._state = CircuitState.CLOSED
        self._trial_started_at = None

    def record_failure(self) -> None:
        self._failure_count += 1
        trial_failed = self.state == CircuitState.HALF_OPEN
        if trial_failed or self._failure_count >= self.failure_threshold:
            self._open(trial_failed)

    def _open(self, trial_failed: bool) -> None:
        if self._state != CircuitState.OPEN:
            self._trips += 1
            logger.warning(
                "Circuit opened",
                extra={
                    "dependency": self.service_name,
                    "failures": self._failure_count,
                    "trial_failed": trial_failed,
                },
            )
        self._state = CircuitState.OPEN
        self._opened_at = time.monotonic()
        self._trial_started_at = None

    def get_stats(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "failures": self._failure_count,
            "trips": self._trips,
        }

    async def call_async(
        self, func: Callable[..., Awaitable[T]], *args: object, **kwargs: object
    ) -> T:
        """Run ``func`` through the breaker, recording its outcome.

        Raises:
            CircuitBreakerOpen: If the circuit is open.
        """
        self.check()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result
