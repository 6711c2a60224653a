"""
Async circuit breaker for external service calls.

After ``failure_threshold`` consecutive failures the breaker opens and
rejects calls until ``recovery_timeout`` has elapsed; the next call is
then let through as a probe.
"""

from __future__ import annotations

import functools
import logging
import time

from core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class CircuitOpen(ExternalServiceError):
    """Raised when a call is rejected because the circuit is open."""

    code = "circuit_open"

    def __init__(self, service: str, resets_in: float) -> None:
        super().__init__(
            f"Circuit breaker open for {service} (resets in {resets_in:.0f}s)",
            {"service": service, "resets_in": resets_in},
        )
        self.service = service
        self.resets_in = resets_in


class CircuitBreaker:
    """Three-state circuit breaker: closed, open, half-open."""

    def __init__(
        self,
        service: str,
        *,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
    ) -> None:
        self.service = service
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout

        self._failures = 0
        self._opened_at: float | None = None
        self._state = "closed"

    @property
    def state(self) -> str:
        if self._state == "open" and self._opened_at is not None:
            if time.monotonic() - self._opened_at >= self.recovery_timeout:
                self._state = "half-open"
        return self._state

    def reset(self) -> None:
        self._failures = 0
        self._opened_at = None
        self._state = "closed"

    def record_success(self) -> None:
        if self._state != "closed":
            logger.info("Circuit breaker CLOSED for %s", self.service)
        self.reset()

    def record_failure(self) -> None:
        self._failures += 1
        if self._state == "half-open" or (
            self._state == "closed" and self._failures >= self.failure_threshold
        ):
            self._state = "open"
            self._opened_at = time.monotonic()
            logger.warning(
                "Circuit breaker OPEN for %s after %d failures",
                self.service,
                self._failures,
            )

    def check(self) -> None:
        """Raise :class:`CircuitOpen` if the circuit is open."""
        if self.state == "open":
            resets_in = self.recovery_timeout - (
                time.monotonic() - (self._opened_at or 0)
            )
            raise CircuitOpen(self.service, max(0.0, resets_in))


nominatim_breaker = CircuitBreaker(
    "Nominatim",
    failure_threshold=5,
    recovery_timeout=60,
)


def with_circuit_breaker(breaker: CircuitBreaker):
    """Decorator that wraps an async function with circuit breaker protection."""

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            breaker.check()
            try:
                result = await fn(*args, **kwargs)
            except CircuitOpen:
                raise
            except Exception:
                breaker.record_failure()
                raise
            breaker.record_success()
            return result

        return wrapper

    return decorator
