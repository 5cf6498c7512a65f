"""
Process-local circuit breakers keyed per dependency.

Each key (a provider name) is backed by its own ``circuitbreaker.CircuitBreaker``.
After ``failure_threshold`` consecutive failures the breaker opens and callers
skip that dependency. Once ``reset_timeout_s`` has passed the library reports
the breaker half-open; the next is_open() check then replaces it with a fresh
closed breaker (failure count reset) so one new attempt is allowed. Any
success closes it.

State lives in memory only and is lost on restart. It bounds call volume per
process; it is not a cross-worker rate-limit authority.

Example:
    >>> breaker = CircuitBreaker(failure_threshold=2, reset_timeout_s=60)
    >>> response = await breaker.call("openai", query_provider, client, prompt, 30000)
    >>> breaker.record_failure("openai")
    >>> breaker.record_failure("openai")
    >>> breaker.is_open("openai")
    True
"""

import logging
import threading
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import TypeVar

import circuitbreaker

from visibility_scanner.config.constants import (
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_RESET_TIMEOUT_S,
)
from visibility_scanner.exceptions import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _RecordedFailure(Exception):
    """Raised inside a breaker to count a failure observed elsewhere."""


@dataclass
class CircuitBreakerState:
    """Snapshot of one key's breaker."""

    failures: int = 0
    state: str = circuitbreaker.STATE_CLOSED

    @property
    def is_open(self) -> bool:
        return self.state == circuitbreaker.STATE_OPEN


class CircuitBreaker:
    """
    Registry of per-key breakers with an is_open/record_failure/record_success facade.

    Args:
        failure_threshold: Consecutive failures that open a key's breaker
        reset_timeout_s: Cool-down after opening before the breaker half-opens
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout_s: float = DEFAULT_RESET_TIMEOUT_S,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if reset_timeout_s <= 0:
            raise ValueError("reset_timeout_s must be positive")
        self.failure_threshold = failure_threshold
        self.reset_timeout_s = reset_timeout_s
        self._breakers: dict[str, circuitbreaker.CircuitBreaker] = {}
        self._lock = threading.Lock()

    def _new_breaker(self, key: str) -> circuitbreaker.CircuitBreaker:
        return circuitbreaker.CircuitBreaker(
            failure_threshold=self.failure_threshold,
            recovery_timeout=self.reset_timeout_s,
            expected_exception=Exception,
            name=key,
        )

    def _breaker(self, key: str) -> circuitbreaker.CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = self._breakers[key] = self._new_breaker(key)
            return breaker

    def is_open(self, key: str) -> bool:
        """
        True while the breaker for ``key`` is open and cooling down.

        A half-open breaker is replaced by a fresh closed one.
        """
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                return False
            if breaker.state == circuitbreaker.STATE_HALF_OPEN:
                logger.info(f"Circuit breaker half-open for '{key}', allowing a fresh attempt")
                self._breakers[key] = self._new_breaker(key)
                return False
            return breaker.opened

    async def call(self, key: str, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """
        Await ``func`` through the breaker for ``key``.

        Raises:
            CircuitOpenError: If the breaker is open (``func`` is not called)
        """
        if self.is_open(key):
            raise CircuitOpenError(key)

        breaker = self._breaker(key)
        try:
            with breaker:
                return await func(*args, **kwargs)
        finally:
            self._log_if_opened(key, breaker)

    def record_failure(self, key: str) -> None:
        breaker = self._breaker(key)
        with suppress(_RecordedFailure):
            with breaker:
                raise _RecordedFailure(key)
        self._log_if_opened(key, breaker)

    def record_success(self, key: str) -> None:
        breaker = self._breaker(key)
        with breaker:
            pass

    def failure_count(self, key: str) -> int:
        with self._lock:
            breaker = self._breakers.get(key)
            return breaker.failure_count if breaker else 0

    def state(self, key: str) -> CircuitBreakerState:
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                return CircuitBreakerState()
            return CircuitBreakerState(failures=breaker.failure_count, state=breaker.state)

    def reset(self, key: str | None = None) -> None:
        """Forget state for one key, or for all keys."""
        with self._lock:
            if key is None:
                self._breakers.clear()
            else:
                self._breakers.pop(key, None)

    def _log_if_opened(self, key: str, breaker: circuitbreaker.CircuitBreaker) -> None:
        if breaker.opened and breaker.failure_count == self.failure_threshold:
            logger.warning(
                f"Circuit breaker opened for '{key}' after {breaker.failure_count} failures"
            )


_default_breaker = CircuitBreaker()


def get_circuit_breaker() -> CircuitBreaker:
    """Process-wide breaker shared by all engines in this process."""
    return _default_breaker
