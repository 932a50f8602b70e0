"""Pacing and bounded retry for calendar provider calls."""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

from .config import RateLimit
from .errors import TransientProviderError, classify_provider_error

T = TypeVar("T")


class RetryExhaustedError(TransientProviderError):
    """Raised when a rate-limited call still fails after every retry."""

    def __init__(self, action: str, attempts: int, last_error: Exception) -> None:
        super().__init__(f"{action} failed after {attempts} attempt(s) (rate limited): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class Throttle:
    """Enforces a minimum interval between provider-mutating calls."""

    def __init__(
        self,
        min_interval: float,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.min_interval = max(0.0, min_interval)
        self.sleep = sleep
        self.clock = clock
        self._last: Optional[float] = None

    def wait(self) -> None:
        now = self.clock()
        if self._last is not None:
            remaining = self.min_interval - (now - self._last)
            if remaining > 0:
                self.sleep(remaining)
        self._last = self.clock()


def call_with_retry(
    func: Callable[[], T],
    rate_limit: RateLimit,
    action: str = "provider call",
    throttle: Optional[Throttle] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``func``, retrying rate-limit errors with increasing delay.

    Permanent errors are raised at once, classified; transient errors are
    retried up to ``rate_limit.max_retries`` attempts in total.
    """
    attempts = max(1, rate_limit.max_retries)
    last_error: Optional[Exception] = None
    for attempt in range(1, attempts + 1):
        if attempt > 1:
            delay = rate_limit.retry_delay * (attempt - 1)
            logging.info("Retrying %s in %.1fs (attempt %d/%d)", action, delay, attempt, attempts)
            sleep(delay)
        if throttle is not None:
            throttle.wait()
        try:
            return func()
        except Exception as exc:
            error = classify_provider_error(exc)
            if not isinstance(error, TransientProviderError):
                if error is exc:
                    raise
                raise error from exc
            last_error = error
            logging.warning("Rate limited during %s (attempt %d/%d): %s", action, attempt, attempts, exc)
    raise RetryExhaustedError(action, attempts, last_error)
