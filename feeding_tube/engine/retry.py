"""Exponential backoff around a single external call."""

from __future__ import annotations

import random
import subprocess
import time
from typing import Callable, TypeVar

import httpx
import structlog

from ..errors import TransientFetchError

T = TypeVar("T")

JITTER_SECONDS = 1.0
THROTTLE_MARKERS = ("429", "too many requests", "rate limit")


def is_transient(error: BaseException) -> bool:
    """Throttling and timeouts are worth retrying; everything else is fatal."""

    if isinstance(error, (TransientFetchError, subprocess.TimeoutExpired, httpx.TimeoutException)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in THROTTLE_MARKERS)


class RetryingFetch:
    """Retry transient failures with ``base_delay * 2**attempt`` plus random jitter.

    The jitter keeps concurrent callers from retrying in lockstep. There is no
    shared circuit breaker; every call gets its own budget.
    """

    def __init__(
        self,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[float, float], float] = random.uniform,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self._sleep = sleep
        self._jitter = jitter
        self.logger = logger or structlog.get_logger("feeding_tube.retry")

    def delay_for(self, attempt: int, base_delay: float) -> float:
        return base_delay * (2**attempt) + self._jitter(0.0, JITTER_SECONDS)

    def fetch(self, operation: Callable[[], T], max_attempts: int = 3, base_delay: float = 1.0) -> T:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        for attempt in range(max_attempts - 1):
            try:
                return operation()
            except Exception as exc:
                if not is_transient(exc):
                    raise
                delay = self.delay_for(attempt, base_delay)
                self.logger.warning(
                    "fetch_retry",
                    attempt=attempt + 1,
                    max_attempts=max_attempts,
                    delay=round(delay, 3),
                    error=str(exc),
                )
                self._sleep(delay)
        return operation()


__all__ = ["JITTER_SECONDS", "RetryingFetch", "is_transient"]
