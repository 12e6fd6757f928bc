"""
Retry with exponential backoff and jitter.

Delay before attempt ``n + 1`` is ``min(base_delay * multiplier**(n - 1), max_delay)``
shifted by up to ±25%. All delays are in seconds.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import httpx

logger = logging.getLogger("vigil.retry")

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}
TRANSIENT_KEYWORDS = ("network", "timeout", "timed out", "connection", "fetch", "429", "502", "503", "504")


def is_transient_error(error: Exception) -> bool:
    """Default retry predicate: network trouble, timeouts, throttling and 5xx."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in TRANSIENT_STATUS_CODES
    if isinstance(error, (ConnectionError, TimeoutError, httpx.TransportError)):
        return True
    s = str(error).lower()
    return any(k in s for k in TRANSIENT_KEYWORDS)


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.25
    should_retry: Callable[[Exception], bool] = field(default=is_transient_error)
    on_retry: Callable[[int, Exception], None] | None = None

    def compute_delay(self, attempt: int) -> float:
        """Delay to wait after ``attempt`` failed (attempts are 1-based)."""
        delay = min(self.base_delay * (self.backoff_multiplier ** (attempt - 1)), self.max_delay)
        spread = delay * self.jitter * random.uniform(-1.0, 1.0)
        return max(0.0, delay + spread)


class Retry:
    """Reusable retry policy. ``sleep`` is injectable so tests don't wait."""

    def __init__(self, config: RetryConfig | None = None, sleep: Sleep = asyncio.sleep):
        self.config = config or RetryConfig()
        self._sleep = sleep

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        cfg = self.config
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as e:
                if attempt >= cfg.max_attempts or not cfg.should_retry(e):
                    raise
                delay = cfg.compute_delay(attempt)
                logger.debug(f"Attempt {attempt}/{cfg.max_attempts} failed ({e}); retrying in {delay:.3f}s")
                if cfg.on_retry:
                    cfg.on_retry(attempt, e)
                await self._sleep(delay)
                attempt += 1


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    *,
    sleep: Sleep = asyncio.sleep,
) -> T:
    return await Retry(config, sleep).execute(operation)
