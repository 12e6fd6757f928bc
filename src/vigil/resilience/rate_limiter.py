"""Sliding-window rate limiter. ``execute`` waits for capacity instead of failing."""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger("vigil.rate_limiter")

T = TypeVar("T")


@dataclass
class RateLimiterConfig:
    max_requests: int = 10
    window: float = 1.0


class RateLimiter:
    def __init__(
        self,
        config: RateLimiterConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or RateLimiterConfig()
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()

    def _prune(self, now: float):
        cutoff = now - self.config.window
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def can_proceed(self) -> bool:
        self._prune(self._clock())
        return len(self._timestamps) < self.config.max_requests

    def remaining(self) -> int:
        self._prune(self._clock())
        return max(0, self.config.max_requests - len(self._timestamps))

    def reset_time(self) -> float:
        """Seconds until the oldest recorded request leaves the window."""
        now = self._clock()
        self._prune(now)
        if not self._timestamps:
            return 0.0
        return max(0.0, self._timestamps[0] + self.config.window - now)

    async def acquire(self):
        while True:
            now = self._clock()
            self._prune(now)
            if len(self._timestamps) < self.config.max_requests:
                self._timestamps.append(now)
                return
            wait = self._timestamps[0] + self.config.window - now
            logger.debug(f"Rate limit reached ({self.config.max_requests}/{self.config.window}s), waiting {wait:.3f}s")
            await self._sleep(wait)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        await self.acquire()
        return await operation()

    def reset(self):
        self._timestamps.clear()
