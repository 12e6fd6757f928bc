"""
Periodic job scheduling.

Components never touch the event loop's timers directly; they ask a
``Scheduler`` to run a coroutine function every ``interval`` seconds and
keep the handle to cancel it. Tests swap in a manual scheduler.
"""

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger("vigil.scheduler")

Job = Callable[[], Awaitable[Any]]


@dataclass
class ScheduleHandle:
    id: int
    name: str
    interval: float
    cancelled: bool = False


class Scheduler(ABC):
    @abstractmethod
    def schedule(self, interval: float, fn: Job, name: str | None = None) -> ScheduleHandle:
        ...

    @abstractmethod
    def cancel(self, handle: ScheduleHandle) -> None:
        ...

    async def shutdown(self) -> None:
        return None


class AsyncioScheduler(Scheduler):
    """
    Timer-driven scheduler on the running event loop.

    Every tick runs as its own task, so a slow job never delays the next
    tick. Jobs that need to avoid overlapping runs must throttle themselves.
    """

    def __init__(self):
        self._ids = itertools.count(1)
        self._timers: dict[int, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def schedule(self, interval: float, fn: Job, name: str | None = None) -> ScheduleHandle:
        if interval <= 0:
            raise ValueError(f"Schedule interval must be positive, got {interval}")
        loop = asyncio.get_running_loop()
        handle = ScheduleHandle(next(self._ids), name or getattr(fn, "__name__", "job"), interval)
        self._arm(loop, handle, fn)
        logger.debug(f"Scheduled {handle.name} every {interval}s")
        return handle

    def _arm(self, loop: asyncio.AbstractEventLoop, handle: ScheduleHandle, fn: Job):
        self._timers[handle.id] = loop.call_later(handle.interval, self._fire, loop, handle, fn)

    def _fire(self, loop: asyncio.AbstractEventLoop, handle: ScheduleHandle, fn: Job):
        if handle.cancelled:
            return
        task = loop.create_task(self._run(handle, fn))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._arm(loop, handle, fn)

    async def _run(self, handle: ScheduleHandle, fn: Job):
        try:
            await fn()
        except Exception as e:
            logger.error(f"Scheduled job {handle.name} failed: {e}", exc_info=True)

    def cancel(self, handle: ScheduleHandle) -> None:
        handle.cancelled = True
        timer = self._timers.pop(handle.id, None)
        if timer is not None:
            timer.cancel()

    @property
    def active(self) -> int:
        return len(self._timers)

    async def shutdown(self):
        """Cancel all timers and wait for ticks already running to finish."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
