"""
Request deduplication — concurrent callers with the same key share one run.

The shared task is shielded, so a caller being cancelled does not cancel the
operation the other callers are waiting on.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Any, TypeVar

logger = logging.getLogger("vigil.dedup")

T = TypeVar("T")


class Deduplicator:
    def __init__(self):
        self._pending: dict[Hashable, asyncio.Future[Any]] = {}

    async def execute(self, key: Hashable, operation: Callable[[], Awaitable[T]]) -> T:
        task = self._pending.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(operation())
            self._pending[key] = task
            task.add_done_callback(lambda t, k=key: self._settle(k, t))
        else:
            logger.debug(f"Joining in-flight operation for key {key!r}")
        return await asyncio.shield(task)

    def _settle(self, key: Hashable, task: asyncio.Future[Any]):
        # A newer run may already own the key after clear().
        if self._pending.get(key) is task:
            del self._pending[key]

    def is_pending(self, key: Hashable) -> bool:
        return key in self._pending

    def pending_keys(self) -> list[Hashable]:
        return list(self._pending)

    def clear(self, key: Hashable | None = None):
        """Forget in-flight registrations so the next call starts fresh."""
        if key is None:
            self._pending.clear()
        else:
            self._pending.pop(key, None)
