"""
Request batching — collect items and hand them to one executor call.

A batch runs as soon as ``max_batch_size`` items are queued, otherwise
``max_wait_time`` seconds after its first item arrived. The executor
returns one result per item, matched back by position; a result that is an
exception instance rejects only that item's caller.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

logger = logging.getLogger("vigil.batcher")

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchConfig:
    max_batch_size: int = 10
    max_wait_time: float = 0.1


class BatchSizeMismatchError(Exception):
    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(f"Batch executor returned {received} results for {expected} items")


class Batcher(Generic[T, R]):
    def __init__(self, executor: Callable[[list[T]], Awaitable[list[Any]]], config: BatchConfig | None = None):
        self.executor = executor
        self.config = config or BatchConfig()
        self._queue: list[tuple[T, asyncio.Future[R]]] = []
        self._timer: asyncio.TimerHandle | None = None
        self._flushes: set[asyncio.Task[None]] = set()
        self.batches_executed = 0

    @property
    def pending(self) -> int:
        return len(self._queue)

    def add(self, item: T) -> asyncio.Future[R]:
        """Queue ``item``; the returned future resolves when its batch has run."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[R] = loop.create_future()
        self._queue.append((item, future))

        if len(self._queue) >= self.config.max_batch_size:
            self._cancel_timer()
            self._spawn(self._take())
        elif self._timer is None:
            self._timer = loop.call_later(self.config.max_wait_time, self._on_timer)
        return future

    def _take(self) -> list[tuple[T, asyncio.Future[R]]]:
        """Detach the next batch from the queue, never more than ``max_batch_size`` items."""
        n = self.config.max_batch_size
        batch, self._queue = self._queue[:n], self._queue[n:]
        return batch

    def _on_timer(self):
        self._timer = None
        if self._queue:
            self._spawn(self._take())

    def _spawn(self, batch: list[tuple[T, asyncio.Future[R]]]):
        task = asyncio.ensure_future(self._execute(batch))
        self._flushes.add(task)
        task.add_done_callback(self._flushes.discard)

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def flush(self):
        """Run everything queued right now, one executor call per ``max_batch_size`` items."""
        self._cancel_timer()
        while self._queue:
            await self._execute(self._take())

    async def _execute(self, batch: list[tuple[T, asyncio.Future[R]]]):
        items = [item for item, _ in batch]
        self.batches_executed += 1

        try:
            results = await self.executor(items)
        except Exception as e:
            logger.warning(f"Batch of {len(items)} failed: {e}")
            for _, future in batch:
                if not future.done():
                    future.set_exception(e)
            return

        if len(results) != len(batch):
            error = BatchSizeMismatchError(len(batch), len(results))
            logger.error(str(error))
            for _, future in batch:
                if not future.done():
                    future.set_exception(error)
            return

        for (_, future), result in zip(batch, results):
            if future.done():
                continue
            if isinstance(result, Exception):
                future.set_exception(result)
            else:
                future.set_result(result)

    async def close(self):
        """Wait for in-flight batches, then flush whatever is still queued."""
        if self._flushes:
            await asyncio.gather(*self._flushes, return_exceptions=True)
        await self.flush()
