"""
Compose resilience primitives around one logical operation.

Nesting, innermost first: timeout → circuit breaker → retry → fallback.
Each retry attempt therefore goes through the breaker and gets its own
deadline, and the fallback only applies once retries are exhausted.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .circuit_breaker import CircuitBreaker
from .fallback import with_fallback
from .retry import RetryConfig, Sleep, with_retry
from .timeout import with_timeout

T = TypeVar("T")

_NO_FALLBACK: Any = object()

Operation = Callable[[], Awaitable[T]]


def _timed(op: Operation, seconds: float) -> Operation:
    async def run():
        return await with_timeout(op, seconds)
    return run


def _guarded(op: Operation, breaker: CircuitBreaker) -> Operation:
    async def run():
        return await breaker.execute(op)
    return run


def _retried(op: Operation, config: RetryConfig, sleep: Sleep) -> Operation:
    async def run():
        return await with_retry(op, config, sleep=sleep)
    return run


def _with_fallback(op: Operation, fallback: Any) -> Operation:
    async def run():
        return await with_fallback(op, fallback)
    return run


def resilient_operation(
    operation: Operation,
    *,
    retry: RetryConfig | None = None,
    timeout: float | None = None,
    circuit_breaker: CircuitBreaker | None = None,
    fallback: Any = _NO_FALLBACK,
    sleep: Sleep = asyncio.sleep,
) -> Operation:
    """Return a zero-argument coroutine function running ``operation`` with the given protections."""
    wrapped = operation
    if timeout:
        wrapped = _timed(wrapped, timeout)
    if circuit_breaker is not None:
        wrapped = _guarded(wrapped, circuit_breaker)
    if retry is not None:
        wrapped = _retried(wrapped, retry, sleep)
    if fallback is not _NO_FALLBACK:
        wrapped = _with_fallback(wrapped, fallback)
    return wrapped
