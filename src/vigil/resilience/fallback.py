"""Fallback — swap a failure for a static or lazily computed value."""

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger("vigil.fallback")

T = TypeVar("T")


async def resolve_fallback(fallback: Any) -> Any:
    """Call ``fallback`` if it is callable, awaiting the result when needed."""
    if not callable(fallback):
        return fallback
    value = fallback()
    if inspect.isawaitable(value):
        value = await value
    return value


async def with_fallback(operation: Callable[[], Awaitable[T]], fallback: T | Callable[[], T | Awaitable[T]]) -> T:
    """
    Run ``operation``; on any exception return ``fallback`` instead.

    A callable fallback is invoked only when the operation fails. To fall back
    to a callable *value*, wrap it: ``with_fallback(op, lambda: handler)``.
    """
    try:
        return await operation()
    except Exception as e:
        logger.warning(f"Operation failed, using fallback: {e}")
        return await resolve_fallback(fallback)


class Fallback:
    def __init__(self, fallback: Any):
        self.fallback = fallback

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        return await with_fallback(operation, self.fallback)
