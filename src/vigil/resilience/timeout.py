"""Timeout wrapper. The timed-out operation is cancelled, not left running."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")


class OperationTimeoutError(TimeoutError):
    def __init__(self, timeout: float, operation: str | None = None):
        self.timeout = timeout
        self.operation = operation
        target = f"Operation '{operation}'" if operation else "Operation"
        super().__init__(f"{target} timed out after {timeout}s")


async def with_timeout(
    operation: Callable[[], Awaitable[T]],
    timeout: float,
    error: Exception | None = None,
) -> T:
    """Run ``operation`` with a deadline; raise ``error`` (or OperationTimeoutError) when it passes."""
    scope = asyncio.timeout(timeout)
    try:
        async with scope:
            return await operation()
    except TimeoutError:
        if scope.expired():
            raise (error or OperationTimeoutError(timeout)) from None
        raise


class Timeout:
    def __init__(self, seconds: float, error: Exception | None = None):
        self.seconds = seconds
        self.error = error

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        return await with_timeout(operation, self.seconds, self.error)
