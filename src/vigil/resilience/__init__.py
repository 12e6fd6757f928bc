"""Resilience toolkit — retry, circuit breaker, timeout, fallback, dedup, batching, rate limiting."""

from .batcher import BatchConfig, Batcher, BatchSizeMismatchError
from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitOpenError,
    CircuitState,
)
from .compose import resilient_operation
from .dedup import Deduplicator
from .fallback import Fallback, with_fallback
from .rate_limiter import RateLimiter, RateLimiterConfig
from .retry import Retry, RetryConfig, is_transient_error, with_retry
from .timeout import OperationTimeoutError, Timeout, with_timeout

__all__ = [
    "BatchConfig",
    "Batcher",
    "BatchSizeMismatchError",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "CircuitState",
    "Deduplicator",
    "Fallback",
    "OperationTimeoutError",
    "RateLimiter",
    "RateLimiterConfig",
    "Retry",
    "RetryConfig",
    "Timeout",
    "is_transient_error",
    "resilient_operation",
    "with_fallback",
    "with_retry",
    "with_timeout",
]
