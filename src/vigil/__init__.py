"""
Vigil — observability and resilience for asyncio services.

Structured logging with spans and sinks, four-golden-signal performance
monitoring, error tracking with automated recovery, a monitoring
orchestrator that runs it all on a timer, and composable resilience
primitives.

Quick start::

    import vigil

    engine = await vigil.init(vigil.load_config())
    engine.logger.info("Order placed", {"operation": "checkout", "duration_ms": 182})

    call = vigil.resilient_operation(
        fetch_prices,
        retry=vigil.RetryConfig(max_attempts=3),
        timeout=2.0,
        circuit_breaker=engine.circuits.get("prices"),
        fallback=lambda: cached_prices,
    )
    prices = await call()

    await vigil.shutdown()
"""

__version__ = "0.1.0"

from vigil.config import AlertThresholds, AutomationConfig, VigilConfig, load_config
from vigil.core.types import AlertEvent, AlertSeverity, AlertType, LogEntry, LogLevel, SystemHealth
from vigil.monitoring.errors import ErrorContext, ErrorTracker
from vigil.monitoring.orchestrator import MonitoringOrchestrator, WorkflowRule
from vigil.monitoring.performance import PerformanceMonitor
from vigil.resilience import (
    BatchConfig,
    Batcher,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    Deduplicator,
    RateLimiter,
    RateLimiterConfig,
    RetryConfig,
    resilient_operation,
    with_fallback,
    with_retry,
    with_timeout,
)
from vigil.runtime import Engine, get_engine, init, shutdown
from vigil.telemetry.logger import Span, StructuredLogger

__all__ = [
    # Core types
    "AlertEvent",
    "AlertSeverity",
    "AlertType",
    "LogEntry",
    "LogLevel",
    "SystemHealth",
    # Config
    "AlertThresholds",
    "AutomationConfig",
    "VigilConfig",
    "load_config",
    # Engine
    "Engine",
    "ErrorContext",
    "ErrorTracker",
    "MonitoringOrchestrator",
    "PerformanceMonitor",
    "Span",
    "StructuredLogger",
    "WorkflowRule",
    "get_engine",
    "init",
    "shutdown",
    # Resilience
    "BatchConfig",
    "Batcher",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitOpenError",
    "Deduplicator",
    "RateLimiter",
    "RateLimiterConfig",
    "RetryConfig",
    "resilient_operation",
    "with_fallback",
    "with_retry",
    "with_timeout",
]
