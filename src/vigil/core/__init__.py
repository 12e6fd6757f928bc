"""Core types shared across the engine."""

from .scheduler import AsyncioScheduler, ScheduleHandle, Scheduler
from .types import (
    AlertCallback,
    AlertEvent,
    AlertSeverity,
    AlertType,
    Context,
    ContextValue,
    LogEntry,
    LogLevel,
    Resource,
    SystemHealth,
)

__all__ = [
    "AlertCallback",
    "AlertEvent",
    "AlertSeverity",
    "AlertType",
    "AsyncioScheduler",
    "Context",
    "ContextValue",
    "LogEntry",
    "LogLevel",
    "Resource",
    "ScheduleHandle",
    "Scheduler",
    "SystemHealth",
]
