"""
Core types shared by every Vigil component.

Log entries and their resource descriptor, alert events, and the health
enum the orchestrator reports. Components exchange only these shapes.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeAlias

# Closed set of values allowed in log context maps.
ContextValue: TypeAlias = str | int | float | bool | None | list["ContextValue"] | dict[str, "ContextValue"]
Context: TypeAlias = dict[str, ContextValue]


def iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, UTC).isoformat()


# ---------------------------------------------------------------------------
# Log levels
# ---------------------------------------------------------------------------

class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    FATAL = "FATAL"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    @classmethod
    def parse(cls, value: str | LogLevel) -> LogLevel:
        if isinstance(value, LogLevel):
            return value
        v = value.strip().upper()
        if v == "WARNING":
            v = "WARN"
        if v == "CRITICAL":
            v = "FATAL"
        return cls(v)


_LEVEL_ORDER = [LogLevel.DEBUG, LogLevel.INFO, LogLevel.WARN, LogLevel.ERROR, LogLevel.FATAL]

CRITICAL_LEVELS = frozenset({LogLevel.ERROR, LogLevel.FATAL})


# ---------------------------------------------------------------------------
# Log entries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Resource:
    """Describes the process that produced an entry."""

    service_name: str
    service_version: str
    environment: str
    platform: str

    def to_dict(self) -> dict[str, str]:
        return {
            "service_name": self.service_name,
            "service_version": self.service_version,
            "environment": self.environment,
            "platform": self.platform,
        }


@dataclass(frozen=True)
class LogEntry:
    timestamp: float
    level: LogLevel
    message: str
    context: Context
    session_id: str
    resource: Resource
    trace_id: str | None = None
    span_id: str | None = None
    parent_span_id: str | None = None
    fingerprint: str | None = None

    @property
    def is_error(self) -> bool:
        return self.level in CRITICAL_LEVELS

    @property
    def is_internal(self) -> bool:
        """True for entries the engine logged about itself."""
        return self.context.get("internal") is True

    @property
    def duration_ms(self) -> float | None:
        value = self.context.get("duration_ms")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)

    @property
    def operation(self) -> str | None:
        for key in ("operation", "action"):
            value = self.context.get(key)
            if isinstance(value, str) and value:
                return value
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": iso(self.timestamp),
            "level": self.level.value,
            "message": self.message,
            "context": self.context,
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "parent_span_id": self.parent_span_id,
            "session_id": self.session_id,
            "resource": self.resource.to_dict(),
            "fingerprint": self.fingerprint,
        }


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class AlertType(Enum):
    LATENCY = "latency"
    TRAFFIC = "traffic"
    ERROR_RATE = "error_rate"
    SATURATION = "saturation"
    INCIDENT = "incident"
    HEALTH_CHECK = "health_check"


class AlertSeverity(Enum):
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class AlertEvent:
    type: AlertType
    severity: AlertSeverity
    metric: str
    value: float
    threshold: float
    message: str = ""
    timestamp: float = field(default_factory=time.time)
    context: Context = field(default_factory=dict)

    @property
    def key(self) -> tuple[AlertType, str, AlertSeverity]:
        """Identity used to suppress repeats of the same alert."""
        return (self.type, self.metric, self.severity)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "metric": self.metric,
            "value": self.value,
            "threshold": self.threshold,
            "message": self.message,
            "timestamp": iso(self.timestamp),
            "context": self.context,
        }


AlertCallback = Callable[[AlertEvent], None]


# ---------------------------------------------------------------------------
# System health
# ---------------------------------------------------------------------------

class SystemHealth(Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"
