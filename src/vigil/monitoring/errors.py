"""
Error tracker — classifies exceptions, scores severity, attempts recovery
and runs health checks.

Pluggable recovery: register a ``RecoveryStrategy`` and it is tried, in
registration order, for every tracked error whose condition it matches.
The first strategy that reports success marks the error recovered.

``track_error`` never raises; it returns whether the error was recovered.
"""

from __future__ import annotations

import asyncio
import gc
import inspect
import logging
import os
import tempfile
import time
import traceback
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from vigil.config import ErrorTrackerConfig
from vigil.core.types import AlertCallback, AlertEvent, AlertSeverity, AlertType, LogEntry, iso
from vigil.telemetry.logger import BoundLogger, StructuredLogger, error_fingerprint, new_id

from .alerts import AlertFanout
from .performance import DEFAULT_NETWORK_QUALITY, NETWORK_QUALITY, ResourceSampler

if TYPE_CHECKING:
    from .performance import PerformanceMonitor

logger = logging.getLogger("vigil.errors")


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

class ErrorCategory(Enum):
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    VALIDATION = "validation"
    RENDERING = "rendering"
    PERFORMANCE = "performance"
    EXTERNAL_SERVICE = "external_service"
    BUSINESS_LOGIC = "business_logic"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    component: str | None = None
    action: str | None = None
    user_id: str | None = None
    affected_users: int = 0
    # Free-form; ``retry`` may hold a callable used by the network_retry strategy.
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "component": self.component,
            "action": self.action,
            "user_id": self.user_id,
            "affected_users": self.affected_users,
            "metadata": {k: v for k, v in self.metadata.items() if not callable(v)},
        }


@dataclass
class Diagnostics:
    error_id: str
    timestamp: float
    session_id: str | None
    recent_errors: int
    system_load: float
    memory_ratio: float | None
    connection: str
    performance_score: float | None
    user_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_id": self.error_id,
            "timestamp": iso(self.timestamp),
            "session_id": self.session_id,
            "recent_errors": self.recent_errors,
            "system_load": round(self.system_load, 3),
            "memory_ratio": self.memory_ratio,
            "connection": self.connection,
            "performance_score": self.performance_score,
            "user_id": self.user_id,
        }


@dataclass
class RecoveryStrategy:
    name: str
    condition: Callable[[BaseException, ErrorContext, Diagnostics], bool]
    execute: Callable[[BaseException, ErrorContext, Diagnostics], Awaitable[bool]]
    description: str = ""


@dataclass
class HealthCheck:
    name: str
    check: Callable[[], Awaitable[bool]]
    critical: bool = False
    timeout: float = 5.0


@dataclass
class HealthCheckResult:
    name: str
    healthy: bool
    duration_ms: float
    critical: bool
    timestamp: float
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "healthy": self.healthy,
            "duration_ms": round(self.duration_ms, 3),
            "critical": self.critical,
            "timestamp": iso(self.timestamp),
            "error": self.error,
        }


class LoggedError(Exception):
    """An error reconstructed from an ERROR/FATAL log entry."""

    def __init__(self, name: str, message: str, stack: str = "", fingerprint: str | None = None):
        self.name = name
        self.stack = stack
        self.fingerprint = fingerprint
        super().__init__(message)

    @classmethod
    def from_entry(cls, entry: LogEntry) -> LoggedError:
        details = entry.context.get("error")
        if isinstance(details, dict):
            return cls(
                name=str(details.get("name") or "LoggedError"),
                message=str(details.get("message") or entry.message),
                stack=str(details.get("stack") or ""),
                fingerprint=str(details.get("fingerprint") or entry.fingerprint or "") or None,
            )
        return cls("LoggedError", entry.message, fingerprint=entry.fingerprint)


# ---------------------------------------------------------------------------
# Classification and scoring
# ---------------------------------------------------------------------------

def error_name(error: BaseException) -> str:
    return error.name if isinstance(error, LoggedError) else type(error).__name__


def error_stack(error: BaseException) -> str:
    if isinstance(error, LoggedError):
        return error.stack
    if error.__traceback__ is None:
        return ""
    return "".join(traceback.format_tb(error.__traceback__))


def fingerprint_of(error: BaseException) -> str:
    if isinstance(error, LoggedError) and error.fingerprint:
        return error.fingerprint
    return error_fingerprint(error)


NETWORK_WORDS = ("network", "fetch", "timeout", "timed out", "connection", "unreachable", "dns")
AUTH_WORDS = ("auth", "unauthorized", "unauthenticated", "forbidden", "login", "token expired")
PERMISSION_WORDS = ("permission", "access denied", "not allowed")
VALIDATION_WORDS = ("validation", "invalid", "required", "format")
RENDERING_WORDS = ("render", "template")
RENDERING_NAMES = {"TemplateError", "TemplateSyntaxError", "TemplateNotFound", "UndefinedError"}
PERFORMANCE_WORDS = ("memory", "quota", "limit exceeded", "recursion")

TYPE_ERROR_NAMES = {"TypeError", "AttributeError", "NameError"}
IMPORT_ERROR_NAMES = {"ImportError", "ModuleNotFoundError"}


def _status_code(error: BaseException) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def classify_error(error: BaseException, context: ErrorContext | None = None,
                   external_services: list[str] | tuple[str, ...] = ()) -> ErrorCategory:
    """First match wins, in the order the categories are declared."""
    context = context or ErrorContext()
    message = str(error).lower()
    stack = error_stack(error).lower()
    name = error_name(error)
    status = _status_code(error)

    if isinstance(error, (ConnectionError, TimeoutError, httpx.TransportError)) or any(w in message for w in NETWORK_WORDS):
        return ErrorCategory.NETWORK
    if status in (401, 403) or any(w in message for w in AUTH_WORDS):
        return ErrorCategory.AUTHENTICATION
    if isinstance(error, PermissionError) or any(w in message for w in PERMISSION_WORDS):
        return ErrorCategory.PERMISSION
    if isinstance(error, ValidationError) or any(w in message for w in VALIDATION_WORDS):
        return ErrorCategory.VALIDATION
    if name in RENDERING_NAMES or any(w in stack for w in RENDERING_WORDS):
        return ErrorCategory.RENDERING
    if isinstance(error, (MemoryError, RecursionError)) or any(w in message for w in PERFORMANCE_WORDS):
        return ErrorCategory.PERFORMANCE
    services = [s.lower() for s in external_services]
    if (status is not None and status >= 500) or any(s in message or s in stack for s in services):
        return ErrorCategory.EXTERNAL_SERVICE
    if context.action or context.component:
        return ErrorCategory.BUSINESS_LOGIC
    return ErrorCategory.UNKNOWN


def severity_score(error: BaseException, context: ErrorContext, diagnostics: Diagnostics,
                   critical_components: list[str] | tuple[str, ...] = ()) -> int:
    score = 0
    name = error_name(error)
    message = str(error).lower()
    where = f"{context.component or ''} {context.action or ''}".lower()

    # Error type
    if name in TYPE_ERROR_NAMES:
        score += 3
    if name in IMPORT_ERROR_NAMES:
        score += 2
    if "critical" in message or "fatal" in message:
        score += 4

    # Where it happened
    if "auth" in where:
        score += 3
    if "payment" in where or "billing" in where:
        score += 4
    if any(c.lower() in where for c in critical_components):
        score += 2

    # System state
    if diagnostics.recent_errors > 5:
        score += 2
    if diagnostics.system_load > 0.8 or (diagnostics.performance_score is not None and diagnostics.performance_score < 50):
        score += 2
    if diagnostics.memory_ratio is not None and diagnostics.memory_ratio > 0.9:
        score += 3

    # User impact
    if diagnostics.user_id:
        score += 1
    if context.affected_users > 1:
        score += 2
    return score


def severity_from_score(score: int) -> ErrorSeverity:
    if score >= 8:
        return ErrorSeverity.CRITICAL
    if score >= 5:
        return ErrorSeverity.HIGH
    if score >= 3:
        return ErrorSeverity.MEDIUM
    return ErrorSeverity.LOW


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------

class ErrorTracker:
    """Classifies, scores and recovers from errors; runs health checks."""

    RETRY_DELAY = 1.0
    MEMORY_CLEANUP_RATIO = 0.85
    EVENT_LOOP_MAX_DELAY_MS = 100.0

    def __init__(
        self,
        config: ErrorTrackerConfig | None = None,
        log: StructuredLogger | BoundLogger | None = None,
        performance: PerformanceMonitor | None = None,
        sampler: ResourceSampler | None = None,
        performance_score: Callable[[], float | None] | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        alert_cooldown: float = 60.0,
    ):
        self.config = config or ErrorTrackerConfig()
        root = log or StructuredLogger(sinks=[])
        self.session_id = root.parent.session_id if isinstance(root, BoundLogger) else root.session_id
        self.log = root.bind(component="error_tracker", internal=True)
        self.performance = performance
        self.sampler = sampler or (performance.sampler if performance else ResourceSampler())
        self.performance_score = performance_score
        self._clock = clock
        self._sleep = sleep
        self.alerts = AlertFanout(alert_cooldown, clock)
        self._client: httpx.AsyncClient | None = None

        self._strategies: list[RecoveryStrategy] = []
        self._health_checks: dict[str, HealthCheck] = {}
        self._history: dict[str, deque[float]] = defaultdict(deque)
        self._escalations: dict[str, deque[float]] = defaultdict(deque)
        self._auth_refresh: Callable[[], Awaitable[bool]] | None = None
        self._cleanup_hooks: list[Callable[[], Any]] = []

        self.last_results: dict[str, HealthCheckResult] = {}
        self.critical_issues = 0
        self.errors_tracked = 0
        self.errors_recovered = 0
        self.by_severity: dict[str, int] = defaultdict(int)

        self._register_default_strategies()
        self._register_default_health_checks()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.health_check_timeout))
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    # ── Registration ──────────────────────────────────────────────────

    def on_alert(self, callback: AlertCallback):
        self.alerts.subscribe(callback)

    def register_recovery_strategy(self, strategy: RecoveryStrategy):
        self._strategies.append(strategy)
        self.log.info("Recovery strategy registered", {
            "action": "recovery_strategy_register", "strategy": strategy.name, "description": strategy.description,
        })

    def register_health_check(self, check: HealthCheck):
        self._health_checks[check.name] = check
        self.log.info("Health check registered", {
            "action": "health_check_register", "name": check.name, "critical": check.critical, "timeout": check.timeout,
        })

    def register_auth_refresh(self, refresh: Callable[[], Awaitable[bool]]):
        self._auth_refresh = refresh

    def register_cleanup_hook(self, hook: Callable[[], Any]):
        self._cleanup_hooks.append(hook)

    @property
    def strategies(self) -> list[RecoveryStrategy]:
        return list(self._strategies)

    @property
    def health_checks(self) -> dict[str, HealthCheck]:
        return dict(self._health_checks)

    # ── Tracking ──────────────────────────────────────────────────────

    async def track_error(self, error: BaseException, context: ErrorContext | None = None,
                          severity: ErrorSeverity | None = None) -> bool:
        """Record ``error``, try to recover, escalate by severity. Never raises."""
        try:
            return await self._track(error, context or ErrorContext(), severity)
        except Exception as e:
            logger.error(f"Error tracking failed for {error_name(error)}: {e}", exc_info=True)
            return False

    async def _track(self, error: BaseException, context: ErrorContext, severity: ErrorSeverity | None) -> bool:
        error_id = new_id("err")
        diagnostics = self.collect_diagnostics(error_id, context)
        category = self.classify_error(error, context)
        if severity is None:
            severity = self.calculate_severity(error, context, diagnostics)

        self._record_history(error, category)
        self.errors_tracked += 1
        self.by_severity[severity.value] += 1

        self.log.error("Error tracked for recovery analysis", {
            "action": "error_tracking", "error_id": error_id, "category": category.value,
            "severity": severity.value, "context": context.to_dict(), "diagnostics": diagnostics.to_dict(),
        }, error=error)

        if self.performance is not None:
            self.performance.track_error(context.component or context.action or "unknown", error, category.value)

        recovered = await self._attempt_recovery(error, context, diagnostics)
        if recovered:
            self.errors_recovered += 1
            self.log.info("Error recovery successful", {
                "action": "error_recovery_success", "error_id": error_id, "category": category.value,
            })
        else:
            self.log.warn("Error recovery failed", {
                "action": "error_recovery_failed", "error_id": error_id, "category": category.value,
            })
            await self._handle_by_severity(error, context, diagnostics, severity, category)
        return recovered

    def classify_error(self, error: BaseException, context: ErrorContext | None = None) -> ErrorCategory:
        return classify_error(error, context, list(self.config.dependencies))

    def calculate_severity(self, error: BaseException, context: ErrorContext, diagnostics: Diagnostics) -> ErrorSeverity:
        return severity_from_score(severity_score(error, context, diagnostics, self.config.critical_components))

    def collect_diagnostics(self, error_id: str, context: ErrorContext) -> Diagnostics:
        memory: float | None
        try:
            memory = self.sampler.memory_ratio()
        except Exception as e:
            logger.debug(f"Memory sample failed: {e}")
            memory = None
        try:
            connection = self.sampler.connection_class()
        except Exception as e:
            logger.debug(f"Connection sample failed: {e}")
            connection = "unknown"
        recent = self.get_recent_error_count()
        score = self.performance_score() if self.performance_score else None

        load = (memory or 0.0) * 0.4
        load += min(recent / 10, 0.3)
        load += (1 - NETWORK_QUALITY.get(connection, DEFAULT_NETWORK_QUALITY)) * 0.3

        return Diagnostics(
            error_id=error_id,
            timestamp=self._clock(),
            session_id=self.session_id,
            recent_errors=recent,
            system_load=min(load, 1.0),
            memory_ratio=memory,
            connection=connection,
            performance_score=score,
            user_id=context.user_id,
        )

    def _prune(self, timestamps: deque[float], now: float):
        cutoff = now - self.config.history_window
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()

    def _record_history(self, error: BaseException, category: ErrorCategory):
        now = self._clock()
        history = self._history[f"{category.value}:{error_name(error)}"]
        history.append(now)
        self._prune(history, now)

    def get_recent_error_count(self) -> int:
        now = self._clock()
        total = 0
        for history in self._history.values():
            self._prune(history, now)
            total += len(history)
        return total

    # ── Recovery ──────────────────────────────────────────────────────

    async def _attempt_recovery(self, error: BaseException, context: ErrorContext, diagnostics: Diagnostics) -> bool:
        for strategy in self._strategies:
            try:
                if not strategy.condition(error, context, diagnostics):
                    continue
                self.log.info(f"Executing recovery strategy: {strategy.name}", {
                    "action": "recovery_strategy_execute", "strategy": strategy.name, "error_id": diagnostics.error_id,
                })
                if await strategy.execute(error, context, diagnostics):
                    return True
                self.log.warn(f"Recovery strategy failed: {strategy.name}", {
                    "action": "recovery_strategy_failed", "strategy": strategy.name, "error_id": diagnostics.error_id,
                })
            except Exception as e:
                self.log.warn(f"Recovery strategy error: {strategy.name}", {
                    "action": "recovery_strategy_error", "strategy": strategy.name, "error_id": diagnostics.error_id,
                }, error=e)
        return False

    def _register_default_strategies(self):
        self._strategies.extend([
            RecoveryStrategy("network_retry", self._is_network_error, self._retry_operation,
                             "Retry the failed operation after a short delay"),
            RecoveryStrategy("auth_refresh", self._is_auth_error, self._refresh_auth,
                             "Refresh the authentication session"),
            RecoveryStrategy("memory_cleanup", self._is_memory_pressure, self._cleanup_memory,
                             "Collect garbage and run cleanup hooks"),
            RecoveryStrategy("service_reconnect", self._is_service_error, self._reconnect_service,
                             "Re-probe the external service that failed"),
        ])

    @staticmethod
    def _is_network_error(error: BaseException, context: ErrorContext, diagnostics: Diagnostics) -> bool:
        message = str(error).lower()
        return isinstance(error, (ConnectionError, httpx.TransportError)) or "fetch" in message or "network" in message

    async def _retry_operation(self, error: BaseException, context: ErrorContext, diagnostics: Diagnostics) -> bool:
        retry = context.metadata.get("retry")
        if not callable(retry):
            return False
        await self._sleep(self.RETRY_DELAY)
        try:
            result = retry()
            if inspect.isawaitable(result):
                await result
            return True
        except Exception as e:
            logger.debug(f"Retry after network error failed: {e}")
            return False

    @staticmethod
    def _is_auth_error(error: BaseException, context: ErrorContext, diagnostics: Diagnostics) -> bool:
        return "unauthorized" in str(error).lower() or "auth" in (context.action or "").lower()

    async def _refresh_auth(self, error: BaseException, context: ErrorContext, diagnostics: Diagnostics) -> bool:
        if self._auth_refresh is None:
            return False
        return bool(await self._auth_refresh())

    def _is_memory_pressure(self, error: BaseException, context: ErrorContext, diagnostics: Diagnostics) -> bool:
        return isinstance(error, MemoryError) or (
            diagnostics.memory_ratio is not None and diagnostics.memory_ratio > self.MEMORY_CLEANUP_RATIO)

    async def _cleanup_memory(self, error: BaseException, context: ErrorContext, diagnostics: Diagnostics) -> bool:
        collected = gc.collect()
        for hook in self._cleanup_hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result
        self.log.info("Memory cleanup finished", {"action": "memory_cleanup", "collected": collected})
        return True

    def _is_service_error(self, error: BaseException, context: ErrorContext, diagnostics: Diagnostics) -> bool:
        return classify_error(error, context, list(self.config.dependencies)) == ErrorCategory.EXTERNAL_SERVICE

    async def _reconnect_service(self, error: BaseException, context: ErrorContext, diagnostics: Diagnostics) -> bool:
        text = f"{error} {error_stack(error)}".lower()
        named = [n for n in self.config.dependencies if n.lower() in text]
        checks = [self._health_checks[n] for n in named if n in self._health_checks]
        if not checks:
            checks = [c for c in self._health_checks.values() if c.critical]
        if not checks:
            return False
        results = [await self._run_check(c) for c in checks]
        return all(r.healthy for r in results)

    # ── Escalation ────────────────────────────────────────────────────

    async def _handle_by_severity(self, error: BaseException, context: ErrorContext, diagnostics: Diagnostics,
                                  severity: ErrorSeverity, category: ErrorCategory):
        if severity == ErrorSeverity.CRITICAL:
            self.log.fatal("Critical error: notifying operators", {
                "action": "admin_notification", "error_id": diagnostics.error_id, "category": category.value,
                "context": context.to_dict(), "diagnostics": diagnostics.to_dict(),
            }, error=error)
            self.alerts.publish(AlertEvent(
                type=AlertType.INCIDENT, severity=AlertSeverity.CRITICAL,
                metric=f"error.{category.value}", value=1, threshold=0,
                message=f"Critical {category.value} error: {error}", timestamp=self._clock(),
                context={"error_id": diagnostics.error_id, "error": error_name(error),
                         "component": context.component, "fingerprint": fingerprint_of(error)},
            ))
        elif severity == ErrorSeverity.HIGH:
            self._track_for_escalation(error, context, diagnostics, category)

    def _track_for_escalation(self, error: BaseException, context: ErrorContext, diagnostics: Diagnostics,
                              category: ErrorCategory):
        now = self._clock()
        fingerprint = fingerprint_of(error)
        occurrences = self._escalations[fingerprint]
        occurrences.append(now)
        self._prune(occurrences, now)
        self.log.error("High-severity error tracked for escalation", {
            "action": "escalation_tracking", "error_id": diagnostics.error_id,
            "fingerprint": fingerprint, "occurrences": len(occurrences),
        })
        if len(occurrences) >= self.config.escalation_threshold:
            occurrences.clear()
            self.alerts.publish(AlertEvent(
                type=AlertType.INCIDENT, severity=AlertSeverity.WARNING,
                metric=f"error.{category.value}.recurring", value=self.config.escalation_threshold,
                threshold=self.config.escalation_threshold,
                message=f"Recurring high-severity error: {error}", timestamp=now,
                context={"fingerprint": fingerprint, "error": error_name(error), "component": context.component},
            ))

    # ── Health checks ─────────────────────────────────────────────────

    def _register_default_health_checks(self):
        self._health_checks["memory"] = HealthCheck("memory", self._check_memory, critical=False, timeout=1.0)
        self._health_checks["event_loop"] = HealthCheck("event_loop", self._check_event_loop, critical=False, timeout=1.0)
        self._health_checks["storage"] = HealthCheck("storage", self._check_storage, critical=False, timeout=1.0)
        for name, url in self.config.dependencies.items():
            self._health_checks[name] = HealthCheck(
                name, self._http_probe(url), critical=True, timeout=self.config.health_check_timeout)

    async def _check_memory(self) -> bool:
        return self.sampler.memory_ratio() < self.config.memory_limit_ratio

    async def _check_event_loop(self) -> bool:
        return await self.sampler.event_loop_delay() < self.EVENT_LOOP_MAX_DELAY_MS

    async def _check_storage(self) -> bool:
        directory = Path(self.config.storage_path) if self.config.storage_path else Path(tempfile.gettempdir())
        return await asyncio.to_thread(self._write_probe_file, directory)

    @staticmethod
    def _write_probe_file(directory: Path) -> bool:
        directory.mkdir(parents=True, exist_ok=True)
        fd, path = tempfile.mkstemp(prefix=".vigil_health_", dir=directory)
        try:
            os.write(fd, b"ok")
        finally:
            os.close(fd)
            os.unlink(path)
        return True

    def _http_probe(self, url: str) -> Callable[[], Awaitable[bool]]:
        async def probe() -> bool:
            resp = await self.client.get(url)
            return resp.status_code < 500
        return probe

    async def _run_check(self, check: HealthCheck) -> HealthCheckResult:
        start = time.perf_counter()
        error = None
        try:
            healthy = bool(await asyncio.wait_for(check.check(), check.timeout))
        except TimeoutError:
            healthy = False
            error = f"Health check timed out after {check.timeout}s"
        except Exception as e:
            healthy = False
            error = str(e) or type(e).__name__
        result = HealthCheckResult(check.name, healthy, (time.perf_counter() - start) * 1000,
                                   check.critical, self._clock(), error)
        self.last_results[check.name] = result

        if not healthy and check.critical:
            self.critical_issues += 1
            self.log.warn(f"Critical health check failed: {check.name}", {
                "action": "health_check_critical_failure", "health_check": check.name,
                "duration_ms": result.duration_ms, "reason": error,
            })
            self.alerts.publish(AlertEvent(
                type=AlertType.HEALTH_CHECK, severity=AlertSeverity.CRITICAL, metric=f"health.{check.name}",
                value=0, threshold=1, message=f"Critical health check failed: {check.name}",
                timestamp=result.timestamp, context={"check": check.name, "error": error},
            ))
        elif not healthy:
            self.log.info(f"Health check failed: {check.name}", {
                "action": "health_check_failure", "health_check": check.name, "reason": error,
            })
        return result

    async def run_health_checks(self) -> dict[str, HealthCheckResult]:
        """Run every registered check, each bounded by its own timeout."""
        results = {}
        for check in list(self._health_checks.values()):
            results[check.name] = await self._run_check(check)
        self.log.debug("Health checks complete", {
            "action": "health_checks_complete", "checks": len(results),
            "failing": [n for n, r in results.items() if not r.healthy],
        })
        return results

    async def recheck(self, name: str) -> bool:
        """Re-run one health check; True when it now passes."""
        check = self._health_checks.get(name)
        if check is None:
            return False
        return (await self._run_check(check)).healthy

    def failing_critical_checks(self) -> list[str]:
        return [n for n, r in self.last_results.items() if r.critical and not r.healthy]

    # ── Summary ───────────────────────────────────────────────────────

    def get_summary(self) -> dict[str, Any]:
        now = self._clock()
        categories: dict[str, int] = defaultdict(int)
        for key, history in self._history.items():
            self._prune(history, now)
            categories[key.split(":", 1)[0]] += len(history)
        return {
            "errors_tracked": self.errors_tracked,
            "errors_recovered": self.errors_recovered,
            "recent_errors": sum(categories.values()),
            "by_category": dict(categories),
            "by_severity": dict(self.by_severity),
            "critical_issues": self.critical_issues,
            "strategies": [s.name for s in self._strategies],
            "health_checks": {n: r.to_dict() for n, r in self.last_results.items()},
        }
