"""
Structured logger — buffered, trace-correlated log entries fanned out to sinks.

Every call builds an immutable ``LogEntry`` from persistent context plus
call-site context and appends it to an in-memory buffer. ERROR and FATAL
entries flush straight away; everything else waits until the buffer fills
or the periodic flush fires.

Delivery rules:
    - each sink sees entries in call order (flushes are serialized)
    - a failing sink never blocks the others and never raises to the caller
    - ERROR/FATAL entries a sink rejected are retried on the next flush

Sink failures are reported on the stdlib ``vigil.logger`` channel, which
is the fallback when the structured pipeline itself is in trouble.
"""

from __future__ import annotations

import asyncio
import enum
import hashlib
import logging
import time
import traceback
import uuid
from collections import deque
from collections.abc import Mapping
from datetime import date, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from vigil.config import LoggerConfig, ServiceConfig
from vigil.core.types import CRITICAL_LEVELS, Context, ContextValue, LogEntry, LogLevel, Resource

from .sinks import BreadcrumbSink, ConsoleSink, OutputSink, StoreSink

if TYPE_CHECKING:
    from vigil.core.scheduler import ScheduleHandle, Scheduler

fallback = logging.getLogger("vigil.logger")

_CORRELATION_KEYS = ("trace_id", "span_id", "parent_span_id")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def _sha16(content: str) -> str:
    return hashlib.sha256(content.encode()).hexdigest()[:16]


def log_fingerprint(message: str, action: str | None) -> str:
    """Identity of a log line for dedup: message plus action."""
    return _sha16(f"{message}:{action or ''}")


def error_fingerprint(error: BaseException) -> str:
    """Identity of an exception: type name, message and the frame that raised it."""
    first_frame = ""
    frames = traceback.extract_tb(error.__traceback__) if error.__traceback__ else []
    if frames:
        f = frames[-1]
        first_frame = f"{f.filename}:{f.lineno}:{f.name}"
    return _sha16(f"{type(error).__name__}:{error}:{first_frame}")


def describe_error(error: BaseException) -> dict[str, ContextValue]:
    stack = "".join(traceback.format_exception(error)) if error.__traceback__ else ""
    described: dict[str, ContextValue] = {
        "name": type(error).__name__,
        "message": str(error),
        "stack": stack,
        "fingerprint": error_fingerprint(error),
    }
    if error.__cause__ is not None:
        described["cause"] = repr(error.__cause__)
    return described


def to_context_value(value: Any) -> ContextValue:
    """Coerce arbitrary values into the closed ContextValue set."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, enum.Enum):
        return to_context_value(value.value)
    if isinstance(value, Mapping):
        return {str(k): to_context_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset, deque)):
        return [to_context_value(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, BaseException):
        return describe_error(value)
    if isinstance(value, Path):
        return str(value)
    return repr(value)


def to_context(values: Mapping[str, Any] | None) -> Context:
    if not values:
        return {}
    return {str(k): to_context_value(v) for k, v in values.items()}


# ---------------------------------------------------------------------------
# Spans
# ---------------------------------------------------------------------------

class Span:
    """
    One traced operation. End it with ``end()`` or ``record_error()``, or use
    it as a (sync or async) context manager.
    """

    def __init__(self, log: StructuredLogger, operation: str, trace_id: str, span_id: str,
                 parent_span_id: str | None = None, context: Context | None = None):
        self._log = log
        self.operation = operation
        self.trace_id = trace_id
        self.span_id = span_id
        self.parent_span_id = parent_span_id
        self.start_time = time.perf_counter()
        self.attributes: Context = {}
        self.ended = False
        self._context = context or {}

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.start_time) * 1000

    def set_attributes(self, attributes: Mapping[str, Any] | None = None, **kwargs: Any):
        self.attributes.update(to_context(attributes))
        self.attributes.update(to_context(kwargs))

    def child(self, operation: str) -> Span:
        return self._log.start_span(operation, parent=self, context=self._context)

    def end(self, success: bool = True) -> LogEntry | None:
        if self.ended:
            return None
        self.ended = True
        if not self._log.enabled_for(LogLevel.INFO):
            return None
        context = {
            **self._context,
            "action": "span_complete",
            "operation": self.operation,
            "duration_ms": round(self.elapsed_ms, 3),
            "success": success,
            "attributes": dict(self.attributes),
        }
        return self._log._emit(LogLevel.INFO, f"Span completed: {self.operation}", context, None, self._ids())

    def record_error(self, error: BaseException) -> LogEntry | None:
        if self.ended:
            return None
        self.ended = True
        if not self._log.enabled_for(LogLevel.ERROR):
            return None
        context = {
            **self._context,
            "action": "span_error",
            "operation": self.operation,
            "duration_ms": round(self.elapsed_ms, 3),
            "attributes": dict(self.attributes),
        }
        return self._log._emit(LogLevel.ERROR, f"Span error: {self.operation}", context, error, self._ids())

    def _ids(self) -> dict[str, str | None]:
        return {"trace_id": self.trace_id, "span_id": self.span_id, "parent_span_id": self.parent_span_id}

    def __enter__(self) -> Span:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is not None and isinstance(exc, Exception):
            self.record_error(exc)
        else:
            self.end(exc is None)
        return False

    async def __aenter__(self) -> Span:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return self.__exit__(exc_type, exc, tb)


# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------

class StructuredLogger:
    """Buffered structured logger with pluggable output sinks."""

    def __init__(
        self,
        config: LoggerConfig | None = None,
        service: ServiceConfig | None = None,
        sinks: list[OutputSink] | None = None,
        clock=time.time,
    ):
        self.config = config or LoggerConfig()
        service = service or ServiceConfig()
        self.level = LogLevel.parse(self.config.level)
        self.session_id = new_id("sess")
        self.resource = Resource(service.name, service.version, service.environment, service.platform)
        self._clock = clock
        self._context: Context = {}
        self._buffer: list[LogEntry] = []
        self._recent: deque[LogEntry] = deque(maxlen=self.config.recent_entries)
        self._sinks: dict[str, OutputSink] = {}
        self._undelivered: dict[str, deque[LogEntry]] = {}
        self._flush_lock = asyncio.Lock()
        self._flush_tasks: set[asyncio.Task[None]] = set()
        self._scheduler: Scheduler | None = None
        self._flush_handle: ScheduleHandle | None = None
        self.entries_logged = 0
        self.entries_delivered = 0
        self.sink_failures = 0
        self.last_flush: float | None = None
        for sink in sinks if sinks is not None else self._default_sinks():
            self.add_sink(sink)

    def _default_sinks(self) -> list[OutputSink]:
        sinks: list[OutputSink] = []
        if self.config.console:
            sinks.append(ConsoleSink())
        if self.config.store_path:
            sinks.append(StoreSink(self.config.store_path))
        if self.config.breadcrumb_url:
            sinks.append(BreadcrumbSink(self.config.breadcrumb_url))
        return sinks

    # ── Sinks ─────────────────────────────────────────────────────────

    def add_sink(self, sink: OutputSink):
        self._sinks[sink.name] = sink
        self._undelivered[sink.name] = deque(maxlen=self.config.retry_limit)

    def remove_sink(self, name: str) -> OutputSink | None:
        self._undelivered.pop(name, None)
        return self._sinks.pop(name, None)

    @property
    def sinks(self) -> list[OutputSink]:
        return list(self._sinks.values())

    # ── Persistent context ────────────────────────────────────────────

    def set_context(self, **values: Any):
        self._context.update(to_context(values))

    def clear_context(self, *keys: str):
        """Remove the given keys, or all persistent context when none are named."""
        if not keys:
            self._context.clear()
            return
        for key in keys:
            self._context.pop(key, None)

    @property
    def context(self) -> Context:
        return dict(self._context)

    def bind(self, **context: Any) -> BoundLogger:
        return BoundLogger(self, to_context(context))

    # ── Logging calls ─────────────────────────────────────────────────

    def enabled_for(self, level: LogLevel) -> bool:
        return level == LogLevel.FATAL or level.rank >= self.level.rank

    def log(self, level: LogLevel | str, message: str, context: Mapping[str, Any] | None = None,
            error: BaseException | None = None) -> LogEntry | None:
        level = LogLevel.parse(level)
        if not self.enabled_for(level):
            return None
        return self._emit(level, message, to_context(context), error, None)

    def debug(self, message: str, context: Mapping[str, Any] | None = None, error: BaseException | None = None):
        return self.log(LogLevel.DEBUG, message, context, error)

    def info(self, message: str, context: Mapping[str, Any] | None = None, error: BaseException | None = None):
        return self.log(LogLevel.INFO, message, context, error)

    def warn(self, message: str, context: Mapping[str, Any] | None = None, error: BaseException | None = None):
        return self.log(LogLevel.WARN, message, context, error)

    def error(self, message: str, context: Mapping[str, Any] | None = None, error: BaseException | None = None):
        return self.log(LogLevel.ERROR, message, context, error)

    def fatal(self, message: str, context: Mapping[str, Any] | None = None, error: BaseException | None = None):
        return self.log(LogLevel.FATAL, message, context, error)

    def track_performance(self, operation: str, duration_ms: float, **context: Any) -> LogEntry | None:
        return self.info(f"Performance: {operation}", {
            **context, "action": "performance_tracking", "operation": operation, "duration_ms": duration_ms,
        })

    def track_metric(self, name: str, value: float, tags: Mapping[str, str] | None = None) -> LogEntry | None:
        return self.info(f"Metric: {name}", {
            "action": "metric_tracking", "metrics": {name: value}, "tags": dict(tags or {}),
        })

    def request_complete(self, method: str, url: str, duration_ms: float, status_code: int,
                         **extra: Any) -> LogEntry | None:
        """Canonical log line: one entry describing a whole request."""
        level = LogLevel.ERROR if status_code >= 500 else LogLevel.WARN if status_code >= 400 else LogLevel.INFO
        return self.log(level, "Request completed", {
            **extra,
            "action": "request_complete",
            "operation": f"{method.upper()} {url}",
            "method": method.upper(),
            "url": url,
            "status_code": status_code,
            "duration_ms": duration_ms,
        })

    def start_span(self, operation: str, parent: Span | None = None,
                   context: Mapping[str, Any] | None = None) -> Span:
        if parent is not None:
            trace_id = parent.trace_id
            parent_span_id: str | None = parent.span_id
        else:
            ctx_trace = self._context.get("trace_id")
            trace_id = ctx_trace if isinstance(ctx_trace, str) else new_id("trace")
            ctx_span = self._context.get("span_id")
            parent_span_id = ctx_span if isinstance(ctx_span, str) else None
        bound = to_context(context)
        span = Span(self, operation, trace_id, new_id("span"), parent_span_id, bound)
        if self.enabled_for(LogLevel.DEBUG):
            self._emit(LogLevel.DEBUG, f"Span started: {operation}",
                       {**bound, "action": "span_start", "operation": operation}, None, span._ids())
        return span

    # ── Entry construction ────────────────────────────────────────────

    def _emit(self, level: LogLevel, message: str, context: Context, error: BaseException | None,
              ids: Mapping[str, str | None] | None) -> LogEntry:
        merged: Context = {**self._context, **context}
        if error is not None:
            merged["error"] = describe_error(error)

        correlation: dict[str, str | None] = {}
        for key in _CORRELATION_KEYS:
            value = merged.pop(key, None)
            correlation[key] = value if isinstance(value, str) else None
        if ids:
            correlation.update(ids)

        fingerprint = None
        if level in CRITICAL_LEVELS:
            action = merged.get("action")
            fingerprint = log_fingerprint(message, action if isinstance(action, str) else None)

        entry = LogEntry(
            timestamp=self._clock(),
            level=level,
            message=message,
            context=merged,
            session_id=self.session_id,
            resource=self.resource,
            fingerprint=fingerprint,
            **correlation,
        )
        self._record(entry)
        return entry

    def _record(self, entry: LogEntry):
        self.entries_logged += 1
        self._buffer.append(entry)
        self._recent.append(entry)
        if entry.level in CRITICAL_LEVELS or len(self._buffer) >= self.config.buffer_size:
            self._schedule_flush()

    def _schedule_flush(self):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; the entry waits for the next explicit flush.
            return
        task = loop.create_task(self.flush())
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)

    # ── Accessors ─────────────────────────────────────────────────────

    def drain_recent_entries(self) -> list[LogEntry]:
        """Every entry recorded since the previous drain, oldest first."""
        entries = list(self._recent)
        self._recent.clear()
        return entries

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def get_stats(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "session_id": self.session_id,
            "buffered": len(self._buffer),
            "entries_logged": self.entries_logged,
            "entries_delivered": self.entries_delivered,
            "sink_failures": self.sink_failures,
            "sinks": list(self._sinks),
            "undelivered": {name: len(q) for name, q in self._undelivered.items() if q},
            "last_flush": self.last_flush,
        }

    # ── Flushing ──────────────────────────────────────────────────────

    async def flush(self):
        async with self._flush_lock:
            batch, self._buffer = self._buffer, []
            sinks = list(self._sinks.values())
            if not sinks:
                return
            if batch or any(self._undelivered.get(s.name) for s in sinks):
                await asyncio.gather(*(self._deliver(sink, batch) for sink in sinks))
            self.last_flush = self._clock()

    async def _deliver(self, sink: OutputSink, batch: list[LogEntry]):
        retry = self._undelivered.setdefault(sink.name, deque(maxlen=self.config.retry_limit))
        pending = list(retry)
        retry.clear()
        for entry in batch:
            try:
                if sink.accepts(entry):
                    pending.append(entry)
            except Exception as e:
                fallback.warning(f"Sink {sink.name} filter failed: {e}")

        for entry in pending:
            try:
                await sink.send(entry)
                self.entries_delivered += 1
            except Exception as e:
                self.sink_failures += 1
                fallback.warning(f"Sink {sink.name} failed to deliver {entry.level.value} entry: {e}")
                if entry.level in CRITICAL_LEVELS:
                    retry.append(entry)

    # ── Lifecycle ─────────────────────────────────────────────────────

    def start(self, scheduler: Scheduler):
        """Begin periodic flushing."""
        if self._flush_handle is not None:
            return
        self._scheduler = scheduler
        self._flush_handle = scheduler.schedule(self.config.flush_interval, self.flush, name="log_flush")

    async def close(self):
        if self._scheduler and self._flush_handle:
            self._scheduler.cancel(self._flush_handle)
        self._flush_handle = None
        if self._flush_tasks:
            await asyncio.gather(*self._flush_tasks, return_exceptions=True)
        await self.flush()
        for sink in self._sinks.values():
            try:
                await sink.close()
            except Exception as e:
                fallback.warning(f"Sink {sink.name} close failed: {e}")


class BoundLogger:
    """A logger view that adds fixed context to every entry."""

    def __init__(self, parent: StructuredLogger, context: Context):
        self.parent = parent
        self.context = context

    def bind(self, **context: Any) -> BoundLogger:
        return BoundLogger(self.parent, {**self.context, **to_context(context)})

    def log(self, level: LogLevel | str, message: str, context: Mapping[str, Any] | None = None,
            error: BaseException | None = None) -> LogEntry | None:
        return self.parent.log(level, message, {**self.context, **(context or {})}, error)

    def debug(self, message: str, context: Mapping[str, Any] | None = None, error: BaseException | None = None):
        return self.log(LogLevel.DEBUG, message, context, error)

    def info(self, message: str, context: Mapping[str, Any] | None = None, error: BaseException | None = None):
        return self.log(LogLevel.INFO, message, context, error)

    def warn(self, message: str, context: Mapping[str, Any] | None = None, error: BaseException | None = None):
        return self.log(LogLevel.WARN, message, context, error)

    def error(self, message: str, context: Mapping[str, Any] | None = None, error: BaseException | None = None):
        return self.log(LogLevel.ERROR, message, context, error)

    def fatal(self, message: str, context: Mapping[str, Any] | None = None, error: BaseException | None = None):
        return self.log(LogLevel.FATAL, message, context, error)

    def start_span(self, operation: str, parent: Span | None = None) -> Span:
        return self.parent.start_span(operation, parent, self.context)
