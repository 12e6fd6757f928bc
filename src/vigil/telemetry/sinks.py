"""
Output sinks — where flushed log entries go.

Every sink declares which entries it accepts and delivers them one at a
time. A sink may raise from ``send``; the logger isolates the failure.
"""

import asyncio
import json
import sys
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TextIO

import httpx

from vigil.core.types import LogEntry, LogLevel


class OutputSink(ABC):
    """Base class for log destinations."""

    name: str = "sink"
    min_level: LogLevel = LogLevel.DEBUG

    def accepts(self, entry: LogEntry) -> bool:
        return entry.level.rank >= self.min_level.rank

    @abstractmethod
    async def send(self, entry: LogEntry) -> None:
        ...

    async def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Console
# ---------------------------------------------------------------------------

class ConsoleSink(OutputSink):
    """One human-readable line per entry, all levels."""

    name = "console"

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stderr

    def format(self, entry: LogEntry) -> str:
        d = entry.to_dict()
        parts = [d["timestamp"], f"{entry.level.value:<5}", f"[{entry.resource.service_name}]", entry.message]
        if entry.trace_id:
            parts.append(f"trace={entry.trace_id}")
        if entry.context:
            parts.append(json.dumps(entry.context, default=str, sort_keys=True))
        return " ".join(parts)

    async def send(self, entry: LogEntry) -> None:
        self.stream.write(self.format(entry) + "\n")
        self.stream.flush()


# ---------------------------------------------------------------------------
# Persistent store
# ---------------------------------------------------------------------------

class StoreSink(OutputSink):
    """Appends entries as NDJSON records to a file. DEBUG entries are not stored."""

    name = "store"
    min_level = LogLevel.INFO

    def __init__(self, path: Path):
        self.path = Path(path)

    def _record(self, entry: LogEntry) -> dict[str, Any]:
        return {
            "timestamp": entry.to_dict()["timestamp"],
            "level": entry.level.value,
            "message": entry.message,
            "context": entry.context,
            "trace_id": entry.trace_id,
            "span_id": entry.span_id,
            "session_id": entry.session_id,
            "service": entry.resource.service_name,
            "environment": entry.resource.environment,
            "version": entry.resource.service_version,
            "fingerprint": entry.fingerprint,
        }

    async def send(self, entry: LogEntry) -> None:
        await asyncio.to_thread(self._append, json.dumps(self._record(entry), default=str) + "\n")

    def _append(self, line: str):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line)

    def read(self, limit: int | None = None) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        lines = self.path.read_text(encoding="utf-8").splitlines()
        if limit is not None:
            lines = lines[-limit:]
        return [json.loads(line) for line in lines if line.strip()]


# ---------------------------------------------------------------------------
# Error-tracking breadcrumbs
# ---------------------------------------------------------------------------

_BREADCRUMB_LEVELS = {LogLevel.WARN: "warning", LogLevel.ERROR: "error", LogLevel.FATAL: "fatal"}


class BreadcrumbSink(OutputSink):
    """Forwards WARN and above to an external error-tracking service over HTTP."""

    name = "breadcrumb"
    min_level = LogLevel.WARN

    def __init__(self, url: str, timeout: float = 5.0, headers: dict[str, str] | None = None):
        self.url = url
        self.timeout = timeout
        self.headers = headers or {}
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(headers=self.headers, timeout=httpx.Timeout(self.timeout))
        return self._client

    def breadcrumb(self, entry: LogEntry) -> dict[str, Any]:
        action = entry.context.get("action")
        return {
            "category": action if isinstance(action, str) else "log",
            "message": entry.message,
            "level": _BREADCRUMB_LEVELS.get(entry.level, "info"),
            "timestamp": entry.timestamp,
            "data": {
                "trace_id": entry.trace_id,
                "span_id": entry.span_id,
                "session_id": entry.session_id,
                "fingerprint": entry.fingerprint,
                "context": entry.context,
            },
        }

    async def send(self, entry: LogEntry) -> None:
        resp = await self.client.post(self.url, json=self.breadcrumb(entry))
        resp.raise_for_status()

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


# ---------------------------------------------------------------------------
# Callback
# ---------------------------------------------------------------------------

class CallbackSink(OutputSink):
    """Hands entries to an async callable; handy for embedding apps and tests."""

    def __init__(
        self,
        name: str,
        callback: Callable[[LogEntry], Awaitable[None]],
        min_level: LogLevel = LogLevel.DEBUG,
        predicate: Callable[[LogEntry], bool] | None = None,
    ):
        self.name = name
        self.callback = callback
        self.min_level = min_level
        self.predicate = predicate

    def accepts(self, entry: LogEntry) -> bool:
        if not super().accepts(entry):
            return False
        return self.predicate(entry) if self.predicate else True

    async def send(self, entry: LogEntry) -> None:
        await self.callback(entry)
