"""
Log analyzer — pattern and anomaly detection over the log stream.

Fed one entry at a time by the orchestrator. Detects:
    error bursts             ≥10 ERROR/FATAL entries inside five minutes
    performance degradation  last five durations of an operation averaging
                             more than 1.5× the operation's earlier baseline
    anomalies                FATAL entries, and ERROR entries tagged with a
                             high or critical severity
"""

import hashlib
import logging
import time
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from vigil.core.types import LogEntry, LogLevel, iso

logger = logging.getLogger("vigil.analyzer")


class PatternType(Enum):
    ERROR_BURST = "error_burst"
    PERFORMANCE_DEGRADATION = "performance_degradation"


class Impact(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class LogPattern:
    id: str
    type: PatternType
    description: str
    impact: Impact
    confidence: float
    frequency: int
    first_seen: float
    last_seen: float
    examples: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "description": self.description,
            "impact": self.impact.value,
            "confidence": round(self.confidence, 3),
            "frequency": self.frequency,
            "first_seen": iso(self.first_seen),
            "last_seen": iso(self.last_seen),
            "examples": self.examples,
            "details": self.details,
        }


@dataclass
class Anomaly:
    id: str
    metric: str
    severity: Impact
    timestamp: float
    message: str
    fingerprint: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "metric": self.metric,
            "severity": self.severity.value,
            "timestamp": iso(self.timestamp),
            "message": self.message,
            "fingerprint": self.fingerprint,
            "context": self.context,
        }


class LogAnalyzer:
    """Real-time pattern detection over structured log entries."""

    BURST_WINDOW = 300
    BURST_THRESHOLD = 10
    PERF_HISTORY_SECONDS = 3600
    PERF_MIN_SAMPLES = 10
    PERF_RECENT_SAMPLES = 5
    DEGRADATION_FACTOR = 1.5
    PATTERN_TTL = 86400
    ANOMALY_TTL = 3600
    MAX_HISTORY = 10000

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._errors: deque[LogEntry] = deque(maxlen=self.MAX_HISTORY)
        self._durations: dict[str, deque[tuple[float, float]]] = defaultdict(lambda: deque(maxlen=1000))
        self.patterns: dict[str, LogPattern] = {}
        self.anomalies: dict[str, Anomaly] = {}
        self.entries_analyzed = 0

    # ── Ingestion ─────────────────────────────────────────────────────

    def analyze_log_entry(self, entry: LogEntry):
        self.entries_analyzed += 1
        if entry.is_error:
            self._errors.append(entry)
            self._detect_error_burst()
            self._detect_anomaly(entry)
        if entry.duration_ms is not None:
            self._detect_degradation(entry.operation or "unknown", entry.duration_ms)

    def _detect_error_burst(self):
        now = self._clock()
        cutoff = now - self.BURST_WINDOW
        while self._errors and self._errors[0].timestamp < cutoff:
            self._errors.popleft()
        count = len(self._errors)
        if count < self.BURST_THRESHOLD:
            return

        current = next((p for p in self.patterns.values()
                        if p.type == PatternType.ERROR_BURST and now - p.last_seen < self.BURST_WINDOW), None)
        impact = Impact.CRITICAL if count > 50 else Impact.HIGH if count > 20 else Impact.MEDIUM
        if current:
            current.frequency = count
            current.last_seen = now
            current.impact = impact
            current.description = f"Error burst: {count} errors in {self.BURST_WINDOW // 60} minutes"
            return

        pattern = LogPattern(
            id=f"error_burst_{int(now * 1000)}",
            type=PatternType.ERROR_BURST,
            description=f"Error burst: {count} errors in {self.BURST_WINDOW // 60} minutes",
            impact=impact,
            confidence=min(count / (self.BURST_THRESHOLD * 2), 1.0),
            frequency=count,
            first_seen=self._errors[0].timestamp,
            last_seen=now,
            examples=[e.trace_id or e.span_id or e.message for e in list(self._errors)[:5]],
            details={"fingerprints": sorted({e.fingerprint for e in self._errors if e.fingerprint})[:10]},
        )
        self.patterns[pattern.id] = pattern
        logger.warning(f"Error burst detected: {count} errors in {self.BURST_WINDOW}s")

    def _detect_degradation(self, operation: str, duration_ms: float):
        now = self._clock()
        history = self._durations[operation]
        history.append((now, duration_ms))
        cutoff = now - self.PERF_HISTORY_SECONDS
        while history and history[0][0] <= cutoff:
            history.popleft()
        if len(history) <= self.PERF_MIN_SAMPLES:
            return

        values = [v for _, v in history]
        earlier = values[:-self.PERF_RECENT_SAMPLES]
        recent = values[-self.PERF_RECENT_SAMPLES:]
        baseline = sum(earlier) / len(earlier)
        current = sum(recent) / len(recent)
        if baseline <= 0 or current <= baseline * self.DEGRADATION_FACTOR:
            return

        ratio = current / baseline
        impact = Impact.CRITICAL if ratio > 3 else Impact.HIGH if ratio > 2 else Impact.MEDIUM
        pid = f"perf_degradation_{operation}"
        existing = self.patterns.get(pid)
        pattern = LogPattern(
            id=pid,
            type=PatternType.PERFORMANCE_DEGRADATION,
            description=f"Performance degradation in {operation}: {round(current)}ms (baseline: {round(baseline)}ms)",
            impact=impact,
            confidence=min((current - baseline) / baseline, 1.0),
            frequency=len(history),
            first_seen=existing.first_seen if existing else history[0][0],
            last_seen=now,
            details={"operation": operation, "baseline_ms": round(baseline, 2), "current_ms": round(current, 2),
                     "degradation_pct": round((ratio - 1) * 100, 1)},
        )
        self.patterns[pid] = pattern
        if existing is None:
            logger.warning(f"Performance degradation in {operation}: {current:.0f}ms vs {baseline:.0f}ms baseline")

    def _detect_anomaly(self, entry: LogEntry):
        tagged = entry.context.get("severity")
        if entry.level == LogLevel.FATAL:
            severity = Impact.CRITICAL
        elif tagged in ("critical", "high"):
            severity = Impact(tagged)
        else:
            return
        digest = hashlib.sha256(f"{entry.timestamp}:{entry.message}".encode()).hexdigest()[:12]
        anomaly = Anomaly(
            id=f"anomaly_{digest}",
            metric=entry.operation or "log_level",
            severity=severity,
            timestamp=entry.timestamp,
            message=entry.message,
            fingerprint=entry.fingerprint,
            context={"level": entry.level.value, "trace_id": entry.trace_id},
        )
        self.anomalies[anomaly.id] = anomaly

    # ── Reporting ─────────────────────────────────────────────────────

    def cleanup(self):
        now = self._clock()
        self.patterns = {k: p for k, p in self.patterns.items() if now - p.last_seen < self.PATTERN_TTL}
        self.anomalies = {k: a for k, a in self.anomalies.items() if now - a.timestamp < self.ANOMALY_TTL}

    def get_patterns(self) -> list[LogPattern]:
        return list(self.patterns.values())

    def get_anomalies(self) -> list[Anomaly]:
        return list(self.anomalies.values())

    def critical_findings(self) -> list[LogPattern | Anomaly]:
        found: list[LogPattern | Anomaly] = [p for p in self.patterns.values() if p.impact == Impact.CRITICAL]
        found.extend(a for a in self.anomalies.values() if a.severity == Impact.CRITICAL)
        return found

    def recommendations(self) -> list[str]:
        recs = []
        types = {p.type for p in self.patterns.values()}
        if PatternType.ERROR_BURST in types:
            recs.append("Review error burst patterns to improve system stability")
        if PatternType.PERFORMANCE_DEGRADATION in types:
            recs.append("Investigate performance degradation and optimize slow operations")
        if len(self.anomalies) > 5:
            recs.append("Multiple anomalies detected: run a full system health review")
        return recs

    def generate_insight_report(self) -> dict[str, Any]:
        self.cleanup()
        return {
            "patterns": [p.to_dict() for p in self.patterns.values()],
            "anomalies": [a.to_dict() for a in self.anomalies.values()],
            "recommendations": self.recommendations(),
            "entries_analyzed": self.entries_analyzed,
        }
