"""
Performance monitor — the four golden signals.

    latency     per-operation ring of the last 1000 samples (ms), p50/p95/p99
    traffic     per (method, endpoint) request timestamps, rps over 60s
    errors      per-operation error timestamps, rate over the same 300s window
                as the requests to that endpoint
    saturation  memory, network and event-loop ratios, last 100 samples each

All windows are trailing and pruned whenever they are read or written.
Every ``track_*`` call re-evaluates thresholds; identical alerts (same
type, metric and severity) are suppressed for ``alert_cooldown`` seconds.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import defaultdict, deque
from collections.abc import Callable
from typing import Any

import psutil

from vigil.config import AlertThresholds
from vigil.core.types import AlertCallback, AlertEvent, AlertSeverity, AlertType
from vigil.telemetry.logger import BoundLogger, StructuredLogger

from .alerts import AlertFanout

logger = logging.getLogger("vigil.performance")

EXPECTED_YIELD_MS = 16.0

NETWORK_QUALITY = {
    "slow-2g": 0.1,
    "2g": 0.3,
    "3g": 0.6,
    "4g": 0.9,
    "5g": 1.0,
    "wifi": 0.9,
    "ethernet": 1.0,
}
DEFAULT_NETWORK_QUALITY = 0.5


def percentile(sorted_values: list[float], p: float) -> float:
    """Linear interpolation between closest ranks, ``index = p/100 * (n-1)``."""
    if not sorted_values:
        return 0.0
    index = (p / 100) * (len(sorted_values) - 1)
    lo, hi = math.floor(index), math.ceil(index)
    if lo == hi:
        return sorted_values[lo]
    return sorted_values[lo] * (hi - index) + sorted_values[hi] * (index - lo)


def percentiles(values: list[float] | deque[float]) -> dict[str, float]:
    s = sorted(values)
    return {"p50": percentile(s, 50), "p95": percentile(s, 95), "p99": percentile(s, 99)}


# ---------------------------------------------------------------------------
# Resource sampling
# ---------------------------------------------------------------------------

class ResourceSampler:
    """Reads resource usage for saturation tracking. Swap it out in tests."""

    def __init__(self):
        self._process = psutil.Process()

    def memory_ratio(self) -> float:
        """Resident memory of this process as a share of physical memory."""
        total = psutil.virtual_memory().total
        if not total:
            return 0.0
        return self._process.memory_info().rss / total

    def connection_class(self) -> str:
        """Coarse link class of the fastest active non-loopback interface."""
        try:
            stats = psutil.net_if_stats()
        except OSError as e:
            logger.debug(f"Interface stats unavailable: {e}")
            return "unknown"
        speeds = [s.speed for name, s in stats.items() if s.isup and not name.startswith("lo")]
        speed = max(speeds, default=0)
        if speed <= 0:
            return "unknown"
        if speed >= 1000:
            return "ethernet"
        if speed >= 100:
            return "wifi"
        if speed >= 10:
            return "4g"
        if speed >= 2:
            return "3g"
        return "2g"

    async def event_loop_delay(self) -> float:
        """Milliseconds the loop took to resume us after a bare yield."""
        start = time.perf_counter()
        await asyncio.sleep(0)
        return (time.perf_counter() - start) * 1000


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------

class PerformanceMonitor:
    """Tracks latency, traffic, errors and saturation; raises threshold alerts."""

    MAX_LATENCY_SAMPLES = 1000
    MAX_SATURATION_SAMPLES = 100
    RPS_WINDOW = 60
    ERROR_WINDOW = 300
    TRAFFIC_RETENTION = 300

    def __init__(
        self,
        thresholds: AlertThresholds | None = None,
        log: StructuredLogger | BoundLogger | None = None,
        sampler: ResourceSampler | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.thresholds = thresholds or AlertThresholds()
        self.log = (log or StructuredLogger(sinks=[])).bind(component="performance_monitor", internal=True)
        self.sampler = sampler or ResourceSampler()
        self._clock = clock
        self._latency: dict[str, deque[float]] = defaultdict(lambda: deque(maxlen=self.MAX_LATENCY_SAMPLES))
        self._traffic: dict[tuple[str, str], deque[float]] = defaultdict(deque)
        self._errors: dict[str, deque[float]] = defaultdict(deque)
        self._error_categories: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._saturation: dict[str, deque[float]] = defaultdict(lambda: deque(maxlen=self.MAX_SATURATION_SAMPLES))
        self.alerts = AlertFanout(lambda: self.thresholds.alert_cooldown, clock)
        self._idle_alerted: set[tuple[str, str]] = set()

    def on_alert(self, callback: AlertCallback):
        self.alerts.subscribe(callback)

    def update_thresholds(self, thresholds: AlertThresholds):
        self.thresholds = thresholds
        self.log.info("Alert thresholds updated", {"action": "thresholds_update"})

    # ── Latency ───────────────────────────────────────────────────────

    def track_latency(self, operation: str, duration_ms: float, tags: dict[str, str] | None = None):
        samples = self._latency[operation]
        samples.append(float(duration_ms))
        pct = percentiles(samples)
        self._check_latency(operation, pct)
        self.log.debug(f"Latency {operation}: {duration_ms:.1f}ms", {
            "action": "latency_sample", "operation": operation, "sample_ms": duration_ms,
            "percentiles": pct, "tags": dict(tags or {}),
        })

    def get_latency_percentiles(self, operation: str) -> dict[str, float]:
        samples = self._latency.get(operation)
        if not samples:
            return {"p50": 0.0, "p95": 0.0, "p99": 0.0}
        return percentiles(samples)

    def get_all_latency_metrics(self) -> dict[str, dict[str, float]]:
        return {op: {**percentiles(s), "count": len(s)} for op, s in self._latency.items() if s}

    def _check_latency(self, operation: str, pct: dict[str, float]):
        t = self.thresholds.latency
        context = {"operation": operation, "percentiles": pct}
        if pct["p99"] > t.p99:
            self._alert(AlertType.LATENCY, AlertSeverity.CRITICAL, f"{operation}.p99", pct["p99"], t.p99, context)
        elif pct["p95"] > t.p95:
            self._alert(AlertType.LATENCY, AlertSeverity.WARNING, f"{operation}.p95", pct["p95"], t.p95, context)
        elif pct["p50"] > t.p50:
            self._alert(AlertType.LATENCY, AlertSeverity.WARNING, f"{operation}.p50", pct["p50"], t.p50, context)

    # ── Traffic ───────────────────────────────────────────────────────

    def _prune(self, timestamps: deque[float], window: float, now: float):
        cutoff = now - window
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()

    def track_traffic(self, endpoint: str, method: str = "GET"):
        now = self._clock()
        key = (method.upper(), endpoint)
        timestamps = self._traffic[key]
        timestamps.append(now)
        self._prune(timestamps, self.TRAFFIC_RETENTION, now)
        self._idle_alerted.discard(key)

        rps = self._count_since(timestamps, now - self.RPS_WINDOW) / self.RPS_WINDOW
        if rps > self.thresholds.traffic.max_rps:
            self._alert(AlertType.TRAFFIC, AlertSeverity.WARNING, f"{key[0]}:{endpoint}.rps", rps,
                        self.thresholds.traffic.max_rps, {"endpoint": endpoint, "method": key[0]})

    @staticmethod
    def _count_since(timestamps: deque[float], cutoff: float) -> int:
        return sum(1 for t in timestamps if t > cutoff)

    def check_idle_traffic(self) -> list[AlertEvent]:
        """Raise a CRITICAL alert, once, for each endpoint whose traffic stopped."""
        now = self._clock()
        fired = []
        for key, timestamps in self._traffic.items():
            self._prune(timestamps, self.TRAFFIC_RETENTION, now)
            if timestamps or key in self._idle_alerted:
                continue
            self._idle_alerted.add(key)
            method, endpoint = key
            alert = self._alert(AlertType.TRAFFIC, AlertSeverity.CRITICAL, f"{method}:{endpoint}.rps", 0.0,
                                self.thresholds.traffic.min_rps,
                                {"endpoint": endpoint, "method": method}, message="No traffic detected")
            if alert:
                fired.append(alert)
        return fired

    def get_traffic_metrics(self, window: float = 60.0) -> dict[str, dict[str, float]]:
        now = self._clock()
        metrics = {}
        for (method, endpoint), timestamps in self._traffic.items():
            self._prune(timestamps, self.TRAFFIC_RETENTION, now)
            total = self._count_since(timestamps, now - window)
            metrics[f"{method}:{endpoint}"] = {"rps": total / window, "total": total}
        return metrics

    def requests_for(self, endpoint: str, window: float | None = None) -> int:
        now = self._clock()
        cutoff = now - (window or self.ERROR_WINDOW)
        return sum(self._count_since(ts, cutoff) for (_, ep), ts in self._traffic.items() if ep == endpoint)

    # ── Errors ────────────────────────────────────────────────────────

    def track_error(self, operation: str, error: BaseException | str, category: str = "unknown"):
        now = self._clock()
        timestamps = self._errors[operation]
        timestamps.append(now)
        self._prune(timestamps, self.ERROR_WINDOW, now)
        self._error_categories[operation][category] += 1

        count = len(timestamps)
        requests = self.requests_for(operation)
        rate = count / requests if requests else 0.0
        self._check_error_rate(operation, rate, count)
        self.log.debug(f"Error recorded for {operation}: {error}", {
            "action": "error_sample", "operation": operation, "category": category,
            "error_rate": rate, "recent_errors": count, "recent_requests": requests,
        })

    def _check_error_rate(self, operation: str, rate: float, count: int):
        t = self.thresholds.errors
        context = {"operation": operation, "error_count": count}
        if rate > t.critical_error_rate:
            self._alert(AlertType.ERROR_RATE, AlertSeverity.CRITICAL, f"{operation}.error_rate", rate,
                        t.critical_error_rate, context)
        elif rate > t.max_error_rate:
            self._alert(AlertType.ERROR_RATE, AlertSeverity.WARNING, f"{operation}.error_rate", rate,
                        t.max_error_rate, context)

    def get_error_rates(self, window: float | None = None) -> dict[str, dict[str, Any]]:
        window = window or self.ERROR_WINDOW
        now = self._clock()
        rates = {}
        for operation, timestamps in self._errors.items():
            self._prune(timestamps, self.ERROR_WINDOW, now)
            count = self._count_since(timestamps, now - window)
            requests = self.requests_for(operation, window)
            rates[operation] = {
                "rate": count / requests if requests else 0.0,
                "count": count,
                "categories": dict(self._error_categories[operation]),
            }
        return rates

    def totals(self) -> tuple[int, int]:
        """(errors, requests) across all operations in the error window."""
        now = self._clock()
        cutoff = now - self.ERROR_WINDOW
        errors = sum(self._count_since(ts, cutoff) for ts in self._errors.values())
        requests = sum(self._count_since(ts, cutoff) for ts in self._traffic.values())
        return errors, requests

    # ── Saturation ────────────────────────────────────────────────────

    async def track_saturation(self):
        t = self.thresholds.saturation

        memory = self.sampler.memory_ratio()
        self._record_saturation("memory", memory, t.memory)

        link = self.sampler.connection_class()
        network = 1 - NETWORK_QUALITY.get(link, DEFAULT_NETWORK_QUALITY)
        self._record_saturation("network", network, t.network, {"connection": link})

        delay = await self.sampler.event_loop_delay()
        cpu = min(delay / EXPECTED_YIELD_MS, 1.0)
        self._record_saturation("cpu", cpu, t.cpu, {"delay_ms": round(delay, 3), "expected_ms": EXPECTED_YIELD_MS})

    def _record_saturation(self, resource: str, utilization: float, threshold: float,
                           extra: dict[str, Any] | None = None):
        self._saturation[resource].append(utilization)
        if utilization > threshold:
            severity = AlertSeverity.CRITICAL if utilization > self.thresholds.saturation.critical else AlertSeverity.WARNING
            self._alert(AlertType.SATURATION, severity, f"{resource}.utilization", utilization, threshold,
                        {"resource": resource, **(extra or {})})

    def get_saturation_metrics(self) -> dict[str, dict[str, float]]:
        metrics = {}
        for resource, history in self._saturation.items():
            if not history:
                continue
            metrics[resource] = {
                "current": history[-1],
                "average": sum(history) / len(history),
                "peak": max(history),
            }
        return metrics

    # ── Alerts ────────────────────────────────────────────────────────

    def _alert(self, type_: AlertType, severity: AlertSeverity, metric: str, value: float, threshold: float,
               context: dict[str, Any], message: str = "") -> AlertEvent | None:
        now = self._clock()
        alert = AlertEvent(
            type=type_, severity=severity, metric=metric, value=value, threshold=threshold,
            message=message or f"{metric} exceeded threshold: {value:.3f} > {threshold}",
            timestamp=now, context=context,
        )
        if not self.alerts.should_send(alert):
            self.alerts.suppressed += 1
            return None
        log_call = self.log.error if severity == AlertSeverity.CRITICAL else self.log.warn
        log_call(f"Performance alert: {type_.value} {metric}", {
            "action": "performance_alert", "alert_type": type_.value, "severity": severity.value,
            "metric": metric, "value": value, "threshold": threshold,
        })
        self.alerts.publish(alert)
        return alert

    # ── Summary ───────────────────────────────────────────────────────

    def get_performance_summary(self) -> dict[str, Any]:
        return {
            "latency": self.get_all_latency_metrics(),
            "traffic": self.get_traffic_metrics(),
            "errors": self.get_error_rates(),
            "saturation": self.get_saturation_metrics(),
        }

    def reset(self):
        self._latency.clear()
        self._traffic.clear()
        self._errors.clear()
        self._error_categories.clear()
        self._saturation.clear()
        self.alerts.reset()
        self._idle_alerted.clear()
