"""
Diagnostics — suites of independently timed checks.

A suite groups checks that share a cadence. ``run_suite`` runs the checks
one after another; each check is bounded by its own timeout and the whole
suite by the suite timeout. A check that raises or times out is a failed
result, never an exception.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from vigil.core.types import iso
from vigil.telemetry.logger import BoundLogger, StructuredLogger

if TYPE_CHECKING:
    from .performance import PerformanceMonitor

logger = logging.getLogger("vigil.diagnostics")


@dataclass
class DiagnosticResult:
    check: str
    passed: bool
    duration_ms: float = 0.0
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    recommendations: list[str] = field(default_factory=list)
    critical: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "check": self.check,
            "passed": self.passed,
            "duration_ms": round(self.duration_ms, 3),
            "error": self.error,
            "details": self.details,
            "recommendations": self.recommendations,
            "critical": self.critical,
        }


# A check returns a full result, or just pass/fail.
CheckFn = Callable[[], Awaitable["DiagnosticResult | bool"]]


@dataclass
class DiagnosticCheck:
    name: str
    execute: CheckFn
    critical: bool = False
    timeout: float = 5.0


@dataclass
class DiagnosticSuite:
    name: str
    checks: list[DiagnosticCheck]
    frequency: float = 60.0
    timeout: float = 10.0


async def run_check(check: DiagnosticCheck) -> DiagnosticResult:
    start = time.perf_counter()
    try:
        outcome = await asyncio.wait_for(check.execute(), check.timeout)
    except TimeoutError:
        return DiagnosticResult(check.name, False, (time.perf_counter() - start) * 1000,
                                error=f"Check timed out after {check.timeout}s", critical=check.critical)
    except Exception as e:
        return DiagnosticResult(check.name, False, (time.perf_counter() - start) * 1000,
                                error=str(e) or type(e).__name__, critical=check.critical)

    duration = (time.perf_counter() - start) * 1000
    if isinstance(outcome, DiagnosticResult):
        outcome.check = check.name
        outcome.critical = check.critical
        outcome.duration_ms = outcome.duration_ms or duration
        return outcome
    return DiagnosticResult(check.name, bool(outcome), duration, critical=check.critical)


async def run_suite(suite: DiagnosticSuite) -> list[DiagnosticResult]:
    """Run every check in order. Checks the suite timeout cut off are failed results."""
    results: list[DiagnosticResult] = []
    try:
        async with asyncio.timeout(suite.timeout):
            for check in suite.checks:
                results.append(await run_check(check))
    except TimeoutError:
        finished = {r.check for r in results}
        for check in suite.checks:
            if check.name not in finished:
                results.append(DiagnosticResult(
                    check.name, False, error=f"Suite {suite.name} timed out after {suite.timeout}s",
                    critical=check.critical,
                ))
    return results


# ---------------------------------------------------------------------------
# Default suites
# ---------------------------------------------------------------------------

def core_system_suite(log: StructuredLogger, performance: PerformanceMonitor) -> DiagnosticSuite:
    """Checks that the logger and the performance monitor still answer."""

    async def logger_health() -> DiagnosticResult:
        log.debug("Diagnostics test entry", {"action": "diagnostics_probe", "internal": True})
        stats = log.get_stats()
        recommendations = []
        if stats["undelivered"]:
            recommendations.append("Some sinks are rejecting ERROR/FATAL entries; check sink connectivity")
        return DiagnosticResult("logger_health", True, details={
            "buffered": stats["buffered"], "sink_failures": stats["sink_failures"], "sinks": stats["sinks"],
        }, recommendations=recommendations)

    async def performance_monitor_health() -> DiagnosticResult:
        summary = performance.get_performance_summary()
        return DiagnosticResult("performance_monitor_health", True, details={
            "metrics_count": len(summary["latency"]),
            "endpoints": len(summary["traffic"]),
        })

    return DiagnosticSuite(
        name="core_system",
        frequency=60.0,
        timeout=10.0,
        checks=[
            DiagnosticCheck("logger_health", logger_health, critical=True, timeout=5.0),
            DiagnosticCheck("performance_monitor_health", performance_monitor_health, critical=True, timeout=5.0),
        ],
    )


def dependency_suite(dependencies: dict[str, str], client: Callable[[], httpx.AsyncClient],
                     timeout: float = 10.0) -> DiagnosticSuite:
    """One critical connectivity check per configured dependency URL."""

    def probe(name: str, url: str) -> CheckFn:
        async def connectivity() -> DiagnosticResult:
            resp = await client().get(url)
            passed = resp.status_code < 500
            return DiagnosticResult(
                f"{name}_connectivity", passed,
                error=None if passed else f"HTTP {resp.status_code}",
                details={"url": url, "status_code": resp.status_code},
                recommendations=[] if passed else [f"Check that {name} is reachable at {url}"],
            )
        return connectivity

    return DiagnosticSuite(
        name="external_dependencies",
        frequency=300.0,
        timeout=15.0,
        checks=[DiagnosticCheck(f"{name}_connectivity", probe(name, url), critical=True, timeout=timeout)
                for name, url in dependencies.items()],
    )


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

class DiagnosticRunner:
    """Holds the registered suites, runs the ones that are due, keeps the last results."""

    def __init__(self, log: StructuredLogger | BoundLogger | None = None, clock: Callable[[], float] = time.time):
        self.log = (log or StructuredLogger(sinks=[])).bind(component="diagnostics", internal=True)
        self._clock = clock
        self._suites: dict[str, DiagnosticSuite] = {}
        self._last_run: dict[str, float] = {}
        self.last_results: dict[str, list[DiagnosticResult]] = {}

    def register(self, suite: DiagnosticSuite):
        self._suites[suite.name] = suite
        self.log.info("Diagnostic suite registered", {
            "action": "diagnostic_suite_register", "suite": suite.name, "checks": [c.name for c in suite.checks],
        })

    @property
    def suites(self) -> list[DiagnosticSuite]:
        return list(self._suites.values())

    def is_due(self, suite: DiagnosticSuite, now: float) -> bool:
        last = self._last_run.get(suite.name)
        return last is None or now - last >= suite.frequency

    async def run(self, force: bool = False) -> dict[str, list[DiagnosticResult]]:
        """Run every due suite (all of them when ``force``). Returns this run's results."""
        ran = {}
        for suite in list(self._suites.values()):
            now = self._clock()
            if not force and not self.is_due(suite, now):
                continue
            results = await run_suite(suite)
            self._last_run[suite.name] = now
            self.last_results[suite.name] = results
            ran[suite.name] = results

            failed = [r.check for r in results if not r.passed]
            if failed:
                self.log.warn("Diagnostic failures detected", {
                    "action": "diagnostics_failures", "suite": suite.name, "failed": failed,
                })
        return ran

    def failing_critical(self) -> list[str]:
        return [f"{suite}.{r.check}" for suite, results in self.last_results.items()
                for r in results if r.critical and not r.passed]

    def to_dict(self) -> dict[str, Any]:
        return {
            name: {
                "last_run": iso(self._last_run[name]) if name in self._last_run else None,
                "results": [r.to_dict() for r in self.last_results.get(name, [])],
            }
            for name in self._suites
        }
