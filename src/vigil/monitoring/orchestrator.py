"""
Monitoring orchestrator — drives the automation cycle over every other component.

Each cycle runs seven steps, strictly in order:

    1. scan      drain new log entries into the analyzer, the performance
                 monitor (entries carrying ``duration_ms``) and the error
                 tracker (ERROR/FATAL entries)
    2. score     0-100 performance score from latency, error-rate and
                 saturation deductions
    3. health    run the error tracker's health checks, try recovery for
                 every failing check
    4. patterns  escalate critical log patterns and anomalies
    5. rules     evaluate enabled workflow rules, critical priority first
    6. state     recompute overall health, alert when it worsens
    7. heal      cleanup/restart when health is critical

Steps 1-4 run only when their configured frequency has elapsed (the first
cycle runs everything). Cycles never queue: a tick that arrives while
``max_concurrent_checks`` cycles are still running is skipped.
"""

from __future__ import annotations

import dataclasses
import time
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from vigil.config import AutomationConfig
from vigil.core.scheduler import AsyncioScheduler, ScheduleHandle, Scheduler
from vigil.core.types import AlertEvent, AlertSeverity, LogEntry, SystemHealth, iso
from vigil.telemetry.analyzer import Anomaly, Impact, LogAnalyzer, LogPattern
from vigil.telemetry.logger import StructuredLogger

from .alerts import AlertDispatcher
from .diagnostics import DiagnosticResult, DiagnosticRunner, DiagnosticSuite, core_system_suite, dependency_suite
from .errors import ErrorContext, ErrorTracker, LoggedError
from .healing import SelfHealer
from .performance import PerformanceMonitor

# ---------------------------------------------------------------------------
# State and rules
# ---------------------------------------------------------------------------


@dataclass
class MonitoringState:
    initialized: bool = False
    system_health: SystemHealth = SystemHealth.UNKNOWN
    critical_issues: int = 0
    performance_score: int = 100
    error_rate: float = 0.0
    automation_active: bool = False
    automation_failures: int = 0
    last_error_scan: float | None = None
    last_performance_check: float | None = None
    last_health_check: float | None = None
    last_log_analysis: float | None = None
    last_diagnostics: float | None = None
    last_automation_run: float | None = None

    def to_dict(self) -> dict[str, Any]:
        d = dataclasses.asdict(self)
        d["system_health"] = self.system_health.value
        for key, value in d.items():
            if key.startswith("last_"):
                d[key] = iso(value) if value is not None else None
        return d


class RulePriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return ["low", "medium", "high", "critical"].index(self.value)


@dataclass
class WorkflowRule:
    id: str
    name: str
    condition: Callable[[MonitoringState], bool]
    action: Callable[[MonitoringState], Awaitable[bool]]
    priority: RulePriority = RulePriority.MEDIUM
    enabled: bool = True
    last_executed: float | None = None
    execution_count: int = 0
    success_rate: float = 1.0

    def record(self, success: bool, now: float):
        """Fold one execution into the running success rate."""
        self.last_executed = now
        self.execution_count += 1
        n = self.execution_count
        self.success_rate = (self.success_rate * (n - 1) + (1.0 if success else 0.0)) / n

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "priority": self.priority.value,
            "enabled": self.enabled,
            "last_executed": iso(self.last_executed) if self.last_executed is not None else None,
            "execution_count": self.execution_count,
            "success_rate": round(self.success_rate, 4),
        }


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class MonitoringOrchestrator:
    """Coordinates the logger, monitors, analyzer and healer on a timer."""

    LATENCY_DEDUCTIONS = ((2000, 20), (1000, 10))
    ERROR_RATE_DEDUCTIONS = ((0.10, 30), (0.05, 15))
    SATURATION_DEDUCTIONS = ((0.9, 25), (0.8, 10))
    DEGRADED_SCORE = 70
    DEGRADED_ERROR_RATE = 0.05
    MAX_ALERT_HISTORY = 100

    def __init__(
        self,
        config: AutomationConfig | None,
        logger: StructuredLogger,
        performance: PerformanceMonitor,
        errors: ErrorTracker,
        analyzer: LogAnalyzer | None = None,
        healer: SelfHealer | None = None,
        dispatcher: AlertDispatcher | None = None,
        diagnostics: DiagnosticRunner | None = None,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or AutomationConfig()
        self.logger = logger
        self.log = logger.bind(component="orchestrator", internal=True)
        self.performance = performance
        self.errors = errors
        self.analyzer = analyzer or LogAnalyzer(clock)
        self.healer = healer or SelfHealer(self.config, logger, clock)
        self.dispatcher = dispatcher or AlertDispatcher(self.config.alerting, logger, clock)
        self.diagnostics = diagnostics or DiagnosticRunner(logger, clock)
        self.scheduler = scheduler
        self._clock = clock

        self.state = MonitoringState()
        self.rules: list[WorkflowRule] = []
        self.started_at = clock()
        self.check_counts: dict[str, int] = defaultdict(int)
        self.recent_alerts: deque[dict[str, Any]] = deque(maxlen=self.MAX_ALERT_HISTORY)
        self.running_cycles = 0
        self.cycles_skipped = 0
        self._handles: list[ScheduleHandle] = []
        self._escalated: set[str] = set()
        self._last_escalation: float | None = None
        self._defaults_registered = False

    # ── Setup ─────────────────────────────────────────────────────────

    def _register_defaults(self):
        if self._defaults_registered:
            return
        self._defaults_registered = True

        names = {s.name for s in self.diagnostics.suites}
        if "core_system" not in names:
            self.diagnostics.register(core_system_suite(self.logger, self.performance))
        dependencies = self.errors.config.dependencies
        if dependencies and "external_dependencies" not in names:
            self.diagnostics.register(dependency_suite(
                dependencies, lambda: self.errors.client, self.errors.config.health_check_timeout))

        existing = {r.id for r in self.rules}
        for rule in self._default_rules():
            if rule.id not in existing:
                self.add_workflow_rule(rule)

        self.performance.on_alert(self._on_monitor_alert("performance_monitor"))
        self.errors.on_alert(self._on_monitor_alert("error_tracker"))
        self.log.info("Integrations setup completed", {"action": "integrations_setup"})

    def _default_rules(self) -> list[WorkflowRule]:
        return [
            WorkflowRule(
                id="critical_error_escalation",
                name="Critical Error Escalation",
                condition=lambda s: s.critical_issues > self.config.alerting.critical_threshold,
                action=self._escalate_critical_errors,
                priority=RulePriority.CRITICAL,
            ),
            WorkflowRule(
                id="performance_degradation",
                name="Performance Degradation Response",
                condition=lambda s: s.performance_score < 50,
                action=self._handle_performance_degradation,
                priority=RulePriority.HIGH,
            ),
            WorkflowRule(
                id="automation_failure_recovery",
                name="Automation Failure Recovery",
                condition=lambda s: s.automation_failures > 3,
                action=self._recover_automation,
                priority=RulePriority.HIGH,
            ),
        ]

    def _on_monitor_alert(self, source: str) -> Callable[[AlertEvent], None]:
        def handle(alert: AlertEvent):
            self.recent_alerts.append({"source": source, **alert.to_dict()})
            log_call = self.log.error if alert.severity == AlertSeverity.CRITICAL else self.log.warn
            log_call(f"Alert from {source}: {alert.metric}", {
                "action": f"{source}_alert",
                "alert": {"type": alert.type.value, "severity": alert.severity.value, "metric": alert.metric,
                          "value": alert.value, "threshold": alert.threshold},
            })
        return handle

    async def initialize(self):
        """Register defaults, run the startup diagnostics, then start automation."""
        if self.state.initialized:
            return
        self.log.info("Initializing observability stack", {"action": "observability_init_start"})
        try:
            self._register_defaults()
            await self.run_diagnostics(force=True)
            self.state.initialized = True
            if self.config.enabled:
                await self.start_automation()
        except Exception as e:
            self.state.system_health = SystemHealth.CRITICAL
            self.state.critical_issues += 1
            self.log.error("Failed to initialize observability stack", {"action": "observability_init_error"},
                           error=e)
            raise
        self.log.info("Observability stack initialized", {
            "action": "observability_init_complete", "diagnostic_suites": len(self.diagnostics.suites),
            "workflow_rules": len(self.rules), "automation_enabled": self.config.enabled,
        })

    # ── Automation timers ─────────────────────────────────────────────

    async def start_automation(self, run_now: bool = True):
        if self.state.automation_active:
            self.log.warn("Automation already running", {"action": "automation_already_running"})
            return
        if self.scheduler is None:
            self.scheduler = AsyncioScheduler()

        self.state.automation_active = True
        self._schedule()
        self.log.info("Automation engine started", {
            "action": "automation_start", "check_interval": self.config.check_interval,
            "max_concurrent_checks": self.config.max_concurrent_checks,
        })
        if run_now:
            await self.run_cycle()

    def _schedule(self):
        assert self.scheduler is not None
        c = self.config
        self._handles = [
            self.scheduler.schedule(c.check_interval, self.run_cycle, name="automation_cycle"),
            self.scheduler.schedule(c.diagnostics_frequency, self.run_diagnostics, name="diagnostics"),
            self.scheduler.schedule(c.saturation_sample_interval, self._sample_resources, name="saturation"),
        ]

    def _cancel_timers(self):
        if self.scheduler is not None:
            for handle in self._handles:
                self.scheduler.cancel(handle)
        self._handles = []

    def stop(self):
        """Cancel the timers. A cycle already running finishes on its own."""
        self._cancel_timers()
        self.state.automation_active = False
        self.log.info("Monitoring orchestrator stopped", {"action": "orchestrator_stop"})

    async def _sample_resources(self):
        await self.performance.track_saturation()
        self.performance.check_idle_traffic()

    # ── Cycle ─────────────────────────────────────────────────────────

    def _due(self, last: float | None, frequency: float, now: float) -> bool:
        return last is None or now - last >= frequency

    async def run_cycle(self) -> bool:
        """Run one automation cycle. Returns False when skipped or failed."""
        if self.running_cycles >= self.config.max_concurrent_checks:
            self.cycles_skipped += 1
            self.log.warn("Max concurrent cycles reached, skipping cycle", {
                "action": "automation_cycle_skipped", "running_cycles": self.running_cycles,
                "max_concurrent": self.config.max_concurrent_checks,
            })
            return False

        self.running_cycles += 1
        started = self._clock()
        self.state.last_automation_run = started
        c = self.config
        try:
            if self._due(self.state.last_error_scan, c.error_scan_frequency, started):
                await self._scan_logs()
            if self._due(self.state.last_performance_check, c.performance_check_frequency, started):
                await self._analyze_performance()
            if self._due(self.state.last_health_check, c.health_check_frequency, started):
                await self._run_health_checks()
            self.state.critical_issues = self._count_critical_issues()
            if self._due(self.state.last_log_analysis, c.log_analysis_frequency, started):
                await self._analyze_patterns()
            await self._execute_rules()
            await self._update_health()
            if c.auto_healing_enabled:
                await self._self_heal()

            self.check_counts["automation"] += 1
            self.log.debug("Automation cycle completed", {
                "action": "automation_cycle_complete", "duration_ms": (self._clock() - started) * 1000,
                "system_health": self.state.system_health.value,
            })
            return True
        except Exception as e:
            self.state.automation_failures += 1
            self.log.error("Automation cycle failed", {
                "action": "automation_cycle_error", "failures": self.state.automation_failures,
            }, error=e)
            if self.state.automation_failures > c.failure_threshold:
                await self.send_alert("Automation system failing repeatedly", {
                    "failures": self.state.automation_failures,
                    "last_run": iso(started),
                })
            return False
        finally:
            self.running_cycles -= 1

    # 1
    async def _scan_logs(self):
        entries = self.logger.drain_recent_entries()
        scanned = 0
        for entry in entries:
            if entry.is_internal:
                continue
            scanned += 1
            self.analyzer.analyze_log_entry(entry)
            operation = entry.operation or "unknown"
            if entry.duration_ms is not None:
                self.performance.track_traffic(operation)
                self.performance.track_latency(operation, entry.duration_ms)
            if entry.is_error:
                await self.errors.track_error(LoggedError.from_entry(entry), self._error_context(entry, operation))

        self.state.last_error_scan = self._clock()
        self.check_counts["log_scan"] += 1
        self.log.debug("Log scan finished", {
            "action": "log_scan_complete", "entries": len(entries), "scanned": scanned,
        })

    @staticmethod
    def _error_context(entry: LogEntry, operation: str) -> ErrorContext:
        action = entry.context.get("action")
        user = entry.context.get("user_id")
        affected = entry.context.get("affected_users")
        metadata = entry.context.get("metadata")
        return ErrorContext(
            component=operation,
            action=action if isinstance(action, str) else None,
            user_id=user if isinstance(user, str) else None,
            affected_users=affected if isinstance(affected, int) and not isinstance(affected, bool) else 0,
            metadata={"trace_id": entry.trace_id, **(metadata if isinstance(metadata, dict) else {})},
        )

    # 2
    def _deduct(self, value: float, steps: tuple[tuple[float, int], ...]) -> int:
        for limit, points in steps:
            if value > limit:
                return points
        return 0

    async def _analyze_performance(self):
        await self.performance.track_saturation()
        summary = self.performance.get_performance_summary()

        score = 100
        for latency in summary["latency"].values():
            score -= self._deduct(latency["p95"], self.LATENCY_DEDUCTIONS)
        for errors in summary["errors"].values():
            score -= self._deduct(errors["rate"], self.ERROR_RATE_DEDUCTIONS)
        for saturation in summary["saturation"].values():
            score -= self._deduct(saturation["current"], self.SATURATION_DEDUCTIONS)

        errors, requests = self.performance.totals()
        self.state.performance_score = max(0, score)
        self.state.error_rate = errors / requests if requests else 0.0
        self.state.last_performance_check = self._clock()
        self.check_counts["performance_analysis"] += 1
        self.log.debug("Performance analysis completed", {
            "action": "performance_analysis_complete", "score": self.state.performance_score,
            "error_rate": self.state.error_rate, "latency_checks": len(summary["latency"]),
            "error_checks": len(summary["errors"]), "saturation_checks": len(summary["saturation"]),
        })

    # 3
    async def _run_health_checks(self):
        results = await self.errors.run_health_checks()
        for name, result in results.items():
            if result.healthy:
                continue
            self.log.warn("System health check failed", {
                "action": "health_check_failed", "system": name, "reason": result.error,
                "duration_ms": result.duration_ms, "critical": result.critical,
            })
            if self.config.auto_healing_enabled:
                await self.healer.recover_system(name)
        self.state.last_health_check = self._clock()
        self.check_counts["error_recovery"] += 1

    def _count_critical_issues(self) -> int:
        return len(self.errors.failing_critical_checks()) + len(self.diagnostics.failing_critical())

    # 4
    async def _analyze_patterns(self):
        self.analyzer.cleanup()
        for finding in self.analyzer.critical_findings():
            if finding.id in self._escalated:
                continue
            self._escalated.add(finding.id)
            await self._escalate_finding(finding)
        self._escalated &= {p.id for p in self.analyzer.get_patterns()} | {a.id for a in self.analyzer.get_anomalies()}

        for pattern in self.analyzer.get_patterns():
            if pattern.impact == Impact.HIGH:
                self.log.warn("High-impact pattern detected", {
                    "action": "critical_pattern_detected", "pattern": pattern.type.value,
                    "description": pattern.description, "confidence": pattern.confidence,
                })
        self.state.last_log_analysis = self._clock()
        self.check_counts["pattern_analysis"] += 1

    async def _escalate_finding(self, finding: LogPattern | Anomaly):
        if isinstance(finding, LogPattern):
            await self.send_alert(f"Critical pattern detected: {finding.description}", {
                "pattern": finding.type.value, "confidence": round(finding.confidence, 3),
                "impact": finding.impact.value,
            })
        else:
            await self.send_alert(f"Critical anomaly detected: {finding.message}", {
                "metric": finding.metric, "severity": finding.severity.value, "fingerprint": finding.fingerprint,
            })

    # 5
    async def _execute_rules(self):
        for rule in sorted(self.rules, key=lambda r: r.priority.rank, reverse=True):
            if not rule.enabled:
                continue
            try:
                if not rule.condition(self.state):
                    continue
                self.log.info("Executing workflow rule", {
                    "action": "workflow_rule_execute", "rule": rule.id, "priority": rule.priority.value,
                })
                success = bool(await rule.action(self.state))
            except Exception as e:
                rule.record(False, self._clock())
                self.log.error("Workflow rule error", {"action": "workflow_rule_error", "rule": rule.id}, error=e)
                continue
            rule.record(success, self._clock())
            if not success:
                self.log.warn("Workflow rule execution failed", {
                    "action": "workflow_rule_failed", "rule": rule.id, "success_rate": rule.success_rate,
                })
        self.check_counts["workflow_rules"] += 1

    # 6
    def compute_health(self) -> SystemHealth:
        s = self.state
        if s.critical_issues > 0:
            return SystemHealth.CRITICAL
        if s.performance_score < self.DEGRADED_SCORE or s.error_rate > self.DEGRADED_ERROR_RATE:
            return SystemHealth.DEGRADED
        return SystemHealth.HEALTHY

    async def _update_health(self):
        previous = self.state.system_health
        health = self.compute_health()
        self.state.system_health = health
        if health == previous:
            return
        self.log.info("System health changed", {
            "action": "system_health_change", "from": previous.value, "to": health.value,
            "performance_score": self.state.performance_score, "critical_issues": self.state.critical_issues,
            "error_rate": self.state.error_rate,
        })
        if health != SystemHealth.HEALTHY:
            await self.send_alert(f"System health changed to {health.value}", {
                "previous_health": previous.value, "current_health": health.value,
                "performance_score": self.state.performance_score, "critical_issues": self.state.critical_issues,
            })

    # 7
    async def _self_heal(self):
        if self.state.system_health != SystemHealth.CRITICAL:
            return
        self.log.info("Running self-healing procedures", {
            "action": "self_healing_start", "critical_issues": self.state.critical_issues,
        })
        healed = 0
        if self.state.performance_score < 50 and await self.healer.perform_cleanup():
            healed += 1
        if self.state.critical_issues > 2 and await self.healer.restart_services():
            healed += 1
        if healed:
            self.log.info("Self-healing completed", {"action": "self_healing_complete", "healed_issues": healed})

    # ── Rule actions ──────────────────────────────────────────────────

    async def _escalate_critical_errors(self, state: MonitoringState) -> bool:
        now = self._clock()
        delay = self.config.alerting.escalation_delay
        if self._last_escalation is not None and now - self._last_escalation < delay:
            self.log.debug("Critical error escalation already sent", {
                "action": "escalation_suppressed", "error_count": state.critical_issues,
                "retry_in_seconds": round(delay - (now - self._last_escalation), 3),
            })
            return True
        self._last_escalation = now
        await self.send_alert(f"Critical errors detected: {state.critical_issues}", {
            "error_count": state.critical_issues, "system_health": state.system_health.value,
        })
        return True

    async def _handle_performance_degradation(self, state: MonitoringState) -> bool:
        self.log.warn("Handling performance degradation", {
            "action": "performance_degradation_handle", "score": state.performance_score,
        })
        return await self.healer.perform_cleanup()

    async def _recover_automation(self, state: MonitoringState) -> bool:
        self.log.info("Recovering automation system", {"action": "automation_system_recovery"})
        state.automation_failures = 0
        if self.config.enabled and not state.automation_active:
            await self.start_automation(run_now=False)
        return True

    # ── Diagnostics ───────────────────────────────────────────────────

    def register_diagnostic_suite(self, suite: DiagnosticSuite):
        self.diagnostics.register(suite)

    async def run_diagnostics(self, force: bool = False) -> dict[str, list[DiagnosticResult]]:
        results = await self.diagnostics.run(force=force)
        if results:
            self.state.last_diagnostics = self._clock()
            self.check_counts["diagnostics"] += 1
        return results

    # ── Rules ─────────────────────────────────────────────────────────

    def add_workflow_rule(self, rule: WorkflowRule):
        self.rules = [r for r in self.rules if r.id != rule.id]
        self.rules.append(rule)

    def get_rule(self, rule_id: str) -> WorkflowRule | None:
        return next((r for r in self.rules if r.id == rule_id), None)

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> bool:
        rule = self.get_rule(rule_id)
        if rule is None:
            return False
        rule.enabled = enabled
        self.log.info(f"Workflow rule {'enabled' if enabled else 'disabled'}: {rule_id}", {
            "action": "workflow_rule_toggle", "rule": rule_id, "enabled": enabled,
        })
        return True

    # ── Alerts ────────────────────────────────────────────────────────

    async def send_alert(self, message: str, context: dict[str, Any] | None = None,
                         severity: str = "critical") -> bool:
        if not self.config.alerting.enabled:
            return False
        return await self.dispatcher.send(message, context, severity)

    # ── Config ────────────────────────────────────────────────────────

    _TIMER_FIELDS = ("check_interval", "diagnostics_frequency", "saturation_sample_interval")

    def update_config(self, **updates: Any):
        known = {f.name for f in dataclasses.fields(AutomationConfig)}
        unknown = set(updates) - known
        if unknown:
            raise ValueError(f"Unknown automation settings: {sorted(unknown)}")
        for key, value in updates.items():
            setattr(self.config, key, value)
        self.log.info("Monitoring configuration updated", {"action": "config_update", "updates": updates})

        if not self.config.enabled and self.state.automation_active:
            self.stop()
        elif self.state.automation_active and any(k in updates for k in self._TIMER_FIELDS):
            self._cancel_timers()
            self._schedule()

    # ── Reporting ─────────────────────────────────────────────────────

    def get_state(self) -> MonitoringState:
        return dataclasses.replace(self.state)

    @property
    def uptime(self) -> float:
        return self._clock() - self.started_at

    def get_metrics(self) -> dict[str, Any]:
        return {
            "uptime_seconds": round(self.uptime, 3),
            "check_counts": dict(self.check_counts),
            "running_cycles": self.running_cycles,
            "cycles_skipped": self.cycles_skipped,
            "last_results": self.diagnostics.to_dict(),
            "rules": [r.to_dict() for r in self.rules],
        }

    @staticmethod
    def _clock_time(ts: float | None) -> str:
        return datetime.fromtimestamp(ts).strftime("%H:%M:%S") if ts is not None else "never"

    def generate_status_report(self) -> str:
        s = self.state
        lines = [
            f"{self.logger.resource.service_name} observability status report",
            "",
            f"System Health: {s.system_health.value.upper()}",
            f"Performance Score: {s.performance_score}/100",
            f"Critical Issues: {s.critical_issues}",
            f"Uptime: {int(self.uptime // 60)} minutes",
            "",
            f"Automation Status: {'ACTIVE' if s.automation_active else 'INACTIVE'}",
            f"Last Health Check: {self._clock_time(s.last_health_check)}",
            f"Last Log Analysis: {self._clock_time(s.last_log_analysis)}",
            "",
            "Check Statistics:",
        ]
        lines.extend(f"- {kind}: {count} checks" for kind, count in sorted(self.check_counts.items()))
        lines.extend([
            "",
            f"Workflow Rules: {sum(1 for r in self.rules if r.enabled)} active",
            f"Diagnostic Suites: {len(self.diagnostics.suites)} configured",
        ])
        return "\n".join(lines)
