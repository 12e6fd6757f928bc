"""Tests for the monitoring orchestrator and its automation cycle."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from vigil.core.types import SystemHealth
from vigil.monitoring.errors import HealthCheck
from vigil.monitoring.orchestrator import RulePriority, WorkflowRule
from vigil.runtime import Engine


@pytest.fixture
def orchestrator(engine):
    return engine.orchestrator


def dispatched(engine):
    return [a["message"] for a in engine.dispatcher.history]


def failing_check(name):
    return HealthCheck(name, AsyncMock(return_value=False), critical=True)


class TestInitialize:
    async def test_registers_defaults(self, orchestrator):
        await orchestrator.initialize()
        assert [r.id for r in orchestrator.rules] == [
            "critical_error_escalation", "performance_degradation", "automation_failure_recovery",
        ]
        assert [s.name for s in orchestrator.diagnostics.suites] == ["core_system"]
        state = orchestrator.get_state()
        assert state.initialized is True
        assert state.system_health == SystemHealth.UNKNOWN
        assert state.automation_active is False
        assert orchestrator.check_counts["diagnostics"] == 1
        assert "automation" not in orchestrator.check_counts

    async def test_initialize_is_idempotent(self, orchestrator):
        await orchestrator.initialize()
        await orchestrator.initialize()
        assert len(orchestrator.rules) == 3
        assert orchestrator.check_counts["diagnostics"] == 1

    async def test_enabled_automation_schedules_and_runs(self, engine, orchestrator, scheduler):
        engine.config.automation.enabled = True
        await orchestrator.initialize()
        assert scheduler.names == ["automation_cycle", "diagnostics", "saturation"]
        assert scheduler.interval("automation_cycle") == 30
        assert scheduler.interval("saturation") == 30
        assert orchestrator.state.automation_active is True
        assert orchestrator.check_counts["automation"] == 1

    async def test_dependency_suite_registered(self, config, sampler, scheduler, clock):
        config.errors.dependencies = {"db": "http://db.local/health"}
        engine = Engine(config, sinks=[], sampler=sampler, scheduler=scheduler, clock=clock)
        engine.errors._client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        await engine.orchestrator.initialize()
        assert [s.name for s in engine.diagnostics.suites] == ["core_system", "external_dependencies"]
        assert engine.diagnostics.failing_critical() == []
        await engine.errors.close()

    async def test_failure_marks_system_critical(self, orchestrator, monkeypatch):
        monkeypatch.setattr(orchestrator.diagnostics, "run", AsyncMock(side_effect=RuntimeError("suite crashed")))
        with pytest.raises(RuntimeError):
            await orchestrator.initialize()
        assert orchestrator.state.system_health == SystemHealth.CRITICAL
        assert orchestrator.state.critical_issues == 1
        assert orchestrator.state.initialized is False


class TestCycle:
    async def test_quiet_cycle_is_healthy(self, engine, orchestrator):
        await orchestrator.initialize()
        assert await orchestrator.run_cycle() is True
        state = orchestrator.get_state()
        assert state.system_health == SystemHealth.HEALTHY
        assert state.performance_score == 100
        assert state.error_rate == 0.0
        assert dispatched(engine) == []
        for kind in ("log_scan", "performance_analysis", "error_recovery", "pattern_analysis",
                     "workflow_rules", "automation"):
            assert orchestrator.check_counts[kind] == 1

    async def test_steps_follow_their_frequency(self, engine, orchestrator, clock):
        await orchestrator.initialize()
        await orchestrator.run_cycle()
        engine.logger.error("Payment declined", {"operation": "checkout"})

        clock.advance(30)
        await orchestrator.run_cycle()
        assert engine.errors.errors_tracked == 0
        assert orchestrator.check_counts["log_scan"] == 1
        assert orchestrator.check_counts["automation"] == 2

        clock.advance(30)
        await orchestrator.run_cycle()
        assert engine.errors.errors_tracked == 1
        assert orchestrator.check_counts["log_scan"] == 2
        assert orchestrator.check_counts["performance_analysis"] == 1

    async def test_internal_entries_not_scanned(self, engine, orchestrator):
        await orchestrator.initialize()
        engine.logger.error("Engine hiccup", {"internal": True})
        await orchestrator.run_cycle()
        assert engine.errors.errors_tracked == 0
        assert engine.analyzer.entries_analyzed == 0

    async def test_skips_when_too_many_cycles_running(self, orchestrator):
        orchestrator.running_cycles = orchestrator.config.max_concurrent_checks
        assert await orchestrator.run_cycle() is False
        assert orchestrator.cycles_skipped == 1
        assert "automation" not in orchestrator.check_counts

    async def test_overlapping_tick_is_skipped(self, engine, orchestrator):
        engine.config.automation.max_concurrent_checks = 1
        entered = asyncio.Event()
        gate = asyncio.Event()

        async def wait_for_gate():
            entered.set()
            await gate.wait()
            return True

        engine.errors.register_health_check(HealthCheck("gated", wait_for_gate, timeout=5.0))
        await orchestrator.initialize()

        first = asyncio.create_task(orchestrator.run_cycle())
        await asyncio.wait_for(entered.wait(), 5.0)
        assert orchestrator.running_cycles == 1
        assert await orchestrator.run_cycle() is False

        gate.set()
        assert await first is True
        assert orchestrator.running_cycles == 0

    async def test_cycle_failure_counted(self, engine, orchestrator, monkeypatch):
        await orchestrator.initialize()
        monkeypatch.setattr(orchestrator.performance, "get_performance_summary",
                            MagicMock(side_effect=RuntimeError("metrics store down")))
        assert await orchestrator.run_cycle() is False
        assert orchestrator.state.automation_failures == 1
        assert dispatched(engine) == []

    async def test_repeated_failures_escalate(self, engine, orchestrator, monkeypatch):
        await orchestrator.initialize()
        orchestrator.state.automation_failures = 5
        monkeypatch.setattr(orchestrator.performance, "get_performance_summary",
                            MagicMock(side_effect=RuntimeError("metrics store down")))
        await orchestrator.run_cycle()
        assert dispatched(engine) == ["Automation system failing repeatedly"]


class TestRules:
    async def test_priority_order_and_success_rate(self, orchestrator):
        order = []
        outcomes = iter([False, True])

        async def low(state):
            order.append("low")
            return next(outcomes)

        async def critical(state):
            order.append("critical")
            return True

        orchestrator.add_workflow_rule(WorkflowRule("low", "Low", lambda s: True, low, RulePriority.LOW))
        orchestrator.add_workflow_rule(WorkflowRule("crit", "Crit", lambda s: True, critical, RulePriority.CRITICAL))
        await orchestrator.initialize()
        await orchestrator.run_cycle()
        await orchestrator.run_cycle()

        assert order == ["critical", "low", "critical", "low"]
        rule = orchestrator.get_rule("low")
        assert rule.execution_count == 2
        assert rule.success_rate == 0.5
        assert orchestrator.get_rule("crit").success_rate == 1.0

    async def test_rule_exception_counts_as_failure(self, orchestrator):
        ran = []

        async def broken(state):
            raise RuntimeError("rule bug")

        async def after(state):
            ran.append(True)
            return True

        orchestrator.add_workflow_rule(WorkflowRule("broken", "Broken", lambda s: True, broken, RulePriority.HIGH))
        orchestrator.add_workflow_rule(WorkflowRule("after", "After", lambda s: True, after, RulePriority.LOW))
        await orchestrator.initialize()
        assert await orchestrator.run_cycle() is True

        rule = orchestrator.get_rule("broken")
        assert rule.execution_count == 1
        assert rule.success_rate == 0.0
        assert ran == [True]

    async def test_disabled_rule_skipped(self, orchestrator):
        action = AsyncMock(return_value=True)
        orchestrator.add_workflow_rule(WorkflowRule("r", "R", lambda s: True, action))
        assert orchestrator.set_rule_enabled("r", False) is True
        assert orchestrator.set_rule_enabled("missing", True) is False
        await orchestrator.initialize()
        await orchestrator.run_cycle()
        action.assert_not_awaited()

    def test_add_replaces_same_id(self, orchestrator):
        orchestrator.add_workflow_rule(WorkflowRule("r", "First", lambda s: True, AsyncMock()))
        orchestrator.add_workflow_rule(WorkflowRule("r", "Second", lambda s: True, AsyncMock()))
        assert [r.name for r in orchestrator.rules] == ["Second"]

    async def test_automation_failure_recovery_resets_counter(self, orchestrator):
        await orchestrator.initialize()
        orchestrator.state.automation_failures = 4
        await orchestrator.run_cycle()
        assert orchestrator.state.automation_failures == 0
        assert orchestrator.get_rule("automation_failure_recovery").execution_count == 1
        assert orchestrator.state.automation_active is False

    async def test_automation_failure_recovery_restarts_timers(self, engine, orchestrator, scheduler):
        engine.config.automation.enabled = True
        await orchestrator.initialize()
        orchestrator.stop()
        assert scheduler.names == []

        orchestrator.state.automation_failures = 4
        await orchestrator.run_cycle()
        assert orchestrator.state.automation_active is True
        assert scheduler.names == ["automation_cycle", "diagnostics", "saturation"]


class TestHealth:
    async def test_failing_critical_check_makes_system_critical(self, engine, orchestrator):
        recovery = AsyncMock(return_value=False)
        engine.healer.register_system_recovery("database", recovery)
        engine.errors.register_health_check(failing_check("database"))
        await orchestrator.initialize()
        await orchestrator.run_cycle()

        assert orchestrator.state.critical_issues == 1
        assert orchestrator.state.system_health == SystemHealth.CRITICAL
        recovery.assert_awaited_once()
        assert "System health changed to critical" in dispatched(engine)

    async def test_many_critical_issues_restart_and_escalate(self, engine, orchestrator):
        restart = AsyncMock()
        engine.healer.register_restart(restart)
        for name in ("database", "cache", "queue", "search"):
            engine.errors.register_health_check(failing_check(name))
        await orchestrator.initialize()
        await orchestrator.run_cycle()

        assert orchestrator.state.critical_issues == 4
        restart.assert_awaited_once()
        assert "Critical errors detected: 4" in dispatched(engine)

    async def test_critical_escalation_repeats_after_delay(self, engine, orchestrator, clock):
        engine.config.automation.alerting.escalation_delay = 900
        for name in ("database", "cache", "queue", "search"):
            engine.errors.register_health_check(failing_check(name))
        await orchestrator.initialize()
        await orchestrator.run_cycle()
        clock.advance(60)
        await orchestrator.run_cycle()
        assert dispatched(engine).count("Critical errors detected: 4") == 1
        assert orchestrator.get_rule("critical_error_escalation").execution_count == 2

        clock.advance(900)
        await orchestrator.run_cycle()
        assert dispatched(engine).count("Critical errors detected: 4") == 2

    async def test_healing_disabled(self, engine, orchestrator):
        engine.config.automation.auto_healing_enabled = False
        recovery = AsyncMock(return_value=True)
        engine.healer.register_system_recovery("database", recovery)
        engine.errors.register_health_check(failing_check("database"))
        await orchestrator.initialize()
        await orchestrator.run_cycle()
        recovery.assert_not_awaited()

    async def test_recovery_back_to_healthy_does_not_alert(self, engine, orchestrator, clock):
        check = AsyncMock(side_effect=[False, True])
        engine.errors.register_health_check(HealthCheck("cache", check, critical=True))
        await orchestrator.initialize()
        await orchestrator.run_cycle()
        assert orchestrator.state.system_health == SystemHealth.CRITICAL

        clock.advance(60)
        await orchestrator.run_cycle()
        assert orchestrator.state.system_health == SystemHealth.HEALTHY
        assert dispatched(engine) == ["System health changed to critical"]

    @pytest.mark.parametrize("score,error_rate,critical,health", [
        (100, 0.0, 0, SystemHealth.HEALTHY),
        (69, 0.0, 0, SystemHealth.DEGRADED),
        (100, 0.06, 0, SystemHealth.DEGRADED),
        (100, 0.0, 1, SystemHealth.CRITICAL),
    ])
    def test_compute_health(self, orchestrator, score, error_rate, critical, health):
        orchestrator.state.performance_score = score
        orchestrator.state.error_rate = error_rate
        orchestrator.state.critical_issues = critical
        assert orchestrator.compute_health() == health


class TestPatterns:
    async def test_critical_anomaly_escalated_once(self, engine, orchestrator, clock):
        await orchestrator.initialize()
        engine.logger.fatal("Database unreachable", {"operation": "orders"})
        await orchestrator.run_cycle()
        clock.advance(300)
        await orchestrator.run_cycle()
        assert dispatched(engine).count("Critical anomaly detected: Database unreachable") == 1

    async def test_monitor_alerts_recorded(self, engine, orchestrator):
        await orchestrator.initialize()
        engine.performance.thresholds.latency.p99 = 10
        engine.performance.track_latency("search", 20)
        alert = orchestrator.recent_alerts[-1]
        assert alert["source"] == "performance_monitor"
        assert alert["type"] == "latency"


class TestControl:
    async def test_update_config_reschedules(self, engine, orchestrator, scheduler):
        engine.config.automation.enabled = True
        await orchestrator.initialize()
        orchestrator.update_config(check_interval=10)
        assert scheduler.interval("automation_cycle") == 10
        assert len(scheduler.names) == 3

    async def test_disabling_stops_automation(self, engine, orchestrator, scheduler):
        engine.config.automation.enabled = True
        await orchestrator.initialize()
        orchestrator.update_config(enabled=False)
        assert scheduler.names == []
        assert orchestrator.state.automation_active is False

    def test_update_config_rejects_unknown_keys(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.update_config(bogus=1)

    async def test_saturation_timer(self, engine, orchestrator, scheduler):
        engine.config.automation.enabled = True
        await orchestrator.initialize()
        await scheduler.tick("saturation")
        assert "memory" in engine.performance.get_saturation_metrics()

    async def test_alerting_disabled(self, engine, orchestrator):
        engine.config.automation.alerting.enabled = False
        assert await orchestrator.send_alert("ignored") is False
        assert dispatched(engine) == []


class TestReporting:
    async def test_status_report(self, orchestrator, clock):
        await orchestrator.initialize()
        await orchestrator.run_cycle()
        clock.advance(125)
        report = orchestrator.generate_status_report()
        lines = report.splitlines()
        assert lines[0] == "vigil observability status report"
        for line in ("System Health: HEALTHY", "Performance Score: 100/100", "Critical Issues: 0",
                     "Uptime: 2 minutes", "Automation Status: INACTIVE", "- automation: 1 checks",
                     "Workflow Rules: 3 active", "Diagnostic Suites: 1 configured"):
            assert line in lines
        assert "Last Health Check: never" not in lines

    async def test_get_state_is_a_copy(self, orchestrator):
        snapshot = orchestrator.get_state()
        snapshot.critical_issues = 99
        assert orchestrator.state.critical_issues == 0

    async def test_metrics(self, orchestrator):
        await orchestrator.initialize()
        await orchestrator.run_cycle()
        metrics = orchestrator.get_metrics()
        assert metrics["check_counts"]["automation"] == 1
        assert metrics["cycles_skipped"] == 0
        assert "core_system" in metrics["last_results"]
        assert len(metrics["rules"]) == 3
