"""
Engine wiring and process lifecycle.

``Engine`` builds every component from one ``VigilConfig`` and passes the
references between them explicitly. Most processes want exactly one
engine; ``init()`` / ``get_engine()`` / ``shutdown()`` manage it without
any import-time side effects.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from functools import partial
from typing import Any

from vigil.config import VigilConfig
from vigil.core.scheduler import AsyncioScheduler, Scheduler
from vigil.monitoring.alerts import AlertDispatcher
from vigil.monitoring.diagnostics import DiagnosticRunner
from vigil.monitoring.errors import ErrorTracker
from vigil.monitoring.healing import SelfHealer
from vigil.monitoring.orchestrator import MonitoringOrchestrator
from vigil.monitoring.performance import PerformanceMonitor, ResourceSampler
from vigil.resilience.circuit_breaker import CircuitBreakerRegistry
from vigil.telemetry.analyzer import LogAnalyzer
from vigil.telemetry.logger import StructuredLogger
from vigil.telemetry.sinks import OutputSink

logger = logging.getLogger("vigil.runtime")


class Engine:
    """Every Vigil component, constructed once and wired together."""

    def __init__(
        self,
        config: VigilConfig | None = None,
        *,
        sinks: list[OutputSink] | None = None,
        sampler: ResourceSampler | None = None,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = time.time,
    ):
        config = config or VigilConfig()
        self.config = config
        self.scheduler = scheduler or AsyncioScheduler()
        self.logger = StructuredLogger(config.logger, config.service, sinks, clock)
        self.performance = PerformanceMonitor(config.thresholds, self.logger, sampler, clock)
        self.errors = ErrorTracker(
            config.errors, self.logger, self.performance, sampler,
            performance_score=lambda: self.orchestrator.state.performance_score,
            clock=clock, alert_cooldown=config.thresholds.alert_cooldown,
        )
        self.analyzer = LogAnalyzer(clock)
        self.healer = SelfHealer(config.automation, self.logger, clock)
        self.dispatcher = AlertDispatcher(config.automation.alerting, self.logger, clock)
        self.diagnostics = DiagnosticRunner(self.logger, clock)
        self.circuits = CircuitBreakerRegistry()
        self.orchestrator = MonitoringOrchestrator(
            config.automation, self.logger, self.performance, self.errors,
            analyzer=self.analyzer, healer=self.healer, dispatcher=self.dispatcher,
            diagnostics=self.diagnostics, scheduler=self.scheduler, clock=clock,
        )
        self.started = False

        self.healer.register_cleanup(self.analyzer.cleanup)
        # Dropping the probe client forces fresh connections on the next check.
        self.healer.register_restart(self.errors.close)
        for name in config.errors.dependencies:
            self.healer.register_system_recovery(name, partial(self.errors.recheck, name))

    async def start(self):
        if self.started:
            return
        self.logger.start(self.scheduler)
        await self.orchestrator.initialize()
        self.started = True
        logger.info(f"Vigil engine started for {self.config.service.name} ({self.config.service.environment})")

    async def shutdown(self):
        self.orchestrator.stop()
        await self.scheduler.shutdown()
        await self.errors.close()
        await self.dispatcher.close()
        await self.logger.close()
        self.started = False
        logger.info("Vigil engine stopped")

    def dashboard(self) -> dict[str, Any]:
        return {
            "system": {
                "service": self.config.service.name,
                "version": self.config.service.version,
                "environment": self.config.service.environment,
                "automation_enabled": self.config.automation.enabled,
                "auto_healing_enabled": self.config.automation.auto_healing_enabled,
            },
            "state": self.orchestrator.get_state().to_dict(),
            "metrics": self.orchestrator.get_metrics(),
            "performance": self.performance.get_performance_summary(),
            "errors": self.errors.get_summary(),
            "patterns": self.analyzer.generate_insight_report(),
            "healing": self.healer.get_stats(),
            "logger": self.logger.get_stats(),
            "circuits": self.circuits.get_all_states(),
            "alerts": list(self.orchestrator.recent_alerts)[-20:],
            "dispatched": self.dispatcher.recent(),
        }


# ---------------------------------------------------------------------------
# Process-scoped engine
# ---------------------------------------------------------------------------

_engine: Engine | None = None


async def init(config: VigilConfig | None = None, **kwargs: Any) -> Engine:
    """Build and start the process engine. Calling it again returns the running one."""
    global _engine
    if _engine is None:
        engine = Engine(config, **kwargs)
        await engine.start()
        _engine = engine
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Vigil engine not initialized; call vigil.runtime.init() first")
    return _engine


async def shutdown():
    global _engine
    if _engine is None:
        return
    engine, _engine = _engine, None
    await engine.shutdown()
