"""End to end: slow failing checkout requests flow through one automation cycle."""

from vigil.core.types import AlertSeverity, AlertType, SystemHealth


async def test_slow_failing_checkout_degrades_system(engine):
    alerts = []
    engine.performance.on_alert(alerts.append)
    engine.config.thresholds.latency.p99 = 2000

    for duration in (2100, 2500, 3000):
        engine.logger.error("Checkout request failed", {"operation": "checkout", "duration_ms": duration})

    await engine.start()
    assert await engine.orchestrator.run_cycle() is True

    latency = [a for a in alerts if a.type == AlertType.LATENCY]
    assert len(latency) == 1
    assert latency[0].severity == AlertSeverity.CRITICAL
    assert latency[0].metric == "checkout.p99"

    state = engine.orchestrator.get_state()
    assert state.performance_score == 50
    assert state.error_rate == 1.0
    assert state.critical_issues == 0
    assert state.system_health == SystemHealth.DEGRADED

    assert engine.errors.errors_tracked == 3
    assert engine.performance.get_error_rates()["checkout"]["rate"] == 1.0
    assert "System health changed to degraded" in [a["message"] for a in engine.dispatcher.history]
    assert engine.orchestrator.get_rule("performance_degradation").execution_count == 0

    await engine.shutdown()
