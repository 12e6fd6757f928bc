"""Integration tests for the FastAPI server endpoints."""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from vigil.monitoring.errors import HealthCheck
from vigil.server import create_app


@pytest.fixture
def client(engine):
    app = create_app(engine)
    with TestClient(app) as c:
        yield c


class TestLiveness:
    def test_health_endpoint(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestLifespan:
    def test_builds_engine_from_config(self, config):
        with patch("vigil.server.load_config", return_value=config):
            app = create_app()
            with TestClient(app) as c:
                assert c.get("/health").status_code == 200
                assert app.state.engine.started is True
                assert app.state.engine.config is config
            assert app.state.engine.started is False

    def test_given_engine_started_and_stopped(self, engine):
        with TestClient(create_app(engine)):
            assert engine.started is True
            assert engine.orchestrator.state.initialized is True
        assert engine.started is False


class TestStatus:
    def test_status(self, client):
        data = client.get("/api/v1/status").json()
        assert data["state"]["initialized"] is True
        assert data["state"]["system_health"] == "unknown"
        assert data["running_cycles"] == 0

    def test_report_is_plain_text(self, client):
        resp = client.get("/api/v1/status/report")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert "System Health: UNKNOWN" in resp.text

    def test_performance(self, client, engine):
        engine.performance.track_latency("checkout", 120)
        data = client.get("/api/v1/performance").json()
        assert data["latency"]["checkout"]["p50"] == 120

    def test_errors(self, client):
        data = client.get("/api/v1/errors").json()
        assert data["errors_tracked"] == 0

    def test_run_health_checks(self, client, engine):
        engine.errors.register_health_check(HealthCheck("database", AsyncMock(return_value=False), critical=True))
        data = client.post("/api/v1/health-checks/run").json()
        assert data["healthy"] is False
        assert data["checks"]["database"]["healthy"] is False
        assert data["checks"]["memory"]["healthy"] is True

    def test_diagnostics(self, client):
        data = client.get("/api/v1/diagnostics").json()
        assert [r["check"] for r in data["core_system"]["results"]] == ["logger_health", "performance_monitor_health"]


class TestAutomation:
    def test_run_cycle(self, client):
        data = client.post("/api/v1/automation/cycle").json()
        assert data["completed"] is True
        assert data["state"]["system_health"] == "healthy"

    def test_rules(self, client):
        rules = client.get("/api/v1/rules").json()["rules"]
        assert [r["id"] for r in rules] == [
            "critical_error_escalation", "performance_degradation", "automation_failure_recovery",
        ]

    def test_toggle_rule(self, client, engine):
        resp = client.post("/api/v1/rules/performance_degradation/disable")
        assert resp.json() == {"status": "disabled", "rule": "performance_degradation"}
        assert engine.orchestrator.get_rule("performance_degradation").enabled is False

        client.post("/api/v1/rules/performance_degradation/enable")
        assert engine.orchestrator.get_rule("performance_degradation").enabled is True

    def test_unknown_rule_is_404(self, client):
        assert client.post("/api/v1/rules/nope/enable").status_code == 404
        assert client.post("/api/v1/rules/nope/disable").status_code == 404


class TestCircuitEndpoints:
    def test_open_creates_circuit(self, client):
        resp = client.post("/api/v1/circuit/payments/open")
        assert resp.json() == {"status": "opened", "circuit": "payments"}
        data = client.get("/api/v1/circuits").json()
        assert data["states"]["payments"]["state"] == "open"
        assert data["open"] == ["payments"]

    def test_close_and_reset(self, client):
        client.post("/api/v1/circuit/payments/open")
        assert client.post("/api/v1/circuit/payments/close").json()["status"] == "closed"
        assert client.get("/api/v1/circuits").json()["open"] == []
        assert client.post("/api/v1/circuit/payments/reset").json()["status"] == "reset"

    def test_unknown_circuit_is_404(self, client):
        assert client.post("/api/v1/circuit/ghost/close").status_code == 404
        assert client.post("/api/v1/circuit/ghost/reset").status_code == 404


class TestDashboard:
    def test_dashboard_sections(self, client):
        data = client.get("/api/v1/dashboard").json()
        for key in ("system", "state", "metrics", "performance", "errors", "patterns", "healing",
                    "logger", "circuits", "alerts", "dispatched"):
            assert key in data
        assert data["system"]["service"] == "vigil"
        assert data["system"]["automation_enabled"] is False
