"""
Vigil API server — FastAPI operational surface over a running engine.

Health and status:
    GET  /health                        Liveness probe
    GET  /api/v1/status                 Monitoring state snapshot
    GET  /api/v1/status/report          Plain-text status report
    GET  /api/v1/performance            Golden-signal summary
    GET  /api/v1/errors                 Error tracker summary
    POST /api/v1/health-checks/run      Run every health check now
    GET  /api/v1/diagnostics            Last diagnostic results

Automation:
    POST /api/v1/automation/cycle       Run one automation cycle now
    GET  /api/v1/rules                  Workflow rules
    POST /api/v1/rules/{id}/enable      Enable a rule
    POST /api/v1/rules/{id}/disable     Disable a rule

Circuit breaker endpoints:
    GET  /api/v1/circuits               All circuit states
    POST /api/v1/circuit/{name}/open    Force circuit open
    POST /api/v1/circuit/{name}/close   Force circuit closed
    POST /api/v1/circuit/{name}/reset   Reset circuit

Observability:
    GET  /api/v1/dashboard              Full system dashboard
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from vigil import __version__
from vigil.config import load_config
from vigil.runtime import Engine

logger = logging.getLogger("vigil.server")


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(engine: Engine | None = None) -> FastAPI:
    """Build the app. Without an engine, one is built from ``load_config()`` at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        current = engine
        if current is None:
            config = load_config()
            logger.info(f"Vigil starting — environment: {config.service.environment}")
            current = Engine(config)
        app.state.engine = current
        await current.start()
        logger.info(f"Vigil ready on {current.config.host}:{current.config.port}")
        yield
        await current.shutdown()

    app = FastAPI(
        title="Vigil",
        version=__version__,
        description="Observability and resilience engine",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"], allow_methods=["*"], allow_headers=["*"],
    )

    def _engine() -> Engine:
        return app.state.engine

    # ==================================================================
    # Health and status
    # ==================================================================

    @app.get("/health")
    async def liveness():
        return {"status": "ok"}

    @app.get("/api/v1/status")
    async def status():
        orchestrator = _engine().orchestrator
        return {
            "state": orchestrator.get_state().to_dict(),
            "running_cycles": orchestrator.running_cycles,
            "uptime_seconds": round(orchestrator.uptime, 3),
        }

    @app.get("/api/v1/status/report", response_class=PlainTextResponse)
    async def status_report():
        return _engine().orchestrator.generate_status_report()

    @app.get("/api/v1/performance")
    async def performance():
        return _engine().performance.get_performance_summary()

    @app.get("/api/v1/errors")
    async def errors():
        return _engine().errors.get_summary()

    @app.post("/api/v1/health-checks/run")
    async def run_health_checks():
        results = await _engine().errors.run_health_checks()
        return {
            "healthy": all(r.healthy for r in results.values()),
            "checks": {name: r.to_dict() for name, r in results.items()},
        }

    @app.get("/api/v1/diagnostics")
    async def diagnostics():
        return _engine().diagnostics.to_dict()

    # ==================================================================
    # Automation
    # ==================================================================

    @app.post("/api/v1/automation/cycle")
    async def run_cycle():
        orchestrator = _engine().orchestrator
        completed = await orchestrator.run_cycle()
        return {"completed": completed, "state": orchestrator.get_state().to_dict()}

    @app.get("/api/v1/rules")
    async def rules():
        return {"rules": [r.to_dict() for r in _engine().orchestrator.rules]}

    @app.post("/api/v1/rules/{rule_id}/enable")
    async def enable_rule(rule_id: str):
        if not _engine().orchestrator.set_rule_enabled(rule_id, True):
            raise HTTPException(404, f"Workflow rule '{rule_id}' not found")
        return {"status": "enabled", "rule": rule_id}

    @app.post("/api/v1/rules/{rule_id}/disable")
    async def disable_rule(rule_id: str):
        if not _engine().orchestrator.set_rule_enabled(rule_id, False):
            raise HTTPException(404, f"Workflow rule '{rule_id}' not found")
        return {"status": "disabled", "rule": rule_id}

    # ==================================================================
    # Circuit breaker control
    # ==================================================================

    @app.get("/api/v1/circuits")
    async def circuits():
        registry = _engine().circuits
        return {"states": registry.get_all_states(), "open": registry.get_open_circuits()}

    @app.post("/api/v1/circuit/{name}/open")
    async def force_circuit_open(name: str):
        # Opening an unknown circuit creates it.
        _engine().circuits.force_open(name)
        return {"status": "opened", "circuit": name}

    @app.post("/api/v1/circuit/{name}/close")
    async def force_circuit_close(name: str):
        registry = _engine().circuits
        if name not in registry:
            raise HTTPException(404, f"Circuit '{name}' not found")
        registry.force_close(name)
        return {"status": "closed", "circuit": name}

    @app.post("/api/v1/circuit/{name}/reset")
    async def reset_circuit(name: str):
        registry = _engine().circuits
        if name not in registry:
            raise HTTPException(404, f"Circuit '{name}' not found")
        registry.reset(name)
        return {"status": "reset", "circuit": name}

    # ==================================================================
    # Observability
    # ==================================================================

    @app.get("/api/v1/dashboard")
    async def dashboard():
        return _engine().dashboard()

    return app
