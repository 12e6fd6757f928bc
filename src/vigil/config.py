"""
Vigil configuration.

Service identity, logger settings, alert thresholds and automation options.
Reads from ~/.vigil/config.toml with environment variable overrides.

Units: latency thresholds are milliseconds; every interval, frequency,
cooldown and timeout is in seconds.
"""

from __future__ import annotations

import os
import platform
import tomllib
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

def vigil_home() -> Path:
    return Path(os.getenv("VIGIL_HOME", Path.home() / ".vigil"))


# ---------------------------------------------------------------------------
# Service identity
# ---------------------------------------------------------------------------

@dataclass
class ServiceConfig:
    """Resource descriptor stamped on every log entry."""

    name: str = "vigil"
    version: str = "0.1.0"
    environment: str = "development"
    platform: str = field(default_factory=lambda: f"python-{platform.python_version()}/{platform.system().lower()}")


# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------

@dataclass
class LoggerConfig:
    level: str = "DEBUG"
    buffer_size: int = 100
    flush_interval: float = 5.0
    recent_entries: int = 1000
    console: bool = True
    store_path: Path | None = None          # NDJSON log store; None disables
    breadcrumb_url: str | None = None       # external error-tracking endpoint
    retry_limit: int = 500                  # undelivered ERROR/FATAL entries kept per sink


# ---------------------------------------------------------------------------
# Alert thresholds, per golden signal
# ---------------------------------------------------------------------------

@dataclass
class LatencyThresholds:
    p50: float = 1000.0
    p95: float = 2000.0
    p99: float = 5000.0


@dataclass
class TrafficThresholds:
    max_rps: float = 1000.0
    min_rps: float = 0.1


@dataclass
class ErrorThresholds:
    max_error_rate: float = 0.05
    critical_error_rate: float = 0.10


@dataclass
class SaturationThresholds:
    memory: float = 0.80
    cpu: float = 0.75
    network: float = 0.70
    critical: float = 0.90


@dataclass
class AlertThresholds:
    latency: LatencyThresholds = field(default_factory=LatencyThresholds)
    traffic: TrafficThresholds = field(default_factory=TrafficThresholds)
    errors: ErrorThresholds = field(default_factory=ErrorThresholds)
    saturation: SaturationThresholds = field(default_factory=SaturationThresholds)
    alert_cooldown: float = 60.0            # 0 disables repeat suppression


# ---------------------------------------------------------------------------
# Automation
# ---------------------------------------------------------------------------

@dataclass
class AlertingConfig:
    enabled: bool = True
    webhook_url: str | None = None
    critical_threshold: int = 3
    escalation_delay: float = 900.0
    timeout: float = 10.0


@dataclass
class AutomationConfig:
    enabled: bool = True
    check_interval: float = 30.0
    max_concurrent_checks: int = 5

    # Per-step cadence inside the automation cycle
    error_scan_frequency: float = 60.0
    performance_check_frequency: float = 120.0
    health_check_frequency: float = 60.0
    log_analysis_frequency: float = 300.0
    diagnostics_frequency: float = 60.0
    saturation_sample_interval: float = 30.0

    # Self-healing
    auto_healing_enabled: bool = True
    max_auto_healing_attempts: int = 3
    healing_cooldown: float = 300.0

    # Cycle failures above this count raise an escalation alert
    failure_threshold: int = 5

    alerting: AlertingConfig = field(default_factory=AlertingConfig)


# ---------------------------------------------------------------------------
# Error tracker
# ---------------------------------------------------------------------------

@dataclass
class ErrorTrackerConfig:
    history_window: float = 3600.0
    escalation_threshold: int = 3
    health_check_timeout: float = 5.0
    critical_components: list[str] = field(default_factory=lambda: ["checkout", "orders", "database"])
    memory_limit_ratio: float = 0.9
    storage_path: Path | None = None
    # name → URL probed with an HTTP GET; each becomes a critical health check
    dependencies: dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Main config
# ---------------------------------------------------------------------------

@dataclass
class VigilConfig:
    """Top-level Vigil configuration."""

    # Server
    host: str = "127.0.0.1"
    port: int = 8086

    service: ServiceConfig = field(default_factory=ServiceConfig)
    logger: LoggerConfig = field(default_factory=LoggerConfig)
    thresholds: AlertThresholds = field(default_factory=AlertThresholds)
    automation: AutomationConfig = field(default_factory=AutomationConfig)
    errors: ErrorTrackerConfig = field(default_factory=ErrorTrackerConfig)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _coerce(current: Any, value: Any) -> Any:
    if isinstance(current, bool):
        return bool(value)
    if isinstance(current, int) and not isinstance(value, bool):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if isinstance(current, Path) or (current is None and isinstance(value, str) and value.startswith(("~", "/"))):
        return Path(value).expanduser()
    return value


def _overlay(target: Any, data: dict[str, Any]) -> None:
    """Recursively copy known keys from TOML data onto a dataclass."""
    known = {f.name for f in fields(target)}
    for key, value in data.items():
        if key not in known:
            continue
        current = getattr(target, key)
        if is_dataclass(current) and isinstance(value, dict):
            _overlay(current, value)
        else:
            setattr(target, key, _coerce(current, value))


def _apply_toml(config: VigilConfig, data: dict[str, Any]) -> None:
    """Overlay TOML data onto a VigilConfig."""
    server = data.get("server", {})
    if "host" in server:
        config.host = server["host"]
    if "port" in server:
        config.port = int(server["port"])

    for section in ("service", "logger", "thresholds", "automation", "errors"):
        if section in data:
            _overlay(getattr(config, section), data[section])


def load_config(config_path: Path | None = None) -> VigilConfig:
    """
    Build config from defaults → TOML file → environment variables.

    Precedence (highest wins):
        1. Environment variables
        2. ~/.vigil/config.toml
        3. Built-in defaults
    """
    config = VigilConfig()

    path = config_path or vigil_home() / "config.toml"
    if path.exists():
        with open(path, "rb") as f:
            toml_data = tomllib.load(f)
        _apply_toml(config, toml_data)

    # Env overrides
    if os.getenv("VIGIL_ENVIRONMENT"):
        config.service.environment = os.getenv("VIGIL_ENVIRONMENT")  # type: ignore[assignment]
    if os.getenv("VIGIL_LOG_LEVEL"):
        config.logger.level = os.getenv("VIGIL_LOG_LEVEL")  # type: ignore[assignment]
    if os.getenv("VIGIL_ALERT_WEBHOOK"):
        config.automation.alerting.webhook_url = os.getenv("VIGIL_ALERT_WEBHOOK")
    if os.getenv("VIGIL_BREADCRUMB_URL"):
        config.logger.breadcrumb_url = os.getenv("VIGIL_BREADCRUMB_URL")
    if os.getenv("VIGIL_HOST"):
        config.host = os.getenv("VIGIL_HOST")  # type: ignore[assignment]
    if os.getenv("VIGIL_PORT"):
        config.port = int(os.getenv("VIGIL_PORT"))  # type: ignore[arg-type]

    return config
