"""Monitoring — golden signals, error tracking, diagnostics, healing and orchestration."""

from .alerts import AlertDispatcher, AlertFanout, AlertPayload
from .diagnostics import DiagnosticCheck, DiagnosticResult, DiagnosticRunner, DiagnosticSuite, run_suite
from .errors import (
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    ErrorTracker,
    HealthCheck,
    HealthCheckResult,
    LoggedError,
    RecoveryStrategy,
    classify_error,
)
from .healing import SelfHealer
from .orchestrator import MonitoringOrchestrator, MonitoringState, RulePriority, WorkflowRule
from .performance import PerformanceMonitor, ResourceSampler, percentile

__all__ = [
    "AlertDispatcher",
    "AlertFanout",
    "AlertPayload",
    "DiagnosticCheck",
    "DiagnosticResult",
    "DiagnosticRunner",
    "DiagnosticSuite",
    "ErrorCategory",
    "ErrorContext",
    "ErrorSeverity",
    "ErrorTracker",
    "HealthCheck",
    "HealthCheckResult",
    "LoggedError",
    "MonitoringOrchestrator",
    "MonitoringState",
    "PerformanceMonitor",
    "RecoveryStrategy",
    "ResourceSampler",
    "RulePriority",
    "SelfHealer",
    "WorkflowRule",
    "classify_error",
    "percentile",
    "run_suite",
]
