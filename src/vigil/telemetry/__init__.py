"""Telemetry — structured logging, output sinks and log analysis."""

from .analyzer import Anomaly, Impact, LogAnalyzer, LogPattern, PatternType
from .logger import BoundLogger, Span, StructuredLogger, error_fingerprint, log_fingerprint
from .sinks import BreadcrumbSink, CallbackSink, ConsoleSink, OutputSink, StoreSink

__all__ = [
    "Anomaly",
    "BoundLogger",
    "BreadcrumbSink",
    "CallbackSink",
    "ConsoleSink",
    "Impact",
    "LogAnalyzer",
    "LogPattern",
    "OutputSink",
    "PatternType",
    "Span",
    "StoreSink",
    "StructuredLogger",
    "error_fingerprint",
    "log_fingerprint",
]
