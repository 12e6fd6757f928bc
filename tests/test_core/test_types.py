"""Tests for core types — level parsing, entry properties, serialization."""

import pytest

from vigil.core.types import (
    AlertEvent,
    AlertSeverity,
    AlertType,
    LogEntry,
    LogLevel,
    Resource,
    iso,
)

RESOURCE = Resource("checkout-api", "1.2.0", "production", "python-3.12/linux")


def entry(level=LogLevel.INFO, **context):
    return LogEntry(
        timestamp=1_700_000_000.0,
        level=level,
        message="Order placed",
        context=context,
        session_id="session_1",
        resource=RESOURCE,
    )


class TestLogLevel:
    @pytest.mark.parametrize("raw,level", [
        ("debug", LogLevel.DEBUG),
        (" Info ", LogLevel.INFO),
        ("warning", LogLevel.WARN),
        ("WARN", LogLevel.WARN),
        ("critical", LogLevel.FATAL),
        (LogLevel.ERROR, LogLevel.ERROR),
    ])
    def test_parse(self, raw, level):
        assert LogLevel.parse(raw) == level

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValueError):
            LogLevel.parse("verbose")

    def test_rank_orders_levels(self):
        ranks = [level.rank for level in (LogLevel.DEBUG, LogLevel.INFO, LogLevel.WARN, LogLevel.ERROR, LogLevel.FATAL)]
        assert ranks == [0, 1, 2, 3, 4]


class TestLogEntry:
    def test_error_levels(self):
        assert entry(LogLevel.ERROR).is_error
        assert entry(LogLevel.FATAL).is_error
        assert not entry(LogLevel.WARN).is_error

    def test_internal_requires_true(self):
        assert entry(internal=True).is_internal
        assert not entry(internal="yes").is_internal
        assert not entry().is_internal

    def test_duration_must_be_numeric(self):
        assert entry(duration_ms=12).duration_ms == 12.0
        assert entry(duration_ms="12").duration_ms is None
        assert entry(duration_ms=True).duration_ms is None

    def test_operation_falls_back_to_action(self):
        assert entry(operation="checkout", action="submit").operation == "checkout"
        assert entry(action="submit").operation == "submit"
        assert entry(operation="").operation is None

    def test_to_dict(self):
        d = entry(LogLevel.WARN, cart_size=3).to_dict()
        assert d["level"] == "WARN"
        assert d["timestamp"] == iso(1_700_000_000.0)
        assert d["timestamp"].startswith("2023-11-14T22:13:20")
        assert d["context"] == {"cart_size": 3}
        assert d["resource"]["service_name"] == "checkout-api"
        assert d["trace_id"] is None


class TestAlertEvent:
    def test_key_ignores_value(self):
        a = AlertEvent(AlertType.LATENCY, AlertSeverity.CRITICAL, "checkout.p99", 2100, 2000)
        b = AlertEvent(AlertType.LATENCY, AlertSeverity.CRITICAL, "checkout.p99", 3000, 2000)
        c = AlertEvent(AlertType.LATENCY, AlertSeverity.WARNING, "checkout.p99", 3000, 2000)
        assert a.key == b.key
        assert a.key != c.key

    def test_to_dict(self):
        alert = AlertEvent(AlertType.ERROR_RATE, AlertSeverity.WARNING, "cart.error_rate", 0.07, 0.05,
                           message="High error rate", timestamp=1_700_000_000.0)
        d = alert.to_dict()
        assert d["type"] == "error_rate"
        assert d["severity"] == "warning"
        assert d["message"] == "High error rate"
        assert d["context"] == {}
