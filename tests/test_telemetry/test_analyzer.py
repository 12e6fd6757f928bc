"""Tests for log pattern and anomaly detection."""

import pytest

from vigil.core.types import LogEntry, LogLevel, Resource
from vigil.telemetry.analyzer import Impact, LogAnalyzer, PatternType

RESOURCE = Resource("shop", "1.0.0", "test", "python")


def entry(clock, level=LogLevel.ERROR, message="failure", **context):
    return LogEntry(clock(), level, message, context, "sess_test", RESOURCE)


@pytest.fixture
def analyzer(clock):
    return LogAnalyzer(clock)


class TestErrorBursts:
    def test_below_threshold_no_pattern(self, analyzer, clock):
        for _ in range(9):
            analyzer.analyze_log_entry(entry(clock))
        assert analyzer.get_patterns() == []

    def test_burst_detected_at_threshold(self, analyzer, clock):
        for _ in range(10):
            analyzer.analyze_log_entry(entry(clock))
        [pattern] = analyzer.get_patterns()
        assert pattern.type == PatternType.ERROR_BURST
        assert pattern.frequency == 10
        assert pattern.impact == Impact.MEDIUM

    def test_ongoing_burst_updates_in_place(self, analyzer, clock):
        for _ in range(25):
            analyzer.analyze_log_entry(entry(clock))
            clock.advance(1)
        [pattern] = analyzer.get_patterns()
        assert pattern.frequency == 25
        assert pattern.impact == Impact.HIGH

    def test_old_errors_fall_out_of_window(self, analyzer, clock):
        for _ in range(9):
            analyzer.analyze_log_entry(entry(clock))
        clock.advance(301)
        analyzer.analyze_log_entry(entry(clock))
        assert analyzer.get_patterns() == []

    def test_info_entries_ignored(self, analyzer, clock):
        for _ in range(20):
            analyzer.analyze_log_entry(entry(clock, LogLevel.INFO))
        assert analyzer.get_patterns() == []
        assert analyzer.entries_analyzed == 20


class TestDegradation:
    def feed(self, analyzer, clock, durations):
        for d in durations:
            analyzer.analyze_log_entry(entry(clock, LogLevel.INFO, "done", operation="checkout", duration_ms=d))
            clock.advance(1)

    def test_needs_more_than_ten_samples(self, analyzer, clock):
        self.feed(analyzer, clock, [100] * 5 + [1000] * 5)
        assert analyzer.get_patterns() == []

    def test_slowdown_detected(self, analyzer, clock):
        self.feed(analyzer, clock, [100] * 10 + [400] * 5)
        pattern = analyzer.patterns["perf_degradation_checkout"]
        assert pattern.type == PatternType.PERFORMANCE_DEGRADATION
        assert pattern.impact == Impact.CRITICAL
        assert pattern.details["baseline_ms"] == 100
        assert pattern.details["current_ms"] == 400
        assert pattern in analyzer.critical_findings()

    def test_mild_slowdown_is_medium(self, analyzer, clock):
        self.feed(analyzer, clock, [100] * 10 + [180] * 5)
        assert analyzer.patterns["perf_degradation_checkout"].impact == Impact.MEDIUM

    def test_steady_latency_no_pattern(self, analyzer, clock):
        self.feed(analyzer, clock, [100] * 20)
        assert analyzer.get_patterns() == []


class TestAnomalies:
    def test_fatal_is_critical_anomaly(self, analyzer, clock):
        analyzer.analyze_log_entry(entry(clock, LogLevel.FATAL, "database unreachable"))
        [anomaly] = analyzer.get_anomalies()
        assert anomaly.severity == Impact.CRITICAL
        assert anomaly in analyzer.critical_findings()

    def test_tagged_error_severity(self, analyzer, clock):
        analyzer.analyze_log_entry(entry(clock, severity="high", operation="checkout"))
        [anomaly] = analyzer.get_anomalies()
        assert anomaly.severity == Impact.HIGH
        assert anomaly.metric == "checkout"

    def test_plain_error_is_not_anomaly(self, analyzer, clock):
        analyzer.analyze_log_entry(entry(clock))
        assert analyzer.get_anomalies() == []


class TestReporting:
    def test_cleanup_expires_old_findings(self, analyzer, clock):
        analyzer.analyze_log_entry(entry(clock, LogLevel.FATAL))
        clock.advance(3601)
        analyzer.cleanup()
        assert analyzer.get_anomalies() == []

    def test_insight_report(self, analyzer, clock):
        for _ in range(10):
            analyzer.analyze_log_entry(entry(clock))
        report = analyzer.generate_insight_report()
        assert report["entries_analyzed"] == 10
        assert report["patterns"][0]["type"] == "error_burst"
        assert report["recommendations"] == ["Review error burst patterns to improve system stability"]
