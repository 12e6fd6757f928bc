"""Tests for alert fan-out and webhook dispatch."""

import json

import httpx
import pytest

from vigil.config import AlertingConfig
from vigil.core.types import AlertEvent, AlertSeverity, AlertType
from vigil.monitoring.alerts import AlertDispatcher, AlertFanout, AlertPayload


def latency_alert(ts, severity=AlertSeverity.CRITICAL):
    return AlertEvent(AlertType.LATENCY, severity, "checkout.p99", 2100, 2000, timestamp=ts)


class TestAlertFanout:
    def test_repeat_inside_cooldown_suppressed(self):
        received = []
        fanout = AlertFanout(cooldown=60)
        fanout.subscribe(received.append)
        assert fanout.publish(latency_alert(0)) is True
        assert fanout.publish(latency_alert(30)) is False
        assert fanout.publish(latency_alert(60)) is True
        assert len(received) == 2
        assert (fanout.sent, fanout.suppressed) == (2, 1)

    def test_different_severity_is_a_different_alert(self):
        fanout = AlertFanout(cooldown=60)
        assert fanout.publish(latency_alert(0)) is True
        assert fanout.publish(latency_alert(1, AlertSeverity.WARNING)) is True

    def test_cooldown_read_live(self):
        cooldown = {"value": 60.0}
        fanout = AlertFanout(cooldown=lambda: cooldown["value"])
        fanout.publish(latency_alert(0))
        cooldown["value"] = 0
        assert fanout.publish(latency_alert(1)) is True

    def test_reset_forgets_history(self):
        fanout = AlertFanout(cooldown=60)
        fanout.publish(latency_alert(0))
        fanout.reset()
        assert fanout.publish(latency_alert(1)) is True


class TestAlertPayload:
    def test_build(self):
        payload = AlertPayload.build("System health changed to critical", {"critical_issues": 2}, "warning")
        data = payload.model_dump()
        assert data["text"] == "[vigil] System health changed to critical"
        assert data["attachments"][0]["color"] == "warning"
        assert data["attachments"][0]["fields"] == [{"title": "critical_issues", "value": "2", "short": True}]


class TestAlertDispatcher:
    @pytest.fixture
    def requests(self):
        return []

    def dispatcher(self, logger, clock, requests, status=200, webhook="https://hooks.example.com/vigil"):
        def handler(request):
            requests.append(request)
            return httpx.Response(status)

        d = AlertDispatcher(AlertingConfig(webhook_url=webhook), logger, clock)
        d._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return d

    async def test_posts_to_webhook(self, logger, clock, requests):
        d = self.dispatcher(logger, clock, requests)
        assert await d.send("Critical errors detected: 4", {"error_count": 4}) is True
        [request] = requests
        body = json.loads(request.content)
        assert body["text"] == "[vigil] Critical errors detected: 4"
        assert body["attachments"][0]["color"] == "danger"
        assert d.history[-1]["message"] == "Critical errors detected: 4"
        await d.close()

    async def test_without_webhook_only_records(self, logger, clock, requests):
        d = self.dispatcher(logger, clock, requests, webhook=None)
        assert await d.send("Automation system failing repeatedly") is False
        assert requests == []
        assert d.recent() == [{"message": "Automation system failing repeatedly", "severity": "critical",
                               "context": {}, "timestamp": d.history[0]["timestamp"]}]

    async def test_delivery_failure_counted(self, logger, clock, requests):
        d = self.dispatcher(logger, clock, requests, status=500)
        assert await d.send("System health changed to degraded", severity="warning") is False
        assert d.delivery_failures == 1
        await d.close()

    async def test_alert_logged_as_internal_entry(self, logger, clock, requests):
        d = self.dispatcher(logger, clock, requests, webhook=None)
        await d.send("Disk nearly full", severity="warning")
        [entry] = logger.drain_recent_entries()
        assert entry.message == "Alert: Disk nearly full"
        assert entry.is_internal
