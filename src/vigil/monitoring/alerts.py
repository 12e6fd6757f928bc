"""
Alert plumbing.

``AlertFanout`` delivers AlertEvents to registered callbacks with repeat
suppression; both monitors use one. ``AlertDispatcher`` pushes
orchestrator alerts outward to a chat-style webhook.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import BaseModel, Field

from vigil.config import AlertingConfig
from vigil.core.types import AlertCallback, AlertEvent, AlertSeverity, AlertType, iso
from vigil.telemetry.logger import BoundLogger, StructuredLogger

logger = logging.getLogger("vigil.alerts")


# ---------------------------------------------------------------------------
# In-process fan-out
# ---------------------------------------------------------------------------

class AlertFanout:
    """Callback registry; identical alerts inside the cooldown are dropped."""

    def __init__(self, cooldown: Callable[[], float] | float = 60.0, clock: Callable[[], float] = time.time):
        self._cooldown = cooldown
        self._clock = clock
        self._callbacks: list[AlertCallback] = []
        self._last: dict[tuple[AlertType, str, AlertSeverity], float] = {}
        self.sent = 0
        self.suppressed = 0

    @property
    def cooldown(self) -> float:
        return self._cooldown() if callable(self._cooldown) else self._cooldown

    def subscribe(self, callback: AlertCallback):
        self._callbacks.append(callback)

    def should_send(self, alert: AlertEvent) -> bool:
        last = self._last.get(alert.key)
        cooldown = self.cooldown
        return not (cooldown > 0 and last is not None and alert.timestamp - last < cooldown)

    def publish(self, alert: AlertEvent) -> bool:
        """Deliver ``alert`` unless it repeats one sent within the cooldown."""
        if not self.should_send(alert):
            self.suppressed += 1
            return False
        self._last[alert.key] = alert.timestamp
        self.sent += 1
        for callback in self._callbacks:
            try:
                callback(alert)
            except Exception as e:
                logger.error(f"Alert callback failed for {alert.metric}: {e}")
        return True

    def reset(self):
        self._last.clear()


# ---------------------------------------------------------------------------
# Webhook payload
# ---------------------------------------------------------------------------

class AlertField(BaseModel):
    title: str
    value: str
    short: bool = True


class AlertAttachment(BaseModel):
    color: str = "danger"
    fields: list[AlertField] = Field(default_factory=list)


class AlertPayload(BaseModel):
    text: str
    attachments: list[AlertAttachment] = Field(default_factory=list)

    @classmethod
    def build(cls, message: str, context: dict[str, Any] | None = None, color: str = "danger") -> AlertPayload:
        fields = [AlertField(title=str(k), value=str(v)) for k, v in (context or {}).items()]
        return cls(text=f"[vigil] {message}", attachments=[AlertAttachment(color=color, fields=fields)])


_COLORS = {"critical": "danger", "warning": "warning", "info": "good"}


class AlertDispatcher:
    """Logs every alert and posts it to the configured webhook."""

    MAX_HISTORY = 100

    def __init__(self, config: AlertingConfig | None = None, log: StructuredLogger | BoundLogger | None = None,
                 clock: Callable[[], float] = time.time):
        self.config = config or AlertingConfig()
        self.log = (log or StructuredLogger(sinks=[])).bind(component="alerts", internal=True)
        self._clock = clock
        self._client: httpx.AsyncClient | None = None
        self.history: deque[dict[str, Any]] = deque(maxlen=self.MAX_HISTORY)
        self.delivery_failures = 0

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout))
        return self._client

    async def send(self, message: str, context: dict[str, Any] | None = None, severity: str = "critical") -> bool:
        """Record and deliver an alert. Returns True when the webhook accepted it."""
        context = context or {}
        self.history.append({"message": message, "severity": severity, "context": context,
                             "timestamp": iso(self._clock())})
        log_call = self.log.error if severity == "critical" else self.log.warn
        log_call(f"Alert: {message}", {"action": "alert_dispatch", "severity": severity, "details": context})

        if not self.config.enabled or not self.config.webhook_url:
            return False

        payload = AlertPayload.build(message, context, _COLORS.get(severity, "danger"))
        try:
            resp = await self.client.post(self.config.webhook_url, json=payload.model_dump())
            resp.raise_for_status()
            return True
        except httpx.HTTPError as e:
            self.delivery_failures += 1
            logger.warning(f"Alert webhook delivery failed: {e}")
            return False

    def recent(self, limit: int = 20) -> list[dict[str, Any]]:
        return list(self.history)[-limit:]

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None
