"""
Self-healing actions run by the orchestrator.

Three kinds of action, each rate-limited to ``max_auto_healing_attempts``
inside a rolling ``healing_cooldown``:

    cleanup   garbage collection, then every registered cleanup hook
    restart   every registered restart hook (drop clients, reopen pools...)
    recover   the recovery registered for one named system
"""

from __future__ import annotations

import gc
import inspect
import logging
import time
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from typing import Any

from vigil.config import AutomationConfig
from vigil.telemetry.logger import BoundLogger, StructuredLogger

logger = logging.getLogger("vigil.healing")

Hook = Callable[[], Any]
Recovery = Callable[[], Awaitable[bool] | bool]


async def _call(fn: Callable[[], Any]) -> Any:
    result = fn()
    if inspect.isawaitable(result):
        result = await result
    return result


class SelfHealer:
    """Runs cleanup, restart and per-system recovery actions."""

    def __init__(self, config: AutomationConfig | None = None, log: StructuredLogger | BoundLogger | None = None,
                 clock: Callable[[], float] = time.time):
        self.config = config or AutomationConfig()
        self.log = (log or StructuredLogger(sinks=[])).bind(component="self_healer", internal=True)
        self._clock = clock
        self._cleanup_hooks: list[Hook] = []
        self._restart_hooks: list[Hook] = []
        self._recoveries: dict[str, Recovery] = {"memory": self.perform_cleanup}
        self._attempts: dict[str, deque[float]] = defaultdict(deque)
        self.actions_run: dict[str, int] = defaultdict(int)
        self.actions_throttled = 0

    # ── Registration ──────────────────────────────────────────────────

    def register_cleanup(self, hook: Hook):
        self._cleanup_hooks.append(hook)

    def register_restart(self, hook: Hook):
        self._restart_hooks.append(hook)

    def register_system_recovery(self, system: str, recovery: Recovery):
        self._recoveries[system] = recovery

    @property
    def systems(self) -> list[str]:
        return list(self._recoveries)

    # ── Attempt budget ────────────────────────────────────────────────

    def _allow(self, action: str) -> bool:
        now = self._clock()
        attempts = self._attempts[action]
        cutoff = now - self.config.healing_cooldown
        while attempts and attempts[0] <= cutoff:
            attempts.popleft()
        if len(attempts) >= self.config.max_auto_healing_attempts:
            self.actions_throttled += 1
            self.log.warn(f"Healing action throttled: {action}", {
                "action": "self_healing_throttled", "healing_action": action, "attempts": len(attempts),
                "cooldown": self.config.healing_cooldown,
            })
            return False
        attempts.append(now)
        self.actions_run[action] += 1
        return True

    def attempts(self, action: str) -> int:
        return len(self._attempts.get(action, ()))

    # ── Actions ───────────────────────────────────────────────────────

    async def _run_hooks(self, kind: str, hooks: list[Hook]) -> bool:
        ok = True
        for hook in hooks:
            try:
                await _call(hook)
            except Exception as e:
                ok = False
                self.log.error(f"{kind.capitalize()} hook failed", {
                    "action": f"self_healing_{kind}_hook_error", "hook": getattr(hook, "__name__", repr(hook)),
                }, error=e)
        return ok

    async def perform_cleanup(self) -> bool:
        if not self._allow("cleanup"):
            return False
        collected = gc.collect()
        ok = await self._run_hooks("cleanup", self._cleanup_hooks)
        self.log.info("Resource cleanup completed", {
            "action": "self_healing_memory_cleanup", "collected": collected, "hooks": len(self._cleanup_hooks),
        })
        return ok

    async def restart_services(self) -> bool:
        if not self._allow("restart"):
            return False
        self.log.info("Restarting critical services", {
            "action": "critical_services_restart", "hooks": len(self._restart_hooks),
        })
        return await self._run_hooks("restart", self._restart_hooks)

    async def recover_system(self, system: str) -> bool:
        recovery = self._recoveries.get(system)
        if recovery is None:
            self.log.debug(f"No recovery registered for {system}", {"action": "system_recovery_unknown",
                                                                    "system": system})
            return False
        if not self._allow(f"recover:{system}"):
            return False

        self.log.info("Attempting system recovery", {"action": "system_recovery_attempt", "system": system})
        try:
            recovered = bool(await _call(recovery))
        except Exception as e:
            self.log.error("System recovery failed", {"action": "system_recovery_failed", "system": system}, error=e)
            return False
        if not recovered:
            logger.info(f"Recovery for {system} did not succeed")
        return recovered

    def get_stats(self) -> dict[str, Any]:
        return {
            "actions_run": dict(self.actions_run),
            "actions_throttled": self.actions_throttled,
            "systems": self.systems,
            "cleanup_hooks": len(self._cleanup_hooks),
            "restart_hooks": len(self._restart_hooks),
        }
