"""Tests for self-healing actions and their attempt budget."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from vigil.config import AutomationConfig
from vigil.monitoring.healing import SelfHealer


@pytest.fixture
def healer(logger, clock):
    return SelfHealer(AutomationConfig(max_auto_healing_attempts=2, healing_cooldown=300), logger, clock)


class TestCleanup:
    async def test_runs_sync_and_async_hooks(self, healer):
        sync_hook = MagicMock()
        async_hook = AsyncMock()
        healer.register_cleanup(sync_hook)
        healer.register_cleanup(async_hook)
        assert await healer.perform_cleanup() is True
        sync_hook.assert_called_once()
        async_hook.assert_awaited_once()

    async def test_failing_hook_reports_failure_but_others_run(self, healer):
        after = MagicMock()
        healer.register_cleanup(MagicMock(side_effect=RuntimeError("cache locked")))
        healer.register_cleanup(after)
        assert await healer.perform_cleanup() is False
        after.assert_called_once()

    async def test_throttled_after_max_attempts(self, healer, clock):
        assert await healer.perform_cleanup() is True
        assert await healer.perform_cleanup() is True
        assert await healer.perform_cleanup() is False
        assert healer.actions_throttled == 1
        assert healer.attempts("cleanup") == 2

        clock.advance(300)
        assert await healer.perform_cleanup() is True


class TestRestart:
    async def test_runs_restart_hooks(self, healer):
        hook = AsyncMock()
        healer.register_restart(hook)
        assert await healer.restart_services() is True
        hook.assert_awaited_once()


class TestRecovery:
    async def test_unknown_system(self, healer):
        assert await healer.recover_system("mainframe") is False
        assert healer.attempts("recover:mainframe") == 0

    async def test_registered_recovery(self, healer):
        recovery = AsyncMock(return_value=True)
        healer.register_system_recovery("database", recovery)
        assert await healer.recover_system("database") is True
        recovery.assert_awaited_once()

    async def test_sync_recovery(self, healer):
        healer.register_system_recovery("cache", lambda: False)
        assert await healer.recover_system("cache") is False

    async def test_recovery_exception_is_failure(self, healer):
        healer.register_system_recovery("queue", AsyncMock(side_effect=ConnectionError("broker down")))
        assert await healer.recover_system("queue") is False

    async def test_memory_recovery_is_cleanup(self, healer):
        assert "memory" in healer.systems
        assert await healer.recover_system("memory") is True
        assert healer.attempts("cleanup") == 1

    async def test_budget_is_per_system(self, healer):
        healer.register_system_recovery("a", AsyncMock(return_value=False))
        healer.register_system_recovery("b", AsyncMock(return_value=True))
        for _ in range(3):
            await healer.recover_system("a")
        assert await healer.recover_system("b") is True

    def test_stats(self, healer):
        healer.register_cleanup(MagicMock())
        stats = healer.get_stats()
        assert stats["cleanup_hooks"] == 1
        assert stats["restart_hooks"] == 0
        assert stats["systems"] == ["memory"]
