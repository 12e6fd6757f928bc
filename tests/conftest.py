"""Shared fixtures for the Vigil test suite."""

import itertools

import pytest

from vigil.config import LoggerConfig, VigilConfig
from vigil.core.scheduler import Job, ScheduleHandle, Scheduler
from vigil.monitoring.performance import ResourceSampler
from vigil.runtime import Engine
from vigil.telemetry.logger import StructuredLogger
from vigil.telemetry.sinks import CallbackSink


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeSampler(ResourceSampler):
    def __init__(self, memory: float = 0.3, connection: str = "ethernet", delay_ms: float = 0.0):
        self.memory = memory
        self.connection = connection
        self.delay_ms = delay_ms

    def memory_ratio(self) -> float:
        return self.memory

    def connection_class(self) -> str:
        return self.connection

    async def event_loop_delay(self) -> float:
        return self.delay_ms


class ManualScheduler(Scheduler):
    """Records scheduled jobs; tests fire them with ``tick``."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.jobs: dict[int, tuple[ScheduleHandle, Job]] = {}

    def schedule(self, interval, fn, name=None):
        handle = ScheduleHandle(next(self._ids), name or fn.__name__, interval)
        self.jobs[handle.id] = (handle, fn)
        return handle

    def cancel(self, handle):
        handle.cancelled = True
        self.jobs.pop(handle.id, None)

    @property
    def names(self) -> list[str]:
        return sorted(handle.name for handle, _ in self.jobs.values())

    def interval(self, name: str) -> float:
        return next(handle.interval for handle, _ in self.jobs.values() if handle.name == name)

    async def tick(self, name: str | None = None):
        for handle, fn in list(self.jobs.values()):
            if name is None or handle.name == name:
                await fn()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sampler():
    return FakeSampler()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def captured():
    """Entries delivered to the capture sink, in delivery order."""
    return []


@pytest.fixture
def logger(captured, clock):
    async def collect(entry):
        captured.append(entry)

    return StructuredLogger(LoggerConfig(console=False), sinks=[CallbackSink("capture", collect)], clock=clock)


@pytest.fixture
def config(tmp_path):
    """Automation off, no console output, health-check scratch files under tmp_path."""
    cfg = VigilConfig()
    cfg.logger.console = False
    cfg.automation.enabled = False
    cfg.errors.storage_path = tmp_path
    return cfg


@pytest.fixture
def engine(config, sampler, scheduler, clock):
    return Engine(config, sinks=[], sampler=sampler, scheduler=scheduler, clock=clock)
