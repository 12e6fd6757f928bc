"""
Circuit breaker — stops calling a dependency that keeps failing.

States:
    CLOSED    → Normal operation, calls pass through
    OPEN      → Dependency is down, fail fast
    HALF_OPEN → Probing whether the dependency recovered

One breaker guards one operation. ``CircuitBreakerRegistry`` keeps a
breaker per name for code that protects many dependencies at once.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

logger = logging.getLogger("vigil.circuit_breaker")

T = TypeVar("T")

Clock = Callable[[], float]


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Thresholds for one breaker. ``reset_timeout`` is in seconds."""

    failure_threshold: int = 5
    reset_timeout: float = 60.0
    half_open_requests: int = 3


class CircuitOpenError(Exception):
    def __init__(self, name: str, recovery_in_seconds: float):
        self.name = name
        self.recovery_in_seconds = recovery_in_seconds
        super().__init__(f"Circuit breaker OPEN for {name}. Try again in {recovery_in_seconds:.1f}s")


class CircuitBreaker:
    """Guards an async operation with the closed/open/half-open state machine."""

    def __init__(self, name: str = "default", config: CircuitBreakerConfig | None = None, clock: Clock = time.monotonic):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.half_open_successes = 0
        self.last_failure_time: float | None = None
        self.last_failure_error: str | None = None
        self.last_state_change = clock()
        self.total_calls = 0
        self.total_failures = 0
        self.total_rejections = 0
        self._probe_in_flight = False

    # ── State checks ──────────────────────────────────────────────────

    def can_execute(self) -> bool:
        if self.state == CircuitState.CLOSED:
            return True
        if self.state == CircuitState.OPEN:
            if self._elapsed_since_failure() >= self.config.reset_timeout:
                self._transition(CircuitState.HALF_OPEN)
                return True
            return False
        # Half-open admits one probe at a time.
        return not self._probe_in_flight

    def get_recovery_time(self) -> float:
        if self.state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self.config.reset_timeout - self._elapsed_since_failure())

    def _elapsed_since_failure(self) -> float:
        if self.last_failure_time is None:
            return float("inf")
        return self._clock() - self.last_failure_time

    # ── Execution ─────────────────────────────────────────────────────

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        if not self.can_execute():
            self.total_rejections += 1
            raise CircuitOpenError(self.name, self.get_recovery_time())

        probing = self.state == CircuitState.HALF_OPEN
        if probing:
            self._probe_in_flight = True
        self.total_calls += 1
        try:
            result = await operation()
        except Exception as e:
            self.record_failure(e)
            raise
        finally:
            if probing:
                self._probe_in_flight = False
        self.record_success()
        return result

    def record_success(self):
        if self.state == CircuitState.HALF_OPEN:
            self.half_open_successes += 1
            if self.half_open_successes >= self.config.half_open_requests:
                self._transition(CircuitState.CLOSED)
        elif self.state == CircuitState.CLOSED:
            self.failure_count = 0

    def record_failure(self, error: Exception):
        self.total_failures += 1
        self.last_failure_time = self._clock()
        self.last_failure_error = str(error)
        if self.state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif self.state == CircuitState.CLOSED:
            self.failure_count += 1
            if self.failure_count >= self.config.failure_threshold:
                self._transition(CircuitState.OPEN)

    def _transition(self, new: CircuitState):
        old = self.state
        self.state = new
        self.last_state_change = self._clock()
        self.half_open_successes = 0
        if new == CircuitState.CLOSED:
            self.failure_count = 0
        elif new == CircuitState.OPEN and self.last_failure_time is None:
            self.last_failure_time = self._clock()
        if new == CircuitState.OPEN:
            logger.warning(f"Circuit {self.name}: {old.value} -> {new.value} ({self.last_failure_error})")
        else:
            logger.info(f"Circuit {self.name}: {old.value} -> {new.value}")

    # ── Manual control ────────────────────────────────────────────────

    def force_open(self):
        self.last_failure_time = self._clock()
        self._transition(CircuitState.OPEN)

    def force_close(self):
        self._transition(CircuitState.CLOSED)

    def reset(self):
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.half_open_successes = 0
        self.last_failure_time = None
        self.last_failure_error = None
        self._probe_in_flight = False
        self.last_state_change = self._clock()

    def get_stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "half_open_successes": self.half_open_successes,
            "total_calls": self.total_calls,
            "total_failures": self.total_failures,
            "total_rejections": self.total_rejections,
            "last_failure_error": self.last_failure_error,
            "recovery_in_seconds": round(self.get_recovery_time(), 3),
        }


class CircuitBreakerRegistry:
    """One breaker per protected operation, created on first use."""

    def __init__(self, config: CircuitBreakerConfig | None = None, clock: Clock = time.monotonic):
        self.circuits: dict[str, CircuitBreaker] = {}
        self.default_config = config or CircuitBreakerConfig()
        self._clock = clock

    def get(self, name: str, config: CircuitBreakerConfig | None = None) -> CircuitBreaker:
        if name not in self.circuits:
            self.circuits[name] = CircuitBreaker(name, config or self.default_config, self._clock)
        return self.circuits[name]

    def __contains__(self, name: str) -> bool:
        return name in self.circuits

    async def execute(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await self.get(name).execute(operation)

    def force_open(self, name: str):
        self.get(name).force_open()

    def force_close(self, name: str):
        self.get(name).force_close()

    def reset(self, name: str):
        self.circuits.pop(name, None)

    def get_all_states(self) -> dict[str, dict[str, Any]]:
        return {name: cb.get_stats() for name, cb in self.circuits.items()}

    def get_open_circuits(self) -> list[str]:
        return [name for name, cb in self.circuits.items() if cb.state == CircuitState.OPEN]
