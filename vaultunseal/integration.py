"""Fail-fast harness for running checks against vault clients.

It provides a circuit breaker, health gating and a concurrency limit.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, TypeVar

from .errors import OperationTimeoutError
from .types import VaultClient

T = TypeVar("T")


@dataclass
class IntegrationConfig:
    """Timeouts, circuit breaker and concurrency settings; durations are in seconds."""

    quick_timeout: float = 2.0
    operation_timeout: float = 5.0
    max_total_time: float = 30.0
    failure_threshold: int = 3
    success_threshold: int = 2
    cooldown_period: float = 1.0
    health_check_interval: float = 0.5
    max_unhealthy_time: float = 10.0
    max_concurrency: int = 5


class IntegrationError(Exception):
    """A test, scenario or circuit breaker check failed."""


class CircuitState(Enum):
    """State of a circuit breaker."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

    def __str__(self) -> str:
        return self.value


def _call_with_timeout(func: Callable[[], T], timeout: float | None, operation: str) -> T:
    """Run ``func`` and raise OperationTimeoutError if it takes longer than ``timeout``."""
    if timeout is None:
        return func()
    outcome: dict[str, Any] = {}
    done = threading.Event()

    def target() -> None:
        try:
            outcome["value"] = func()
        except Exception as exc:
            outcome["error"] = exc
        finally:
            done.set()

    start = time.monotonic()
    threading.Thread(target=target, daemon=True, name=f"call-{operation}").start()
    if not done.wait(max(timeout, 0.0)):
        raise OperationTimeoutError(operation, timeout, time.monotonic() - start)
    if "error" in outcome:
        raise outcome["error"]
    return outcome.get("value")


class CircuitBreaker:
    """Fails fast once too many operations have failed in a row."""

    def __init__(self, name: str, config: IntegrationConfig | None = None):
        config = config if config is not None else IntegrationConfig()
        self.name = name
        self.failure_threshold = config.failure_threshold
        self.success_threshold = config.success_threshold
        self.cooldown_period = config.cooldown_period
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._last_failure_mono: float | None = None
        self._last_failure: datetime | None = None

    @property
    def state(self) -> CircuitState:
        """The current state."""
        with self._lock:
            return self._state

    def execute(self, operation: Callable[[], T]) -> T:
        """Run ``operation`` unless the circuit is open; record the outcome."""
        with self._lock:
            if self._state is CircuitState.OPEN:
                elapsed = time.monotonic() - (self._last_failure_mono or 0.0)
                if elapsed < self.cooldown_period:
                    raise IntegrationError(f"circuit breaker {self.name} is OPEN - failing fast")
                self._state = CircuitState.HALF_OPEN

        try:
            result = operation()
        except Exception as exc:
            self._record_failure()
            raise IntegrationError(f"operation failed: {exc}") from exc

        self._record_success()
        return result

    def _record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure_mono = time.monotonic()
            self._last_failure = datetime.now(timezone.utc)
            if self._failures >= self.failure_threshold:
                self._state = CircuitState.OPEN
                self._successes = 0

    def _record_success(self) -> None:
        with self._lock:
            self._successes += 1
            if self._state is CircuitState.HALF_OPEN and self._successes >= self.success_threshold:
                self._state = CircuitState.CLOSED
                self._failures = 0

    def stats(self) -> dict[str, Any]:
        """Name, state, counters and the time of the last failure."""
        with self._lock:
            return {
                "name": self.name,
                "state": str(self._state),
                "failures": self._failures,
                "successes": self._successes,
                "last_failure": self._last_failure,
            }


class HealthChecker:
    """Tracks which registered clients answer health checks."""

    def __init__(self, config: IntegrationConfig | None = None):
        self.config = config if config is not None else IntegrationConfig()
        self._lock = threading.Lock()
        self._clients: dict[str, VaultClient] = {}
        self._healthy: dict[str, bool] = {}

    def register_client(self, name: str, client: VaultClient) -> None:
        """Add a client; it counts as unhealthy until a check succeeds."""
        with self._lock:
            self._clients[name] = client
            self._healthy[name] = False

    def check_health(self) -> None:
        """Check every client; raise IntegrationError if none is healthy."""
        with self._lock:
            clients = list(self._clients.items())

        results: dict[str, bool] = {}
        for name, client in clients:
            try:
                _call_with_timeout(client.health_check, self.config.quick_timeout, f"health-{name}")
            except Exception:
                results[name] = False
            else:
                results[name] = True

        with self._lock:
            self._healthy.update(results)

        if clients and not any(results.values()):
            raise IntegrationError(f"no healthy clients found ({len(clients)} total)")

    def wait_for_healthy(self) -> None:
        """Poll until at least one client is healthy or the wait limit passes."""
        self._wait_for_healthy(None)

    def _wait_for_healthy(self, deadline: float | None) -> None:
        start = time.monotonic()
        limit = start + self.config.max_unhealthy_time
        interval = self.config.health_check_interval
        while True:
            now = time.monotonic()
            if deadline is not None and deadline <= now + interval:
                time.sleep(max(deadline - now, 0.0))
                raise OperationTimeoutError(
                    "wait-for-healthy", deadline - start, time.monotonic() - start
                )
            time.sleep(interval)
            if time.monotonic() > limit:
                raise IntegrationError(
                    "timeout waiting for healthy clients after "
                    f"{self.config.max_unhealthy_time:g}s"
                )
            try:
                self.check_health()
            except IntegrationError:
                continue
            return

    def healthy_clients(self) -> list[str]:
        """Names of the clients that passed the last check, in registration order."""
        with self._lock:
            return [name for name, healthy in self._healthy.items() if healthy]


@dataclass
class Scenario:
    """One named check with optional setup and cleanup; timeout 0 means none."""

    name: str
    execute: Callable[[], Any]
    description: str = ""
    setup: Callable[[], Any] | None = None
    cleanup: Callable[[], Any] | None = None
    expect_error: bool = False
    timeout: float = 0.0


class IntegrationRunner:
    """Runs checks behind health gating, a concurrency limit and a circuit breaker."""

    def __init__(self, config: IntegrationConfig | None = None):
        self.config = config if config is not None else IntegrationConfig()
        self.health_checker = HealthChecker(self.config)
        self.circuit_breaker = CircuitBreaker("integration-tests", self.config)
        self._slots = threading.BoundedSemaphore(max(self.config.max_concurrency, 1))

    def register_client(self, name: str, client: VaultClient) -> None:
        """Add a client whose health gates every test."""
        self.health_checker.register_client(name, client)

    def run_test(self, test_name: str, test_func: Callable[[], T]) -> T:
        """Run ``test_func`` once a client is healthy; return its result."""
        return self._run_test(test_name, test_func, None)

    def _run_test(self, test_name: str, test_func: Callable[[], T], deadline: float | None) -> T:
        total_deadline = time.monotonic() + self.config.max_total_time
        if deadline is not None:
            total_deadline = min(total_deadline, deadline)

        try:
            self.health_checker._wait_for_healthy(total_deadline)
        except Exception as exc:
            raise IntegrationError(f"test {test_name} failed - no healthy clients: {exc}") from exc

        if not self._slots.acquire(timeout=max(total_deadline - time.monotonic(), 0.0)):
            raise IntegrationError(f"test {test_name} failed - timeout acquiring concurrency slot")
        try:
            op_timeout = min(self.config.operation_timeout, total_deadline - time.monotonic())
            return self.circuit_breaker.execute(
                lambda: _call_with_timeout(test_func, op_timeout, test_name)
            )
        finally:
            self._slots.release()

    def stats(self) -> dict[str, Any]:
        """Configuration, healthy clients and circuit breaker statistics."""
        return {
            "config": self.config,
            "healthy_clients": self.health_checker.healthy_clients(),
            "circuit_breaker": self.circuit_breaker.stats(),
        }

    def run_scenarios(self, scenarios: Iterable[Scenario]) -> None:
        """Run scenarios in order, stopping at the first one that misses its expectation."""
        for scenario in scenarios:
            if self.circuit_breaker.state is CircuitState.OPEN:
                raise IntegrationError(
                    f"circuit breaker is OPEN - failing fast on scenario: {scenario.name}"
                )

            deadline = None
            if scenario.timeout > 0:
                deadline = time.monotonic() + scenario.timeout

            def remaining() -> float | None:
                return None if deadline is None else deadline - time.monotonic()

            if scenario.setup is not None:
                try:
                    _call_with_timeout(scenario.setup, remaining(), f"{scenario.name}-setup")
                except Exception as exc:
                    raise IntegrationError(
                        f"scenario {scenario.name} setup failed: {exc}"
                    ) from exc

            error: Exception | None = None
            try:
                self._run_test(scenario.name, scenario.execute, deadline)
            except Exception as exc:
                error = exc

            if scenario.cleanup is not None:
                try:
                    _call_with_timeout(scenario.cleanup, remaining(), f"{scenario.name}-cleanup")
                except Exception as exc:
                    if error is None:
                        error = IntegrationError(f"scenario {scenario.name} cleanup failed: {exc}")
                        error.__cause__ = exc

            if scenario.expect_error and error is None:
                raise IntegrationError(f"scenario {scenario.name} expected error but succeeded")
            if not scenario.expect_error and error is not None:
                raise IntegrationError(f"scenario {scenario.name} failed: {error}") from error