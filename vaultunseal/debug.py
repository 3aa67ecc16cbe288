"""Structured event logging and reporting around integration runs."""

from __future__ import annotations

import json
import os
import sys
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Callable, Iterable, Mapping, TextIO, TypeVar

from .integration import (
    CircuitState,
    IntegrationConfig,
    IntegrationError,
    IntegrationRunner,
    Scenario,
    _call_with_timeout,
)

T = TypeVar("T")

LOG_PATH_ENV = "INTEGRATION_DEBUG_LOG"
LEVEL_ENV = "INTEGRATION_DEBUG"


class DebugLevel(IntEnum):
    """Verbosity of debug output."""

    QUIET = 0
    BASIC = 1
    VERBOSE = 2
    TRACE = 3

    def __str__(self) -> str:
        return self.name


def _clock(moment: datetime) -> str:
    return moment.strftime("%H:%M:%S.%f")[:-3]


def _format_seconds(value: float) -> str:
    return f"{value:g}s"


def _to_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


@dataclass
class DebugEvent:
    """One recorded event; duration is in seconds."""

    timestamp: datetime
    level: str
    event: str
    test_name: str = ""
    duration: float = 0.0
    error: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    client_stats: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form; empty optional fields are left out."""
        data: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "event": self.event,
        }
        if self.test_name:
            data["test_name"] = self.test_name
        if self.duration:
            data["duration"] = self.duration
        if self.error:
            data["error"] = self.error
        if self.metadata:
            data["metadata"] = self.metadata
        if self.client_stats:
            data["client_stats"] = self.client_stats
        return data


class DebugLogger:
    """Records events at or below its level, echoing and appending them as configured."""

    def __init__(
        self,
        level: DebugLevel = DebugLevel.QUIET,
        *,
        log_path: str | os.PathLike[str] | None = None,
        stream: TextIO | None = None,
    ):
        self.level = DebugLevel(level)
        self.stream = stream
        self._lock = threading.Lock()
        self._events: list[DebugEvent] = []
        self._file: TextIO | None = None
        path = log_path if log_path is not None else os.environ.get(LOG_PATH_ENV, "")
        if path:
            try:
                fd = os.open(path, os.O_CREAT | os.O_WRONLY | os.O_APPEND, 0o600)
                self._file = os.fdopen(fd, "a", encoding="utf-8")
            except OSError:
                self._file = None

    def __enter__(self) -> DebugLogger:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the log file, if one is open."""
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    def log(
        self,
        level: DebugLevel,
        event: str,
        test_name: str = "",
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        """Record ``event`` if ``level`` is within this logger's verbosity."""
        if level > self.level:
            return
        record = DebugEvent(
            timestamp=datetime.now(),
            level=str(DebugLevel(level)),
            event=event,
            test_name=test_name,
            metadata=dict(metadata or {}),
        )
        with self._lock:
            self._events.append(record)
            if self.level >= DebugLevel.VERBOSE:
                line = f"[{_clock(record.timestamp)}] {record.level}: {record.event}"
                if record.test_name:
                    line += f" (test: {record.test_name})"
                if record.metadata:
                    line += f" - {record.metadata}"
                print(line, file=self.stream if self.stream is not None else sys.stdout)
            if self._file is not None:
                try:
                    self._file.write(_to_json(record.to_dict()) + "\n")
                    self._file.flush()
                except (OSError, ValueError):
                    pass

    def log_error(
        self, test_name: str, err: BaseException | str, metadata: Mapping[str, Any] | None = None
    ) -> None:
        """Record an ERROR event carrying the error text."""
        data = dict(metadata or {})
        data["error"] = str(err)
        self.log(DebugLevel.BASIC, "ERROR", test_name, data)

    def log_timing(
        self,
        test_name: str,
        operation: str,
        duration: float,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        """Record a TIMING event; ``duration`` is in seconds."""
        data = dict(metadata or {})
        data["operation"] = operation
        data["duration_ms"] = int(duration * 1000)
        self.log(DebugLevel.VERBOSE, "TIMING", test_name, data)

    def log_stats(self, test_name: str, stats: Mapping[str, Any]) -> None:
        """Record a STATS event."""
        self.log(DebugLevel.VERBOSE, "STATS", test_name, stats)

    def events(self) -> list[DebugEvent]:
        """A copy of the recorded events."""
        with self._lock:
            return list(self._events)

    def generate_report(self) -> str:
        """Summary, errors, per-test timing and, at TRACE, the full timeline."""
        with self._lock:
            events = list(self._events)

        lines = ["=== Integration Test Debug Report ===", ""]
        by_test: dict[str, list[DebugEvent]] = {}
        errors = [event for event in events if event.event == "ERROR"]
        for event in events:
            if event.test_name:
                by_test.setdefault(event.test_name, []).append(event)

        lines += [
            f"Total Events: {len(events)}",
            f"Errors: {len(errors)}",
            f"Tests: {len(by_test)}",
            "",
        ]

        if errors:
            lines.append("=== ERRORS ===")
            lines += [
                f"[{_clock(e.timestamp)}] {e.test_name}: {e.metadata.get('error')}" for e in errors
            ]
            lines.append("")

        lines.append("=== TIMING ANALYSIS ===")
        for name in sorted(by_test):
            total_ms = 0
            operations: list[str] = []
            for event in by_test[name]:
                if event.event != "TIMING":
                    continue
                millis = event.metadata.get("duration_ms")
                if isinstance(millis, int) and not isinstance(millis, bool):
                    total_ms += millis
                op = event.metadata.get("operation")
                if isinstance(op, str):
                    operations.append(op)
            lines.append(f"{name}: {_format_seconds(total_ms / 1000)} ({len(operations)} operations)")
            if self.level >= DebugLevel.TRACE:
                lines += [f"  - {op}" for op in operations]
        lines.append("")

        if self.level >= DebugLevel.TRACE:
            lines.append("=== DETAILED TIMELINE ===")
            for event in events:
                line = f"[{_clock(event.timestamp)}] {event.level}:{event.event}"
                if event.test_name:
                    line += f" ({event.test_name})"
                if event.metadata:
                    line += f" {_to_json(event.metadata)}"
                lines.append(line)
            lines.append("")

        return "\n".join(lines)


class DebugIntegrationRunner(IntegrationRunner):
    """An integration runner that records every step in a DebugLogger."""

    def __init__(
        self,
        config: IntegrationConfig | None = None,
        debug_level: DebugLevel = DebugLevel.QUIET,
        *,
        log_path: str | os.PathLike[str] | None = None,
        stream: TextIO | None = None,
    ):
        super().__init__(config)
        self.debug_level = DebugLevel(debug_level)
        self.stream = stream
        self.logger = DebugLogger(self.debug_level, log_path=log_path, stream=stream)
        self._lock = threading.Lock()
        self.test_start_times: dict[str, datetime] = {}

    def __enter__(self) -> DebugIntegrationRunner:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying logger."""
        self.logger.close()

    def run_test_with_debug(self, test_name: str, test_func: Callable[[], T]) -> T:
        """Run a test like ``run_test`` while logging its progress and outcome."""
        return self._run_test_with_debug(test_name, test_func, None)

    def _run_test_with_debug(
        self, test_name: str, test_func: Callable[[], T], deadline: float | None
    ) -> T:
        started = datetime.now()
        with self._lock:
            self.test_start_times[test_name] = started

        self.logger.log(
            DebugLevel.VERBOSE, "TEST_START", test_name, {"start_time": started, "config": self.config}
        )
        if self.debug_level >= DebugLevel.VERBOSE:
            self.logger.log_stats(
                test_name,
                {
                    "healthy_clients": self.health_checker.healthy_clients(),
                    "circuit_state": str(self.circuit_breaker.state),
                },
            )

        def traced() -> T:
            self.logger.log(
                DebugLevel.TRACE,
                "TEST_EXECUTE",
                test_name,
                {
                    "operation_timeout": self.config.operation_timeout,
                    "has_deadline": deadline is not None,
                },
            )
            return test_func()

        start = time.monotonic()
        error: Exception | None = None
        result: Any = None
        try:
            result = self._run_test(test_name, traced, deadline)
        except Exception as exc:
            error = exc
        duration = time.monotonic() - start

        if error is not None:
            self.logger.log_error(
                test_name, error, {"duration_ms": int(duration * 1000), "failed": True}
            )
            self.logger.log(
                DebugLevel.BASIC, "TEST_FAILED", test_name, {"duration": duration, "error": str(error)}
            )
        else:
            self.logger.log_timing(test_name, "test_execution", duration, {"success": True})
            self.logger.log(DebugLevel.VERBOSE, "TEST_PASSED", test_name, {"duration": duration})

        if self.debug_level >= DebugLevel.VERBOSE:
            self.logger.log_stats(test_name, self.stats())

        if error is not None:
            raise error
        return result

    def run_scenarios_with_debug(self, scenarios: Iterable[Scenario]) -> None:
        """Run scenarios in order with full logging; stop at the first that misses."""
        scenario_list = list(scenarios)
        self.logger.log(
            DebugLevel.BASIC,
            "SCENARIOS_START",
            "",
            {"scenario_count": len(scenario_list), "scenarios": [s.name for s in scenario_list]},
        )
        overall_start = time.monotonic()
        for index, scenario in enumerate(scenario_list):
            self._execute_scenario(scenario, index)
        self.logger.log(
            DebugLevel.BASIC,
            "SCENARIOS_COMPLETE",
            "",
            {
                "total_duration": time.monotonic() - overall_start,
                "scenario_count": len(scenario_list),
                "success": True,
            },
        )

    def _execute_scenario(self, scenario: Scenario, index: int) -> None:
        self.logger.log(
            DebugLevel.VERBOSE,
            "SCENARIO_START",
            scenario.name,
            {"index": index, "description": scenario.description, "timeout": scenario.timeout},
        )

        state = self.circuit_breaker.state
        if state is CircuitState.OPEN:
            error = IntegrationError(
                f"circuit breaker is OPEN - failing fast on scenario: {scenario.name}"
            )
            self.logger.log_error(
                scenario.name, error, {"circuit_state": str(state), "scenario_index": index}
            )
            raise error

        deadline = time.monotonic() + scenario.timeout if scenario.timeout > 0 else None
        start = time.monotonic()
        execute_duration, error = self._run_phases(scenario, deadline)
        duration = time.monotonic() - start

        self._check_expectation(scenario, error, duration)

        self.logger.log(
            DebugLevel.VERBOSE,
            "SCENARIO_COMPLETE",
            scenario.name,
            {
                "index": index,
                "duration": duration,
                "execute_time": execute_duration,
                "success": error is None,
            },
        )

    def _run_phases(
        self, scenario: Scenario, deadline: float | None
    ) -> tuple[float, Exception | None]:
        try:
            self._run_phase(scenario, "setup", scenario.setup, deadline)
        except IntegrationError as exc:
            return 0.0, exc

        self.logger.log(DebugLevel.TRACE, "SCENARIO_EXECUTE", scenario.name)
        execute_start = time.monotonic()
        error: Exception | None = None
        try:
            self._run_test_with_debug(scenario.name, scenario.execute, deadline)
        except Exception as exc:
            error = exc
        execute_duration = time.monotonic() - execute_start

        try:
            self._run_phase(scenario, "cleanup", scenario.cleanup, deadline)
        except IntegrationError as exc:
            if error is None:
                error = exc
        return execute_duration, error

    def _run_phase(
        self,
        scenario: Scenario,
        phase: str,
        func: Callable[[], Any] | None,
        deadline: float | None,
    ) -> None:
        if func is None:
            return
        self.logger.log(DebugLevel.TRACE, f"SCENARIO_{phase.upper()}", scenario.name)
        start = time.monotonic()
        remaining = None if deadline is None else deadline - time.monotonic()
        try:
            _call_with_timeout(func, remaining, f"{scenario.name}-{phase}")
        except Exception as exc:
            self.logger.log_error(
                scenario.name,
                exc,
                {"phase": phase, "duration_ms": int((time.monotonic() - start) * 1000)},
            )
            raise IntegrationError(f"scenario {scenario.name} {phase} failed: {exc}") from exc
        self.logger.log_timing(scenario.name, phase, time.monotonic() - start)

    def _check_expectation(
        self, scenario: Scenario, error: Exception | None, duration: float
    ) -> None:
        millis = int(duration * 1000)
        if scenario.expect_error and error is None:
            failure = IntegrationError(f"scenario {scenario.name} expected error but succeeded")
            self.logger.log_error(
                scenario.name, failure, {"expected_error": True, "duration_ms": millis}
            )
            raise failure
        if not scenario.expect_error and error is not None:
            self.logger.log_error(
                scenario.name, error, {"expected_success": True, "duration_ms": millis}
            )
            raise IntegrationError(f"scenario {scenario.name} failed: {error}") from error

    def print_debug_report(self) -> None:
        """Print the logger's report unless the level is QUIET."""
        if self.debug_level >= DebugLevel.BASIC:
            print("\n" + self.logger.generate_report(),
                  file=self.stream if self.stream is not None else sys.stdout)


def debug_config() -> DebugLevel:
    """The debug level named by the INTEGRATION_DEBUG environment variable."""
    value = os.environ.get(LEVEL_ENV, "").upper()
    return {
        "TRACE": DebugLevel.TRACE,
        "VERBOSE": DebugLevel.VERBOSE,
        "BASIC": DebugLevel.BASIC,
    }.get(value, DebugLevel.QUIET)