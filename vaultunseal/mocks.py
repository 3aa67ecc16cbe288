"""In-memory stand-ins for vault clients, metrics and client factories."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from typing import Sequence

from .types import HealthStatus, SealStatus

MOCK_VERSION = "1.15.0"
MOCK_THRESHOLD = 3


class MockVaultClient:
    """A vault client that simulates sealing, unsealing and failures in memory."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._sealed = True
        self.initialized = True
        self.healthy = True
        self._closed = False
        self.unseal_progress = 0
        self.unseal_threshold = MOCK_THRESHOLD
        self._submitted_keys: list[str] = []
        self.fail_health_check = False
        self.fail_seal_status = False
        self.fail_unseal = False
        self.fail_initialized = False
        self.response_delay = 0.0
        self._call_counts: dict[str, int] = {}
        self.last_error: Exception | None = None
        self._seal_status = SealStatus(
            sealed=True, progress=0, threshold=MOCK_THRESHOLD, version=MOCK_VERSION
        )
        self._health = HealthStatus(
            initialized=True, sealed=True, standby=False, server_time_utc=int(time.time())
        )

    def _enter(self, method: str) -> None:
        self._call_counts[method] = self._call_counts.get(method, 0) + 1
        if self.response_delay > 0:
            time.sleep(self.response_delay)

    def _fail(self, message: str) -> RuntimeError:
        error = RuntimeError(message)
        self.last_error = error
        return error

    def is_sealed(self) -> bool:
        """Report whether the simulated vault is sealed."""
        with self._lock:
            self._enter("is_sealed")
            if self.fail_seal_status:
                raise self._fail("mock seal status error")
            return self._sealed

    def get_seal_status(self) -> SealStatus:
        """Return a snapshot of the simulated seal status."""
        with self._lock:
            self._enter("get_seal_status")
            if self.fail_seal_status:
                raise self._fail("mock seal status error")
            status = self._seal_status
            status.sealed = self._sealed
            if not self._sealed and status.progress == 0:
                status.progress = self.unseal_threshold
            elif status.progress == 0 or self.unseal_progress != 0:
                status.progress = self.unseal_progress
            return replace(status)

    def unseal(self, keys: Sequence[str], threshold: int) -> SealStatus:
        """Record submitted keys; unseal once ``threshold`` keys have been seen."""
        with self._lock:
            self._enter("unseal")
            if self.fail_unseal:
                raise self._fail("mock unseal error")
            self._submitted_keys.extend(keys)
            if len(self._submitted_keys) >= threshold:
                self._sealed = False
                self.unseal_progress = threshold
            else:
                self.unseal_progress = len(self._submitted_keys)
            self._seal_status.sealed = self._sealed
            self._seal_status.progress = self.unseal_progress
            return replace(self._seal_status)

    def is_initialized(self) -> bool:
        """Report whether the simulated vault is initialized."""
        with self._lock:
            self._enter("is_initialized")
            if self.fail_initialized:
                raise self._fail("mock initialized check error")
            return self.initialized

    def health_check(self) -> HealthStatus:
        """Return a snapshot of the simulated health status."""
        with self._lock:
            self._enter("health_check")
            if self.fail_health_check:
                raise self._fail("mock health check error")
            self._health.sealed = self._sealed
            return replace(self._health)

    def close(self) -> None:
        """Mark the client closed."""
        with self._lock:
            self._call_counts["close"] = self._call_counts.get("close", 0) + 1
            self._closed = True

    def is_closed(self) -> bool:
        """Report whether the client has been closed."""
        with self._lock:
            return self._closed

    @property
    def sealed(self) -> bool:
        """Whether the simulated vault is sealed; setting it adjusts progress."""
        with self._lock:
            return self._sealed

    @sealed.setter
    def sealed(self, value: bool) -> None:
        with self._lock:
            self._sealed = value
            if not value:
                self.unseal_progress = self.unseal_threshold
            else:
                self.unseal_progress = 0
                self._submitted_keys = []

    @property
    def submitted_keys(self) -> list[str]:
        """A copy of the keys submitted so far."""
        with self._lock:
            return list(self._submitted_keys)

    def call_count(self, method: str) -> int:
        """Number of calls made to ``method``."""
        with self._lock:
            return self._call_counts.get(method, 0)

    def reset(self) -> None:
        """Return to the sealed, healthy, failure-free state and clear counters."""
        with self._lock:
            self._sealed = True
            self.healthy = True
            self._closed = False
            self.unseal_progress = 0
            self._submitted_keys = []
            self.fail_health_check = False
            self.fail_seal_status = False
            self.fail_unseal = False
            self.fail_initialized = False
            self.response_delay = 0.0
            self._call_counts = {}
            self.last_error = None


@dataclass(frozen=True)
class MetricRecord:
    """One recorded operation timing; duration is in seconds."""

    endpoint: str
    success: bool
    duration: float


class MockClientMetrics:
    """Collects client metrics in memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._unseal_attempts: list[MetricRecord] = []
        self._health_checks: list[MetricRecord] = []
        self._seal_status_checks: list[MetricRecord] = []

    def record_unseal_attempt(self, endpoint: str, success: bool, duration: float) -> None:
        with self._lock:
            self._unseal_attempts.append(MetricRecord(endpoint, success, duration))

    def record_health_check(self, endpoint: str, success: bool, duration: float) -> None:
        with self._lock:
            self._health_checks.append(MetricRecord(endpoint, success, duration))

    def record_seal_status_check(self, endpoint: str, success: bool, duration: float) -> None:
        with self._lock:
            self._seal_status_checks.append(MetricRecord(endpoint, success, duration))

    @property
    def unseal_attempts(self) -> list[MetricRecord]:
        with self._lock:
            return list(self._unseal_attempts)

    @property
    def health_checks(self) -> list[MetricRecord]:
        with self._lock:
            return list(self._health_checks)

    @property
    def seal_status_checks(self) -> list[MetricRecord]:
        with self._lock:
            return list(self._seal_status_checks)

    def reset(self) -> None:
        """Forget every recorded metric."""
        with self._lock:
            self._unseal_attempts = []
            self._health_checks = []
            self._seal_status_checks = []


class MockClientFactory:
    """Creates MockVaultClient instances and remembers them by endpoint."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._clients: dict[str, MockVaultClient] = {}
        self.fail_new = False

    def new_client(self, endpoint: str, tls_skip_verify: bool, timeout: float) -> MockVaultClient:
        """Create a mock client for ``endpoint``."""
        with self._lock:
            if self.fail_new:
                raise RuntimeError("mock client factory error")
            client = MockVaultClient()
            self._clients[endpoint] = client
            return client

    def get_client(self, endpoint: str) -> MockVaultClient | None:
        """The mock client last created for ``endpoint``, if any."""
        with self._lock:
            return self._clients.get(endpoint)

    def reset(self) -> None:
        """Forget all clients and stop failing."""
        with self._lock:
            self._clients = {}
            self.fail_new = False