"""Shared data types and protocols for vault clients, validators and strategies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable


@dataclass
class SealStatus:
    """Seal status as reported by a vault server."""

    sealed: bool = True
    threshold: int = 0
    shares: int = 0
    progress: int = 0
    initialized: bool = False
    version: str = ""
    nonce: str = ""
    seal_type: str = ""
    cluster_name: str = ""
    cluster_id: str = ""
    recovery_seal: bool = False
    storage_type: str = ""
    migration: bool = False
    build_date: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SealStatus:
        """Build a status from a seal-status response body."""
        default = cls()
        return cls(
            sealed=bool(data.get("sealed", default.sealed)),
            threshold=int(data.get("t", default.threshold)),
            shares=int(data.get("n", default.shares)),
            progress=int(data.get("progress", default.progress)),
            initialized=bool(data.get("initialized", default.initialized)),
            version=str(data.get("version", default.version)),
            nonce=str(data.get("nonce", default.nonce)),
            seal_type=str(data.get("type", default.seal_type)),
            cluster_name=str(data.get("cluster_name", default.cluster_name)),
            cluster_id=str(data.get("cluster_id", default.cluster_id)),
            recovery_seal=bool(data.get("recovery_seal", default.recovery_seal)),
            storage_type=str(data.get("storage_type", default.storage_type)),
            migration=bool(data.get("migration", default.migration)),
            build_date=str(data.get("build_date", default.build_date)),
        )


@dataclass
class HealthStatus:
    """Health information as reported by a vault server."""

    initialized: bool = False
    sealed: bool = True
    standby: bool = False
    performance_standby: bool = False
    replication_performance_mode: str = ""
    replication_dr_mode: str = ""
    server_time_utc: int = 0
    version: str = ""
    cluster_name: str = ""
    cluster_id: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HealthStatus:
        """Build a health status from a health response body."""
        default = cls()
        return cls(
            initialized=bool(data.get("initialized", default.initialized)),
            sealed=bool(data.get("sealed", default.sealed)),
            standby=bool(data.get("standby", default.standby)),
            performance_standby=bool(data.get("performance_standby", default.performance_standby)),
            replication_performance_mode=str(
                data.get("replication_performance_mode", default.replication_performance_mode)
            ),
            replication_dr_mode=str(data.get("replication_dr_mode", default.replication_dr_mode)),
            server_time_utc=int(data.get("server_time_utc", default.server_time_utc)),
            version=str(data.get("version", default.version)),
            cluster_name=str(data.get("cluster_name", default.cluster_name)),
            cluster_id=str(data.get("cluster_id", default.cluster_id)),
        )


@runtime_checkable
class VaultClient(Protocol):
    """Operations a vault client offers."""

    def is_sealed(self) -> bool: ...

    def get_seal_status(self) -> SealStatus: ...

    def unseal(self, keys: Sequence[str], threshold: int) -> SealStatus: ...

    def is_initialized(self) -> bool: ...

    def health_check(self) -> HealthStatus: ...

    def close(self) -> None: ...

    def is_closed(self) -> bool: ...


@runtime_checkable
class ClientFactory(Protocol):
    """Creates vault clients."""

    def new_client(self, endpoint: str, tls_skip_verify: bool, timeout: float) -> VaultClient: ...


@runtime_checkable
class KeyValidator(Protocol):
    """Validates unseal keys; returns the decoded key bytes."""

    def validate_keys(self, keys: Sequence[str], threshold: int) -> list[bytes]: ...

    def validate_base64_key(self, key: str) -> bytes: ...


@runtime_checkable
class UnsealStrategy(Protocol):
    """Decides how to unseal a vault instance."""

    def unseal(self, client: VaultClient, keys: Sequence[str], threshold: int) -> SealStatus: ...


@runtime_checkable
class ClientMetrics(Protocol):
    """Receives timings of client operations; durations are in seconds."""

    def record_unseal_attempt(self, endpoint: str, success: bool, duration: float) -> None: ...

    def record_health_check(self, endpoint: str, success: bool, duration: float) -> None: ...

    def record_seal_status_check(self, endpoint: str, success: bool, duration: float) -> None: ...


@runtime_checkable
class RetryPolicy(Protocol):
    """Retry behaviour for vault operations; delays are in seconds."""

    max_attempts: int

    def should_retry(self, err: BaseException, attempt: int) -> bool: ...

    def next_delay(self, attempt: int) -> float: ...