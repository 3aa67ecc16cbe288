"""Exception types raised by vault operations and key validation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

REDACTED = "[REDACTED]"

SENSITIVE_PATTERNS = (
    "password",
    "secret",
    "key",
    "token",
    "credential",
    "admin",
    "root",
    "auth",
    "login",
    "session",
    "/etc/passwd",
    "/proc/",
    "C:\\Windows\\",
    "127.0.0.1",
    "localhost",
    "192.168.",
    "10.0.0.",
)


def contains_sensitive_content(value: Any) -> bool:
    """Return True if the text form of ``value`` holds a sensitive pattern."""
    text = str(value).lower()
    return any(pattern.lower() in text for pattern in SENSITIVE_PATTERNS)


def _seconds(value: float) -> str:
    return f"{value:g}s"


def _chain(exc: BaseException, cause: Any) -> None:
    if isinstance(cause, BaseException):
        exc.__cause__ = cause


class VaultError(Exception):
    """A vault operation failed against an endpoint."""

    def __init__(self, operation: str, endpoint: str, err: Any, retryable: bool = False):
        super().__init__(operation, endpoint, err, retryable)
        self.operation = operation
        self.endpoint = endpoint
        self.err = err
        self.retryable = retryable
        self.timestamp = datetime.now(timezone.utc)
        _chain(self, err)

    def __str__(self) -> str:
        return f"vault {self.operation} failed for {self.endpoint}: {self.err}"


class ValidationError(ValueError):
    """Input failed validation; sensitive values are redacted in the message."""

    def __init__(self, field: str, value: Any, message: str, *, index: int | None = None):
        super().__init__(field, value, message)
        self.field = field
        self.value = value
        self.message = message
        self.index = index

    def __str__(self) -> str:
        if self.field in ("key", "keys") or contains_sensitive_content(self.value):
            shown: Any = REDACTED
        else:
            shown = self.value
        text = f"validation failed for field '{self.field}' with value '{shown}': {self.message}"
        if self.index is not None:
            return f"invalid key at index {self.index}: {text}"
        return text


@dataclass
class SealStatusInfo:
    """Structured seal status information."""

    sealed: bool = True
    progress: int = 0
    threshold: int = 0
    version: str = ""
    cluster_name: str = ""
    cluster_id: str = ""
    initialized: bool = False
    recovery_seal: bool = False
    storage_type: str = ""
    hcp_link_status: str = ""


class UnsealError(Exception):
    """Submitting an unseal key failed."""

    def __init__(
        self,
        endpoint: str,
        key_index: int,
        err: Any,
        seal_status: SealStatusInfo | None = None,
    ):
        super().__init__(endpoint, key_index, err)
        self.endpoint = endpoint
        self.key_index = key_index
        self.err = err
        self.seal_status = seal_status
        _chain(self, err)

    def __str__(self) -> str:
        return f"unseal failed for {self.endpoint} at key index {self.key_index}: {self.err}"


class VaultConnectionError(ConnectionError):
    """A connection to a vault endpoint failed."""

    def __init__(self, endpoint: str, err: Any, timeout: float = 0.0, retryable: bool = False):
        super().__init__(endpoint)
        self.endpoint = endpoint
        self.err = err
        self.timeout = timeout
        self.retryable = retryable
        _chain(self, err)

    def __str__(self) -> str:
        return f"connection failed to {self.endpoint} (timeout: {_seconds(self.timeout)}): {self.err}"


class OperationTimeoutError(TimeoutError):
    """An operation ran past its timeout."""

    def __init__(self, operation: str, timeout: float, elapsed: float = 0.0):
        super().__init__(operation)
        self.operation = operation
        self.timeout = timeout
        self.elapsed = elapsed

    def __str__(self) -> str:
        return (
            f"operation '{self.operation}' timed out after {_seconds(self.timeout)} "
            f"(elapsed: {_seconds(self.elapsed)})"
        )


class AuthenticationError(Exception):
    """Authentication against a vault endpoint failed."""

    def __init__(self, endpoint: str, method: str, err: Any):
        super().__init__(endpoint, method, err)
        self.endpoint = endpoint
        self.method = method
        self.err = err
        _chain(self, err)

    def __str__(self) -> str:
        return f"authentication failed for {self.endpoint} using method '{self.method}': {self.err}"


def is_retryable_error(err: BaseException | None) -> bool:
    """Walk the cause chain and report whether the first vault error is retryable."""
    seen: set[int] = set()
    current = err
    while current is not None and id(current) not in seen:
        if isinstance(current, (VaultError, VaultConnectionError)):
            return current.retryable
        seen.add(id(current))
        current = current.__cause__
    return False