"""HTTP client for the vault seal, unseal, init and health endpoints."""

from __future__ import annotations

import json
import ssl
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from .errors import ValidationError, VaultError
from .strategy import DefaultRetryPolicy, DefaultUnsealStrategy, RetryUnsealStrategy
from .types import ClientMetrics, HealthStatus, KeyValidator, SealStatus, UnsealStrategy
from .validation import DefaultKeyValidator, _decode_base64

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0
MAX_RETRY_DELAY = 10.0
MAX_URL_LENGTH = 2048
MIN_TIMEOUT = 0.001
USER_AGENT = "vaultunseal/2.0"

_HEALTH_QUERY = {
    "uninitcode": "299",
    "sealedcode": "299",
    "standbycode": "299",
    "drsecondarycode": "299",
    "performancestandbycode": "299",
}


@dataclass
class ClientConfig:
    """Settings for a vault client; durations are in seconds."""

    url: str
    tls_skip_verify: bool = False
    timeout: float = DEFAULT_TIMEOUT
    validator: KeyValidator | None = None
    strategy: UnsealStrategy | None = None
    metrics: ClientMetrics | None = None
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY


class _ResponseError(Exception):
    """The server answered with an error status."""

    def __init__(self, method: str, url: str, status: int, errors: Sequence[str]):
        super().__init__(method, url, status, list(errors))
        self.method = method
        self.url = url
        self.status = status
        self.errors = list(errors)

    def __str__(self) -> str:
        detail = "; ".join(self.errors) if self.errors else "no error details"
        return f"{self.method} {self.url}: code {self.status}: {detail}"


def _error_messages(body: bytes) -> list[str]:
    try:
        data = json.loads(body)
    except ValueError:
        text = body.decode("utf-8", errors="replace").strip()
        return [text] if text else []
    if isinstance(data, Mapping):
        errors = data.get("errors")
        if isinstance(errors, list):
            return [str(item) for item in errors]
    return []


def validate_client_config(config: ClientConfig) -> None:
    """Raise ValidationError if ``config`` cannot produce a working client."""
    if not config.url:
        raise ValidationError("url", config.url, "URL cannot be empty")
    if not config.url.startswith(("http://", "https://")):
        raise ValidationError("url", config.url, "URL must start with http:// or https://")
    if len(config.url) > MAX_URL_LENGTH:
        raise ValidationError(
            "url", config.url, f"URL exceeds maximum length of {MAX_URL_LENGTH} characters"
        )
    if config.timeout < MIN_TIMEOUT:
        raise ValidationError("timeout", config.timeout, "Timeout must be at least 1 millisecond")
    if config.max_retries < 0:
        raise ValidationError("maxRetries", config.max_retries, "MaxRetries cannot be negative")


class HttpVaultClient:
    """Talks to one vault server over its HTTP API."""

    def __init__(
        self,
        url: str,
        timeout: float,
        *,
        tls_skip_verify: bool = False,
        validator: KeyValidator | None = None,
        strategy: UnsealStrategy | None = None,
        metrics: ClientMetrics | None = None,
    ):
        self._lock = threading.RLock()
        self._url = url
        self._timeout = timeout
        self._closed = False
        self.tls_skip_verify = tls_skip_verify
        self.validator = validator if validator is not None else DefaultKeyValidator()
        self.metrics = metrics
        self.strategy: UnsealStrategy = (
            strategy if strategy is not None else DefaultUnsealStrategy(self.validator, metrics)
        )
        self.headers = {
            "User-Agent": USER_AGENT,
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "X-Request-ID": f"vaultunseal-{time.time_ns()}",
        }
        self._ssl_context: ssl.SSLContext | None = None
        if tls_skip_verify:
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            self._ssl_context = context

    def __enter__(self) -> HttpVaultClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def url(self) -> str:
        """The vault endpoint URL."""
        with self._lock:
            return self._url

    @property
    def timeout(self) -> float:
        """The request timeout in seconds."""
        with self._lock:
            return self._timeout

    def _ensure_open(self, operation: str) -> None:
        with self._lock:
            if self._closed:
                raise VaultError(operation, self._url, RuntimeError("client is closed"), False)

    def _request(
        self,
        method: str,
        path: str,
        body: Mapping[str, Any] | None = None,
        query: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        target = self._url.rstrip("/") + path
        if query:
            target += "?" + urllib.parse.urlencode(query)
        headers = dict(self.headers)
        data = None
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        request = urllib.request.Request(target, data=data, method=method, headers=headers)
        try:
            with urllib.request.urlopen(
                request, timeout=self._timeout, context=self._ssl_context
            ) as response:
                payload = response.read()
        except urllib.error.HTTPError as exc:
            with exc:
                raise _ResponseError(method, target, exc.code, _error_messages(exc.read())) from None
        if not payload:
            return {}
        decoded = json.loads(payload)
        if not isinstance(decoded, dict):
            raise ValueError(f"unexpected response body from {method} {target}")
        return decoded

    def _fetch_seal_status(self) -> SealStatus:
        start = time.monotonic()
        try:
            data = self._request("GET", "/v1/sys/seal-status")
        except (OSError, ValueError) as exc:
            self._record_seal_status(False, start)
            raise VaultError("seal-status", self._url, exc, True) from exc
        self._record_seal_status(True, start)
        return SealStatus.from_dict(data)

    def _record_seal_status(self, success: bool, start: float) -> None:
        if self.metrics is not None:
            self.metrics.record_seal_status_check(self._url, success, time.monotonic() - start)

    def is_sealed(self) -> bool:
        """Report whether the vault is sealed."""
        self._ensure_open("is-sealed")
        return self._fetch_seal_status().sealed

    def get_seal_status(self) -> SealStatus:
        """Return the vault's current seal status."""
        self._ensure_open("get-seal-status")
        return self._fetch_seal_status()

    def unseal(self, keys: Sequence[str], threshold: int) -> SealStatus:
        """Unseal the vault with the configured strategy."""
        self._ensure_open("unseal")
        return self.strategy.unseal(self, keys, threshold)

    def submit_single_key(self, encoded_key: str, key_index: int) -> SealStatus:
        """Submit one base64 unseal key and return the resulting seal status."""
        try:
            _decode_base64(encoded_key)
        except ValueError as exc:
            raise ValidationError(
                "key", encoded_key, f"invalid base64 encoding in key {key_index}: {exc}"
            ) from None
        try:
            data = self._request("PUT", "/v1/sys/unseal", body={"key": encoded_key})
        except (OSError, ValueError) as exc:
            inner = RuntimeError(f"failed to submit unseal key {key_index}: {exc}")
            inner.__cause__ = exc
            raise VaultError("unseal-key-submit", self._url, inner, True) from inner
        return SealStatus.from_dict(data)

    def is_initialized(self) -> bool:
        """Report whether the vault is initialized."""
        self._ensure_open("is-initialized")
        try:
            data = self._request("GET", "/v1/sys/init")
        except (OSError, ValueError) as exc:
            raise VaultError("init-status", self._url, exc, True) from exc
        return bool(data.get("initialized", False))

    def health_check(self) -> HealthStatus:
        """Return the vault's health information."""
        self._ensure_open("health-check")
        start = time.monotonic()
        try:
            data = self._request("GET", "/v1/sys/health", query=_HEALTH_QUERY)
        except (OSError, ValueError) as exc:
            self._record_health(False, start)
            raise VaultError("health-check", self._url, exc, True) from exc
        self._record_health(True, start)
        return HealthStatus.from_dict(data)

    def _record_health(self, success: bool, start: float) -> None:
        if self.metrics is not None:
            self.metrics.record_health_check(self._url, success, time.monotonic() - start)

    def close(self) -> None:
        """Close the client; closing twice is harmless."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.headers.pop("X-Vault-Token", None)

    def is_closed(self) -> bool:
        """Report whether the client has been closed."""
        with self._lock:
            return self._closed


def new_client_with_config(config: ClientConfig) -> HttpVaultClient:
    """Validate ``config`` and build a client from it."""
    validate_client_config(config)
    validator = config.validator if config.validator is not None else DefaultKeyValidator()
    strategy = config.strategy
    if strategy is None:
        base = DefaultUnsealStrategy(validator, config.metrics)
        if config.max_retries > 1:
            policy = DefaultRetryPolicy(
                max_attempts=config.max_retries,
                base_delay=config.retry_delay,
                max_delay=MAX_RETRY_DELAY,
            )
            strategy = RetryUnsealStrategy(base, policy)
        else:
            strategy = base
    return HttpVaultClient(
        config.url,
        config.timeout,
        tls_skip_verify=config.tls_skip_verify,
        validator=validator,
        strategy=strategy,
        metrics=config.metrics,
    )


def new_client(
    url: str, tls_skip_verify: bool = False, timeout: float = DEFAULT_TIMEOUT
) -> HttpVaultClient:
    """Build a client with default validation, strategy and retry settings."""
    return new_client_with_config(
        ClientConfig(url=url, tls_skip_verify=tls_skip_verify, timeout=timeout)
    )


class DefaultClientFactory:
    """Creates HTTP vault clients."""

    def new_client(self, endpoint: str, tls_skip_verify: bool, timeout: float) -> HttpVaultClient:
        """Create a client for ``endpoint``."""
        return new_client(endpoint, tls_skip_verify, timeout)