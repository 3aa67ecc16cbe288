"""Strategies for submitting unseal keys to a vault, with optional retries."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Sequence

from .errors import UnsealError, VaultError, is_retryable_error
from .types import ClientMetrics, KeyValidator, RetryPolicy, SealStatus, UnsealStrategy, VaultClient
from .validation import DefaultKeyValidator

UNKNOWN_ENDPOINT = "unknown"
KEY_SUBMIT_DELAY = 0.1
FALLBACK_THRESHOLD = 3
DEFAULT_MAX_CONCURRENCY = 5
MAX_BACKOFF_EXPONENT = 30


class DefaultUnsealStrategy:
    """Validate the keys, then submit them one by one until the vault unseals."""

    def __init__(
        self,
        validator: KeyValidator | None = None,
        metrics: ClientMetrics | None = None,
        *,
        key_delay: float = KEY_SUBMIT_DELAY,
    ):
        self.validator = validator if validator is not None else DefaultKeyValidator()
        self.metrics = metrics
        self.key_delay = key_delay

    def unseal(self, client: VaultClient, keys: Sequence[str], threshold: int) -> SealStatus:
        """Unseal ``client`` with at most ``threshold`` of ``keys``; return the last status."""
        start = time.monotonic()
        self.validator.validate_keys(keys, threshold)

        try:
            status = client.get_seal_status()
        except Exception as exc:
            raise VaultError("get-seal-status", UNKNOWN_ENDPOINT, exc, True) from exc

        if not status.sealed:
            self._record(True, start)
            return status

        try:
            last = self._submit_keys(client, list(keys)[:threshold])
        except UnsealError:
            self._record(False, start)
            raise
        self._record(not last.sealed, start)
        return last

    def _record(self, success: bool, start: float) -> None:
        if self.metrics is not None:
            self.metrics.record_unseal_attempt(UNKNOWN_ENDPOINT, success, time.monotonic() - start)

    def _submit_keys(self, client: VaultClient, keys: Sequence[str]) -> SealStatus:
        last: SealStatus | None = None
        for index, key in enumerate(keys):
            try:
                status = self._submit_single_key(client, key, index + 1)
            except Exception as exc:
                raise UnsealError(UNKNOWN_ENDPOINT, index, exc) from exc
            last = status
            if not status.sealed:
                break
            if self.key_delay > 0:
                time.sleep(self.key_delay)
        if last is None:
            raise UnsealError(UNKNOWN_ENDPOINT, 0, "no keys submitted")
        return last

    @staticmethod
    def _submit_single_key(client: VaultClient, key: str, index: int) -> SealStatus:
        submit = getattr(client, "submit_single_key", None)
        if callable(submit):
            return submit(key, index)
        return client.unseal([key], FALLBACK_THRESHOLD)


class ParallelUnsealStrategy:
    """Bounded-concurrency wrapper; a single instance is delegated to the base strategy."""

    def __init__(self, base_strategy: UnsealStrategy, max_concurrency: int = DEFAULT_MAX_CONCURRENCY):
        self.base_strategy = base_strategy
        self.max_concurrency = max_concurrency if max_concurrency > 0 else DEFAULT_MAX_CONCURRENCY

    def unseal(self, client: VaultClient, keys: Sequence[str], threshold: int) -> SealStatus:
        """Unseal one instance through the base strategy."""
        return self.base_strategy.unseal(client, keys, threshold)


class RetryUnsealStrategy:
    """Retry a base strategy on retryable errors according to a retry policy."""

    def __init__(
        self,
        base_strategy: UnsealStrategy,
        retry_policy: RetryPolicy,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_strategy = base_strategy
        self.retry_policy = retry_policy
        self._sleep = sleep

    def unseal(self, client: VaultClient, keys: Sequence[str], threshold: int) -> SealStatus:
        """Unseal with retries; non-retryable errors propagate at once."""
        attempts = self.retry_policy.max_attempts
        last_error: BaseException | None = None

        for attempt in range(attempts):
            try:
                return self.base_strategy.unseal(client, keys, threshold)
            except Exception as exc:
                last_error = exc
                if not is_retryable_error(exc):
                    raise
                if attempt >= attempts - 1:
                    break
                if not self.retry_policy.should_retry(exc, attempt):
                    break
                self._sleep(self.retry_policy.next_delay(attempt))

        raise RuntimeError(f"failed after {attempts} attempts: {last_error}") from last_error


@dataclass
class DefaultRetryPolicy:
    """Exponential backoff retry policy; delays are in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    def should_retry(self, err: BaseException, attempt: int) -> bool:
        """Retry retryable errors while attempts remain."""
        if attempt >= self.max_attempts - 1:
            return False
        return is_retryable_error(err)

    def next_delay(self, attempt: int) -> float:
        """Delay before the next attempt, doubling each time up to ``max_delay``."""
        exponent = min(max(attempt, 0), MAX_BACKOFF_EXPONENT)
        return min(self.base_delay * (1 << exponent), self.max_delay)