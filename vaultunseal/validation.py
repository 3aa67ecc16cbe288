"""Validation of base64-encoded vault unseal keys."""

from __future__ import annotations

import base64
from typing import Callable, Iterable, Sequence

from .errors import REDACTED, ValidationError, contains_sensitive_content

DEFAULT_MIN_KEY_LENGTH = 1
DEFAULT_MAX_KEY_LENGTH = 1024
DEFAULT_FORBIDDEN_STRINGS = ("password", "secret", "test", "example", "demo")


def _decode_base64(text: str) -> bytes:
    """Decode standard padded base64, ignoring CR and LF characters."""
    compact = text.replace("\r", "").replace("\n", "")
    if len(compact) % 4:
        raise ValueError("illegal base64 data: length is not a multiple of 4")
    return base64.b64decode(compact, validate=True)


def has_repeating_pattern(data: bytes, pattern_len: int) -> bool:
    """Return True if ``data`` is its first ``pattern_len`` bytes repeated throughout."""
    if pattern_len < 1:
        raise ValueError("pattern length must be at least 1")
    if len(data) < pattern_len * 2:
        return False
    pattern = data[:pattern_len]
    remaining = len(data) % pattern_len
    full = len(data) - remaining
    if any(data[i:i + pattern_len] != pattern for i in range(pattern_len, full, pattern_len)):
        return False
    return data[full:] == pattern[:remaining]


def _check_key_pattern(decoded: bytes) -> None:
    if all(b == 0 for b in decoded):
        raise ValidationError("key", decoded, "key cannot be all zeros")
    if len(decoded) > 1 and decoded.count(decoded[0]) == len(decoded):
        raise ValidationError("key", decoded, "key cannot have all identical bytes")
    if len(decoded) >= 8 and (has_repeating_pattern(decoded, 2) or has_repeating_pattern(decoded, 4)):
        raise ValidationError("key", decoded, "key contains weak repeating pattern")


def _check_key_set(keys: list[str], threshold: int) -> None:
    if not keys:
        raise ValidationError("keys", keys, "no unseal keys provided")
    if threshold < 1:
        raise ValidationError("threshold", threshold, "threshold must be at least 1")
    if threshold > len(keys):
        raise ValidationError(
            "threshold",
            threshold,
            f"threshold ({threshold}) exceeds number of available keys ({len(keys)})",
        )


def _decode_each(validate: Callable[[str], bytes], keys: Iterable[str]) -> list[bytes]:
    decoded = []
    for index, key in enumerate(keys):
        try:
            decoded.append(validate(key))
        except ValidationError as exc:
            exc.index = index
            raise
    return decoded


class DefaultKeyValidator:
    """Checks key count, threshold, base64 encoding, weak patterns and duplicates."""

    def __init__(
        self,
        *,
        min_key_length: int = DEFAULT_MIN_KEY_LENGTH,
        max_key_length: int = DEFAULT_MAX_KEY_LENGTH,
    ):
        self.min_key_length = min_key_length
        self.max_key_length = max_key_length

    def validate_keys(self, keys: Sequence[str] | None, threshold: int) -> list[bytes]:
        """Validate a set of keys against a threshold; return the decoded keys."""
        key_list = list(keys or ())
        _check_key_set(key_list, threshold)
        decoded = _decode_each(self.validate_base64_key, key_list)
        first_seen: dict[str, int] = {}
        for index, key in enumerate(key_list):
            if key in first_seen:
                raise ValidationError(
                    "keys",
                    key_list,
                    f"duplicate key found at indices {first_seen[key]} and {index}",
                )
            first_seen[key] = index
        return decoded

    def validate_base64_key(self, key: str) -> bytes:
        """Validate one base64 key and return its decoded bytes."""
        sensitive = contains_sensitive_content(key)
        shown = REDACTED if sensitive else key

        if not key:
            raise ValidationError("key", shown, "key cannot be empty")
        if len(key) < self.min_key_length:
            raise ValidationError(
                "key", shown, f"key length ({len(key)}) is below minimum ({self.min_key_length})"
            )
        if len(key) > self.max_key_length:
            raise ValidationError(
                "key", shown, f"key length ({len(key)}) exceeds maximum ({self.max_key_length})"
            )

        try:
            decoded = _decode_base64(key)
        except ValueError as exc:
            raise ValidationError("key", shown, f"invalid base64 encoding: {exc}") from None

        if not decoded:
            raise ValidationError("key", shown, "decoded key cannot be empty")

        try:
            _check_key_pattern(decoded)
        except ValidationError:
            if sensitive:
                raise ValidationError("key", shown, "key validation failed") from None
            raise
        return decoded


class StrictKeyValidator(DefaultKeyValidator):
    """Default validation plus exact decoded length, allowed prefixes and forbidden strings."""

    def __init__(
        self,
        required_length: int = 0,
        *,
        allowed_prefixes: Iterable[str] = (),
        forbidden_strings: Iterable[str] = DEFAULT_FORBIDDEN_STRINGS,
        min_key_length: int = DEFAULT_MIN_KEY_LENGTH,
        max_key_length: int = DEFAULT_MAX_KEY_LENGTH,
    ):
        super().__init__(min_key_length=min_key_length, max_key_length=max_key_length)
        self.required_length = required_length
        self.allowed_prefixes = list(allowed_prefixes)
        self.forbidden_strings = list(forbidden_strings)

    def validate_base64_key(self, key: str) -> bytes:
        """Validate one key with the strict rules and return its decoded bytes."""
        decoded = super().validate_base64_key(key)

        if self.required_length > 0 and len(decoded) != self.required_length:
            raise ValidationError(
                "key",
                key,
                f"key must be exactly {self.required_length} bytes when decoded (got {len(decoded)})",
            )

        if self.allowed_prefixes and not any(
            decoded.startswith(prefix.encode("utf-8")) for prefix in self.allowed_prefixes
        ):
            raise ValidationError(
                "key",
                key,
                f"decoded key must start with one of: [{' '.join(self.allowed_prefixes)}]",
            )

        key_lower = key.lower()
        decoded_lower = decoded.decode("utf-8", errors="replace").lower()
        for forbidden in self.forbidden_strings:
            needle = forbidden.lower()
            if needle in key_lower or needle in decoded_lower:
                raise ValidationError("key", key, f"key contains forbidden string: {forbidden}")
        return decoded

    def validate_keys(self, keys: Sequence[str] | None, threshold: int) -> list[bytes]:
        """Validate a set of keys with the strict rules; return the decoded keys."""
        key_list = list(keys or ())
        _check_key_set(key_list, threshold)
        decoded = _decode_each(self.validate_base64_key, key_list)
        seen: set[str] = set()
        for index, key in enumerate(key_list):
            if key in seen:
                raise ValidationError("keys", key_list, f"duplicate key at index {index}")
            seen.add(key)
        return decoded