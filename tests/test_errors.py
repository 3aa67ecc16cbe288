import pytest

from vaultunseal.errors import (
    AuthenticationError,
    OperationTimeoutError,
    SealStatusInfo,
    UnsealError,
    ValidationError,
    VaultConnectionError,
    VaultError,
    contains_sensitive_content,
    is_retryable_error,
)

URL = "http://vault.example.com:8200"


def test_vault_error_message_and_cause():
    cause = RuntimeError("boom")
    err = VaultError("seal-status", URL, cause, retryable=True)
    text = str(err)
    assert "seal-status" in text
    assert URL in text
    assert "boom" in text
    assert err.__cause__ is cause
    assert err.retryable is True


@pytest.mark.parametrize("retryable", [True, False])
def test_vault_error_retryable_flag(retryable):
    assert is_retryable_error(VaultError("unseal", URL, "failure", retryable)) is retryable


@pytest.mark.parametrize("retryable", [True, False])
def test_connection_error_retryable_flag(retryable):
    err = VaultConnectionError(URL, OSError("refused"), timeout=2.5, retryable=retryable)
    assert is_retryable_error(err) is retryable
    assert URL in str(err)


def test_retryable_found_through_cause_chain():
    inner = VaultError("seal-status", URL, "down", retryable=True)
    with pytest.raises(RuntimeError) as info:
        try:
            raise inner
        except VaultError as exc:
            raise RuntimeError("wrapped") from exc
    assert is_retryable_error(info.value) is True


def test_unseal_error_unwraps_to_vault_error():
    inner = VaultError("unseal-key-submit", URL, "timeout", retryable=True)
    err = UnsealError(URL, 2, inner)
    assert is_retryable_error(err) is True
    assert "2" in str(err)
    assert err.__cause__ is inner


def test_non_vault_errors_are_not_retryable():
    assert is_retryable_error(ValueError("plain")) is False
    assert is_retryable_error(ValidationError("url", "", "URL cannot be empty")) is False
    assert is_retryable_error(None) is False


def test_validation_error_redacts_key_fields():
    err = ValidationError("key", "dGVzdA==", "invalid base64 encoding")
    text = str(err)
    assert "[REDACTED]" in text
    assert "dGVzdA==" not in text
    assert "invalid base64 encoding" in text


def test_validation_error_redacts_sensitive_values():
    err = ValidationError("url", "http://localhost:8200", "bad url")
    assert "[REDACTED]" in str(err)
    assert "localhost" not in str(err)


def test_validation_error_shows_plain_values():
    err = ValidationError("threshold", 7, "threshold must be at least 1")
    text = str(err)
    assert "'threshold'" in text
    assert "'7'" in text
    assert "[REDACTED]" not in text


def test_validation_error_index_prefix():
    err = ValidationError("key", "x", "key cannot be empty", index=2)
    assert str(err).startswith("invalid key at index 2: ")


def test_validation_error_is_value_error():
    err = ValidationError("maxRetries", -1, "MaxRetries cannot be negative")
    assert isinstance(err, ValueError)
    assert err.field == "maxRetries"
    assert err.message == "MaxRetries cannot be negative"
    text = str(err)
    assert "'maxRetries'" in text
    assert "'-1'" in text
    assert "MaxRetries cannot be negative" in text


@pytest.mark.parametrize(
    "value, expected",
    [
        ("PASSWORD", True),
        ("C:\\WINDOWS\\system32", True),
        ("192.168.1.1", True),
        ("threshold", False),
        (42, False),
    ],
)
def test_contains_sensitive_content(value, expected):
    assert contains_sensitive_content(value) is expected


def test_timeout_error_message():
    err = OperationTimeoutError("health-check", 2.0, 2.5)
    assert isinstance(err, TimeoutError)
    assert "health-check" in str(err)


def test_authentication_error_message():
    cause = PermissionError("denied")
    err = AuthenticationError(URL, "approle", cause)
    assert "approle" in str(err)
    assert URL in str(err)
    assert err.__cause__ is cause


def test_unseal_error_carries_seal_status():
    info = SealStatusInfo(sealed=True, progress=1, threshold=3)
    err = UnsealError(URL, 0, "rejected", seal_status=info)
    assert err.seal_status == info
    assert err.seal_status.progress < err.seal_status.threshold