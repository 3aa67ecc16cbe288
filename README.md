# vaultunseal

A library for unsealing HashiCorp Vault servers. It checks that unseal keys
look sound and submits them to a Vault server over its HTTP API. When a
failure is marked retryable, it tries again. It also ships in-memory test
doubles and a fail-fast harness for integration checks.

The package uses only the standard library. To get pytest as well, run
`pip install vaultunseal[test]`.

## Validating unseal keys

```python
from vaultunseal.validation import DefaultKeyValidator, StrictKeyValidator
from vaultunseal.errors import ValidationError

validator = DefaultKeyValidator()
decoded = validator.validate_keys(["dGVzdC1rZXktMQ==", "dGVzdC1rZXktMg=="], 2)

try:
    validator.validate_keys(["dGVzdC1rZXktMQ==", "dGVzdC1rZXktMQ=="], 2)
except ValidationError as exc:
    print(exc)  # ... duplicate key found at indices 0 and 1
```

`validate_keys` returns the decoded bytes of each key. `validate_base64_key`
checks a single key. `DefaultKeyValidator` raises `ValidationError` in these
cases:

- the key list is empty
- the threshold is below 1 or greater than the number of keys
- a key is empty or longer than 1024 characters
- a key is not padded standard base64 (line breaks are ignored)
- a key decodes to all zeros or to one repeated byte
- a key decodes to a repeating 2-byte or 4-byte pattern
- the same key appears twice

When a key fails, the error names its position with
`invalid key at index N`. Messages about keys show `[REDACTED]` instead of
the value.

`StrictKeyValidator(required_length)` runs the same checks and adds three
more:

- an exact decoded length (skipped when the length is 0)
- optional `allowed_prefixes`
- `forbidden_strings`, which defaults to `password`, `secret`, `test`,
  `example` and `demo`

`has_repeating_pattern(data, pattern_len)` is exposed as well.

## Talking to a server

```python
from vaultunseal.client import new_client

with new_client("https://vault.example.com:8200", False, 30.0) as client:
    if client.is_sealed():
        status = client.unseal(unseal_keys, 3)
        print("sealed:", status.sealed, "progress:", status.progress)
```

Here `unseal_keys` is your list of base64 unseal keys.

`HttpVaultClient` has these methods:

- `is_sealed`
- `get_seal_status`
- `unseal`
- `submit_single_key`
- `is_initialized`
- `health_check`
- `close`
- `is_closed`

They use the `/v1/sys/seal-status`, `/v1/sys/unseal`, `/v1/sys/init` and
`/v1/sys/health` endpoints. Once the client is closed, every operation raises
`VaultError`.

For full control, build a `ClientConfig` and pass it to
`new_client_with_config`. It has these fields:

- `url`
- `timeout` (seconds)
- `tls_skip_verify`
- `validator`
- `strategy`
- `metrics`
- `max_retries`
- `retry_delay`

`validate_client_config` checks a config without building a client. It
rejects:

- an empty URL, or one that is not `http://` or `https://`
- a URL longer than 2048 characters
- a timeout under one millisecond
- negative retries

`DefaultClientFactory.new_client(endpoint, tls_skip_verify, timeout)`
creates clients.

## Unseal strategies

These live in `vaultunseal.strategy`:

- `DefaultUnsealStrategy` first validates the keys. If the server is already
  unsealed, it returns at once. Otherwise it submits up to `threshold` keys
  one at a time until the server reports it is unsealed. Each outcome is
  recorded on the optional metrics sink.
- `RetryUnsealStrategy` wraps another strategy and retries errors that are
  marked retryable. `DefaultRetryPolicy` decides the delay: it backs off
  exponentially from `base_delay`, capped at `max_delay`.
- `ParallelUnsealStrategy` hands a single instance to its base strategy.

`new_client_with_config` wraps the default strategy in the retry strategy
when `max_retries` is greater than 1.

## Types and errors

`vaultunseal.types` defines two data classes, `SealStatus` and
`HealthStatus`. Each has a `from_dict` method. It also defines the
protocols that the other modules build on:

- `VaultClient`
- `ClientFactory`
- `KeyValidator`
- `UnsealStrategy`
- `ClientMetrics`
- `RetryPolicy`

`vaultunseal.errors` defines these exceptions:

- `VaultError`
- `ValidationError`
- `UnsealError`
- `VaultConnectionError`
- `OperationTimeoutError`
- `AuthenticationError`

It also defines the `SealStatusInfo` data class.
`is_retryable_error(err)` follows the `__cause__` chain to the first
`VaultError` or `VaultConnectionError` and returns its `retryable` flag.

## Test helpers

`vaultunseal.mocks` provides three test doubles:

- `MockVaultClient` simulates a Vault in memory. It is sealed with a
  threshold of 3. You can switch failures on with `fail_seal_status`,
  `fail_unseal`, `fail_health_check` and `fail_initialized`, and add a
  delay with `response_delay`. It counts calls, which you read with
  `call_count("unseal")`.
- `MockClientMetrics` records every metric call as a `MetricRecord`.
- `MockClientFactory` creates mock clients and remembers them by endpoint.

`vaultunseal.integration` provides the fail-fast harness:

- `IntegrationRunner` waits until at least one registered client passes a
  health check. It then limits how many tests run at once and runs each
  test through a `CircuitBreaker` with an operation timeout.
- `run_scenarios` runs `Scenario` objects in order. Each scenario has
  optional setup and cleanup steps, an `expect_error` flag and a timeout.
  The run stops at the first scenario that does not meet its expectation.
- Failures raise `IntegrationError`, or `OperationTimeoutError` when a step
  runs past its limit.
- `IntegrationConfig` holds every limit.

`vaultunseal.debug.DebugIntegrationRunner` adds a `DebugLogger` to the
runner. The logger records events and builds a text report with
`generate_report` or `print_debug_report`.

The `INTEGRATION_DEBUG` environment variable sets the level. Set it to
`BASIC`, `VERBOSE` or `TRACE`; `debug_config()` reads it. If
`INTEGRATION_DEBUG_LOG` names a file, events are also appended to that file
as JSON lines.

## What it does not do

This is a library only. It has no command-line program and no long-running
service that watches servers and unseals them on its own schedule. It does
not authenticate to Vault, initialise a server, or store unseal keys. You
supply the keys and call the client yourself.