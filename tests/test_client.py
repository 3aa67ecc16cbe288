import base64
import json
import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlsplit

import pytest

from vaultunseal.client import (
    ClientConfig,
    DefaultClientFactory,
    HttpVaultClient,
    new_client,
    new_client_with_config,
    validate_client_config,
)
from vaultunseal.errors import UnsealError, ValidationError, VaultError
from vaultunseal.mocks import MockClientMetrics
from vaultunseal.types import SealStatus

KEYS = ["dGVzdC1rZXktMQ==", "dGVzdC1rZXktMg==", "dGVzdC1rZXktMw=="]


@dataclass
class _ServerState:
    sealed: bool = True
    progress: int = 0
    threshold: int = 3
    initialized: bool = True
    reject_keys: bool = False
    submitted: list = field(default_factory=list)
    headers: list = field(default_factory=list)
    health_queries: list = field(default_factory=list)


class _Handler(BaseHTTPRequestHandler):
    def log_message(self, *args):
        pass

    def _send(self, code, body):
        payload = json.dumps(body).encode()
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def _status(self):
        state = self.server.state
        return {
            "sealed": state.sealed,
            "t": state.threshold,
            "n": 5,
            "progress": state.progress,
            "initialized": state.initialized,
            "version": "1.15.0",
        }

    def do_GET(self):
        state = self.server.state
        state.headers.append(dict(self.headers))
        parts = urlsplit(self.path)
        if parts.path == "/v1/sys/seal-status":
            self._send(200, self._status())
        elif parts.path == "/v1/sys/init":
            self._send(200, {"initialized": state.initialized})
        elif parts.path == "/v1/sys/health":
            state.health_queries.append(parse_qs(parts.query))
            code = 299 if state.sealed else 200
            self._send(code, {"initialized": state.initialized, "sealed": state.sealed, "version": "1.15.0"})
        else:
            self._send(404, {"errors": ["not found"]})

    def do_PUT(self):
        state = self.server.state
        state.headers.append(dict(self.headers))
        length = int(self.headers.get("Content-Length", 0))
        body = json.loads(self.rfile.read(length) or b"{}")
        if urlsplit(self.path).path != "/v1/sys/unseal":
            self._send(404, {"errors": ["not found"]})
            return
        state.submitted.append(body.get("key"))
        if state.reject_keys:
            self._send(400, {"errors": ["invalid unseal key"]})
            return
        state.progress += 1
        if state.progress >= state.threshold:
            state.sealed = False
            state.progress = 0
        self._send(200, self._status())


@pytest.fixture
def server():
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    httpd.state = _ServerState()
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    try:
        yield httpd
    finally:
        httpd.shutdown()
        httpd.server_close()


def _url(httpd):
    host, port = httpd.server_address[:2]
    return f"http://{host}:{port}"


def _dead_url():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return f"http://127.0.0.1:{port}"


@pytest.mark.parametrize(
    "url, skip, timeout",
    [
        ("http://localhost:8200", False, 30.0),
        ("https://vault.example.com:8200", True, 30.0),
    ],
)
def test_new_client_valid(url, skip, timeout):
    client = new_client(url, skip, timeout)
    assert client.url == url
    assert client.timeout == timeout
    assert client.tls_skip_verify is skip
    assert client.is_closed() is False
    client.close()


@pytest.mark.parametrize(
    "url, timeout, field_name",
    [
        ("", 30.0, "url"),
        ("ftp://localhost:8200", 30.0, "url"),
        ("http://" + "\x00" * 2050, 30.0, "url"),
        ("http://localhost:8200", 1e-9, "timeout"),
    ],
)
def test_new_client_invalid(url, timeout, field_name):
    with pytest.raises(ValidationError) as info:
        new_client(url, False, timeout)
    assert info.value.field == field_name


def test_new_client_with_config_valid():
    client = new_client_with_config(
        ClientConfig(url="http://localhost:8200", timeout=30.0, max_retries=3, retry_delay=1.0)
    )
    assert client.timeout == 30.0
    client.close()


def test_new_client_with_config_negative_retries():
    with pytest.raises(ValidationError) as info:
        new_client_with_config(ClientConfig(url="http://localhost:8200", max_retries=-1))
    assert info.value.field == "maxRetries"


def test_new_client_with_config_small_timeout():
    client = new_client_with_config(
        ClientConfig(url="http://localhost:8200", timeout=0.001, max_retries=1)
    )
    assert client.timeout >= 0.001
    client.close()


@pytest.mark.parametrize(
    "config, message",
    [
        (ClientConfig(url="http://localhost:8200", timeout=30.0, max_retries=3), None),
        (ClientConfig(url="", timeout=30.0), "URL cannot be empty"),
        (ClientConfig(url="ftp://localhost:8200"), "URL must start with http:// or https://"),
        (ClientConfig(url="http://" + "\x00" * 2050), "URL exceeds maximum length of 2048 characters"),
        (ClientConfig(url="http://localhost:8200", timeout=1e-9), "Timeout must be at least 1 millisecond"),
        (ClientConfig(url="http://localhost:8200", max_retries=-1), "MaxRetries cannot be negative"),
    ],
)
def test_validate_client_config(config, message):
    if message is None:
        assert validate_client_config(config) is None
    else:
        with pytest.raises(ValidationError) as info:
            validate_client_config(config)
        assert info.value.message == message


def test_close_is_idempotent():
    client = new_client("http://localhost:8200", False, 30.0)
    assert client.is_closed() is False
    client.close()
    assert client.is_closed() is True
    client.close()
    assert client.is_closed() is True


def test_context_manager_closes():
    with new_client("http://localhost:8200") as client:
        assert client.is_closed() is False
    assert client.is_closed() is True


def _closed_client():
    client = new_client("http://localhost:8200", False, 30.0)
    client.close()
    return client


def _assert_closed_error(info):
    assert "client is closed" in str(info.value)
    assert info.value.retryable is False


def test_closed_client_is_sealed_fails():
    client = _closed_client()
    with pytest.raises(VaultError) as info:
        client.is_sealed()
    _assert_closed_error(info)


def test_closed_client_get_seal_status_fails():
    client = _closed_client()
    with pytest.raises(VaultError) as info:
        client.get_seal_status()
    _assert_closed_error(info)


def test_closed_client_unseal_fails():
    client = _closed_client()
    with pytest.raises(VaultError) as info:
        client.unseal(["key1", "key2", "key3"], 3)
    _assert_closed_error(info)


def test_closed_client_is_initialized_fails():
    client = _closed_client()
    with pytest.raises(VaultError) as info:
        client.is_initialized()
    _assert_closed_error(info)


def test_closed_client_health_check_fails():
    client = _closed_client()
    with pytest.raises(VaultError) as info:
        client.health_check()
    _assert_closed_error(info)


def test_submit_single_key_invalid_base64():
    client = new_client(_dead_url(), False, 5.0)
    with pytest.raises(ValidationError) as info:
        client.submit_single_key("not-valid-base64!!!", 0)
    assert "invalid base64 encoding in key 0" in str(info.value)


@pytest.mark.parametrize("key", [base64.b64encode(b"valid-key-data").decode(), ""])
def test_submit_single_key_without_server(key):
    client = new_client(_dead_url(), False, 5.0)
    with pytest.raises(VaultError) as info:
        client.submit_single_key(key, 0)
    assert info.value.operation == "unseal-key-submit"
    assert info.value.retryable is True
    assert "failed to submit unseal key 0" in str(info.value)


def test_default_client_factory():
    client = DefaultClientFactory().new_client("http://localhost:8200", False, 30.0)
    assert client.url == "http://localhost:8200"
    assert client.timeout == 30.0
    client.close()
    assert client.is_closed() is True


def test_concurrent_property_access():
    client = new_client("http://localhost:8200", False, 30.0)
    with ThreadPoolExecutor(max_workers=16) as pool:
        urls = list(pool.map(lambda _: client.url, range(100)))
        timeouts = list(pool.map(lambda _: client.timeout, range(100)))
        closed = list(pool.map(lambda _: client.is_closed(), range(100)))
    assert set(urls) == {"http://localhost:8200"}
    assert set(timeouts) == {30.0}
    assert set(closed) == {False}


def test_seal_status_and_headers(server):
    client = new_client(_url(server), False, 5.0)
    status = client.get_seal_status()
    assert status.sealed is True
    assert status.threshold == 3
    assert status.shares == 5
    assert status.version == "1.15.0"
    assert client.is_sealed() is True
    headers = server.state.headers[0]
    assert headers["User-Agent"] == "vaultunseal/2.0"
    assert headers["X-Content-Type-Options"] == "nosniff"
    assert headers["X-Frame-Options"] == "DENY"


def test_is_initialized(server):
    server.state.initialized = False
    client = new_client(_url(server), False, 5.0)
    assert client.is_initialized() is False


def test_health_check_sealed_is_not_an_error(server):
    client = new_client(_url(server), False, 5.0)
    health = client.health_check()
    assert health.sealed is True
    assert health.initialized is True
    assert server.state.health_queries[0]["sealedcode"] == ["299"]


def test_metrics_recorded(server):
    metrics = MockClientMetrics()
    url = _url(server)
    client = new_client_with_config(ClientConfig(url=url, timeout=5.0, metrics=metrics))
    client.get_seal_status()
    client.health_check()
    assert [(m.endpoint, m.success) for m in metrics.seal_status_checks] == [(url, True)]
    assert [(m.endpoint, m.success) for m in metrics.health_checks] == [(url, True)]


def test_metrics_record_failure():
    metrics = MockClientMetrics()
    url = _dead_url()
    client = new_client_with_config(ClientConfig(url=url, timeout=5.0, metrics=metrics))
    with pytest.raises(VaultError) as info:
        client.is_sealed()
    assert info.value.operation == "seal-status"
    assert info.value.retryable is True
    assert [(m.endpoint, m.success) for m in metrics.seal_status_checks] == [(url, False)]


def test_health_check_connection_failure():
    client = new_client(_dead_url(), False, 5.0)
    with pytest.raises(VaultError) as info:
        client.health_check()
    assert info.value.operation == "health-check"


def test_unseal_submits_keys_until_unsealed(server):
    client = new_client(_url(server), False, 5.0)
    status = client.unseal(KEYS, 3)
    assert status.sealed is False
    assert server.state.submitted == KEYS


def test_unseal_already_unsealed(server):
    server.state.sealed = False
    client = new_client(_url(server), False, 5.0)
    status = client.unseal(KEYS, 3)
    assert status.sealed is False
    assert server.state.submitted == []


def test_unseal_rejected_key_without_retry(server):
    server.state.reject_keys = True
    client = new_client_with_config(ClientConfig(url=_url(server), timeout=5.0, max_retries=1))
    with pytest.raises(UnsealError) as info:
        client.unseal(KEYS, 3)
    assert info.value.key_index == 0
    assert server.state.submitted == [KEYS[0]]


def test_custom_validator_is_used(server):
    class RejectingValidator:
        def validate_keys(self, keys, threshold):
            raise ValueError("custom validation error")

        def validate_base64_key(self, key):
            return b""

    client = new_client_with_config(
        ClientConfig(url=_url(server), timeout=5.0, validator=RejectingValidator(), max_retries=1)
    )
    with pytest.raises(ValueError, match="custom validation error"):
        client.unseal(KEYS, 3)
    assert server.state.submitted == []


def test_custom_strategy_is_used():
    received = []

    class FixedStrategy:
        def unseal(self, client, keys, threshold):
            received.append((client, list(keys), threshold))
            return SealStatus(sealed=False)

    client = new_client_with_config(
        ClientConfig(url="http://localhost:8200", timeout=30.0, strategy=FixedStrategy(), max_retries=1)
    )
    status = client.unseal(["a", "b"], 2)
    assert status.sealed is False
    assert len(received) == 1
    assert received[0][0] is client
    assert received[0][1:] == (["a", "b"], 2)


def test_http_client_direct_construction_defaults():
    client = HttpVaultClient("http://localhost:8200", 12.5)
    assert client.url == "http://localhost:8200"
    assert client.timeout == 12.5
    assert client.tls_skip_verify is False
    assert client.headers["X-Request-ID"].startswith("vaultunseal-")