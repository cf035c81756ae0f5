"""Tests for the HTTP transport wrapper."""
from __future__ import annotations

from typing import Any

import pytest
import requests

from cwkit.config import HttpConfig
from cwkit.providers.cloudways import CloudwaysClient
from cwkit.providers.http import HttpClient, NetworkError


class FakeResponse:
    def __init__(self, status_code: int, text: str) -> None:
        self.status_code = status_code
        self.text = text


class FakeSession:
    """Minimal stand-in for :class:`requests.Session`."""

    def __init__(self, response: FakeResponse | Exception) -> None:
        self.response = response
        self.mounted: dict[str, Any] = {}
        self.requests: list[tuple[str, str, dict[str, Any]]] = []
        self.closed = False

    def mount(self, prefix: str, adapter: Any) -> None:
        self.mounted[prefix] = adapter

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append((method, url, kwargs))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    def close(self) -> None:
        self.closed = True


def test_client_mounts_retry_adapter_from_settings() -> None:
    """Retry budget and backoff come from the HTTP settings."""
    session = FakeSession(FakeResponse(200, "{}"))
    HttpClient(HttpConfig(retries=4, retry_backoff=0.5), session=session)  # type: ignore[arg-type]

    adapter = session.mounted["https://"]
    assert adapter.max_retries.total == 4
    assert adapter.max_retries.backoff_factor == 0.5
    assert 503 in adapter.max_retries.status_forcelist
    assert "http://" in session.mounted


def test_get_sends_bearer_and_timeout_pair() -> None:
    """Requests carry the bearer header and a (connect, read) timeout."""
    session = FakeSession(FakeResponse(200, '{"servers": []}'))
    client = HttpClient(HttpConfig(connect_timeout=3, timeout=9), session=session)  # type: ignore[arg-type]

    response = client.get("https://api.example/v1/server", bearer="abc")

    method, url, kwargs = session.requests[0]
    assert (method, url) == ("GET", "https://api.example/v1/server")
    assert kwargs["headers"]["Authorization"] == "Bearer abc"
    assert kwargs["timeout"] == (3, 9)
    assert response.ok
    assert response.json_object() == {"servers": []}


def test_post_form_and_json_bodies() -> None:
    """Form bodies go through ``data`` and JSON bodies through ``json``."""
    session = FakeSession(FakeResponse(201, ""))
    client = HttpClient(session=session)  # type: ignore[arg-type]

    client.post("https://api.example/form", form={"a": "b c"})
    client.post("https://api.example/json", json_body={"x": 1})

    assert session.requests[0][2]["data"] == {"a": "b c"}
    assert "json" not in session.requests[0][2]
    assert session.requests[1][2]["json"] == {"x": 1}


def test_non_json_body_has_no_payload() -> None:
    """Non-JSON and non-object bodies are kept as text only."""
    session = FakeSession(FakeResponse(500, "<html>oops</html>"))
    response = HttpClient(session=session).get("https://api.example/x")  # type: ignore[arg-type]
    assert not response.ok
    assert response.payload is None
    assert response.json_object() is None
    assert response.text == "<html>oops</html>"


def test_transport_failure_raises_network_error() -> None:
    """Request exceptions surface as NetworkError."""
    session = FakeSession(requests.ConnectionError("connection refused"))
    client = HttpClient(session=session)  # type: ignore[arg-type]

    with pytest.raises(NetworkError) as excinfo:
        client.post("https://api.example/oauth/access_token", json_body={"api_key": "secret"})

    assert excinfo.value.method == "POST"
    assert "connection refused" in excinfo.value.reason
    assert "secret" not in str(excinfo.value)


def test_context_manager_closes_session() -> None:
    """Leaving the context releases the session."""
    session = FakeSession(FakeResponse(200, ""))
    with HttpClient(session=session):  # type: ignore[arg-type]
        pass
    assert session.closed


def test_ssh_key_upload_sends_raw_key_through_form_encoder() -> None:
    """The key reaches the form encoder unescaped and is encoded exactly once."""
    session = FakeSession(FakeResponse(200, '{"id": "77"}'))
    cloudways = CloudwaysClient(
        HttpClient(session=session),  # type: ignore[arg-type]
        "https://api.example/api/v1",
    )

    reply = cloudways.upload_ssh_key("tok", "42", "deploy", "ssh-ed25519 AAAA user@host")

    method, url, kwargs = session.requests[0]
    assert (method, url) == ("POST", "https://api.example/api/v1/ssh_key")
    assert kwargs["data"] == {
        "server_id": "42",
        "ssh_key_name": "deploy",
        "ssh_key": "ssh-ed25519 AAAA user@host",
    }
    body = requests.Request("POST", url, data=kwargs["data"]).prepare().body
    assert "ssh_key=ssh-ed25519+AAAA+user%40host" in body
    assert "%2520" not in body
    assert reply.key_id == "77"
