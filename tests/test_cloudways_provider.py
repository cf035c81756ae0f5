"""Tests for the Cloudways API client."""
from __future__ import annotations

import json
from typing import Any

import pytest

from cwkit.models import SchemaError
from cwkit.providers.cloudways import (
    AuthenticationError,
    CloudwaysClient,
    parse_servers,
    parse_upload_reply,
)
from cwkit.providers.http import HttpResponse, NetworkError

BASE_URL = "https://api.example/api/v1"


def _response(status: int, payload: object) -> HttpResponse:
    text = payload if isinstance(payload, str) else json.dumps(payload)
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None
    return HttpResponse(status_code=status, text=text, payload=parsed)


class FakeHttp:
    """Scripted HTTP client capturing every call."""

    def __init__(self, *responses: HttpResponse | Exception) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def _next(self, method: str, url: str, kwargs: dict[str, Any]) -> HttpResponse:
        self.calls.append((method, url, kwargs))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url: str, **kwargs: Any) -> HttpResponse:
        return self._next("GET", url, kwargs)

    def post(self, url: str, **kwargs: Any) -> HttpResponse:
        return self._next("POST", url, kwargs)


def _client(*responses: HttpResponse | Exception) -> tuple[CloudwaysClient, FakeHttp]:
    http = FakeHttp(*responses)
    return CloudwaysClient(http, BASE_URL), http  # type: ignore[arg-type]


def test_authenticate_returns_token() -> None:
    """A response carrying an access token yields that token."""
    client, http = _client(_response(200, {"access_token": "tok-123", "expires_in": 3600}))

    assert client.authenticate("ops@example.com", "k3y") == "tok-123"
    method, url, kwargs = http.calls[0]
    assert (method, url) == ("POST", f"{BASE_URL}/oauth/access_token")
    assert kwargs["json_body"] == {"email": "ops@example.com", "api_key": "k3y"}


@pytest.mark.parametrize(
    "payload",
    [
        {"access_token": None},
        {"access_token": "null"},
        {"access_token": ""},
        {"error": "invalid_credentials", "error_description": "bad key"},
        "<html>gateway</html>",
    ],
)
def test_authenticate_rejects_missing_token(payload: object) -> None:
    """Responses without a usable token fail authentication with the body kept."""
    client, _ = _client(_response(401, payload))

    with pytest.raises(AuthenticationError) as excinfo:
        client.authenticate("ops@example.com", "k3y")
    assert "401" in str(excinfo.value)
    assert excinfo.value.body


def test_authenticate_wraps_transport_failures() -> None:
    """Network errors during authentication become AuthenticationError."""
    client, _ = _client(NetworkError("POST", f"{BASE_URL}/oauth/access_token", "timed out"))

    with pytest.raises(AuthenticationError, match="timed out"):
        client.authenticate("ops@example.com", "k3y")


def test_authenticate_rejects_blank_credentials_without_network() -> None:
    """Blank inputs fail before any request is made."""
    client, http = _client()
    with pytest.raises(AuthenticationError):
        client.authenticate("", "k3y")
    assert http.calls == []


def test_authentication_error_body_is_redacted() -> None:
    """Token values never appear in the stored diagnostic body."""
    error = AuthenticationError("failed", '{"access_token": "abcdef", "status": false}')
    assert "abcdef" not in error.body


def test_fetch_servers_uses_bearer_token() -> None:
    """Server listing sends the token and parses every entry."""
    client, http = _client(
        _response(
            200,
            {
                "status": True,
                "servers": [
                    {
                        "id": "1",
                        "public_ip": "203.0.113.1",
                        "master_user": "m1",
                        "status": "running",
                        "apps": [{"application": "wordpress", "app_fqdn": "a.example", "mysql_db_name": "a"}],
                    },
                    {"id": "2", "public_ip": "203.0.113.2", "master_user": "m2", "status": "stopped", "apps": []},
                ],
            },
        )
    )

    servers = client.fetch_servers("tok")

    assert [server.id for server in servers] == ["1", "2"]
    assert servers[0].apps[0].domain == "a.example"
    assert http.calls[0][1] == f"{BASE_URL}/server"
    assert http.calls[0][2]["bearer"] == "tok"


def test_parse_servers_accepts_empty_account() -> None:
    """An empty server list is valid."""
    assert parse_servers(_response(200, {"servers": []})) == []


@pytest.mark.parametrize(
    "payload",
    [
        {"status": True},
        {"servers": {"id": "1"}},
        ["not", "an", "object"],
        "not json at all",
    ],
)
def test_parse_servers_schema_violations(payload: object) -> None:
    """Bodies without a servers list raise SchemaError with the body kept."""
    with pytest.raises(SchemaError) as excinfo:
        parse_servers(_response(200, payload))
    assert excinfo.value.body


def test_upload_ssh_key_sends_form_fields() -> None:
    """Uploads post the server, key name and key as form fields."""
    client, http = _client(_response(200, {"id": 4321}))

    reply = client.upload_ssh_key("tok", "77", "deploy", "ssh-ed25519 AAAA user@host")

    method, url, kwargs = http.calls[0]
    assert (method, url) == ("POST", f"{BASE_URL}/ssh_key")
    assert kwargs["form"] == {
        "server_id": "77",
        "ssh_key_name": "deploy",
        "ssh_key": "ssh-ed25519 AAAA user@host",
    }
    assert kwargs["bearer"] == "tok"
    assert reply.key_id == "4321"


@pytest.mark.parametrize(
    ("payload", "key_id", "message"),
    [
        ({"id": "9"}, "9", "Unknown error"),
        ({"id": None, "message": "Key already exists"}, None, "Key already exists"),
        ({"error_description": "Invalid token"}, None, "Invalid token"),
        ({"error": "server not found"}, None, "server not found"),
        ({"message": ["first", "second"]}, None, "first; second"),
        ({}, None, "Unknown error"),
        ("upstream exploded", None, "upstream exploded"),
    ],
)
def test_parse_upload_reply(payload: object, key_id: str | None, message: str) -> None:
    """Upload replies expose the key id or the best available error message."""
    reply = parse_upload_reply(_response(422, payload))
    assert reply.key_id == key_id
    assert reply.message == message
