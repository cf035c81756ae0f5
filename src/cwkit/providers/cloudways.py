"""Client for the Cloudways hosting REST API."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from ..logging import redact
from ..models import SchemaError, Server
from .http import HttpClient, HttpResponse, NetworkError

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.cloudways.com/api/v1"
UNKNOWN_ERROR = "Unknown error"


class AuthenticationError(RuntimeError):
    """Raised when the access token exchange fails."""

    def __init__(self, message: str, body: str = "") -> None:
        """Keep the (redacted) raw response body for diagnosis."""
        super().__init__(message)
        self.body = redact(body)


@dataclass(slots=True, frozen=True)
class UploadReply:
    """Interpreted response of an SSH key upload call."""

    status_code: int
    key_id: str | None
    message: str
    body: str = ""


class CloudwaysClient:
    """Authenticate, list servers and upload SSH keys."""

    def __init__(self, http: HttpClient, base_url: str = DEFAULT_BASE_URL) -> None:
        """Bind the client to *http* and the API *base_url*."""
        self.http = http
        self.base_url = base_url.rstrip("/")

    def authenticate(self, email: str, api_key: str) -> str:
        """Exchange *email* and *api_key* for a bearer token.

        Exactly one network call is made. Transport failures and responses
        without a usable ``access_token`` raise :class:`AuthenticationError`.
        """
        if not email.strip() or not api_key.strip():
            raise AuthenticationError("Email and API key must both be non-empty.")
        try:
            response = self.http.post(
                self._url("/oauth/access_token"),
                json_body={"email": email, "api_key": api_key},
            )
        except NetworkError as exc:
            raise AuthenticationError(f"Authentication request failed: {exc.reason}") from exc

        payload = response.json_object() or {}
        token = payload.get("access_token")
        if not isinstance(token, str) or not token.strip() or token == "null":
            raise AuthenticationError(
                f"Authentication failed (HTTP {response.status_code}).",
                response.text,
            )
        LOGGER.debug("Authenticated %s", email)
        return token

    def fetch_servers(self, token: str) -> list[Server]:
        """Return every server on the account, each with its applications.

        An empty list is valid. A body without a ``servers`` list raises
        :class:`SchemaError`; transport failures raise :class:`NetworkError`.
        """
        response = self.http.get(self._url("/server"), bearer=token)
        return parse_servers(response)

    def upload_ssh_key(
        self,
        token: str,
        server_id: str,
        key_name: str,
        public_key: str,
    ) -> UploadReply:
        """Upload *public_key* to *server_id* under *key_name*.

        The form encoder percent-encodes the key. Transport failures raise
        :class:`NetworkError`; API-level failures come back as a reply
        without ``key_id``.
        """
        response = self.http.post(
            self._url("/ssh_key"),
            form={
                "server_id": server_id,
                "ssh_key_name": key_name,
                "ssh_key": public_key,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            bearer=token,
        )
        return parse_upload_reply(response)

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"


def parse_servers(response: HttpResponse) -> list[Server]:
    """Validate the server listing and convert it into :class:`Server` records."""
    payload = response.json_object()
    if payload is None:
        raise SchemaError(
            f"Server listing is not a JSON object (HTTP {response.status_code}).",
            redact(response.text),
        )
    servers_raw = payload.get("servers")
    if not isinstance(servers_raw, list):
        raise SchemaError(
            f"Server listing is missing the 'servers' list (HTTP {response.status_code}).",
            redact(response.text),
        )
    return [Server.from_api(entry, redact(response.text)) for entry in servers_raw]


def parse_upload_reply(response: HttpResponse) -> UploadReply:
    """Pull the key identifier or the error message out of an upload response."""
    payload = response.json_object() or {}
    raw_id = payload.get("id")
    key_id: str | None = None
    if raw_id is not None and str(raw_id).strip() and str(raw_id) != "null":
        key_id = str(raw_id)

    message = UNKNOWN_ERROR
    for field in ("message", "error_description", "error"):
        value = payload.get(field)
        if isinstance(value, str) and value.strip():
            message = value.strip()
            break
        if isinstance(value, list) and value:
            message = "; ".join(str(item) for item in value)
            break
    no_object = response.json_object() is None
    if key_id is None and message == UNKNOWN_ERROR and no_object and response.text.strip():
        message = response.text.strip()[:200]
    return UploadReply(
        status_code=response.status_code,
        key_id=key_id,
        message=message,
        body=redact(response.text),
    )


__all__ = [
    "AuthenticationError",
    "CloudwaysClient",
    "UploadReply",
    "parse_servers",
    "parse_upload_reply",
]
