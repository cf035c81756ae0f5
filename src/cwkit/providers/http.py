"""Thin requests wrapper with bounded timeouts and transport retries."""
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import TracebackType
from typing import Any
from urllib.parse import urlsplit

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import HttpConfig

LOGGER = logging.getLogger(__name__)

RETRY_STATUS_CODES = frozenset({502, 503, 504})


class NetworkError(RuntimeError):
    """Raised when an HTTP call fails at the transport level."""

    def __init__(self, method: str, url: str, reason: str) -> None:
        """Record the failing request and the underlying reason."""
        super().__init__(f"{method} {url} failed: {reason}")
        self.method = method
        self.url = url
        self.reason = reason


@dataclass(slots=True, frozen=True)
class HttpResponse:
    """Status code and body of a completed HTTP exchange."""

    status_code: int
    text: str
    payload: Any = None

    @property
    def ok(self) -> bool:
        """Return ``True`` for 2xx responses."""
        return 200 <= self.status_code < 300

    def json_object(self) -> dict[str, Any] | None:
        """Return the payload when it is a JSON object, else ``None``."""
        return self.payload if isinstance(self.payload, dict) else None


class HttpClient:
    """Issue HTTPS requests with explicit timeouts and a small retry budget.

    Retries happen inside urllib3 for connection errors, read errors and
    gateway statuses only; application-level outcomes are left to callers.
    Non-2xx responses are returned, not raised, because several API error
    bodies carry information the callers classify.
    """

    def __init__(
        self,
        settings: HttpConfig | None = None,
        *,
        session: requests.Session | None = None,
    ) -> None:
        """Create a client from *settings*, mounting the retry adapter."""
        self.settings = settings or HttpConfig()
        self._session = session or requests.Session()
        retry = Retry(
            total=self.settings.retries,
            connect=self.settings.retries,
            read=self.settings.retries,
            status=self.settings.retries,
            backoff_factor=self.settings.retry_backoff,
            status_forcelist=RETRY_STATUS_CODES,
            allowed_methods=None,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

    @property
    def timeout(self) -> tuple[float, float]:
        """Return the ``(connect, read)`` timeout pair applied to every call."""
        return (self.settings.connect_timeout, self.settings.timeout)

    def get(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        bearer: str | None = None,
    ) -> HttpResponse:
        """Issue a GET request."""
        return self.request("GET", url, headers=headers, bearer=bearer)

    def post(
        self,
        url: str,
        *,
        json_body: Mapping[str, object] | None = None,
        form: Mapping[str, object] | None = None,
        headers: Mapping[str, str] | None = None,
        bearer: str | None = None,
    ) -> HttpResponse:
        """Issue a POST request with either a JSON or a form-encoded body."""
        return self.request(
            "POST",
            url,
            json_body=json_body,
            form=form,
            headers=headers,
            bearer=bearer,
        )

    def request(
        self,
        method: str,
        url: str,
        *,
        json_body: Mapping[str, object] | None = None,
        form: Mapping[str, object] | None = None,
        headers: Mapping[str, str] | None = None,
        bearer: str | None = None,
    ) -> HttpResponse:
        """Send a request and return the response; raise :class:`NetworkError` on failure."""
        merged_headers: dict[str, str] = {"Accept": "application/json"}
        if headers:
            merged_headers.update(headers)
        if bearer is not None:
            merged_headers["Authorization"] = f"Bearer {bearer}"

        kwargs: dict[str, Any] = {"headers": merged_headers, "timeout": self.timeout}
        if json_body is not None:
            kwargs["json"] = dict(json_body)
        elif form is not None:
            kwargs["data"] = dict(form)

        path = urlsplit(url).path or "/"
        try:
            response = self._session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            LOGGER.debug("%s %s transport failure: %s", method, path, exc.__class__.__name__)
            raise NetworkError(method, url, str(exc) or exc.__class__.__name__) from exc

        LOGGER.debug("%s %s -> %s", method, path, response.status_code)
        text = response.text or ""
        return HttpResponse(
            status_code=response.status_code,
            text=text,
            payload=_parse_json(text),
        )

    def close(self) -> None:
        """Release pooled connections."""
        self._session.close()

    def __enter__(self) -> HttpClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def _parse_json(text: str) -> Any:
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


__all__ = ["HttpClient", "HttpResponse", "NetworkError"]
