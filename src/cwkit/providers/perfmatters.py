"""Client for the remote Perfmatters configuration generator."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .http import HttpClient, NetworkError
from .wpcli import PluginInfo, ThemeSelection

DEFAULT_API_URL = "https://perfmatters.checkmysite.app"
DEFAULT_USER_AGENT = "WordPress-Perfmatters-Generator/1.4"


class GeneratorUnavailable(RuntimeError):
    """Raised when the generator health check does not pass."""


class GeneratorError(RuntimeError):
    """Raised when the generator rejects a configuration request."""

    def __init__(self, status_code: int, body: str) -> None:
        """Keep the status code and raw body; the body is saved for diagnosis."""
        super().__init__(f"Configuration generator returned HTTP {status_code}.")
        self.status_code = status_code
        self.body = body


@dataclass(slots=True, frozen=True)
class HealthStatus:
    """Health endpoint summary."""

    status: str
    version: str


@dataclass(slots=True, frozen=True)
class ProcessingInfo:
    """Optional statistics the generator attaches to a configuration."""

    plugins_processed: int
    theme_processed: int
    generated_at: str

    @classmethod
    def from_document(cls, document: Mapping[str, Any] | None) -> ProcessingInfo | None:
        """Extract processing statistics, ``None`` when the document has none."""
        if not document:
            return None
        info = document.get("processing_info")
        if not isinstance(info, Mapping):
            return None
        return cls(
            plugins_processed=_as_int(info.get("plugins_processed")),
            theme_processed=_as_int(info.get("theme_processed")),
            generated_at=str(document.get("generated_at") or "unknown"),
        )


@dataclass(slots=True, frozen=True)
class GeneratedConfig:
    """Raw configuration body returned by the generator."""

    body: str
    document: Mapping[str, Any] | None = None

    @property
    def processing_info(self) -> ProcessingInfo | None:
        """Return the generator's processing statistics, if present."""
        return ProcessingInfo.from_document(self.document)


def build_payload(
    plugins: Sequence[PluginInfo | str],
    domain: str,
    themes: ThemeSelection,
) -> dict[str, object]:
    """Return the request body for ``POST /generate-config``.

    ``theme`` carries the primary theme for older generator versions; the
    explicit parent/child fields and the ``themes`` list are always sent.
    """
    names = [plugin if isinstance(plugin, str) else plugin.name for plugin in plugins]
    return {
        "plugins": names,
        "domain": domain,
        "analyze_domain": True,
        "theme": themes.primary,
        "theme_parent": themes.parent,
        "theme_child": themes.child,
        "themes": list(themes.themes),
    }


class GeneratorClient:
    """Talk to the configuration generator's health and generate endpoints."""

    def __init__(
        self,
        http: HttpClient,
        api_url: str = DEFAULT_API_URL,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        """Bind the client to *api_url*."""
        self.http = http
        self.api_url = api_url.rstrip("/")
        self.user_agent = user_agent

    def health(self) -> HealthStatus:
        """Return the service status or raise :class:`GeneratorUnavailable`."""
        url = f"{self.api_url}/health"
        try:
            response = self.http.get(url, headers={"User-Agent": self.user_agent})
        except NetworkError as exc:
            raise GeneratorUnavailable(f"API not reachable at {url}: {exc.reason}") from exc
        if response.status_code != 200:
            raise GeneratorUnavailable(
                f"API not reachable (HTTP {response.status_code}) at {url}: {response.text.strip()}"
            )
        payload = response.json_object() or {}
        return HealthStatus(
            status=str(payload.get("status") or "unknown"),
            version=str(payload.get("version") or "unknown"),
        )

    def generate(self, payload: Mapping[str, object]) -> GeneratedConfig:
        """Request a configuration document for *payload*.

        Transport failures propagate as :class:`NetworkError`; non-200
        responses raise :class:`GeneratorError`.
        """
        response = self.http.post(
            f"{self.api_url}/generate-config",
            json_body=payload,
            headers={"User-Agent": self.user_agent},
        )
        if response.status_code != 200:
            raise GeneratorError(response.status_code, response.text)
        return GeneratedConfig(body=response.text, document=response.json_object())


def _as_int(value: object) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        return int(str(value))
    except (TypeError, ValueError):
        return 0


__all__ = [
    "GeneratedConfig",
    "GeneratorClient",
    "GeneratorError",
    "GeneratorUnavailable",
    "HealthStatus",
    "ProcessingInfo",
    "build_payload",
]
