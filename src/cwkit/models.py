"""Typed inventory records built from the hosting API's server listing."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

WEBROOT_TEMPLATE = "/home/master/applications/{database}/public_html/"


class ServerStatus:
    """Server status values reported by the API."""

    RUNNING = "running"
    STOPPED = "stopped"


class SchemaError(RuntimeError):
    """Raised when an API response does not have the expected shape."""

    def __init__(self, message: str, body: str = "") -> None:
        """Keep the raw *body* so it can be surfaced for diagnosis."""
        super().__init__(message)
        self.body = body


def webroot_for(database: str) -> str:
    """Return the document root of the application backed by *database*."""
    return WEBROOT_TEMPLATE.format(database=database)


@dataclass(slots=True, frozen=True)
class Application:
    """One application hosted on a server."""

    app_type: str
    cname: str
    app_fqdn: str
    database: str
    label: str = ""
    app_id: str = ""

    @property
    def domain(self) -> str:
        """Return the custom domain when set, else the generated FQDN.

        Never empty: applications missing both fall back to an identifier so
        that domain-keyed output always has a usable key.
        """
        cname = self.cname.strip()
        if cname:
            return cname
        fqdn = self.app_fqdn.strip()
        if fqdn:
            return fqdn
        if self.app_id:
            return f"app-{self.app_id}"
        return self.database or "unknown-app"

    @property
    def webroot(self) -> str:
        """Return the web root derived from the database name."""
        return webroot_for(self.database)

    @classmethod
    def from_api(cls, raw: Mapping[str, Any]) -> Application:
        """Build an application from one entry of a server's ``apps`` list."""
        return cls(
            app_type=_text(raw.get("application")),
            cname=_text(raw.get("cname")),
            app_fqdn=_text(raw.get("app_fqdn")),
            database=_text(raw.get("mysql_db_name")),
            label=_text(raw.get("label")),
            app_id=_text(raw.get("id")),
        )


@dataclass(slots=True, frozen=True)
class Server:
    """A server and its applications, in inventory order."""

    id: str
    public_ip: str
    master_user: str
    status: str
    apps: tuple[Application, ...] = ()
    label: str = ""

    @property
    def is_running(self) -> bool:
        """Return ``True`` when the server reports ``running``."""
        return self.status == ServerStatus.RUNNING

    @property
    def ssh_command(self) -> str:
        """Return the ``user@host`` login string for the master user."""
        return f"{self.master_user}@{self.public_ip}"

    @classmethod
    def from_api(cls, raw: object, body: str = "") -> Server:
        """Build a server from one entry of the ``servers`` list."""
        if not isinstance(raw, Mapping):
            raise SchemaError("Server entry is not an object.", body)
        server_id = _text(raw.get("id"))
        if not server_id:
            raise SchemaError("Server entry is missing 'id'.", body)
        apps_raw = raw.get("apps")
        if apps_raw is None:
            apps_raw = []
        if not isinstance(apps_raw, Sequence) or isinstance(apps_raw, (str, bytes)):
            raise SchemaError(f"Server {server_id} has a non-list 'apps' field.", body)
        apps: list[Application] = []
        for entry in apps_raw:
            if not isinstance(entry, Mapping):
                raise SchemaError(f"Server {server_id} has a non-object application.", body)
            apps.append(Application.from_api(entry))
        return cls(
            id=server_id,
            public_ip=_text(raw.get("public_ip")),
            master_user=_text(raw.get("master_user")),
            status=_text(raw.get("status")),
            apps=tuple(apps),
            label=_text(raw.get("label")),
        )


def _text(value: object) -> str:
    if value is None:
        return ""
    return str(value)


__all__ = [
    "Application",
    "SchemaError",
    "Server",
    "ServerStatus",
    "webroot_for",
]
