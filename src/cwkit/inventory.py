"""Filter the server inventory by application type and reshape it for export.

Two projections are produced from the same filtered view:

* a domain-keyed database (one entry per application), and
* a server-keyed map (public IP to the applications on that server).

Both are plain ordered dictionaries ready for JSON serialisation. When two
applications resolve to the same domain the later one in inventory order
replaces the earlier one in the domain-keyed database.
"""
from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

from .models import Application, Server

ALL_KEYWORD = "all"

FILTER_ALIASES: Mapping[str, frozenset[str]] = {
    "wordpress": frozenset({"wordpress", "woocommerce", "wordpressmu"}),
}


class FilterKind(str, Enum):
    """How an :class:`AppFilter` decides membership."""

    ALL = "all"
    ALIAS = "alias"
    EXACT = "exact"


@dataclass(slots=True, frozen=True)
class AppFilter:
    """Application type predicate selected on the command line."""

    keyword: str
    kind: FilterKind
    types: frozenset[str] = frozenset()

    def matches(self, app_type: str) -> bool:
        """Return ``True`` when *app_type* passes the filter."""
        if self.kind is FilterKind.ALL:
            return True
        return app_type.strip().lower() in self.types


def parse_filter(keyword: str | None) -> AppFilter:
    """Translate a CLI keyword into an :class:`AppFilter`.

    Blank and ``all`` accept everything, alias names expand to their group and
    any other value is an exact, case-insensitive type match.
    """
    normalized = (keyword or "").strip().lower() or ALL_KEYWORD
    if normalized == ALL_KEYWORD:
        return AppFilter(keyword=ALL_KEYWORD, kind=FilterKind.ALL)
    alias = FILTER_ALIASES.get(normalized)
    if alias is not None:
        return AppFilter(keyword=normalized, kind=FilterKind.ALIAS, types=alias)
    return AppFilter(keyword=normalized, kind=FilterKind.EXACT, types=frozenset({normalized}))


def select_servers(servers: Iterable[Server], *, include_stopped: bool = False) -> list[Server]:
    """Return the servers taking part in an export, preserving order."""
    return [server for server in servers if include_stopped or server.is_running]


def iter_matches(
    servers: Iterable[Server],
    app_filter: AppFilter,
) -> Iterator[tuple[Server, Application]]:
    """Yield ``(server, application)`` pairs passing *app_filter* in inventory order."""
    for server in servers:
        for app in server.apps:
            if app_filter.matches(app.app_type):
                yield server, app


def build_domain_map(
    servers: Iterable[Server],
    app_filter: AppFilter,
) -> dict[str, dict[str, str]]:
    """Return the domain-keyed application database."""
    result: dict[str, dict[str, str]] = {}
    for server, app in iter_matches(servers, app_filter):
        result[app.domain] = {
            "ip": server.public_ip,
            "master_user": server.master_user,
            "ssh_command": server.ssh_command,
            "database": app.database,
            "app_type": app.app_type,
            "webroot": app.webroot,
        }
    return result


def build_server_map(
    servers: Iterable[Server],
    app_filter: AppFilter,
) -> dict[str, dict[str, object]]:
    """Return applications grouped under their server's public IP.

    Servers left without applications after filtering are omitted.
    """
    result: dict[str, dict[str, object]] = {}
    for server in servers:
        apps = [
            {
                "domain": app.domain,
                "database": app.database,
                "app_type": app.app_type,
                "webroot": app.webroot,
            }
            for app in server.apps
            if app_filter.matches(app.app_type)
        ]
        if not apps:
            continue
        result[server.public_ip] = {
            "master_user": server.master_user,
            "ssh_command": server.ssh_command,
            "apps": apps,
        }
    return result


def domain_list(domain_map: Mapping[str, object]) -> list[str]:
    """Return the sorted domains of a domain-keyed database."""
    return sorted(domain_map)


def find_duplicate_domains(servers: Iterable[Server], app_filter: AppFilter) -> list[str]:
    """Return domains claimed by more than one matching application."""
    counts = Counter(app.domain for _, app in iter_matches(servers, app_filter))
    return sorted(domain for domain, count in counts.items() if count > 1)


@dataclass(slots=True, frozen=True)
class InventoryCounts:
    """Headline numbers for the export summary."""

    servers: int
    running: int
    stopped: int
    exported_servers: int
    matched_apps: int

    @classmethod
    def compute(
        cls,
        all_servers: Sequence[Server],
        exported: Sequence[Server],
        app_filter: AppFilter,
    ) -> InventoryCounts:
        """Count servers by state and applications passing *app_filter*."""
        running = sum(1 for server in all_servers if server.is_running)
        return cls(
            servers=len(all_servers),
            running=running,
            stopped=len(all_servers) - running,
            exported_servers=len(exported),
            matched_apps=sum(1 for _ in iter_matches(exported, app_filter)),
        )

    def to_dict(self) -> dict[str, int]:
        """Return a serialisable representation."""
        return {
            "servers": self.servers,
            "running": self.running,
            "stopped": self.stopped,
            "exported_servers": self.exported_servers,
            "matched_apps": self.matched_apps,
        }


__all__ = [
    "ALL_KEYWORD",
    "FILTER_ALIASES",
    "AppFilter",
    "FilterKind",
    "InventoryCounts",
    "build_domain_map",
    "build_server_map",
    "domain_list",
    "find_duplicate_domains",
    "iter_matches",
    "parse_filter",
    "select_servers",
]
