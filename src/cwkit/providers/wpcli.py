"""WP-CLI wrapper used to inventory a local WordPress site."""
from __future__ import annotations

import json
import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

LOGGER = logging.getLogger(__name__)

READ_FLAGS: tuple[str, ...] = ("--allow-root", "--skip-plugins", "--skip-themes")
DEFAULT_THEME = "default"


class WPCLIError(RuntimeError):
    """Raised when WP-CLI is missing or a mandatory call fails."""


@dataclass(slots=True, frozen=True)
class PluginInfo:
    """Active plugin reported by WP-CLI."""

    name: str
    version: str = ""


@dataclass(slots=True, frozen=True)
class ThemeSelection:
    """Parent/child theme slugs plus the one sent as the primary theme."""

    parent: str
    child: str
    primary: str
    themes: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def build(cls, parent: str, child: str, *, use_child: bool = False) -> ThemeSelection:
        """Return a selection whose primary is the parent unless *use_child*."""
        return cls(
            parent=parent,
            child=child,
            primary=child if use_child else parent,
            themes=tuple(sorted({parent, child})),
        )

    @classmethod
    def default(cls) -> ThemeSelection:
        """Return the placeholder used when no active theme can be read."""
        return cls.build(DEFAULT_THEME, DEFAULT_THEME)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "parent": self.parent,
            "child": self.child,
            "primary": self.primary,
            "themes": list(self.themes),
        }


@dataclass(slots=True)
class WPCLI:
    """Run ``wp`` commands against the site at *path*."""

    path: Path
    wp_bin: str = "wp"

    def version(self) -> str:
        """Return the WP-CLI version banner."""
        result = self._run(["--version", *READ_FLAGS], check=True)
        return " ".join(result.stdout.split())

    def is_installed(self) -> bool:
        """Return ``True`` when WordPress is installed at :attr:`path`."""
        return self._run(["core", "is-installed", *READ_FLAGS]).returncode == 0

    def core_version(self) -> str:
        """Return the WordPress core version or ``unknown``."""
        return self._output(["core", "version", *READ_FLAGS]) or "unknown"

    def site_url(self) -> str:
        """Return the ``siteurl`` option, empty when unavailable."""
        return self._output(["option", "get", "siteurl", *READ_FLAGS])

    def active_plugins(self) -> list[PluginInfo]:
        """Return the active plugins; empty when none can be read."""
        entries = self._json_list(
            ["plugin", "list", "--status=active", "--format=json", *READ_FLAGS]
        )
        plugins: list[PluginInfo] = []
        for entry in entries:
            name = str(entry.get("name") or "").strip()
            if name:
                plugins.append(PluginInfo(name=name, version=str(entry.get("version") or "")))
        return plugins

    def theme_selection(self, *, use_child: bool = False) -> ThemeSelection:
        """Return the active theme and its parent template.

        When the active theme cannot be determined the ``default`` selection
        is returned so the generator still receives a theme.
        """
        entries = self._json_list(
            ["theme", "list", "--status=active", "--format=json", *READ_FLAGS]
        )
        child = str(entries[0].get("name") or "").strip() if entries else ""
        if not child:
            LOGGER.warning("No active theme found; falling back to '%s'.", DEFAULT_THEME)
            return ThemeSelection.default()
        parent = self._output(["theme", "get", child, "--field=template", *READ_FLAGS])
        if not parent or parent == "null":
            parent = child
        return ThemeSelection.build(parent, child, use_child=use_child)

    def theme_title(self, slug: str) -> str | None:
        """Return the human title of theme *slug*."""
        return self._output(["theme", "get", slug, "--field=title", *READ_FLAGS]) or None

    def import_perfmatters(self, config_path: Path) -> None:
        """Import a generated configuration into the Perfmatters plugin.

        Plugins must load for the import command to exist, so only themes are
        skipped here.
        """
        result = self._run(
            ["perfmatters", "import-settings", str(config_path), "--skip-themes", "--allow-root"]
        )
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "").strip() or "unknown error"
            raise WPCLIError(f"Perfmatters import failed: {message}")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _output(self, args: Sequence[str]) -> str:
        result = self._run(args)
        if result.returncode != 0:
            return ""
        return result.stdout.strip()

    def _json_list(self, args: Sequence[str]) -> list[dict[str, object]]:
        output = self._output(args)
        if not output:
            return []
        try:
            data = json.loads(output)
        except ValueError:
            LOGGER.debug("wp %s returned non-JSON output", " ".join(args[:2]))
            return []
        if not isinstance(data, list):
            return []
        return [entry for entry in data if isinstance(entry, dict)]

    def _run(
        self,
        args: Sequence[str],
        *,
        check: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        command = [self.wp_bin, *args]
        LOGGER.debug("Running %s in %s", " ".join(command), self.path)
        try:
            result = subprocess.run(  # noqa: S603,S607
                command,
                cwd=self.path,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise WPCLIError(f"WP-CLI binary '{self.wp_bin}' not found: {exc}") from exc
        except NotADirectoryError as exc:
            raise WPCLIError(f"Cannot access WordPress path: {self.path}") from exc
        if check and result.returncode != 0:
            message = (result.stderr or result.stdout or "").strip() or "unknown error"
            raise WPCLIError(f"'wp {' '.join(args)}' failed: {message}")
        return result


__all__ = ["WPCLI", "WPCLIError", "PluginInfo", "ThemeSelection"]
