"""Startup checks for external command-line tools."""
from __future__ import annotations

import shutil
from collections.abc import Iterable, Mapping

INSTALL_HINTS: Mapping[str, str] = {
    "wp": "https://wp-cli.org/#installing",
}


class DependencyMissing(RuntimeError):
    """Raised when a required external tool is not on ``PATH``."""

    def __init__(self, missing: list[str]) -> None:
        """Record every missing tool so they can be reported together."""
        hints = [f"{name} ({INSTALL_HINTS[name]})" for name in missing if name in INSTALL_HINTS]
        message = f"Required tool(s) not found: {', '.join(missing)}"
        if hints:
            message += f". Install: {', '.join(hints)}"
        super().__init__(message)
        self.missing = missing


def require_tools(names: Iterable[str]) -> dict[str, str]:
    """Return resolved paths for *names* or raise :class:`DependencyMissing`."""
    resolved: dict[str, str] = {}
    missing: list[str] = []
    for name in names:
        path = shutil.which(name)
        if path is None:
            missing.append(name)
        else:
            resolved[name] = path
    if missing:
        raise DependencyMissing(missing)
    return resolved


__all__ = ["DependencyMissing", "require_tools"]
