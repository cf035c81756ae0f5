"""Timestamped, write-once artifacts produced by cwkit commands."""
from __future__ import annotations

import json
import re
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
_UNSAFE_CHARS = re.compile(r"[^a-z0-9_-]+")


class OutputWriteError(OSError):
    """Raised when an artifact cannot be written."""


def run_timestamp(now: datetime | None = None) -> str:
    """Return the ``YYYYMMDD_HHMMSS`` stamp shared by one run's artifacts."""
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def safe_label(value: str) -> str:
    """Return *value* reduced to characters safe inside a filename."""
    cleaned = _UNSAFE_CHARS.sub("-", value.strip().lower()).strip("-")
    return cleaned or "all"


def inventory_filename(filter_keyword: str, timestamp: str) -> str:
    """Return the filename of the domain-keyed database."""
    return f"cloudways_data_{safe_label(filter_keyword)}_{timestamp}.json"


def servers_filename(filter_keyword: str, timestamp: str) -> str:
    """Return the filename of the server-grouped export."""
    return f"cloudways_servers_{safe_label(filter_keyword)}_{timestamp}.json"


def domains_filename(filter_keyword: str, timestamp: str) -> str:
    """Return the filename of the plain domain list."""
    return f"all_domains_{safe_label(filter_keyword)}_{timestamp}.txt"


class ArtifactWriter:
    """Write artifacts into one directory, never overwriting existing files."""

    def __init__(self, output_dir: Path, timestamp: str | None = None) -> None:
        """Target *output_dir*; *timestamp* defaults to the current time."""
        self.output_dir = Path(output_dir)
        self.timestamp = timestamp or run_timestamp()

    def reserve(self, names: Iterable[str]) -> None:
        """Fail before any write if one of *names* already exists."""
        taken = [name for name in names if (self.output_dir / name).exists()]
        if taken:
            raise OutputWriteError(
                f"Refusing to overwrite existing file: {self.output_dir / taken[0]}"
            )

    def discard(self, paths: Iterable[Path]) -> None:
        """Remove artifacts already written by this run."""
        for path in paths:
            path.unlink(missing_ok=True)

    def write_json(self, name: str, payload: object) -> Path:
        """Serialise *payload* as indented JSON into *name*."""
        try:
            text = json.dumps(payload, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise OutputWriteError(f"Cannot serialise {name}: {exc}") from exc
        return self._write(name, text + "\n")

    def write_text(self, name: str, lines: Iterable[str]) -> Path:
        """Write one entry per line into *name*."""
        body = "".join(f"{line}\n" for line in lines)
        return self._write(name, body)

    def write_raw(self, name: str, body: str) -> Path:
        """Write *body* verbatim into *name*."""
        return self._write(name, body)

    def _write(self, name: str, body: str) -> Path:
        path = self.output_dir / name
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputWriteError(
                f"Cannot create output directory {self.output_dir}: {exc}"
            ) from exc
        try:
            with path.open("x", encoding="utf-8") as handle:
                handle.write(body)
        except FileExistsError as exc:
            raise OutputWriteError(f"Refusing to overwrite existing file: {path}") from exc
        except OSError as exc:
            raise OutputWriteError(f"Failed to write {path}: {exc}") from exc
        return path


__all__ = [
    "ArtifactWriter",
    "OutputWriteError",
    "domains_filename",
    "inventory_filename",
    "run_timestamp",
    "safe_label",
    "servers_filename",
]
