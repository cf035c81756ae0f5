"""Upload an SSH public key to every running server on the account."""
from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .models import Server
from .providers.cloudways import CloudwaysClient, UploadReply
from .providers.http import NetworkError

LOGGER = logging.getLogger(__name__)

KEY_PREFIX_PATTERN = re.compile(r"^ssh-(rsa|ed25519|ecdsa)")
ALREADY_EXISTS_MARKER = "already exists"


class InvalidKeyFormat(RuntimeError):
    """Raised when the public key file is missing or not an OpenSSH public key."""


@dataclass(slots=True, frozen=True)
class PublicKey:
    """Validated public key contents."""

    path: Path
    content: str

    @property
    def key_type(self) -> str:
        """Return the key algorithm token, e.g. ``ssh-ed25519``."""
        return self.content.split(None, 1)[0]


def load_public_key(path: Path) -> PublicKey:
    """Read and validate the public key at *path*."""
    key_path = Path(path).expanduser()
    if not key_path.is_file():
        raise InvalidKeyFormat(f"SSH key file not found: {key_path}")
    try:
        content = key_path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as exc:
        raise InvalidKeyFormat(f"Cannot read SSH key file {key_path}: {exc}") from exc
    if not KEY_PREFIX_PATTERN.match(content):
        raise InvalidKeyFormat(
            f"Invalid SSH key format in {key_path}: expected ssh-rsa, ssh-ed25519 or ssh-ecdsa."
        )
    return PublicKey(path=key_path, content=content)


class UploadState(str, Enum):
    """Per-server upload state. Every state except ``pending`` is terminal."""

    PENDING = "pending"
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    FAILED = "failed"

    @property
    def succeeded(self) -> bool:
        """Return ``True`` for states counted as success."""
        return self in (UploadState.CREATED, UploadState.ALREADY_EXISTS)


@dataclass(slots=True, frozen=True)
class UploadOutcome:
    """Terminal result of uploading the key to one server."""

    server_id: str
    state: UploadState
    key_id: str | None = None
    message: str = ""

    @property
    def succeeded(self) -> bool:
        """Return ``True`` when the key is present on the server."""
        return self.state.succeeded

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "server_id": self.server_id,
            "state": self.state.value,
            "key_id": self.key_id,
            "message": self.message,
        }


def classify_reply(server_id: str, reply: UploadReply) -> UploadOutcome:
    """Map an upload reply onto a terminal :class:`UploadOutcome`."""
    if reply.key_id:
        return UploadOutcome(server_id, UploadState.CREATED, key_id=reply.key_id)
    if ALREADY_EXISTS_MARKER in reply.message.lower():
        return UploadOutcome(server_id, UploadState.ALREADY_EXISTS, message=reply.message)
    return UploadOutcome(server_id, UploadState.FAILED, message=reply.message)


@dataclass(slots=True)
class UploadSummary:
    """Aggregate of a whole upload run."""

    outcomes: list[UploadOutcome] = field(default_factory=list)
    skipped: list[Server] = field(default_factory=list)

    @property
    def total(self) -> int:
        """Return the number of servers attempted."""
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        """Return the number of servers that now hold the key."""
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def already_present(self) -> int:
        """Return how many successes came from the already-exists path."""
        return sum(1 for outcome in self.outcomes if outcome.state is UploadState.ALREADY_EXISTS)

    @property
    def failed(self) -> int:
        """Return the number of failed servers."""
        return self.total - self.succeeded

    @property
    def failed_servers(self) -> list[str]:
        """Return identifiers of failed servers in attempt order."""
        return [outcome.server_id for outcome in self.outcomes if not outcome.succeeded]

    @property
    def ok(self) -> bool:
        """Return ``True`` when no server failed."""
        return self.failed == 0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "already_present": self.already_present,
            "failed": self.failed,
            "failed_servers": self.failed_servers,
            "skipped_servers": [server.id for server in self.skipped],
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


def partition_servers(servers: Iterable[Server]) -> tuple[list[Server], list[Server]]:
    """Split *servers* into ``(running, not_running)`` keeping inventory order."""
    running: list[Server] = []
    others: list[Server] = []
    for server in servers:
        (running if server.is_running else others).append(server)
    return running, others


@dataclass(slots=True)
class SshKeyUploader:
    """Sequential uploader with a fixed pause between consecutive calls.

    Each running server is attempted exactly once, in inventory order. A
    transport failure on one server is recorded and the loop moves on.
    """

    client: CloudwaysClient
    token: str = field(repr=False)
    key: PublicKey
    key_name: str
    delay: float = 1.0
    sleep: Callable[[float], None] = time.sleep
    on_outcome: Callable[[UploadOutcome], None] | None = None

    def run(self, servers: Sequence[Server]) -> UploadSummary:
        """Upload the key to every running server in *servers*."""
        running, skipped = partition_servers(servers)
        summary = UploadSummary(skipped=skipped)
        for index, server in enumerate(running):
            if index and self.delay > 0:
                self.sleep(self.delay)
            outcome = self.upload_one(server.id)
            summary.outcomes.append(outcome)
            if self.on_outcome is not None:
                self.on_outcome(outcome)
        return summary

    def upload_one(self, server_id: str) -> UploadOutcome:
        """Attempt a single upload and classify the result."""
        try:
            reply = self.client.upload_ssh_key(
                self.token,
                server_id,
                self.key_name,
                self.key.content,
            )
        except NetworkError as exc:
            LOGGER.debug("Upload to server %s failed at transport level: %s", server_id, exc)
            return UploadOutcome(server_id, UploadState.FAILED, message=exc.reason)
        return classify_reply(server_id, reply)


__all__ = [
    "InvalidKeyFormat",
    "PublicKey",
    "SshKeyUploader",
    "UploadOutcome",
    "UploadState",
    "UploadSummary",
    "classify_reply",
    "load_public_key",
    "partition_servers",
]
