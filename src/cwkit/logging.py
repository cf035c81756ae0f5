"""Structured operation logging for cwkit commands.

Every CLI command runs inside :meth:`StructuredLogger.operation`. When the
scope closes, one JSON record is appended to ``operations.jsonl`` and a short
human-readable line to ``cwkit.log`` in the configured logs directory. The
logger never raises: if the directory cannot be created or a write fails it
disables itself and the command carries on.
"""
from __future__ import annotations

import json
import re
import uuid
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path
from time import perf_counter
from types import TracebackType

OPERATIONS_LOG_NAME = "operations.jsonl"
HUMAN_LOG_NAME = "cwkit.log"
REDACTED = "***"

_SECRET_KEY_PATTERN = re.compile(
    r"(token|api_key|apikey|password|secret|authorization)",
    re.IGNORECASE,
)
_SECRET_VALUE_PATTERNS = (
    re.compile(r'("(?:access_token|api_key|token)"\s*:\s*")([^"]*)(")', re.IGNORECASE),
    re.compile(r"(Bearer\s+)(\S+)", re.IGNORECASE),
)


def redact(text: str) -> str:
    """Mask bearer tokens and API keys embedded in *text*."""
    result = text
    for pattern in _SECRET_VALUE_PATTERNS:
        if pattern.groups == 3:
            result = pattern.sub(lambda m: f"{m.group(1)}{REDACTED}{m.group(3)}", result)
        else:
            result = pattern.sub(lambda m: f"{m.group(1)}{REDACTED}", result)
    return result


def sanitize(value: object) -> object:
    """Convert *value* into JSON-safe primitives, redacting secret-looking keys."""
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        cleaned: dict[str, object] = {}
        for key, item in value.items():
            name = str(key)
            if _SECRET_KEY_PATTERN.search(name) and item not in (None, ""):
                cleaned[name] = REDACTED
            else:
                cleaned[name] = sanitize(item)
        return cleaned
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [sanitize(item) for item in value]
    return str(value)


class StructuredLogger:
    """Append-only JSONL operation log with a mirrored human log."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare *logs_dir*; disable logging quietly when it is unusable."""
        self._logs_dir = Path(logs_dir)
        self._operations_log_path = self._logs_dir / OPERATIONS_LOG_NAME
        self._human_log_path = self._logs_dir / HUMAN_LOG_NAME
        self._enabled = True
        try:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def logs_dir(self) -> Path:
        """Return the directory receiving log files."""
        return self._logs_dir

    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> OperationScope:
        """Return a scope recording the outcome of *command*."""
        return OperationScope(self, command, args=args, target=target)

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False) + "\n")
            result = record.get("result")
            status = message = ""
            if isinstance(result, Mapping):
                status = str(result.get("status", ""))
                message = str(result.get("message", ""))
            line = (
                f"{record.get('timestamp')} [{status.upper()}] "
                f"{record.get('command')}: {message}"
            )
            with self._human_log_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError:
            self._enabled = False


class OperationScope:
    """Collects steps and the final result of a single command invocation."""

    def __init__(
        self,
        logger: StructuredLogger,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Initialise the scope; nothing is written until it closes."""
        self._logger = logger
        self.command = command
        self.op_id = uuid.uuid4().hex
        self._args = sanitize(dict(args or {}))
        self._target = sanitize(dict(target or {}))
        self._steps: list[dict[str, object]] = []
        self._result: dict[str, object] | None = None
        self._started = datetime.now(UTC)
        self._clock = perf_counter()
        self._closed = False

    def __enter__(self) -> OperationScope:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        if self._result is None:
            if exc is None:
                self.success("Completed.")
            else:
                self.error(f"{exc_type.__name__ if exc_type else 'Error'}: {redact(str(exc))}")
        self.close()
        return False

    @property
    def steps(self) -> list[dict[str, object]]:
        """Return a copy of the steps recorded so far."""
        return list(self._steps)

    @property
    def result(self) -> dict[str, object] | None:
        """Return the recorded result, if any."""
        return None if self._result is None else dict(self._result)

    def add_step(
        self,
        name: str,
        *,
        status: str = "success",
        detail: object | None = None,
    ) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
            step["detail"] = sanitize(detail)
        self._steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result("success", message, changed=changed, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int | None = None,
        backups: Iterable[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            warnings=warnings,
            errors=errors,
            changed=changed,
            backups=backups,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        warnings: Iterable[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            errors=list(errors) if errors else [message],
            warnings=warnings,
            rc=rc,
            context=context,
        )

    def close(self) -> None:
        """Write the record once; later calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        duration_ms = int((perf_counter() - self._clock) * 1000)
        record: dict[str, object] = {
            "op_id": self.op_id,
            "timestamp": self._started.isoformat(),
            "command": self.command,
            "args": self._args,
            "target": self._target,
            "steps": self._steps,
            "result": self._result or {"status": "unknown", "message": ""},
            "duration_ms": duration_ms,
        }
        self._logger._write(record)

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int | None = None,
        backups: Iterable[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": redact(message)}
        if warnings:
            result["warnings"] = [redact(str(item)) for item in warnings]
        if errors:
            result["errors"] = [redact(str(item)) for item in errors]
        if changed is not None:
            result["changed"] = changed
        if backups:
            result["backups"] = [str(item) for item in backups]
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = sanitize(dict(context))
        self._result = result


__all__ = ["OperationScope", "StructuredLogger", "redact", "sanitize"]
