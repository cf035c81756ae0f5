"""Configuration loader for cwkit.

Values are resolved from several layers, later layers winning:

1. Built-in defaults.
2. ``~/.config/cwkit/config.yml`` (or an override path).
3. Environment variables prefixed with ``CWKIT_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export CWKIT_HTTP__RETRIES=3
    export CWKIT_UPLOAD__DELAY=0.5

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``.

Account credentials live in a separate shell-style ``KEY=value`` file (the
``cloudways_creds.env`` file the operators already keep next to their
scripts). It is parsed with python-dotenv without exporting anything into the
process environment.
"""
from __future__ import annotations

import os
from collections.abc import Iterable, Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load cwkit configuration. Install with "
        "`pip install cwkit` or ensure PyYAML>=6.0 is available."
    ) from exc
from dotenv import dotenv_values

ENV_PREFIX = "CWKIT_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

EMAIL_KEY = "CW_EMAIL"
API_KEY_KEY = "CW_API_KEY"
SSH_KEY_PATH_KEY = "CW_SSH_KEY_PATH"
SSH_KEY_NAME_KEY = "CW_SSH_KEY_NAME"

API_KEYS: tuple[str, ...] = (EMAIL_KEY, API_KEY_KEY)
SSH_UPLOAD_KEYS: tuple[str, ...] = (*API_KEYS, SSH_KEY_PATH_KEY, SSH_KEY_NAME_KEY)


class ConfigError(RuntimeError):
    """Raised when configuration or credential parsing fails."""


@dataclass(frozen=True)
class ApiConfig:
    """Hosting platform API endpoint."""

    base_url: str = "https://api.cloudways.com/api/v1"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"base_url": self.base_url}


@dataclass(frozen=True)
class HttpConfig:
    """Timeouts and transport retry knobs shared by every HTTP client."""

    connect_timeout: float = 5.0
    timeout: float = 25.0
    retries: int = 2
    retry_backoff: float = 1.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "connect_timeout": self.connect_timeout,
            "timeout": self.timeout,
            "retries": self.retries,
            "retry_backoff": self.retry_backoff,
        }


@dataclass(frozen=True)
class UploadConfig:
    """SSH key upload pacing."""

    delay: float = 1.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"delay": self.delay}


@dataclass(frozen=True)
class PerfmattersConfig:
    """Settings for the Perfmatters configuration generator workflow."""

    api_url: str = "https://perfmatters.checkmysite.app"
    output_dir: Path = Path("perfmatters-configs")
    wp_bin: str = "wp"
    user_agent: str = "WordPress-Perfmatters-Generator/1.4"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "api_url": self.api_url,
            "output_dir": str(self.output_dir),
            "wp_bin": self.wp_bin,
            "user_agent": self.user_agent,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for cwkit."""

    config_file: Path
    credentials_file: Path
    output_dir: Path
    logs_dir: Path
    api: ApiConfig
    http: HttpConfig
    upload: UploadConfig
    perfmatters: PerfmattersConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "credentials_file": str(self.credentials_file),
            "output_dir": str(self.output_dir),
            "logs_dir": str(self.logs_dir),
            "api": self.api.to_dict(),
            "http": self.http.to_dict(),
            "upload": self.upload.to_dict(),
            "perfmatters": self.perfmatters.to_dict(),
        }


@dataclass(frozen=True)
class Credentials:
    """Account credentials loaded from the credential file.

    The API key never appears in ``repr`` output so that tracebacks and debug
    logs cannot leak it.
    """

    email: str
    api_key: str = field(repr=False)
    ssh_key_path: Path | None = None
    ssh_key_name: str | None = None
    source: Path | None = None


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/cwkit/config.yml",
    "credentials_file": "./cloudways_creds.env",
    "output_dir": ".",
    "logs_dir": "~/.local/state/cwkit/logs",
    "api": {
        "base_url": "https://api.cloudways.com/api/v1",
    },
    "http": {
        "connect_timeout": 5.0,
        "timeout": 25.0,
        "retries": 2,
        "retry_backoff": 1.0,
    },
    "upload": {
        "delay": 1.0,
    },
    "perfmatters": {
        "api_url": "https://perfmatters.checkmysite.app",
        "output_dir": "perfmatters-configs",
        "wp_bin": "wp",
        "user_agent": "WordPress-Perfmatters-Generator/1.4",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    section: set(cast(Mapping[str, object], value).keys())
    for section, value in DEFAULTS.items()
    if isinstance(value, Mapping)
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def load_credentials(
    path: str | os.PathLike[str],
    *,
    required: Iterable[str] = API_KEYS,
) -> Credentials:
    """Read the credential file at *path* and check the *required* keys.

    Raises :class:`ConfigError` when the file is absent or any required key is
    missing or blank. Nothing is exported into ``os.environ``.
    """
    cred_path = Path(path).expanduser()
    if not cred_path.is_file():
        raise ConfigError(f"Configuration file not found: {cred_path}")

    try:
        raw = dotenv_values(cred_path, interpolate=False)
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Failed to read credential file {cred_path}: {exc}") from exc

    values = {key: (value or "").strip() for key, value in raw.items()}
    required_keys = tuple(required)
    missing = [key for key in required_keys if not values.get(key)]
    if missing:
        raise ConfigError(
            f"Missing required values in {cred_path}: {', '.join(missing)}. "
            f"Required: {', '.join(required_keys)}"
        )

    key_path_value = values.get(SSH_KEY_PATH_KEY)
    return Credentials(
        email=values.get(EMAIL_KEY, ""),
        api_key=values.get(API_KEY_KEY, ""),
        ssh_key_path=Path(key_path_value).expanduser() if key_path_value else None,
        ssh_key_name=values.get(SSH_KEY_NAME_KEY) or None,
        source=cred_path,
    )


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        section_map = _as_dict(value, section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    api_mapping = _as_dict(raw.get("api"), "api")
    base_url = _expect_url(api_mapping.get("base_url"), "api.base_url")

    http_mapping = _as_dict(raw.get("http"), "http")
    http = HttpConfig(
        connect_timeout=_expect_positive_float(
            http_mapping.get("connect_timeout"), "http.connect_timeout", default=5.0
        ),
        timeout=_expect_positive_float(http_mapping.get("timeout"), "http.timeout", default=25.0),
        retries=_expect_int(http_mapping.get("retries"), "http.retries", default=2),
        retry_backoff=_expect_non_negative_float(
            http_mapping.get("retry_backoff"), "http.retry_backoff", default=1.0
        ),
    )
    if http.retries < 0:
        raise ConfigError("http.retries must be non-negative.")

    upload_mapping = _as_dict(raw.get("upload"), "upload")
    upload = UploadConfig(
        delay=_expect_non_negative_float(upload_mapping.get("delay"), "upload.delay", default=1.0),
    )

    pm_mapping = _as_dict(raw.get("perfmatters"), "perfmatters")
    perfmatters = PerfmattersConfig(
        api_url=_expect_url(pm_mapping.get("api_url"), "perfmatters.api_url"),
        output_dir=_to_path(pm_mapping.get("output_dir", "perfmatters-configs")),
        wp_bin=str(pm_mapping.get("wp_bin", "wp")),
        user_agent=str(pm_mapping.get("user_agent", "WordPress-Perfmatters-Generator/1.4")),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        credentials_file=_to_path(raw.get("credentials_file")),
        output_dir=_to_path(raw.get("output_dir")),
        logs_dir=_to_path(raw.get("logs_dir")),
        api=ApiConfig(base_url=base_url),
        http=http,
        upload=upload,
        perfmatters=perfmatters,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_url(value: object | None, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{label} must be a non-empty URL string.")
    text = value.strip().rstrip("/")
    if not text.startswith(("http://", "https://")):
        raise ConfigError(f"{label} must start with http:// or https://. Got {value!r}.")
    return text


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_float(value: object, label: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    numeric = _expect_float(value, label)
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _expect_non_negative_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    numeric = _expect_float(value, label)
    if numeric < 0:
        raise ConfigError(f"{label} must be non-negative. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "API_KEYS",
    "SSH_UPLOAD_KEYS",
    "ApiConfig",
    "AppConfig",
    "ConfigError",
    "Credentials",
    "HttpConfig",
    "PerfmattersConfig",
    "UploadConfig",
    "load_config",
    "load_credentials",
]
