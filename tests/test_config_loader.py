"""Configuration loader tests."""
from __future__ import annotations

import os
from pathlib import Path

import pytest

from cwkit.config import (
    SSH_UPLOAD_KEYS,
    AppConfig,
    ConfigError,
    load_config,
    load_credentials,
)


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "absent.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.api.base_url == "https://api.cloudways.com/api/v1"
    assert config.http.connect_timeout == 5.0
    assert config.http.timeout == 25.0
    assert config.http.retries == 2
    assert config.upload.delay == 1.0
    assert config.perfmatters.api_url == "https://perfmatters.checkmysite.app"
    assert config.perfmatters.output_dir == Path("perfmatters-configs")
    assert config.credentials_file == Path("cloudways_creds.env")


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "cwkit.yml"
    cfg.write_text(
        "output_dir: {out}\n"
        "api:\n"
        "  base_url: https://api.example/v1/\n"
        "http:\n"
        "  retries: 0\n"
        "  timeout: 10\n"
        "upload:\n"
        "  delay: 0.25\n"
        "perfmatters:\n"
        "  wp_bin: /usr/local/bin/wp\n".format(out=tmp_path / "exports")
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.output_dir == tmp_path / "exports"
    assert config.api.base_url == "https://api.example/v1"
    assert config.http.retries == 0
    assert config.http.timeout == 10.0
    assert config.upload.delay == 0.25
    assert config.perfmatters.wp_bin == "/usr/local/bin/wp"


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "cwkit.yml"
    cfg.write_text("upload:\n  delay: 2\n")
    env = {
        "CWKIT_UPLOAD__DELAY": "0",
        "CWKIT_HTTP__RETRIES": "5",
        "CWKIT_LOGS_DIR": str(tmp_path / "logs"),
        "UNRELATED": "ignored",
    }

    config = load_config(config_file=cfg, env=env)

    assert config.upload.delay == 0.0
    assert config.http.retries == 5
    assert config.logs_dir == tmp_path / "logs"


def test_env_can_select_config_file(tmp_path: Path) -> None:
    """Environment variable selects an alternate config file."""
    cfg = tmp_path / "override.yml"
    cfg.write_text("credentials_file: /etc/cwkit/creds.env\n")

    config = load_config(env={"CWKIT_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.credentials_file == Path("/etc/cwkit/creds.env")


def test_overrides_win_over_environment(tmp_path: Path) -> None:
    """Programmatic overrides are applied last."""
    config = load_config(
        config_file=tmp_path / "absent.yml",
        env={"CWKIT_UPLOAD__DELAY": "3"},
        overrides={"upload": {"delay": 0.5}},
    )
    assert config.upload.delay == 0.5


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """Non-mapping YAML raises a ConfigError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("- not-a-mapping\n")

    with pytest.raises(ConfigError):
        load_config(config_file=cfg, env={})


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    """Unexpected top-level keys trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unknown: value\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_unknown_section_keys_raise(tmp_path: Path) -> None:
    """Extra keys inside a section produce ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("http:\n  retries: 1\n  proxy: socks5://x\n")

    with pytest.raises(ConfigError, match="Unknown http configuration keys"):
        load_config(config_file=cfg, env={})


@pytest.mark.parametrize(
    ("env", "message"),
    [
        ({"CWKIT_UPLOAD__DELAY": "-1"}, "upload.delay must be non-negative"),
        ({"CWKIT_HTTP__TIMEOUT": "0"}, "http.timeout must be greater than zero"),
        ({"CWKIT_HTTP__RETRIES": "-2"}, "http.retries must be non-negative"),
        ({"CWKIT_API__BASE_URL": "ftp://nope"}, "api.base_url must start with"),
        ({"CWKIT_HTTP__RETRIES": "many"}, "Invalid integer for http.retries"),
    ],
)
def test_invalid_values_raise(tmp_path: Path, env: dict[str, str], message: str) -> None:
    """Out-of-range and malformed values are rejected."""
    with pytest.raises(ConfigError, match=message):
        load_config(config_file=tmp_path / "absent.yml", env=env)


def test_to_dict_is_serialisable(tmp_path: Path) -> None:
    """The config renders to plain strings and numbers."""
    data = load_config(config_file=tmp_path / "absent.yml", env={}).to_dict()
    assert data["perfmatters"]["output_dir"] == "perfmatters-configs"  # type: ignore[index]
    assert data["upload"] == {"delay": 1.0}


def test_load_credentials_reads_env_file(tmp_path: Path) -> None:
    """Credential files are parsed as KEY=value pairs."""
    creds = tmp_path / "cloudways_creds.env"
    creds.write_text(
        "# account\n"
        "CW_EMAIL=ops@example.com\n"
        'CW_API_KEY="abc$def"\n'
        "CW_SSH_KEY_PATH=~/.ssh/id_ed25519.pub\n"
        "CW_SSH_KEY_NAME=deploy\n"
    )

    credentials = load_credentials(creds, required=SSH_UPLOAD_KEYS)

    assert credentials.email == "ops@example.com"
    assert credentials.api_key == "abc$def"
    assert credentials.ssh_key_path == Path("~/.ssh/id_ed25519.pub").expanduser()
    assert credentials.ssh_key_name == "deploy"
    assert credentials.source == creds
    assert "abc$def" not in repr(credentials)


def test_load_credentials_missing_file(tmp_path: Path) -> None:
    """A missing credential file is a configuration error."""
    with pytest.raises(ConfigError, match="Configuration file not found"):
        load_credentials(tmp_path / "missing.env")


def test_load_credentials_missing_keys(tmp_path: Path) -> None:
    """Blank or absent required keys are all reported."""
    creds = tmp_path / "creds.env"
    creds.write_text("CW_EMAIL=ops@example.com\nCW_API_KEY=\n")

    with pytest.raises(ConfigError) as excinfo:
        load_credentials(creds, required=SSH_UPLOAD_KEYS)

    message = str(excinfo.value)
    assert "CW_API_KEY" in message
    assert "CW_SSH_KEY_PATH" in message
    assert "CW_SSH_KEY_NAME" in message


def test_load_credentials_does_not_touch_environment(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Credentials are not exported into the process environment."""
    monkeypatch.delenv("CW_EMAIL", raising=False)
    creds = tmp_path / "creds.env"
    creds.write_text("CW_EMAIL=ops@example.com\nCW_API_KEY=secret\n")

    load_credentials(creds)

    assert "CW_EMAIL" not in os.environ
