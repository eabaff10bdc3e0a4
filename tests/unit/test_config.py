"""
Unit tests for cmdlink.config module.

Tests defaults, TOML loading, environment overrides and validation.
"""

import os

import pytest

from cmdlink.config import DEFAULT_CONFIG, Config
from cmdlink.errors import ConfigError, ErrorCode


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep CMDLINK_* variables from the outer environment out of the tests."""
    for name in list(os.environ):
        if name.startswith("CMDLINK_"):
            monkeypatch.delenv(name)


def write(path, text):
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_without_file(temp_dir):
    """A missing file yields the default settings."""
    config = Config(temp_dir / "missing.toml")

    assert config.to_dict() == DEFAULT_CONFIG
    assert config.get("server", "port") == 4098
    assert config.get("transport", "pacing_delay") == 0.0
    assert config.get("server", "nope", "fallback") == "fallback"


def test_file_merges_with_defaults(temp_dir):
    path = write(
        temp_dir / "config.toml",
        '[server]\nport = 5001\nmax_connections = 3\n\n[logging]\nlevel = "DEBUG"\n',
    )
    config = Config(path)

    assert config.get("server", "port") == 5001
    assert config.get("server", "max_connections") == 3
    assert config.get("server", "backlog") == 10
    assert config.get("logging", "level") == "DEBUG"


def test_env_overrides(temp_dir, monkeypatch):
    monkeypatch.setenv("CMDLINK_SERVER_PORT", "6000")
    monkeypatch.setenv("CMDLINK_TRANSPORT_PACING_DELAY", "0.5")
    monkeypatch.setenv("CMDLINK_LOGGING_RICH", "no")
    config = Config(temp_dir / "missing.toml")

    assert config.get("server", "port") == 6000
    assert config.get("transport", "pacing_delay") == 0.5
    assert config.get("logging", "rich") is False


def test_env_override_bad_value(temp_dir, monkeypatch):
    monkeypatch.setenv("CMDLINK_SERVER_PORT", "many")
    with pytest.raises(ConfigError) as exc_info:
        Config(temp_dir / "missing.toml")
    assert exc_info.value.code == ErrorCode.E703_INVALID_CONFIG


def test_parse_error(temp_dir):
    path = write(temp_dir / "config.toml", "[server\nport = ")
    with pytest.raises(ConfigError) as exc_info:
        Config(path)
    assert exc_info.value.code == ErrorCode.E704_CONFIG_PARSE_ERROR


@pytest.mark.parametrize(
    "text",
    [
        "[server]\nport = 80\n",
        '[client]\nhost = "not a host!"\n',
        "[server]\nmax_connections = 0\n",
        "[transport]\npacing_delay = -1.0\n",
    ],
)
def test_validation(temp_dir, text):
    path = write(temp_dir / "config.toml", text)
    with pytest.raises(ConfigError):
        Config(path)

    # Loading without validation still works
    assert Config(path, validate=False).config_path == path


def test_wildcard_host_allowed(temp_dir):
    path = write(temp_dir / "config.toml", '[server]\nhost = "0.0.0.0"\n')
    assert Config(path).get("server", "host") == "0.0.0.0"


def test_save_round_trip(temp_dir):
    path = temp_dir / "nested" / "config.toml"
    config = Config(path)
    config.set("server", "port", 7000)
    config.set("logging", "rich", False)
    config.save()

    reloaded = Config(path)
    assert reloaded.get("server", "port") == 7000
    assert reloaded.get("logging", "rich") is False
    assert reloaded.to_dict() == config.to_dict()


def test_key_paths_expand_user(temp_dir):
    config = Config(temp_dir / "missing.toml")
    paths = config.key_paths()

    assert paths["public"].name == "public.pem"
    assert paths["private"].name == "private.pem"
    assert "~" not in str(paths["private"])
