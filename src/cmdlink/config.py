"""
Cmdlink - Configuration Management

This module handles loading, merging, and managing configuration from
TOML files and environment variables. Supports default values and
validation of the network settings.

Version: 1.0.0
"""

import copy
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

# Python 3.11+ has tomllib built-in, older versions need tomli
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from .constants import (
    CONFIG_FILENAME,
    DEFAULT_BACKLOG,
    DEFAULT_DATA_DIR,
    DEFAULT_HOST,
    DEFAULT_MAX_CONNECTIONS,
    DEFAULT_PACING_DELAY,
    DEFAULT_SERVER_PORT,
    PRIVATE_KEY_FILENAME,
    PUBLIC_KEY_FILENAME,
    RECV_SIZE,
    RSA_KEY_SIZE,
)
from .errors import ConfigError, ErrorCode
from .utils import validate_hostname, validate_ip, validate_port

ENV_PREFIX = "CMDLINK"

# Default configuration dictionary
DEFAULT_CONFIG: Dict[str, Any] = {
    "server": {
        "host": DEFAULT_HOST,
        "port": DEFAULT_SERVER_PORT,
        "backlog": DEFAULT_BACKLOG,
        "max_connections": DEFAULT_MAX_CONNECTIONS,
        "public_key_path": f"{DEFAULT_DATA_DIR}/{PUBLIC_KEY_FILENAME}",
        "private_key_path": f"{DEFAULT_DATA_DIR}/{PRIVATE_KEY_FILENAME}",
    },
    "client": {
        "host": DEFAULT_HOST,
        "port": DEFAULT_SERVER_PORT,
        "key_size": RSA_KEY_SIZE,
    },
    "transport": {
        "pacing_delay": DEFAULT_PACING_DELAY,
        "recv_size": RECV_SIZE,
    },
    "logging": {
        "level": "INFO",
        "rich": True,
    },
}


class Config:
    """Configuration manager for Cmdlink.

    Loads configuration from a TOML file, merges it with defaults,
    and applies environment variable overrides.

    Attributes:
        config_path: Path to the configuration file
        data: Configuration dictionary
    """

    def __init__(self, config_path: Optional[Path] = None, validate: bool = True):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file (optional)
                If not provided, uses default location
            validate: Check host/port/limit values after loading

        Raises:
            ConfigError: If the file cannot be parsed or holds invalid values
        """
        if config_path is None:
            config_path = Path(DEFAULT_DATA_DIR).expanduser() / CONFIG_FILENAME

        self.config_path = Path(config_path)
        self.data = self._load_config()
        if validate:
            self.validate()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file and merge with defaults.

        Raises:
            ConfigError: If configuration loading or parsing fails
        """
        config = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    file_config = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigError(
                    ErrorCode.E704_CONFIG_PARSE_ERROR,
                    f"Failed to parse configuration file: {e}",
                    {"path": str(self.config_path), "error": str(e)},
                )
            except OSError as e:
                raise ConfigError(
                    ErrorCode.E701_CONFIG_LOAD_FAILED,
                    f"Failed to read configuration file: {e}",
                    {"path": str(self.config_path), "error": str(e)},
                )

            config = self._merge_config(config, file_config)

        return self._apply_env_overrides(config)

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override config into base config."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration.

        Environment variables follow the pattern: CMDLINK_SECTION_KEY
        For example: CMDLINK_SERVER_PORT=5001

        Raises:
            ConfigError: If a value cannot be converted to the setting's type
        """
        result = copy.deepcopy(config)

        for section, settings in config.items():
            if not isinstance(settings, dict):
                continue

            for key, current in settings.items():
                env_var = f"{ENV_PREFIX}_{section.upper()}_{key.upper()}"
                env_value = os.environ.get(env_var)
                if env_value is None:
                    continue

                original_type = type(current)
                try:
                    if original_type == bool:
                        result[section][key] = env_value.lower() in ("true", "1", "yes")
                    elif original_type == int:
                        result[section][key] = int(env_value)
                    elif original_type == float:
                        result[section][key] = float(env_value)
                    else:
                        result[section][key] = env_value
                except ValueError:
                    raise ConfigError(
                        ErrorCode.E703_INVALID_CONFIG,
                        f"Invalid value for {env_var}: {env_value!r}",
                        {"variable": env_var, "expected": original_type.__name__},
                    )

        return result

    def validate(self) -> None:
        """Check network settings.

        Raises:
            ConfigError: If a setting is out of range
        """
        for section in ("server", "client"):
            host = self.get(section, "host")
            if not isinstance(host, str) or not (
                validate_ip(host, allow_loopback=True, allow_unspecified=True)
                or validate_hostname(host)
            ):
                raise ConfigError(
                    ErrorCode.E703_INVALID_CONFIG,
                    f"Invalid {section}.host: {host!r}",
                    {"section": section, "key": "host"},
                )

            port = self.get(section, "port")
            if not isinstance(port, int) or not validate_port(port):
                raise ConfigError(
                    ErrorCode.E703_INVALID_CONFIG,
                    f"Invalid {section}.port: {port!r}",
                    {"section": section, "key": "port"},
                )

        for section, key in (("server", "backlog"), ("server", "max_connections"), ("transport", "recv_size")):
            value = self.get(section, key)
            if not isinstance(value, int) or value < 1:
                raise ConfigError(
                    ErrorCode.E703_INVALID_CONFIG,
                    f"{section}.{key} must be a positive integer, got {value!r}",
                    {"section": section, "key": key},
                )

        if self.get("transport", "pacing_delay") < 0:
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG,
                "transport.pacing_delay must not be negative",
                {"section": "transport", "key": "pacing_delay"},
            )

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        return self.data.get(section, {}).get(key, default)

    def set(self, section: str, key: str, value: Any) -> None:
        """Set a configuration value."""
        if section not in self.data:
            self.data[section] = {}

        self.data[section][key] = value

    def key_paths(self) -> Dict[str, Path]:
        """Expanded public/private PEM paths for the server."""
        return {
            "public": Path(self.get("server", "public_key_path")).expanduser(),
            "private": Path(self.get("server", "private_key_path")).expanduser(),
        }

    def save(self) -> None:
        """Save current configuration to file.

        Raises:
            ConfigError: If saving fails
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w") as f:
                self._write_toml(f, self.data)
        except OSError as e:
            raise ConfigError(
                ErrorCode.E701_CONFIG_LOAD_FAILED,
                f"Failed to save configuration: {e}",
                {"path": str(self.config_path), "error": str(e)},
            )

    def _write_toml(self, file, data: Dict[str, Any]) -> None:
        """Write configuration data as TOML format."""
        for section, settings in data.items():
            if isinstance(settings, dict):
                file.write(f"[{section}]\n")
                for key, value in settings.items():
                    if isinstance(value, bool):
                        file.write(f"{key} = {str(value).lower()}\n")
                    elif isinstance(value, (int, float)):
                        file.write(f"{key} = {value}\n")
                    elif isinstance(value, str):
                        file.write(f'{key} = "{value}"\n')
                file.write("\n")

    def to_dict(self) -> Dict[str, Any]:
        """Get configuration as dictionary."""
        return copy.deepcopy(self.data)
