"""
Pastewire - Configuration Management

This module handles loading, merging, and managing configuration from
TOML files and environment variables. Supports default values and
runtime configuration updates.

Author: orpheus497
Version: 1.0.0
"""

import copy
import logging
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
    CONNECT_TIMEOUT,
    DEFAULT_DATA_DIR,
    DEFAULT_HOST,
    DEFAULT_LISTEN_PORT,
    DIAL_RETRY_INTERVAL,
    DIAL_WINDOW,
    ENVELOPE_VARIANT_DESCRIPTOR,
    ENVELOPE_VARIANT_KEYED,
    GATHER_TIMEOUT,
    UI_MAX_MESSAGE_HISTORY,
)
from .errors import ConfigError, ErrorCode
from .utils import validate_hostname, validate_ip, validate_port

logger = logging.getLogger(__name__)

# Default configuration dictionary
DEFAULT_CONFIG: Dict[str, Any] = {
    "network": {
        "host": DEFAULT_HOST,
        "port": DEFAULT_LISTEN_PORT,
        "advertise_host": "",
        "gather_timeout": GATHER_TIMEOUT,
        "connect_timeout": CONNECT_TIMEOUT,
        "dial_retry_interval": DIAL_RETRY_INTERVAL,
        "dial_window": DIAL_WINDOW,
    },
    "protocol": {
        "envelope_variant": ENVELOPE_VARIANT_KEYED,
        "strict_envelopes": True,
    },
    "ui": {
        "show_key_fingerprint": True,
        "max_messages": UI_MAX_MESSAGE_HISTORY,
    },
    "logging": {
        "level": "INFO",
        "file_logging": True,
        "console_logging": True,
    },
}

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Config:
    """Configuration manager for Pastewire.

    Loads configuration from TOML files, merges with defaults,
    and applies environment variable overrides. Provides a simple
    interface for accessing and updating configuration values.

    Attributes:
        config_path: Path to the configuration file
        data: Configuration dictionary
    """

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file (optional)
                If not provided, uses default location
        """
        if config_path is None:
            data_dir = Path(DEFAULT_DATA_DIR).expanduser()
            config_path = data_dir / CONFIG_FILENAME

        self.config_path = Path(config_path)
        self.data = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file and merge with defaults.

        Returns:
            Merged configuration dictionary

        Raises:
            ConfigError: If configuration loading or parsing fails
        """
        config = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    file_config = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigError(
                    ErrorCode.E704_CONFIG_PARSE_ERROR,
                    f"Failed to parse configuration file: {e}",
                    {"path": str(self.config_path), "error": str(e)},
                )

            config = self._merge_config(config, file_config)
            logger.debug(f"Loaded configuration from {self.config_path}")

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

        Environment variables follow the pattern: PASTEWIRE_SECTION_KEY
        For example: PASTEWIRE_NETWORK_PORT=5001

        Args:
            config: Base configuration dictionary

        Returns:
            Configuration with environment overrides applied
        """
        for section, settings in config.items():
            if not isinstance(settings, dict):
                continue

            for key, current in settings.items():
                env_var = f"PASTEWIRE_{section.upper()}_{key.upper()}"
                env_value = os.environ.get(env_var)

                if env_value is None:
                    continue

                original_type = type(current)
                try:
                    if original_type == bool:
                        settings[key] = env_value.lower() in ("true", "1", "yes")
                    elif original_type == int:
                        settings[key] = int(env_value)
                    elif original_type == float:
                        settings[key] = float(env_value)
                    else:
                        settings[key] = env_value
                except ValueError:
                    logger.warning(f"Ignoring {env_var}={env_value!r}: expected {original_type.__name__}")

        return config

    def validate(self) -> None:
        """Check that configured values are usable.

        Raises:
            ConfigError: If a value is out of range or of the wrong kind
        """
        problems = []

        port = self.get("network", "port")
        if not isinstance(port, int) or not (port == 0 or validate_port(port)):
            problems.append(f"network.port must be 0 or 1024-65535, got {port!r}")

        advertise_host = self.get("network", "advertise_host", "")
        if advertise_host and not (validate_ip(advertise_host) or validate_hostname(advertise_host)):
            problems.append(f"network.advertise_host is not a valid address: {advertise_host!r}")

        for key in ("gather_timeout", "connect_timeout", "dial_retry_interval", "dial_window"):
            value = self.get("network", key)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                problems.append(f"network.{key} must be a positive number, got {value!r}")

        variant = self.get("protocol", "envelope_variant")
        if variant not in (ENVELOPE_VARIANT_KEYED, ENVELOPE_VARIANT_DESCRIPTOR):
            problems.append(
                f"protocol.envelope_variant must be '{ENVELOPE_VARIANT_KEYED}' "
                f"or '{ENVELOPE_VARIANT_DESCRIPTOR}', got {variant!r}"
            )

        level = str(self.get("logging", "level", "INFO")).upper()
        if level not in VALID_LOG_LEVELS:
            problems.append(f"logging.level must be one of {', '.join(VALID_LOG_LEVELS)}")

        if problems:
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG,
                "; ".join(problems),
                {"path": str(self.config_path)},
            )

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Args:
            section: Configuration section name
            key: Configuration key name
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self.data.get(section, {}).get(key, default)

    def set(self, section: str, key: str, value: Any) -> None:
        """Set a configuration value."""
        if section not in self.data:
            self.data[section] = {}

        self.data[section][key] = value

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
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to save configuration: {e}",
                {"path": str(self.config_path), "error": str(e)},
            )

    @staticmethod
    def _write_toml(file, data: Dict[str, Any]) -> None:
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
                        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
                        file.write(f'{key} = "{escaped}"\n')
                file.write("\n")

    def to_dict(self) -> Dict[str, Any]:
        """Get configuration as dictionary."""
        return copy.deepcopy(self.data)

    @classmethod
    def create_example(cls, path: Path) -> None:
        """Create an example configuration file.

        Args:
            path: Path where to create the example config

        Raises:
            ConfigError: If file creation fails
        """
        try:
            path.parent.mkdir(parents=True, exist_ok=True)

            with open(path, "w") as f:
                f.write("# Pastewire Configuration File\n")
                f.write("# Generated example configuration\n\n")
                cls._write_toml(f, DEFAULT_CONFIG)

        except OSError as e:
            raise ConfigError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to create example configuration: {e}",
                {"path": str(path), "error": str(e)},
            )
