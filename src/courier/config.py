"""
Courier - Configuration Management

This module handles loading, merging, and validating configuration from
TOML files and environment variables. Only settings are read from disk;
key material is never written anywhere.

Author: Courier contributors
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
    CONNECTION_TIMEOUT,
    DEFAULT_DATA_DIR,
    DEFAULT_RELAY_HOST,
    DEFAULT_RELAY_PORT,
    MAX_FRAME_SIZE,
    MAX_TEXT_MESSAGE_SIZE,
    RSA_KEY_SIZE,
    RSA_MIN_KEY_SIZE,
)
from .errors import ConfigError, ErrorCode
from .utils import validate_port

# Default configuration dictionary
DEFAULT_CONFIG: Dict[str, Any] = {
    "relay": {
        "host": DEFAULT_RELAY_HOST,
        "port": DEFAULT_RELAY_PORT,
        "connect_timeout": CONNECTION_TIMEOUT,
    },
    "crypto": {
        "rsa_key_size": RSA_KEY_SIZE,
    },
    "limits": {
        "max_frame_size": MAX_FRAME_SIZE,
        "max_text_length": MAX_TEXT_MESSAGE_SIZE,
    },
    "logging": {
        "level": "INFO",
        "rich": True,
    },
}


class Config:
    """Configuration manager for Courier.

    Loads configuration from a TOML file, merges it over the defaults,
    and applies environment variable overrides.

    Attributes:
        config_path: Path to the configuration file
        data: Configuration dictionary
    """

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file (optional)
                If not provided, uses ~/.courier/config.toml
        """
        if config_path is None:
            config_path = Path(DEFAULT_DATA_DIR).expanduser() / CONFIG_FILENAME

        self.config_path = Path(config_path)
        self.data = self._load_config()
        self._validate()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file and merge with defaults.

        Raises:
            ConfigError: If the file exists but cannot be parsed
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
                ) from e

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

        Environment variables follow the pattern: COURIER_SECTION_KEY
        For example: COURIER_RELAY_PORT=9000
        """
        result = copy.deepcopy(config)

        for section, settings in config.items():
            if not isinstance(settings, dict):
                continue

            for key in settings:
                env_var = f"COURIER_{section.upper()}_{key.upper()}"
                env_value = os.environ.get(env_var)

                if env_value is None:
                    continue

                original_type = type(settings[key])
                try:
                    if original_type == bool:
                        result[section][key] = env_value.lower() in ("true", "1", "yes")
                    elif original_type == int:
                        result[section][key] = int(env_value)
                    elif original_type == float:
                        result[section][key] = float(env_value)
                    else:
                        result[section][key] = env_value
                except ValueError as e:
                    raise ConfigError(
                        ErrorCode.E703_INVALID_CONFIG,
                        f"Invalid value for {env_var}: {env_value!r}",
                        {"variable": env_var, "value": env_value},
                    ) from e

        return result

    def _validate(self) -> None:
        """Reject settings that would weaken or break the protocol.

        Raises:
            ConfigError: If a setting is out of range
        """
        key_size = self.get("crypto", "rsa_key_size")
        if not isinstance(key_size, int) or key_size < RSA_MIN_KEY_SIZE:
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG,
                f"rsa_key_size must be at least {RSA_MIN_KEY_SIZE}",
                {"rsa_key_size": key_size},
            )

        port = self.get("relay", "port")
        if not isinstance(port, int) or not validate_port(port):
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG,
                f"Invalid relay port: {port}",
                {"port": port},
            )

        for key in ("max_frame_size", "max_text_length"):
            value = self.get("limits", key)
            if not isinstance(value, int) or value <= 0:
                raise ConfigError(
                    ErrorCode.E703_INVALID_CONFIG,
                    f"limits.{key} must be a positive integer",
                    {key: value},
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
        """Set a configuration value for this process only."""
        if section not in self.data:
            self.data[section] = {}

        self.data[section][key] = value

    def to_dict(self) -> Dict[str, Any]:
        """Get configuration as dictionary."""
        return copy.deepcopy(self.data)
