"""
Configuration management for the PulseFind scan engine.

Loads YAML configuration with ${ENV_VAR} interpolation, layers it over
the built-in defaults and validates the keys the engine depends on.
"""

import copy
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from pulsefind.utils.errors import ConfigurationError

_ENV_PATTERN = re.compile(r'\$\{([^}]+)\}')

# Keys validated after loading: {dotted key: {"type": ..., "required": ...}}
CONFIG_SCHEMA: Dict[str, Dict[str, Any]] = {
    "audio.target_sample_rate": {"type": int, "required": True},
    "audio.max_bytes": {"type": int, "required": True},
    "scan.max_concurrency": {"type": int, "required": True},
    "scan.segment_timeout": {"type": (int, float), "required": True},
    "scan.segment_bytes": {"type": int},
    "local_cache.loose_similarity": {"type": float},
    "store.backend": {"type": str, "required": True},
    "aggregation.top_k": {"type": int},
    "ranking.max_results": {"type": int},
}


class ConfigManager:
    """
    Manages application configuration loaded from YAML files.

    Features:
    - YAML configuration loading
    - Environment variable interpolation (${VAR_NAME})
    - Deep merge over built-in defaults
    - Nested key access with dot notation
    - Schema validation
    """

    def __init__(self, config_dict: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration manager.

        Args:
            config_dict: Optional pre-loaded configuration dictionary
        """
        self._config: Dict[str, Any] = config_dict or {}

    @classmethod
    def from_file(cls, file_path: Path, with_defaults: bool = True) -> "ConfigManager":
        """
        Create ConfigManager from a YAML file.

        Args:
            file_path: Path to YAML configuration file
            with_defaults: Merge file contents over get_default_config()

        Returns:
            ConfigManager: Initialized with file contents

        Raises:
            ConfigurationError: If file cannot be loaded or parsed
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {file_path}",
                config_key=str(file_path)
            )

        try:
            with open(file_path, 'r') as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Failed to parse YAML configuration: {e}",
                config_key=str(file_path)
            ) from e

        if not isinstance(loaded, dict):
            raise ConfigurationError(
                "Configuration root must be a mapping",
                config_key=str(file_path)
            )

        loaded = interpolate_env_vars(loaded)
        if with_defaults:
            loaded = deep_merge(get_default_config(), loaded)
        return cls(loaded)

    def get(
        self,
        key: str,
        default: Any = None,
        required: bool = False
    ) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key (e.g. "scan.segment_timeout")
            default: Default value if key not found
            required: If True, raise error when key not found

        Returns:
            Configuration value or default

        Raises:
            ConfigurationError: If required key is not found
        """
        value: Any = self._config

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                if required:
                    raise ConfigurationError(
                        f"Required configuration key not found: {key}",
                        config_key=key
                    )
                return default

        return value

    def get_section(self, key: str) -> Dict[str, Any]:
        """Return a configuration section as a dict (empty if missing)."""
        value = self.get(key, default={})
        if not isinstance(value, dict):
            return {}
        return value

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value using dot notation."""
        keys = key.split('.')
        current = self._config

        for k in keys[:-1]:
            current = current.setdefault(k, {})

        current[keys[-1]] = value

    def to_dict(self) -> Dict[str, Any]:
        """Return a deep copy of the configuration."""
        return copy.deepcopy(self._config)

    def validate(self, schema: Optional[Dict[str, Any]] = None) -> None:
        """
        Validate configuration against a schema.

        Args:
            schema: Mapping of dotted key to {"type": ..., "required": ...};
                defaults to CONFIG_SCHEMA

        Raises:
            ConfigurationError: If validation fails
        """
        for key, rules in (schema or CONFIG_SCHEMA).items():
            value = self.get(key)
            expected_type = rules.get("type")

            if value is None:
                if rules.get("required", False):
                    raise ConfigurationError(
                        f"Required configuration missing: {key}",
                        config_key=key
                    )
                continue

            # bool is an int subclass; never accept it for numeric settings
            if expected_type and (
                not isinstance(value, expected_type) or isinstance(value, bool)
            ):
                type_name = getattr(expected_type, "__name__", str(expected_type))
                raise ConfigurationError(
                    f"Invalid type for {key}: expected {type_name}, "
                    f"got {type(value).__name__}",
                    config_key=key
                )


def interpolate_env_vars(value: Any) -> Any:
    """
    Recursively replace ${ENV_VAR} patterns with environment values.

    Unset variables are left as-is so credential resolution downstream
    can detect them.
    """
    if isinstance(value, dict):
        return {k: interpolate_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [interpolate_env_vars(item) for item in value]
    if isinstance(value, str):
        return _ENV_PATTERN.sub(
            lambda m: os.environ.get(m.group(1), m.group(0)), value
        )
    return value


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``base`` with ``override`` merged in recursively."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from file or return defaults.

    Args:
        config_path: Optional path to config file.
                    If None, tries "config/config.yaml"

    Returns:
        Dict[str, Any]: Validated configuration dictionary
    """
    if config_path is None:
        default_paths = [
            Path("config/config.yaml"),
            Path("config.yaml"),
            Path(__file__).parent.parent.parent / "config" / "config.yaml",
        ]

        for path in default_paths:
            if path.exists():
                config_path = str(path)
                break

    if config_path:
        manager = ConfigManager.from_file(Path(config_path))
    else:
        manager = ConfigManager(get_default_config())

    manager.validate()
    return manager.to_dict()


def get_default_config() -> Dict[str, Any]:
    """Return default configuration values."""
    return {
        "audio": {
            "target_sample_rate": 44100,
            "max_bytes": 104857600,  # 100MB
            "allow_raw_pcm": True,
        },
        "fingerprint": {
            "spectral_coefficients": 13,
        },
        "scan": {
            "normal_segments": 4,
            "deep_segments": 8,
            "segment_bytes": 24576,  # 24KB
            "max_concurrency": 10,
            "segment_timeout": 15.0,
            "max_results": 50,
        },
        "local_cache": {
            "enabled": True,
            "loose_similarity": 0.70,
            "min_spectral_similarity": None,
        },
        "store": {
            "backend": "memory",
            "path": "data/fingerprints.db",
            "persist_top_n": 10,
        },
        "aggregation": {
            "top_k": 5,
            "timeout": 10.0,
        },
        "ranking": {
            "max_results": 99,
        },
        "providers": {
            "acrcloud": {
                "enabled": True,
                "host": "identify-eu-west-1.acrcloud.com",
                "access_key": "${ACRCLOUD_ACCESS_KEY}",
                "access_secret": "${ACRCLOUD_ACCESS_SECRET}",
                "max_sample_bytes": 512000,
                "timeout": 15.0,
            },
            "spotify": {
                "enabled": True,
                "client_id": "${SPOTIFY_CLIENT_ID}",
                "client_secret": "${SPOTIFY_CLIENT_SECRET}",
                "timeout": 10.0,
            },
            "youtube": {
                "enabled": True,
                "api_key": "${YOUTUBE_API_KEY}",
                "max_results": 10,
                "timeout": 10.0,
            },
            "itunes": {
                "enabled": True,
                "timeout": 10.0,
            },
        },
        "analytics": {
            "sink": "log",
            "path": "logs/scan_analytics.jsonl",
        },
        "logging": {
            "level": "INFO",
            "format": "json",
        },
        "performance": {
            "max_workers": 4,
        },
    }
