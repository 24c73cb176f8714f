"""
Configuration management for gitbroker.

Handles loading and merging configuration from:
- Default configuration file
- A user configuration file
- Environment variables
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

# Environment variable -> dotted configuration key
ENV_OVERRIDES = {
    "GITBROKER_REMOTE": "broker.remote",
    "GITBROKER_TOPIC": "broker.topic",
    "GITBROKER_NODE": "broker.node",
    "GITBROKER_WORK_DIR": "broker.work_dir",
    "GITBROKER_AUTHOR_NAME": "author.name",
    "GITBROKER_AUTHOR_EMAIL": "author.email",
    "GITBROKER_USERNAME": "credentials.username",
    "GITBROKER_PASSWORD": "credentials.password",
    "LOG_LEVEL": "logging.level",
}


class Config:
    """Configuration manager for gitbroker."""

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_file: Path to configuration file. If None, only the
                defaults and the environment are used.
        """
        self._config: Dict[str, Any] = {}
        self._load_default_config()

        if config_file:
            self._load_config_file(config_file)

        self._apply_env_overrides()

    def _load_default_config(self) -> None:
        """Load default configuration."""
        default_config_path = Path(__file__).parent.parent.parent / "config" / "default.yaml"
        if default_config_path.exists():
            self._load_config_file(str(default_config_path))

    def _load_config_file(self, config_file: str) -> None:
        """
        Load configuration from YAML file.

        Args:
            config_file: Path to YAML configuration file
        """
        with open(config_file, "r") as f:
            file_config = yaml.safe_load(f) or {}
            self._merge_config(file_config)

    def _merge_config(self, new_config: Dict[str, Any]) -> None:
        """Deep merge new configuration into existing configuration."""
        self._config = self._deep_merge(self._config, new_config)

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deep merge two dictionaries.

        Args:
            base: Base dictionary
            override: Override dictionary

        Returns:
            Merged dictionary
        """
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        for env_name, key in ENV_OVERRIDES.items():
            if value := os.getenv(env_name):
                self.set(key, value)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., "broker.topic")
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config
        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key in dot notation
            value: Value to set
        """
        keys = key.split(".")
        config = self._config
        for k in keys[:-1]:
            if k not in config or not isinstance(config[k], dict):
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def to_dict(self) -> Dict[str, Any]:
        """Get entire configuration as dictionary."""
        return self._config.copy()


@dataclass
class ClientConfig:
    """
    Settings shared by producers and consumers.

    Attributes:
        author_name: Commit author full name
        author_email: Commit author email
        work_dir: Parent directory for working copies (temp dir if None)
        command_timeout_s: Timeout for a single git command
        max_retries: Push attempts after the first rejection
        retry_backoff_ms: Initial backoff between push attempts
        retry_backoff_max_ms: Backoff cap
        retry_jitter_ms: Random jitter added to each backoff
        deadline_ms: Overall budget for one push (None = attempts only)
    """
    author_name: str = "gitbroker"
    author_email: str = "gitbroker@localhost"
    work_dir: Optional[str] = None
    command_timeout_s: float = 60.0
    max_retries: int = 5
    retry_backoff_ms: int = 100
    retry_backoff_max_ms: int = 5000
    retry_jitter_ms: int = 50
    deadline_ms: Optional[int] = None

    @classmethod
    def from_config(cls, config: Config, **overrides: Any):
        """Build client settings from a Config, then apply ``overrides``."""
        values = {
            "author_name": config.get("author.name"),
            "author_email": config.get("author.email"),
            "work_dir": config.get("broker.work_dir"),
            "command_timeout_s": config.get("backend.command_timeout_s"),
            "max_retries": config.get("retry.max_retries"),
            "retry_backoff_ms": config.get("retry.retry_backoff_ms"),
            "retry_backoff_max_ms": config.get("retry.retry_backoff_max_ms"),
            "retry_jitter_ms": config.get("retry.retry_jitter_ms"),
            "deadline_ms": config.get("retry.deadline_ms"),
        }
        values = {key: value for key, value in values.items() if value is not None}
        values.update(overrides)
        return cls(**values)


_config: Optional[Config] = None


def get_config(config_file: Optional[str] = None) -> Config:
    """
    Get global configuration instance.

    Args:
        config_file: Optional configuration file path

    Returns:
        Configuration instance
    """
    global _config
    if _config is None:
        _config = Config(config_file)
    return _config


def reset_config() -> None:
    """Reset global configuration (mainly for testing)."""
    global _config
    _config = None
