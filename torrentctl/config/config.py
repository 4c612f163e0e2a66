"""Configuration management for torrentctl.

Configuration is loaded hierarchically: defaults, then the TOML config file,
then ``TORRENTCTL_*`` environment variables, then command line options.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import toml
from pydantic import ValidationError as PydanticValidationError

from torrentctl.models import Config
from torrentctl.utils.exceptions import ConfigurationError
from torrentctl.utils.logging_config import get_logger, setup_logging

CONFIG_FILE_NAME = "torrentctl.toml"

# Global configuration instance
_config_manager: ConfigManager | None = None

logger = get_logger(__name__)

# Mapping of environment variables to config paths
ENV_MAPPINGS: dict[str, str] = {
    # Torrent defaults
    "TORRENTCTL_SAVE_PATH": "torrent.save_path",
    "TORRENTCTL_UPLOAD_LIMIT": "torrent.upload_limit_kib",
    "TORRENTCTL_DOWNLOAD_LIMIT": "torrent.download_limit_kib",
    "TORRENTCTL_MAX_CONNECTIONS": "torrent.max_connections",
    "TORRENTCTL_SEED_MODE": "torrent.seed_mode",
    "TORRENTCTL_SHARE_MODE": "torrent.share_mode",
    "TORRENTCTL_STORAGE_MODE": "torrent.storage_mode",
    "TORRENTCTL_PEER": "torrent.peer",
    # Monitor
    "TORRENTCTL_MONITOR_DIR": "monitor.directory",
    "TORRENTCTL_POLL_INTERVAL": "monitor.poll_interval",
    # Session
    "TORRENTCTL_REFRESH_INTERVAL_MS": "session.refresh_interval_ms",
    "TORRENTCTL_DRAIN_TIMEOUT": "session.drain_timeout",
    "TORRENTCTL_STATE_FILE": "session.state_file",
    "TORRENTCTL_HIGH_PERFORMANCE": "session.high_performance",
    # Network
    "TORRENTCTL_LISTEN_INTERFACES": "network.listen_interfaces",
    "TORRENTCTL_IP_FILTER_FILE": "network.ip_filter_file",
    "TORRENTCTL_RATE_LIMIT_LOCAL_PEERS": "network.rate_limit_local_peers",
    # Observability
    "TORRENTCTL_LOG_LEVEL": "observability.log_level",
    "TORRENTCTL_LOG_FILE": "observability.log_file",
    "TORRENTCTL_STRUCTURED_LOGGING": "observability.structured_logging",
}

# Values that must stay strings even when they look numeric or boolean
_STRING_PATHS = frozenset(
    {
        "torrent.save_path",
        "torrent.peer",
        "monitor.directory",
        "session.state_file",
        "network.listen_interfaces",
        "network.ip_filter_file",
        "observability.log_file",
    }
)


def _parse_env_value(raw: str, path: str) -> bool | int | float | str:
    if path in _STRING_PATHS:
        return raw
    low = raw.lower()
    if low in {"true", "1", "yes", "on"}:
        return True
    if low in {"false", "0", "no", "off"}:
        return False
    try:
        if "." in raw:
            return float(raw)
        return int(raw)
    except ValueError:
        return raw


def _set_nested(d: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    cur = d
    for p in parts[:-1]:
        cur = cur.setdefault(p, {})
    cur[parts[-1]] = value


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_file: str | Path | None = None):
        """Initialize configuration manager.

        Args:
            config_file: Path to TOML config file. If None, searches for
                torrentctl.toml

        Raises:
            ConfigurationError: If the file or environment yields an invalid
                configuration

        """
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()
        self._setup_logging()

    def _find_config_file(
        self,
        config_file: str | Path | None,
    ) -> Path | None:
        """Find configuration file in standard locations."""
        if config_file:
            return Path(config_file)

        # Search in current directory, then home directory
        search_paths = [
            Path.cwd() / CONFIG_FILE_NAME,
            Path.home() / ".config" / "torrentctl" / CONFIG_FILE_NAME,
            Path.home() / ".torrentctl.toml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return None

    def _load_config(self) -> Config:
        """Load configuration from file and environment."""
        config_data: dict[str, Any] = {}

        if self.config_file is not None:
            if not self.config_file.exists():
                msg = f"Config file not found: {self.config_file}"
                raise ConfigurationError(msg)
            try:
                with open(self.config_file, encoding="utf-8") as f:
                    config_data.update(toml.load(f))
            except (OSError, toml.TomlDecodeError) as e:
                msg = f"Failed to load config file {self.config_file}: {e}"
                raise ConfigurationError(msg) from e

        config_data = self._merge_config(config_data, self._get_env_config())

        try:
            return Config(**config_data)
        except PydanticValidationError as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigurationError(msg) from e

    def _get_env_config(self) -> dict[str, Any]:
        """Get configuration from environment variables."""
        env_config: dict[str, Any] = {}
        for env_name, cfg_path in ENV_MAPPINGS.items():
            raw = os.getenv(env_name)
            if raw is None:
                continue
            _set_nested(env_config, cfg_path, _parse_env_value(raw, cfg_path))
        return env_config

    def _merge_config(
        self,
        base: dict[str, Any],
        override: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge configuration dictionaries recursively."""
        result = base.copy()

        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def export(self) -> str:
        """Export current configuration as TOML."""
        data = self.config.model_dump(mode="json", exclude_none=True)
        return toml.dumps(data)

    def _setup_logging(self) -> None:
        """Set up logging configuration."""
        setup_logging(self.config.observability)


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager.config


def init_config(config_file: str | Path | None = None) -> ConfigManager:
    """Initialize the global configuration manager."""
    global _config_manager
    _config_manager = ConfigManager(config_file)
    return _config_manager


def set_config(new_config: Config) -> None:
    """Replace the global configuration at runtime.

    Reconfigures logging based on the new config.
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(None)
    _config_manager.config = new_config
    _config_manager._setup_logging()  # noqa: SLF001
