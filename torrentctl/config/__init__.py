"""Configuration management.

This module handles configuration loading from TOML files and the
environment.
"""

from __future__ import annotations

from torrentctl.config.config import ConfigManager, get_config, init_config, set_config

__all__ = [
    "ConfigManager",
    "get_config",
    "init_config",
    "set_config",
]
