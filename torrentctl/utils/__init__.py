"""Shared utilities: exceptions and logging."""

from __future__ import annotations

from torrentctl.utils.exceptions import (
    ConfigurationError,
    DiskError,
    TorrentCtlError,
    ValidationError,
)
from torrentctl.utils.logging_config import get_logger, setup_logging

__all__ = [
    "ConfigurationError",
    "DiskError",
    "TorrentCtlError",
    "ValidationError",
    "get_logger",
    "setup_logging",
]
