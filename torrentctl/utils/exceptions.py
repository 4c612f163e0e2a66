"""Exception hierarchy for torrentctl.

Recoverable errors raised by the control layer are caught at the ingestion
and dispatch seams and turned into log records or event log lines; only
invariant violations propagate to the caller.
"""

from __future__ import annotations

from typing import Any


class TorrentCtlError(Exception):
    """Base exception for all torrentctl errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize torrentctl error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class DiskError(TorrentCtlError):
    """Disk I/O related errors."""


class ResumeStoreError(DiskError):
    """Resume directory read/write errors."""


class ValidationError(TorrentCtlError):
    """Data validation errors."""


class ConfigurationError(ValidationError):
    """Configuration validation errors."""


class TorrentError(ValidationError):
    """Torrent file validation errors."""


class MagnetError(ValidationError):
    """Magnet URI parsing errors."""


class BencodeError(ValidationError):
    """Bencode encoding/decoding errors."""


class ResumeDataError(ValidationError):
    """Malformed resume data."""


class IPFilterError(ValidationError):
    """IP filter file errors."""


class EngineError(TorrentCtlError):
    """Errors reported by the transfer engine."""


class AddRejectedError(EngineError):
    """The engine refused an add request synchronously."""


class EngineUnavailableError(EngineError):
    """The configured engine backend cannot be loaded."""


class BarrierUnderflowError(TorrentCtlError):
    """A save completion was observed without a matching save request."""
