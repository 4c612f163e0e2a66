"""Pydantic models for torrentctl.

Provides validated configuration models and the add-request shape that all
ingestion sources converge on.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from torrentctl.core.identity import TorrentIdentity


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StorageMode(str, Enum):
    """File allocation modes handed to the engine."""

    SPARSE = "sparse"
    ALLOCATE = "allocate"


class TorrentFlag(str, Enum):
    """Per-torrent mode flags."""

    SEED_MODE = "seed_mode"  # Assume all pieces present, verify lazily
    SHARE_MODE = "share_mode"  # Maximize share ratio instead of downloading
    SEQUENTIAL_DOWNLOAD = "sequential_download"
    NEED_SAVE_RESUME = "need_save_resume"
    PAUSED = "paused"
    AUTO_MANAGED = "auto_managed"


class SourceKind(str, Enum):
    """Where an add request originated."""

    FILE = "file"
    MAGNET = "magnet"
    RESUME = "resume"


class TorrentSource(BaseModel):
    """Identity source of an add request."""

    kind: SourceKind = Field(..., description="Source kind")
    location: str = Field(..., description="File path, magnet URI, or resume file")


class AddTorrentOptions(BaseModel):
    """Fields the current invocation applies to every add request.

    Only fields that were explicitly set take precedence over a resume
    overlay; unset fields leave the overlay (or the request defaults) alone.
    """

    save_path: str | None = Field(None, description="Download directory")
    upload_limit: int | None = Field(None, ge=0, description="Upload limit in bytes/s")
    download_limit: int | None = Field(
        None, ge=0, description="Download limit in bytes/s"
    )
    max_connections: int | None = Field(None, ge=-1, description="Connection cap")
    max_uploads: int | None = Field(None, ge=-1, description="Upload slot cap")
    storage_mode: StorageMode | None = Field(None, description="Allocation mode")
    seed_mode: bool = Field(default=False, description="Add in seed mode")
    share_mode: bool = Field(default=False, description="Add in share mode")

    @classmethod
    def from_config(cls, config: TorrentDefaultsConfig) -> AddTorrentOptions:
        """Build options with every configured limit marked explicit."""
        fields: dict[str, Any] = {
            "save_path": config.save_path,
            "upload_limit": config.upload_limit_kib * 1000,
            "download_limit": config.download_limit_kib * 1000,
            "max_connections": config.max_connections,
            "max_uploads": -1,
            "storage_mode": config.storage_mode,
        }
        # Mode flags only count as explicit when switched on
        if config.seed_mode:
            fields["seed_mode"] = True
        if config.share_mode:
            fields["share_mode"] = True
        return cls(**fields)

    def explicit_fields(self) -> dict[str, Any]:
        """Return request fields set by this invocation, with flags folded in."""
        fields = self.model_dump(exclude_unset=True, exclude_none=True)
        flags: set[TorrentFlag] = set()
        if fields.pop("seed_mode", False):
            flags.add(TorrentFlag.SEED_MODE)
        if fields.pop("share_mode", False):
            flags.add(TorrentFlag.SHARE_MODE)
        if flags:
            fields["flags"] = flags
        return fields


class AddRequest(BaseModel):
    """Normalized request to add one torrent to the engine."""

    source: TorrentSource = Field(..., description="Identity source")
    info_hash: bytes = Field(
        ...,
        min_length=20,
        max_length=20,
        description="Torrent info hash",
    )
    name: str | None = Field(None, description="Display name")
    trackers: list[str] = Field(default_factory=list, description="Tracker URLs")
    save_path: str = Field(default=".", description="Download directory")
    upload_limit: int = Field(default=0, ge=0, description="Upload limit in bytes/s")
    download_limit: int = Field(
        default=0, ge=0, description="Download limit in bytes/s"
    )
    max_connections: int = Field(default=50, ge=-1, description="Connection cap")
    max_uploads: int = Field(default=-1, ge=-1, description="Upload slot cap")
    flags: set[TorrentFlag] = Field(default_factory=set, description="Mode flags")
    storage_mode: StorageMode = Field(
        default=StorageMode.SPARSE, description="Allocation mode"
    )
    torrent_file: str | None = Field(None, description="Descriptor path")
    magnet_uri: str | None = Field(None, description="Magnet URI")
    resume_data: bytes | None = Field(None, description="Opaque resume overlay")

    @property
    def identity(self) -> TorrentIdentity:
        """Identity the engine will key this torrent on."""
        return TorrentIdentity(self.info_hash)

    def has_flag(self, flag: TorrentFlag) -> bool:
        """Check whether a mode flag is set."""
        return flag in self.flags


class TorrentDefaultsConfig(BaseModel):
    """Per-torrent settings applied to every ingested torrent."""

    save_path: str = Field(default=".", description="Download and resume base directory")
    upload_limit_kib: int = Field(
        default=0, ge=0, description="Per-torrent upload limit in kB/s (0 = unlimited)"
    )
    download_limit_kib: int = Field(
        default=0,
        ge=0,
        description="Per-torrent download limit in kB/s (0 = unlimited)",
    )
    max_connections: int = Field(
        default=50, ge=2, le=65535, description="Maximum connections per torrent"
    )
    seed_mode: bool = Field(default=False, description="Add torrents in seed mode")
    share_mode: bool = Field(default=False, description="Add torrents in share mode")
    storage_mode: StorageMode = Field(
        default=StorageMode.SPARSE, description="File allocation mode"
    )
    peer: str | None = Field(
        None, description="host:port of a peer to connect to for every added torrent"
    )

    @field_validator("peer")
    @classmethod
    def validate_peer(cls, v):
        """Require a host:port shape for the static peer."""
        if v is None or v == "":
            return None
        host, sep, port = v.rpartition(":")
        if not sep or not host or not port.isdigit():
            msg = f"Peer must be host:port (got {v!r})"
            raise ValueError(msg)
        return v


class MonitorConfig(BaseModel):
    """Monitored spool directory configuration."""

    directory: str | None = Field(None, description="Directory to scan for .torrent files")
    poll_interval: float = Field(
        default=5.0, ge=0.1, le=86400.0, description="Scan interval in seconds"
    )
    suffix: str = Field(default=".torrent", description="Descriptor file suffix")


class SessionConfig(BaseModel):
    """Control loop and shutdown configuration."""

    refresh_interval_ms: int = Field(
        default=500, ge=10, le=60000, description="UI refresh interval in milliseconds"
    )
    drain_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=600.0,
        description="Seconds to wait for an alert per shutdown drain iteration",
    )
    drain_batch: int = Field(
        default=32,
        ge=1,
        le=10000,
        description="Drain alerts after this many shutdown save requests",
    )
    state_file: str = Field(
        default=".ses_state", description="Engine session state file (DHT state)"
    )
    high_performance: bool = Field(
        default=False, description="Use the engine's high-performance seed preset"
    )


class NetworkConfig(BaseModel):
    """Engine network settings exposed by this client."""

    listen_interfaces: str = Field(
        default="0.0.0.0:6881,[::]:6881", description="Engine listen interfaces"
    )
    ip_filter_file: str | None = Field(None, description="eMule-style IP filter file")
    rate_limit_local_peers: bool = Field(
        default=False, description="Apply rate limits to peers on the local network"
    )


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: LogLevel = Field(default=LogLevel.WARNING, description="Log level")
    log_file: str | None = Field(None, description="Log file path")
    structured_logging: bool = Field(
        default=False, description="Use structured JSON logging"
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Include correlation IDs",
    )

    model_config = {"use_enum_values": True}


class Config(BaseModel):
    """Main configuration model."""

    torrent: TorrentDefaultsConfig = Field(
        default_factory=TorrentDefaultsConfig,
        description="Per-torrent defaults",
    )
    monitor: MonitorConfig = Field(
        default_factory=MonitorConfig,
        description="Monitored directory configuration",
    )
    session: SessionConfig = Field(
        default_factory=SessionConfig,
        description="Session loop configuration",
    )
    network: NetworkConfig = Field(
        default_factory=NetworkConfig,
        description="Network configuration",
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Observability configuration",
    )
