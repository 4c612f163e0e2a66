"""Alert records delivered by the engine.

Every engine notification is normalized into an `AlertRecord` whose `kind`
comes from a closed set. Per-kind payloads are small dataclasses so the
dispatcher never needs to inspect engine-native objects.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum, Flag, auto
from typing import Any

from torrentctl.core.identity import TorrentIdentity
from torrentctl.models import TorrentFlag


class AlertKind(Enum):
    """Closed set of alert kinds the dispatcher understands."""

    TORRENT_ADDED = "torrent_added"
    METADATA_RECEIVED = "metadata_received"
    TORRENT_FINISHED = "torrent_finished"
    TORRENT_PAUSED = "torrent_paused"
    SAVE_SUCCEEDED = "save_succeeded"
    SAVE_FAILED = "save_failed"
    PEER_DISCONNECTED = "peer_disconnected"
    PEER_CONNECTED = "peer_connected"
    STATS_SNAPSHOT = "stats_snapshot"
    DHT_SNAPSHOT = "dht_snapshot"
    STATE_UPDATE = "state_update"
    GENERIC = "generic"


class AlertCategory(Flag):
    """Severity/category bits carried by an alert."""

    NONE = 0
    ERROR = auto()
    PEER = auto()
    STORAGE = auto()
    STATUS = auto()
    DHT = auto()
    STATS = auto()


class DisconnectReason(Enum):
    """Why a peer connection ended."""

    NO_HANDSHAKE = "no_handshake"  # Peer never completed the handshake
    CONNECT_FAILED = "connect_failed"  # Outgoing connection attempt failed
    OTHER = "other"


class SaveFailureReason(Enum):
    """Why a save request failed."""

    NOT_MODIFIED = "not_modified"  # Nothing changed since the last save
    OTHER = "other"


@dataclass(frozen=True)
class TorrentAddedInfo:
    """Payload of a torrent-added alert."""

    error: str | None = None
    name: str | None = None

    @property
    def ok(self) -> bool:
        """Whether the engine accepted the torrent."""
        return self.error is None


@dataclass(frozen=True)
class PeerDisconnectInfo:
    """Payload of a peer-disconnected alert."""

    reason: DisconnectReason
    endpoint: str | None = None


@dataclass(frozen=True)
class SaveFailureInfo:
    """Payload of a save-failed alert."""

    reason: SaveFailureReason
    message: str = ""


@dataclass(frozen=True)
class SessionStats:
    """Session-wide counters snapshot."""

    counters: dict[str, int] = field(default_factory=dict)
    timestamp: float = 0.0

    def get(self, name: str, default: int = 0) -> int:
        """Look up a counter by name."""
        return self.counters.get(name, default)


@dataclass(frozen=True)
class DhtLookup:
    """One in-flight DHT lookup."""

    kind: str
    outstanding_requests: int = 0
    timeouts: int = 0
    responses: int = 0
    branch_factor: int = 0


@dataclass(frozen=True)
class DhtBucket:
    """One routing table bucket."""

    num_nodes: int = 0
    num_replacements: int = 0


@dataclass(frozen=True)
class DhtSnapshot:
    """DHT routing table and lookup status."""

    lookups: tuple[DhtLookup, ...] = ()
    buckets: tuple[DhtBucket, ...] = ()

    @property
    def node_count(self) -> int:
        """Total nodes across all buckets."""
        return sum(b.num_nodes for b in self.buckets)


@dataclass(frozen=True)
class TorrentStatus:
    """Per-torrent status snapshot."""

    identity: TorrentIdentity
    name: str = ""
    state: str = "unknown"
    progress: float = 0.0
    num_pieces: int = 0
    download_rate: int = 0
    upload_rate: int = 0
    num_peers: int = 0
    num_seeds: int = 0
    flags: frozenset[TorrentFlag] = frozenset()
    has_metadata: bool = False
    is_valid: bool = True
    error: str | None = None
    save_path: str = ""

    @property
    def need_save_resume(self) -> bool:
        """Whether the torrent has unsaved modifications."""
        return TorrentFlag.NEED_SAVE_RESUME in self.flags

    @property
    def is_paused(self) -> bool:
        """Whether the torrent is paused."""
        return TorrentFlag.PAUSED in self.flags

    @property
    def is_auto_managed(self) -> bool:
        """Whether the engine queues the torrent automatically."""
        return TorrentFlag.AUTO_MANAGED in self.flags

    @property
    def is_sequential(self) -> bool:
        """Whether pieces are downloaded in order."""
        return TorrentFlag.SEQUENTIAL_DOWNLOAD in self.flags


@dataclass(frozen=True)
class AlertRecord:
    """One engine notification."""

    kind: AlertKind
    message: str
    category: AlertCategory = AlertCategory.NONE
    identity: TorrentIdentity | None = None
    payload: Any = None
    timestamp: float = field(default_factory=time.time)

    @property
    def is_error(self) -> bool:
        """Whether the error category bit is set."""
        return bool(self.category & AlertCategory.ERROR)
