"""Capability interface of the transfer engine.

The control layer only talks to the engine through this interface. The
engine is treated as internally thread-safe: `submit` may be called from the
resume replay worker while the main thread pops alerts.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Flag, auto
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:  # pragma: no cover
    from torrentctl.core.identity import TorrentIdentity
    from torrentctl.core.ip_filter import IPFilterRule
    from torrentctl.models import AddRequest
    from torrentctl.session.alerts import AlertRecord, TorrentStatus


class SaveFlags(Flag):
    """Options for a resume data save request."""

    NONE = 0
    SAVE_INFO_DICT = auto()  # Include the metadata in the blob
    ONLY_IF_MODIFIED = auto()  # Fail with "not modified" when nothing changed


StatusPredicate = Callable[["TorrentStatus"], bool]


class Engine(ABC):
    """Abstract interface for transfer engines.

    Save requests complete asynchronously through save-succeeded or
    save-failed alerts. Add requests complete through a torrent-added alert.
    """

    @abstractmethod
    def submit(self, request: AddRequest) -> TorrentIdentity:
        """Queue an add request.

        Returns:
            Identity the engine will report the torrent under

        Raises:
            AddRejectedError: If the request is refused synchronously

        """

    @abstractmethod
    def pop_alerts(self) -> list[AlertRecord]:
        """Return every queued alert in emission order without blocking."""

    @abstractmethod
    def wait_for_alert(self, timeout: float) -> AlertRecord | None:
        """Block until an alert is queued or ``timeout`` seconds pass.

        The alert stays queued; callers follow up with `pop_alerts`.
        """

    @abstractmethod
    def request_save(self, identity: TorrentIdentity, flags: SaveFlags) -> None:
        """Ask the engine to produce resume data for a torrent."""

    @abstractmethod
    def pause(self) -> None:
        """Pause the whole session."""

    @abstractmethod
    def resume(self) -> None:
        """Resume the whole session."""

    @abstractmethod
    def is_paused(self) -> bool:
        """Whether the session is paused."""

    @abstractmethod
    def enumerate_status(
        self, predicate: StatusPredicate | None = None
    ) -> list[TorrentStatus]:
        """Snapshot the status of every torrent matching ``predicate``."""

    @abstractmethod
    def set_max_connections(self, identity: TorrentIdentity, limit: int) -> None:
        """Change a torrent's connection cap."""

    @abstractmethod
    def connect_peer(self, identity: TorrentIdentity, host: str, port: int) -> None:
        """Connect a torrent directly to a peer."""

    @abstractmethod
    def post_updates(self) -> None:
        """Request fresh status, session stats and DHT alerts."""

    @abstractmethod
    def load_session_state(self, data: bytes) -> None:
        """Restore global state (DHT routing table) saved by a previous run.

        Raises:
            EngineError: If ``data`` is not valid saved state

        """

    @abstractmethod
    def save_session_state(self) -> bytes:
        """Serialize global state for the next run."""

    @abstractmethod
    def set_ip_filter(self, rules: list[IPFilterRule]) -> None:
        """Install peer IP filter rules."""

    @abstractmethod
    def close(self) -> None:
        """Shut the engine down."""

    # Per-torrent actions driven by the interactive command processor

    @abstractmethod
    def remove_torrent(self, identity: TorrentIdentity, delete_files: bool = False) -> None:
        """Remove a torrent, optionally deleting its downloaded data."""

    @abstractmethod
    def pause_torrent(self, identity: TorrentIdentity) -> None:
        """Pause one torrent."""

    @abstractmethod
    def resume_torrent(self, identity: TorrentIdentity) -> None:
        """Resume one torrent."""

    @abstractmethod
    def force_recheck(self, identity: TorrentIdentity) -> None:
        """Re-verify a torrent's data on disk."""

    @abstractmethod
    def force_reannounce(self, identity: TorrentIdentity) -> None:
        """Announce to trackers immediately."""

    @abstractmethod
    def scrape_tracker(self, identity: TorrentIdentity) -> None:
        """Scrape the torrent's trackers."""

    @abstractmethod
    def set_sequential(self, identity: TorrentIdentity, enabled: bool) -> None:
        """Toggle in-order piece download."""

    @abstractmethod
    def set_auto_managed(self, identity: TorrentIdentity, enabled: bool) -> None:
        """Toggle engine queue management (off forces the torrent to run)."""

    @abstractmethod
    def set_piece_deadlines(self, identity: TorrentIdentity, count: int) -> None:
        """Give the first ``count`` pieces staggered download deadlines."""

    @abstractmethod
    def clear_error(self, identity: TorrentIdentity) -> None:
        """Clear a torrent's error state."""

    @abstractmethod
    def remove_web_seeds(self, identity: TorrentIdentity) -> None:
        """Drop every web seed of a torrent."""
