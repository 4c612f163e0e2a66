"""Controller state.

Everything the tick loop mutates lives in one `ControllerState` value that
is passed explicitly to the pump, dispatcher and command processor. Only the
main thread touches it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

from torrentctl.core.identity import TorrentIdentity
from torrentctl.session.alerts import DhtSnapshot, SessionStats, TorrentStatus
from torrentctl.session.barrier import OutstandingSaves
from torrentctl.session.event_log import EventLog


class TorrentFilter(IntEnum):
    """Torrent list filters cycled with the left/right arrow keys."""

    ALL = 0
    DOWNLOADING = 1
    NOT_PAUSED = 2
    SEEDING = 3
    QUEUED = 4
    STOPPED = 5
    CHECKING = 6

    @property
    def label(self) -> str:
        """Human readable filter name."""
        return self.name.lower().replace("_", "-")

    def matches(self, status: TorrentStatus) -> bool:
        """Check whether a torrent passes this filter."""
        if self is TorrentFilter.ALL:
            return True
        if self is TorrentFilter.DOWNLOADING:
            return not status.is_paused and status.state in (
                "downloading",
                "downloading_metadata",
            )
        if self is TorrentFilter.NOT_PAUSED:
            return not status.is_paused
        if self is TorrentFilter.SEEDING:
            return not status.is_paused and status.state in ("seeding", "finished")
        if self is TorrentFilter.QUEUED:
            return status.is_paused and status.is_auto_managed
        if self is TorrentFilter.STOPPED:
            return status.is_paused and not status.is_auto_managed
        return status.state in ("checking_files", "checking_resume_data")


@dataclass
class DisplayOptions:
    """Display toggles flipped by single keystrokes."""

    show_trackers: bool = False
    show_peers: bool = False
    show_log: bool = False
    show_downloads: bool = False
    show_piece_matrix: bool = False
    show_file_progress: bool = False
    show_pad_files: bool = False
    show_dht_status: bool = False
    show_utp_stats: bool = False
    show_disk_stats: bool = False
    show_help: bool = False
    # Peer list columns
    column_ip: bool = True
    column_timers: bool = False
    column_block: bool = False
    column_peer_rate: bool = False
    column_fails: bool = False
    column_send_buffers: bool = True

    def toggle(self, name: str) -> bool:
        """Flip a toggle and return its new value."""
        value = not getattr(self, name)
        setattr(self, name, value)
        return value


@dataclass
class UIState:
    """Last known snapshots, each replaced wholesale on its alert."""

    torrents: list[TorrentStatus] = field(default_factory=list)
    session_stats: SessionStats = field(default_factory=SessionStats)
    dht: DhtSnapshot = field(default_factory=DhtSnapshot)
    torrent_filter: TorrentFilter = TorrentFilter.ALL
    selected: int = 0

    def visible_torrents(self) -> list[TorrentStatus]:
        """Torrents that pass the active filter, sorted by name."""
        return sorted(
            (t for t in self.torrents if self.torrent_filter.matches(t)),
            key=lambda t: (t.name, t.identity.hex()),
        )

    def replace_torrents(self, torrents: list[TorrentStatus]) -> None:
        """Replace the per-torrent snapshot, keeping the selection in range."""
        self.torrents = list(torrents)
        self._clamp_selection()

    def active_torrent(self) -> TorrentStatus | None:
        """The selected torrent, if any is visible."""
        visible = self.visible_torrents()
        if not visible:
            return None
        return visible[min(self.selected, len(visible) - 1)]

    def active_identity(self) -> TorrentIdentity | None:
        """Identity of the selected torrent, if any."""
        active = self.active_torrent()
        return active.identity if active is not None else None

    def arrow_up(self) -> None:
        """Move the selection up."""
        if self.selected > 0:
            self.selected -= 1

    def arrow_down(self) -> None:
        """Move the selection down."""
        if self.selected < len(self.visible_torrents()) - 1:
            self.selected += 1

    def previous_filter(self) -> None:
        """Select the previous torrent filter."""
        if self.torrent_filter > TorrentFilter.ALL:
            self.torrent_filter = TorrentFilter(self.torrent_filter - 1)
            self._clamp_selection()

    def next_filter(self) -> None:
        """Select the next torrent filter."""
        if self.torrent_filter < max(TorrentFilter):
            self.torrent_filter = TorrentFilter(self.torrent_filter + 1)
            self._clamp_selection()

    def _clamp_selection(self) -> None:
        visible = len(self.visible_torrents())
        self.selected = max(0, min(self.selected, visible - 1))


@dataclass
class MonitorState:
    """Spool directory bookkeeping."""

    # Files already handed to ingestion during the current scan
    claimed: set[str] = field(default_factory=set)
    next_scan: float = 0.0

    def due(self, now: float) -> bool:
        """Whether the next scan is due."""
        return now >= self.next_scan


@dataclass
class ControllerState:
    """All mutable state of the control loop."""

    barrier: OutstandingSaves = field(default_factory=OutstandingSaves)
    events: EventLog = field(default_factory=EventLog)
    ui: UIState = field(default_factory=UIState)
    monitor: MonitorState = field(default_factory=MonitorState)
    display: DisplayOptions = field(default_factory=DisplayOptions)
    quit: bool = False

    def request_quit(self) -> None:
        """Ask the main loop to exit at the next check."""
        self.quit = True
