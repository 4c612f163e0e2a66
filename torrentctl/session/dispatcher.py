"""Alert classifier and dispatcher.

Each alert kind has exactly one handler. A handler applies the side effects
for its kind (snapshot replacement, save requests, barrier bookkeeping,
resume persistence) and returns whether the alert is `Suppressed` or must be
`Surfaced` to the event log. The handler table is checked for completeness
when the dispatcher is built, so adding an `AlertKind` without a handler
fails immediately instead of silently falling through.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Union

from torrentctl.session.alerts import (
    AlertKind,
    AlertRecord,
    DisconnectReason,
    PeerDisconnectInfo,
    SaveFailureInfo,
    SaveFailureReason,
    TorrentAddedInfo,
)
from torrentctl.session.engine import SaveFlags
from torrentctl.utils.exceptions import ResumeStoreError
from torrentctl.utils.logging_config import get_logger

if TYPE_CHECKING:  # pragma: no cover
    from torrentctl.core.identity import TorrentIdentity
    from torrentctl.session.engine import Engine
    from torrentctl.session.state import ControllerState
    from torrentctl.storage.resume_store import ResumeStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class Suppressed:
    """The alert was fully handled and is not logged."""


@dataclass(frozen=True)
class Surfaced:
    """The alert must be appended to the event log."""

    message: str
    error: bool = False


DispatchResult = Union[Suppressed, Surfaced]
AlertHandler = Callable[[AlertRecord], DispatchResult]

SUPPRESSED = Suppressed()

# Disconnects that never produced a usable connection are too noisy to log
_QUIET_DISCONNECTS = frozenset(
    {DisconnectReason.NO_HANDSHAKE, DisconnectReason.CONNECT_FAILED}
)


def parse_peer_address(peer: str | None) -> tuple[str, int] | None:
    """Split a ``host:port`` string; None when it is absent or unusable."""
    if not peer:
        return None
    host, sep, port_text = peer.rpartition(":")
    if not sep or not host:
        return None
    try:
        port = int(port_text)
    except ValueError:
        return None
    if port <= 0 or port > 65535:
        return None
    return host.strip("[]"), port


class AlertDispatcher:
    """Routes each alert to the handler for its kind."""

    def __init__(
        self,
        engine: Engine,
        state: ControllerState,
        resume_store: ResumeStore,
        max_connections: int = 50,
        peer: str | None = None,
    ):
        """Initialize dispatcher.

        Args:
            engine: Engine that receives save and connection requests
            state: Controller state updated by the handlers
            resume_store: Destination of completed resume data
            max_connections: Per-torrent connection cap, halved on finish
            peer: Optional ``host:port`` connected to every added torrent

        Raises:
            TypeError: If an alert kind has no handler

        """
        self.engine = engine
        self.state = state
        self.resume_store = resume_store
        self.max_connections = max_connections
        self.peer = peer
        self._peer_address = parse_peer_address(peer)
        if peer and self._peer_address is None:
            logger.debug("Ignoring unusable peer address %r", peer)

        self._handlers = self._build_handlers()
        missing = [kind.value for kind in AlertKind if kind not in self._handlers]
        if missing:
            msg = f"No alert handler for: {', '.join(missing)}"
            raise TypeError(msg)

    def _build_handlers(self) -> dict[AlertKind, AlertHandler]:
        return {
            AlertKind.STATS_SNAPSHOT: self._on_stats_snapshot,
            AlertKind.DHT_SNAPSHOT: self._on_dht_snapshot,
            AlertKind.PEER_CONNECTED: self._on_peer_connected,
            AlertKind.PEER_DISCONNECTED: self._on_peer_disconnected,
            AlertKind.METADATA_RECEIVED: self._on_metadata_received,
            AlertKind.TORRENT_ADDED: self._on_torrent_added,
            AlertKind.TORRENT_FINISHED: self._on_torrent_finished,
            AlertKind.TORRENT_PAUSED: self._on_torrent_paused,
            AlertKind.SAVE_SUCCEEDED: self._on_save_succeeded,
            AlertKind.SAVE_FAILED: self._on_save_failed,
            AlertKind.STATE_UPDATE: self._on_state_update,
            AlertKind.GENERIC: self._on_generic,
        }

    def dispatch(self, alert: AlertRecord) -> DispatchResult:
        """Apply the rule for one alert."""
        return self._handlers[alert.kind](alert)

    def dispatch_all(self, alerts: list[AlertRecord]) -> list[DispatchResult]:
        """Dispatch alerts in order, logging every surfaced one."""
        results: list[DispatchResult] = []
        for alert in alerts:
            result = self.dispatch(alert)
            if isinstance(result, Surfaced):
                self.state.events.add(result.message, alert.timestamp)
                if alert.is_error or result.error:
                    logger.warning("%s", result.message)
                else:
                    logger.info("%s", result.message)
            results.append(result)
        return results

    def request_save(self, identity: TorrentIdentity, flags: SaveFlags) -> None:
        """Issue a save request and open a barrier slot for it."""
        self.engine.request_save(identity, flags)
        self.state.barrier.increment()

    # Snapshots

    def _on_stats_snapshot(self, alert: AlertRecord) -> DispatchResult:
        self.state.ui.session_stats = alert.payload
        return SUPPRESSED

    def _on_dht_snapshot(self, alert: AlertRecord) -> DispatchResult:
        self.state.ui.dht = alert.payload
        return SUPPRESSED

    def _on_state_update(self, alert: AlertRecord) -> DispatchResult:
        self.state.ui.replace_torrents(alert.payload or [])
        return SUPPRESSED

    # Peers

    def _on_peer_connected(self, alert: AlertRecord) -> DispatchResult:
        return SUPPRESSED

    def _on_peer_disconnected(self, alert: AlertRecord) -> DispatchResult:
        info: PeerDisconnectInfo | None = alert.payload
        if info is not None and info.reason in _QUIET_DISCONNECTS:
            return SUPPRESSED
        return Surfaced(alert.message)

    # Save triggers

    def _on_metadata_received(self, alert: AlertRecord) -> DispatchResult:
        if alert.identity is not None:
            self.request_save(alert.identity, SaveFlags.SAVE_INFO_DICT)
        return Surfaced(alert.message)

    def _on_torrent_added(self, alert: AlertRecord) -> DispatchResult:
        info: TorrentAddedInfo = alert.payload or TorrentAddedInfo()
        if not info.ok:
            return Surfaced(
                f"failed to add torrent: {info.name or alert.message} {info.error}",
                error=True,
            )
        if alert.identity is None:
            return Surfaced(alert.message)

        self.request_save(
            alert.identity, SaveFlags.SAVE_INFO_DICT | SaveFlags.ONLY_IF_MODIFIED
        )
        if self._peer_address is not None:
            host, port = self._peer_address
            self.engine.connect_peer(alert.identity, host, port)
        return Surfaced(alert.message)

    def _on_torrent_finished(self, alert: AlertRecord) -> DispatchResult:
        if alert.identity is not None:
            # Free connection capacity for torrents still downloading
            self.engine.set_max_connections(
                alert.identity, self.max_connections // 2
            )
            self.request_save(alert.identity, SaveFlags.SAVE_INFO_DICT)
        return Surfaced(alert.message)

    def _on_torrent_paused(self, alert: AlertRecord) -> DispatchResult:
        if alert.identity is not None:
            self.request_save(alert.identity, SaveFlags.SAVE_INFO_DICT)
        return Surfaced(alert.message)

    # Save completions

    def _on_save_succeeded(self, alert: AlertRecord) -> DispatchResult:
        self.state.barrier.decrement()
        if alert.identity is None or not isinstance(alert.payload, bytes):
            return Surfaced(
                f"resume data without a torrent: {alert.message}", error=True
            )
        try:
            self.resume_store.save(alert.identity, alert.payload)
        except ResumeStoreError as e:
            return Surfaced(f"failed to write resume data: {e.message}", error=True)
        return SUPPRESSED

    def _on_save_failed(self, alert: AlertRecord) -> DispatchResult:
        self.state.barrier.decrement()
        info: SaveFailureInfo | None = alert.payload
        if info is not None and info.reason is SaveFailureReason.NOT_MODIFIED:
            return SUPPRESSED
        return Surfaced(alert.message)

    def _on_generic(self, alert: AlertRecord) -> DispatchResult:
        return Surfaced(alert.message)
