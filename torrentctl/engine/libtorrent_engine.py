"""Engine adapter over the libtorrent Python bindings.

Translates add requests into ``add_torrent_params`` and libtorrent alerts
into `AlertRecord`s. Import this module only when libtorrent is installed
(``pip install torrentctl[libtorrent]``).
"""

from __future__ import annotations

import time
from collections import deque
from typing import TYPE_CHECKING, Any

import libtorrent as lt

from torrentctl import __version__
from torrentctl.core.identity import TorrentIdentity
from torrentctl.core.ip_filter import FilterMode
from torrentctl.models import AddRequest, StorageMode, TorrentFlag
from torrentctl.session.alerts import (
    AlertCategory,
    AlertKind,
    AlertRecord,
    DhtBucket,
    DhtLookup,
    DhtSnapshot,
    DisconnectReason,
    PeerDisconnectInfo,
    SaveFailureInfo,
    SaveFailureReason,
    SessionStats,
    TorrentAddedInfo,
    TorrentStatus,
)
from torrentctl.session.engine import Engine, SaveFlags, StatusPredicate
from torrentctl.utils.exceptions import AddRejectedError, EngineError
from torrentctl.utils.logging_config import get_logger

if TYPE_CHECKING:  # pragma: no cover
    from torrentctl.core.ip_filter import IPFilterRule
    from torrentctl.models import Config

logger = get_logger(__name__)

# The bindings expose need_save_resume only as a torrent_status attribute
_TORRENT_FLAGS: dict[TorrentFlag, Any] = {
    TorrentFlag.SEED_MODE: lt.torrent_flags.seed_mode,
    TorrentFlag.SHARE_MODE: lt.torrent_flags.share_mode,
    TorrentFlag.SEQUENTIAL_DOWNLOAD: lt.torrent_flags.sequential_download,
    TorrentFlag.PAUSED: lt.torrent_flags.paused,
    TorrentFlag.AUTO_MANAGED: lt.torrent_flags.auto_managed,
}

_STORAGE_MODES = {
    StorageMode.SPARSE: lt.storage_mode_t.storage_mode_sparse,
    StorageMode.ALLOCATE: lt.storage_mode_t.storage_mode_allocate,
}

_CATEGORY_BITS = (
    (lt.alert.category_t.error_notification, AlertCategory.ERROR),
    (lt.alert.category_t.peer_notification, AlertCategory.PEER),
    (lt.alert.category_t.storage_notification, AlertCategory.STORAGE),
    (lt.alert.category_t.status_notification, AlertCategory.STATUS),
)

# Everything except the high-volume log and progress categories
ALERT_MASK = lt.alert.category_t.all_categories & ~(
    lt.alert.category_t.dht_notification
    | lt.alert.category_t.progress_notification
    | lt.alert.category_t.stats_notification
    | lt.alert.category_t.session_log_notification
    | lt.alert.category_t.torrent_log_notification
    | lt.alert.category_t.peer_log_notification
    | lt.alert.category_t.dht_log_notification
    | lt.alert.category_t.picker_log_notification
)


# Carry no state for the controller; the counter names arrive with every
# session_stats_alert as a dict
_IGNORED_ALERTS = (lt.session_stats_header_alert,)


def _hash_to_identity(sha1: Any) -> TorrentIdentity:
    return TorrentIdentity(bytes.fromhex(str(sha1)))


def _identity_to_hash(identity: TorrentIdentity) -> Any:
    return lt.sha1_hash(identity.info_hash)


def _error_message(error: Any) -> str | None:
    if error is None or not error.value():
        return None
    return error.message()


class LibtorrentEngine(Engine):
    """Engine backed by a libtorrent session."""

    def __init__(self, config: Config):
        """Create the libtorrent session.

        Args:
            config: Application configuration

        """
        self.config = config
        settings: dict[str, Any] = {}
        if config.session.high_performance:
            settings.update(lt.high_performance_seed())
        settings.update(
            {
                "listen_interfaces": config.network.listen_interfaces,
                "user_agent": f"torrentctl/{__version__}",
                "alert_mask": ALERT_MASK,
            }
        )
        self._session = lt.session(settings)

        if config.network.rate_limit_local_peers:
            peer_class_filter = lt.ip_filter()
            peer_class_filter.add_rule(
                "0.0.0.0",
                "255.255.255.255",
                1 << lt.session.global_peer_class_id,
            )
            self._session.set_peer_class_filter(peer_class_filter)

        # Alerts produced locally to keep save bookkeeping balanced
        self._synthetic: deque[AlertRecord] = deque()
        self._statuses: dict[bytes, TorrentStatus] = {}

    # Adding torrents

    def _build_params(self, request: AddRequest) -> Any:
        params = None
        if request.resume_data is not None:
            try:
                params = lt.read_resume_data(request.resume_data)
            except RuntimeError as e:
                logger.debug("Ignoring unreadable resume data for %s: %s", request.identity, e)
        if params is None and request.magnet_uri is not None:
            params = lt.parse_magnet_uri(request.magnet_uri)
        if params is None:
            params = lt.add_torrent_params()
            params.info_hash = _identity_to_hash(request.identity)

        if request.torrent_file is not None:
            try:
                params.ti = lt.torrent_info(request.torrent_file)
            except RuntimeError as e:
                msg = f"Failed to load torrent {request.torrent_file}: {e}"
                raise AddRejectedError(msg) from e

        if request.name:
            params.name = request.name
        if request.trackers:
            params.trackers = list(request.trackers)
        params.save_path = request.save_path
        params.max_connections = request.max_connections
        params.max_uploads = request.max_uploads
        params.upload_limit = request.upload_limit
        params.download_limit = request.download_limit
        params.storage_mode = _STORAGE_MODES[StorageMode(request.storage_mode)]

        flags = params.flags
        for flag, lt_flag in _TORRENT_FLAGS.items():
            if flag in request.flags:
                flags |= lt_flag
        flags &= ~lt.torrent_flags.duplicate_is_error
        params.flags = flags
        return params

    def submit(self, request: AddRequest) -> TorrentIdentity:
        """Queue an add request."""
        params = self._build_params(request)
        self._session.async_add_torrent(params)
        return request.identity

    # Alerts

    def _category(self, alert: Any) -> AlertCategory:
        category = AlertCategory.NONE
        bits = alert.category()
        for lt_bit, ours in _CATEGORY_BITS:
            if bits & lt_bit:
                category |= ours
        return category

    def _handle_identity(self, alert: Any) -> TorrentIdentity | None:
        handle = getattr(alert, "handle", None)
        if handle is None or not handle.is_valid():
            return None
        return _hash_to_identity(handle.info_hash())

    def _convert_status(self, st: Any) -> TorrentStatus:
        flags = frozenset(
            flag for flag, lt_flag in _TORRENT_FLAGS.items() if st.flags & lt_flag
        )
        if st.need_save_resume:
            flags |= {TorrentFlag.NEED_SAVE_RESUME}
        return TorrentStatus(
            identity=_hash_to_identity(st.info_hash),
            name=st.name,
            state=str(st.state),
            progress=st.progress,
            num_pieces=st.num_pieces,
            download_rate=st.download_rate,
            upload_rate=st.upload_rate,
            num_peers=st.num_peers,
            num_seeds=st.num_seeds,
            flags=flags,
            has_metadata=st.has_metadata,
            is_valid=st.handle.is_valid(),
            error=_error_message(st.errc),
            save_path=st.save_path,
        )

    def _convert(self, alert: Any) -> AlertRecord:
        message = alert.message()
        category = self._category(alert)
        identity = self._handle_identity(alert)

        def record(kind: AlertKind, payload: Any = None) -> AlertRecord:
            return AlertRecord(
                kind=kind,
                message=message,
                category=category,
                identity=identity,
                payload=payload,
            )

        if isinstance(alert, lt.add_torrent_alert):
            name = alert.params.ti.name() if alert.params.ti else alert.params.name
            return record(
                AlertKind.TORRENT_ADDED,
                TorrentAddedInfo(error=_error_message(alert.error), name=name),
            )
        if isinstance(alert, lt.metadata_received_alert):
            return record(AlertKind.METADATA_RECEIVED)
        if isinstance(alert, lt.torrent_finished_alert):
            return record(AlertKind.TORRENT_FINISHED)
        if isinstance(alert, lt.torrent_paused_alert):
            return record(AlertKind.TORRENT_PAUSED)
        if isinstance(alert, lt.save_resume_data_alert):
            return record(AlertKind.SAVE_SUCCEEDED, lt.write_resume_data_buf(alert.params))
        if isinstance(alert, lt.save_resume_data_failed_alert):
            error = _error_message(alert.error) or ""
            reason = (
                SaveFailureReason.NOT_MODIFIED
                if "not modified" in error
                else SaveFailureReason.OTHER
            )
            return record(AlertKind.SAVE_FAILED, SaveFailureInfo(reason, error))
        if isinstance(alert, lt.peer_connect_alert):
            return record(AlertKind.PEER_CONNECTED)
        if isinstance(alert, lt.peer_disconnected_alert):
            error = _error_message(alert.error) or ""
            if alert.op == lt.operation_t.connect:
                reason = DisconnectReason.CONNECT_FAILED
            elif "handshake" in error:
                reason = DisconnectReason.NO_HANDSHAKE
            else:
                reason = DisconnectReason.OTHER
            return record(
                AlertKind.PEER_DISCONNECTED,
                PeerDisconnectInfo(reason, str(getattr(alert, "endpoint", "")) or None),
            )
        if isinstance(alert, lt.session_stats_alert):
            return record(
                AlertKind.STATS_SNAPSHOT,
                SessionStats(counters=dict(alert.values), timestamp=time.time()),
            )
        if isinstance(alert, lt.dht_stats_alert):
            return record(
                AlertKind.DHT_SNAPSHOT,
                DhtSnapshot(
                    lookups=tuple(
                        DhtLookup(
                            kind=str(l["type"]),
                            outstanding_requests=l["outstanding_requests"],
                            timeouts=l["timeouts"],
                            responses=l["responses"],
                            branch_factor=l["branch_factor"],
                        )
                        for l in alert.active_requests
                    ),
                    buckets=tuple(
                        DhtBucket(b["num_nodes"], b["num_replacements"])
                        for b in alert.routing_table
                    ),
                ),
            )
        if isinstance(alert, lt.state_update_alert):
            # Only changed torrents are reported; merge into the full snapshot
            for st in alert.status:
                status = self._convert_status(st)
                self._statuses[status.identity.info_hash] = status
            live = {
                h.info_hash().to_bytes() for h in self._session.get_torrents()
            }
            self._statuses = {k: v for k, v in self._statuses.items() if k in live}
            return record(AlertKind.STATE_UPDATE, list(self._statuses.values()))
        return record(AlertKind.GENERIC)

    def pop_alerts(self) -> list[AlertRecord]:
        """Return every queued alert in emission order."""
        records = list(self._synthetic)
        self._synthetic.clear()
        records.extend(
            self._convert(a)
            for a in self._session.pop_alerts()
            if not isinstance(a, _IGNORED_ALERTS)
        )
        return records

    def wait_for_alert(self, timeout: float) -> AlertRecord | None:
        """Block until an alert is queued or the timeout passes."""
        if self._synthetic:
            return self._synthetic[0]
        alert = self._session.wait_for_alert(int(timeout * 1000))
        if alert is None:
            return None
        return AlertRecord(kind=AlertKind.GENERIC, message=alert.message())

    # Session

    def _handle(self, identity: TorrentIdentity) -> Any | None:
        handle = self._session.find_torrent(_identity_to_hash(identity))
        if not handle.is_valid():
            logger.debug("No torrent for %s", identity)
            return None
        return handle

    def request_save(self, identity: TorrentIdentity, flags: SaveFlags) -> None:
        """Ask for resume data; a missing torrent fails the request at once."""
        handle = self._handle(identity)
        if handle is None:
            self._synthetic.append(
                AlertRecord(
                    kind=AlertKind.SAVE_FAILED,
                    message=f"{identity}: cannot save resume data, torrent not found",
                    category=AlertCategory.ERROR,
                    identity=identity,
                    payload=SaveFailureInfo(SaveFailureReason.OTHER, "invalid handle"),
                )
            )
            return
        lt_flags = 0
        if SaveFlags.SAVE_INFO_DICT in flags:
            lt_flags |= lt.torrent_handle.save_info_dict
        if SaveFlags.ONLY_IF_MODIFIED in flags:
            lt_flags |= lt.torrent_handle.only_if_modified
        handle.save_resume_data(lt_flags)

    def pause(self) -> None:
        """Pause the session."""
        self._session.pause()

    def resume(self) -> None:
        """Resume the session."""
        self._session.resume()

    def is_paused(self) -> bool:
        """Whether the session is paused."""
        return self._session.is_paused()

    def enumerate_status(self, predicate: StatusPredicate | None = None) -> list[TorrentStatus]:
        """Snapshot the status of matching torrents."""
        statuses = [
            self._convert_status(h.status()) for h in self._session.get_torrents()
        ]
        if predicate is None:
            return statuses
        return [s for s in statuses if predicate(s)]

    def set_max_connections(self, identity: TorrentIdentity, limit: int) -> None:
        """Change a torrent's connection cap."""
        handle = self._handle(identity)
        if handle is not None:
            handle.set_max_connections(limit)

    def connect_peer(self, identity: TorrentIdentity, host: str, port: int) -> None:
        """Connect a torrent to a peer."""
        handle = self._handle(identity)
        if handle is not None:
            handle.connect_peer((host, port))

    def post_updates(self) -> None:
        """Request status, stats and DHT alerts."""
        self._session.post_torrent_updates()
        self._session.post_session_stats()
        self._session.post_dht_stats()

    def load_session_state(self, data: bytes) -> None:
        """Restore DHT state saved by a previous run.

        Raises:
            EngineError: If the saved state cannot be decoded

        """
        try:
            entry = lt.bdecode(data)
        except RuntimeError as e:
            msg = f"Invalid session state: {e}"
            raise EngineError(msg) from e
        if entry is None:
            msg = "Invalid session state: not bencoded"
            raise EngineError(msg)
        self._session.load_state(entry)

    def save_session_state(self) -> bytes:
        """Serialize DHT state."""
        return lt.bencode(self._session.save_state())

    def set_ip_filter(self, rules: list[IPFilterRule]) -> None:
        """Install peer IP filter rules."""
        ip_filter = lt.ip_filter()
        for rule in rules:
            access = 1 if rule.mode is FilterMode.BLOCK else 0
            ip_filter.add_rule(str(rule.start), str(rule.end), access)
        self._session.set_ip_filter(ip_filter)

    def close(self) -> None:
        """Drop the session."""
        self._session = None

    # Per-torrent actions

    def remove_torrent(self, identity: TorrentIdentity, delete_files: bool = False) -> None:
        """Remove a torrent."""
        handle = self._handle(identity)
        if handle is None:
            return
        if delete_files:
            self._session.remove_torrent(handle, lt.session.delete_files)
        else:
            self._session.remove_torrent(handle)

    def pause_torrent(self, identity: TorrentIdentity) -> None:
        """Pause one torrent gracefully."""
        handle = self._handle(identity)
        if handle is not None:
            handle.pause(lt.torrent_handle.graceful_pause)

    def resume_torrent(self, identity: TorrentIdentity) -> None:
        """Resume one torrent."""
        handle = self._handle(identity)
        if handle is not None:
            handle.resume()

    def force_recheck(self, identity: TorrentIdentity) -> None:
        """Re-verify a torrent."""
        handle = self._handle(identity)
        if handle is not None:
            handle.force_recheck()

    def force_reannounce(self, identity: TorrentIdentity) -> None:
        """Announce now."""
        handle = self._handle(identity)
        if handle is not None:
            handle.force_reannounce()

    def scrape_tracker(self, identity: TorrentIdentity) -> None:
        """Scrape trackers."""
        handle = self._handle(identity)
        if handle is not None:
            handle.scrape_tracker()

    def set_sequential(self, identity: TorrentIdentity, enabled: bool) -> None:
        """Toggle sequential download."""
        handle = self._handle(identity)
        if handle is None:
            return
        if enabled:
            handle.set_flags(lt.torrent_flags.sequential_download)
        else:
            handle.unset_flags(lt.torrent_flags.sequential_download)

    def set_auto_managed(self, identity: TorrentIdentity, enabled: bool) -> None:
        """Toggle queue management."""
        handle = self._handle(identity)
        if handle is None:
            return
        if enabled:
            handle.set_flags(lt.torrent_flags.auto_managed)
        else:
            handle.unset_flags(lt.torrent_flags.auto_managed)

    def set_piece_deadlines(self, identity: TorrentIdentity, count: int) -> None:
        """Stagger deadlines over the first ``count`` pieces."""
        handle = self._handle(identity)
        if handle is None:
            return
        for piece in range(count):
            handle.set_piece_deadline(
                piece, (piece + 5) * 1000, lt.torrent_handle.alert_when_available
            )

    def clear_error(self, identity: TorrentIdentity) -> None:
        """Clear the error state."""
        handle = self._handle(identity)
        if handle is not None:
            handle.clear_error()

    def remove_web_seeds(self, identity: TorrentIdentity) -> None:
        """Drop all URL and HTTP seeds."""
        handle = self._handle(identity)
        if handle is None:
            return
        for url in handle.url_seeds():
            handle.remove_url_seed(url)
        for url in handle.http_seeds():
            handle.remove_http_seed(url)
