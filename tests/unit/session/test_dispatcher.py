"""Tests for the alert dispatcher."""

from __future__ import annotations

import logging

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.session]

from conftest import make_alert, make_identity, make_status
from torrentctl.session.alerts import (
    AlertCategory,
    AlertKind,
    DhtBucket,
    DhtSnapshot,
    DisconnectReason,
    PeerDisconnectInfo,
    SaveFailureInfo,
    SaveFailureReason,
    SessionStats,
    TorrentAddedInfo,
)
from torrentctl.session.dispatcher import (
    AlertDispatcher,
    Suppressed,
    Surfaced,
    parse_peer_address,
)
from torrentctl.session.engine import SaveFlags
from torrentctl.session.state import ControllerState
from torrentctl.storage.resume_store import ResumeStore
from torrentctl.utils.exceptions import BarrierUnderflowError, ResumeStoreError


@pytest.fixture
def state():
    return ControllerState()


@pytest.fixture
def store(tmp_path):
    return ResumeStore(tmp_path / ".resume")


@pytest.fixture
def dispatcher(engine, state, store):
    return AlertDispatcher(engine, state, store, max_connections=50)


class TestCompleteness:
    """The handler table must cover every alert kind."""

    def test_missing_handler_fails_construction(self, engine, state, store):
        """Dropping a kind from the table is caught when building."""

        class Partial(AlertDispatcher):
            def _build_handlers(self):
                handlers = super()._build_handlers()
                del handlers[AlertKind.PEER_CONNECTED]
                return handlers

        with pytest.raises(TypeError, match="peer_connected"):
            Partial(engine, state, store)

    def test_every_kind_dispatches(self, dispatcher, state):
        """Each kind has a handler that returns a dispatch result."""
        state.barrier.increment()
        state.barrier.increment()
        for kind in AlertKind:
            result = dispatcher.dispatch(make_alert(kind))
            assert isinstance(result, (Suppressed, Surfaced))


class TestSnapshots:
    """Snapshot alerts replace UI state and are suppressed."""

    def test_stats(self, dispatcher, state):
        """Session counters replace the previous snapshot."""
        stats = SessionStats(counters={"dht.dht_nodes": 12})
        result = dispatcher.dispatch(make_alert(AlertKind.STATS_SNAPSHOT, payload=stats))
        assert isinstance(result, Suppressed)
        assert state.ui.session_stats is stats

    def test_dht(self, dispatcher, state):
        """DHT snapshot replaces the previous one."""
        snapshot = DhtSnapshot(buckets=(DhtBucket(8, 2),))
        assert isinstance(
            dispatcher.dispatch(make_alert(AlertKind.DHT_SNAPSHOT, payload=snapshot)),
            Suppressed,
        )
        assert state.ui.dht.node_count == 8

    def test_state_update(self, dispatcher, state):
        """Status updates replace the torrent list wholesale."""
        state.ui.replace_torrents([make_status(1), make_status(2)])
        dispatcher.dispatch(make_alert(AlertKind.STATE_UPDATE, payload=[make_status(3)]))
        assert [t.identity for t in state.ui.torrents] == [make_identity(3)]


class TestPeers:
    """Peer connection noise filtering."""

    def test_connected_suppressed(self, dispatcher):
        """Peer connections are never logged."""
        assert isinstance(dispatcher.dispatch(make_alert(AlertKind.PEER_CONNECTED)), Suppressed)

    @pytest.mark.parametrize(
        "reason", [DisconnectReason.NO_HANDSHAKE, DisconnectReason.CONNECT_FAILED]
    )
    def test_quiet_disconnects(self, dispatcher, reason):
        """Disconnects before a usable connection are suppressed."""
        alert = make_alert(AlertKind.PEER_DISCONNECTED, payload=PeerDisconnectInfo(reason))
        assert isinstance(dispatcher.dispatch(alert), Suppressed)

    def test_other_disconnect_surfaced(self, dispatcher):
        """Any other disconnect reaches the event log."""
        alert = make_alert(
            AlertKind.PEER_DISCONNECTED,
            payload=PeerDisconnectInfo(DisconnectReason.OTHER),
            message="peer closed connection",
        )
        assert dispatcher.dispatch(alert) == Surfaced("peer closed connection")


class TestSaveTriggers:
    """Alerts that start a save open exactly one barrier slot."""

    def test_metadata_received(self, dispatcher, engine, state):
        """Metadata arrival requests a full save."""
        identity = make_identity(1)
        result = dispatcher.dispatch(make_alert(AlertKind.METADATA_RECEIVED, identity))
        assert engine.save_requests == [(identity, SaveFlags.SAVE_INFO_DICT)]
        assert state.barrier.count == 1
        assert isinstance(result, Surfaced)

    def test_added_ok(self, dispatcher, engine, state):
        """A successful add saves only if modified."""
        identity = make_identity(1)
        dispatcher.dispatch(
            make_alert(AlertKind.TORRENT_ADDED, identity, payload=TorrentAddedInfo(name="x"))
        )
        assert engine.save_requests == [
            (identity, SaveFlags.SAVE_INFO_DICT | SaveFlags.ONLY_IF_MODIFIED)
        ]
        assert state.barrier.count == 1
        assert engine.called("connect_peer") == []

    def test_added_connects_static_peer(self, engine, state, store):
        """A configured peer is connected to every added torrent."""
        dispatcher = AlertDispatcher(engine, state, store, peer="10.0.0.1:6881")
        identity = make_identity(2)
        dispatcher.dispatch(make_alert(AlertKind.TORRENT_ADDED, identity))
        assert engine.called("connect_peer") == [("connect_peer", identity, "10.0.0.1", 6881)]

    def test_added_failure(self, dispatcher, engine, state):
        """A failed add is surfaced as an error without a save request."""
        alert = make_alert(
            AlertKind.TORRENT_ADDED,
            make_identity(1),
            payload=TorrentAddedInfo(error="invalid torrent", name="broken"),
        )
        result = dispatcher.dispatch(alert)
        assert result == Surfaced("failed to add torrent: broken invalid torrent", error=True)
        assert engine.save_requests == []
        assert state.barrier.count == 0

    def test_finished(self, dispatcher, engine, state):
        """A finished torrent drops to half the connection cap and saves."""
        identity = make_identity(1)
        dispatcher.dispatch(make_alert(AlertKind.TORRENT_FINISHED, identity))
        assert engine.called("set_max_connections") == [("set_max_connections", identity, 25)]
        assert engine.save_requests == [(identity, SaveFlags.SAVE_INFO_DICT)]
        assert state.barrier.count == 1

    def test_paused(self, dispatcher, engine, state):
        """Pausing a torrent saves it."""
        dispatcher.dispatch(make_alert(AlertKind.TORRENT_PAUSED, make_identity(1)))
        assert len(engine.save_requests) == 1
        assert state.barrier.count == 1


class TestSaveCompletions:
    """Save completions close barrier slots."""

    def test_succeeded_persists(self, dispatcher, state, store):
        """Resume data lands in the store; nothing is logged."""
        identity = make_identity(9)
        state.barrier.increment()
        result = dispatcher.dispatch(
            make_alert(AlertKind.SAVE_SUCCEEDED, identity, payload=b"d4:blobe")
        )
        assert isinstance(result, Suppressed)
        assert store.load(identity) == b"d4:blobe"
        assert state.barrier.count == 0

    def test_succeeded_write_failure(self, dispatcher, state, store, monkeypatch):
        """A write failure still closes the slot and is surfaced."""

        def fail(identity, data):
            raise ResumeStoreError("Failed to save resume file")

        monkeypatch.setattr(store, "save", fail)
        state.barrier.increment()
        result = dispatcher.dispatch(
            make_alert(AlertKind.SAVE_SUCCEEDED, make_identity(1), payload=b"x")
        )
        assert isinstance(result, Surfaced)
        assert result.error
        assert state.barrier.count == 0

    def test_failed_not_modified_suppressed(self, dispatcher, state):
        """'Not modified' failures are expected and quiet."""
        state.barrier.increment()
        alert = make_alert(
            AlertKind.SAVE_FAILED,
            make_identity(1),
            payload=SaveFailureInfo(SaveFailureReason.NOT_MODIFIED),
        )
        assert isinstance(dispatcher.dispatch(alert), Suppressed)
        assert state.barrier.count == 0

    def test_failed_other_surfaced(self, dispatcher, state):
        """Other save failures are surfaced."""
        state.barrier.increment()
        alert = make_alert(
            AlertKind.SAVE_FAILED,
            make_identity(1),
            payload=SaveFailureInfo(SaveFailureReason.OTHER, "disk error"),
            message="save failed: disk error",
        )
        assert dispatcher.dispatch(alert) == Surfaced("save failed: disk error")
        assert state.barrier.count == 0

    def test_completion_without_request(self, dispatcher):
        """A completion that was never requested is an invariant violation."""
        with pytest.raises(BarrierUnderflowError):
            dispatcher.dispatch(make_alert(AlertKind.SAVE_FAILED, make_identity(1)))

    def test_failed_add_then_ok_add(self, dispatcher, engine, state):
        """Only the successful add opens a slot."""
        identity = make_identity(4)
        dispatcher.dispatch_all(
            [
                make_alert(AlertKind.TORRENT_ADDED, identity, payload=TorrentAddedInfo(error="dup")),
                make_alert(AlertKind.TORRENT_ADDED, identity, payload=TorrentAddedInfo()),
            ]
        )
        assert state.barrier.count == 1


class TestDispatchAll:
    """Surfaced alerts reach the event log in order."""

    def test_surfaced_lines_logged(self, dispatcher, state):
        """Generic alerts are logged; suppressed ones are not."""
        dispatcher.dispatch_all(
            [
                make_alert(AlertKind.GENERIC, message="tracker announce ok"),
                make_alert(AlertKind.PEER_CONNECTED),
                make_alert(
                    AlertKind.GENERIC,
                    message="file error",
                    category=AlertCategory.ERROR,
                ),
            ]
        )
        lines = state.events.lines()
        assert len(lines) == 2
        assert lines[0].endswith("tracker announce ok")
        assert lines[1].endswith("file error")

    def test_error_alerts_logged_as_warning(self, dispatcher, caplog):
        """Error-category alerts are mirrored to the logger at WARNING."""
        caplog.set_level("INFO", logger="torrentctl")
        logger = logging.getLogger("torrentctl")
        logger.addHandler(caplog.handler)
        try:
            dispatcher.dispatch_all(
                [make_alert(AlertKind.GENERIC, message="boom", category=AlertCategory.ERROR)]
            )
        finally:
            logger.removeHandler(caplog.handler)
        assert any(r.levelname == "WARNING" and r.getMessage() == "boom" for r in caplog.records)


class TestParsePeerAddress:
    """Static peer parsing."""

    @pytest.mark.parametrize(
        ("peer", "expected"),
        [
            ("1.2.3.4:6881", ("1.2.3.4", 6881)),
            ("[::1]:51413", ("::1", 51413)),
            ("host.example:80", ("host.example", 80)),
            (None, None),
            ("", None),
            ("nohost", None),
            ("1.2.3.4:0", None),
            ("1.2.3.4:-5", None),
            ("1.2.3.4:abc", None),
            (":80", None),
        ],
    )
    def test_parse(self, peer, expected):
        assert parse_peer_address(peer) == expected

    def test_unusable_peer_ignored(self, engine, state, store):
        """An unusable peer address disables peer connections."""
        dispatcher = AlertDispatcher(engine, state, store, peer="nohost")
        dispatcher.dispatch(make_alert(AlertKind.TORRENT_ADDED, make_identity(1)))
        assert engine.called("connect_peer") == []
