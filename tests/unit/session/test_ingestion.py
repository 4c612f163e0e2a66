"""Tests for the ingestion pipeline and resume replay."""

from __future__ import annotations

from pathlib import Path

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.session]

from conftest import make_identity, write_torrent
from torrentctl.core.identity import TorrentIdentity
from torrentctl.core.torrent import TorrentParser
from torrentctl.models import AddTorrentOptions, SourceKind, TorrentFlag
from torrentctl.session.event_log import EventLog
from torrentctl.session.ingestion import IngestionPipeline
from torrentctl.session.state import MonitorState
from torrentctl.storage.resume_data import ResumeParams
from torrentctl.storage.resume_store import ResumeStore
from torrentctl.storage.spool import SpoolDirectory

HASH = bytes(range(20))
IDENTITY = TorrentIdentity(HASH)
MAGNET = f"magnet:?xt=urn:btih:{HASH.hex()}&dn=magnet-name&tr=http%3A%2F%2Fmagnet-tracker"


@pytest.fixture
def store(tmp_path):
    return ResumeStore(tmp_path / ".resume")


@pytest.fixture
def events():
    return EventLog()


@pytest.fixture
def pipeline(engine, store, events):
    return IngestionPipeline(engine, store, AddTorrentOptions(), events=events)


def stored_params(info_hash: bytes = HASH, **kwargs) -> ResumeParams:
    fields = {
        "info_hash": info_hash,
        "name": "stored-name",
        "save_path": "/old",
        "upload_limit": 1000,
        "max_connections": 10,
        "flags": {TorrentFlag.PAUSED},
        "trackers": ["http://stored-tracker"],
    }
    fields.update(kwargs)
    return ResumeParams(**fields)


class TestAddMagnet:
    """Magnet ingestion."""

    def test_without_overlay(self, pipeline, engine):
        """A fresh magnet yields a request built from the link alone."""
        assert pipeline.add_magnet(MAGNET) is True
        request = engine.submitted[0]
        assert request.info_hash == HASH
        assert request.source.kind is SourceKind.MAGNET
        assert request.name == "magnet-name"
        assert request.trackers == ["http://magnet-tracker"]
        assert request.magnet_uri == MAGNET
        assert request.resume_data is None
        assert request.save_path == "."
        assert request.flags == set()

    def test_overlay_precedence(self, engine, store, events):
        """Explicit fields beat the overlay; the overlay beats defaults."""
        blob = stored_params().encode()
        store.save(IDENTITY, blob)
        options = AddTorrentOptions(save_path="/new", upload_limit=5000, seed_mode=True)
        pipeline = IngestionPipeline(engine, store, options, events=events)

        assert pipeline.add_magnet(MAGNET)
        request = engine.submitted[0]
        assert request.save_path == "/new"
        assert request.upload_limit == 5000
        assert request.max_connections == 10
        assert request.name == "magnet-name"
        assert request.trackers == ["http://stored-tracker", "http://magnet-tracker"]
        assert request.flags == {TorrentFlag.PAUSED, TorrentFlag.SEED_MODE}
        assert request.resume_data == blob

    def test_unset_options_leave_overlay(self, engine, store):
        """Options that were never set do not override stored values."""
        store.save(IDENTITY, stored_params().encode())
        pipeline = IngestionPipeline(engine, store, AddTorrentOptions(max_uploads=3))
        pipeline.add_magnet(MAGNET)
        request = engine.submitted[0]
        assert request.save_path == "/old"
        assert request.upload_limit == 1000
        assert request.max_uploads == 3

    def test_malformed_overlay_ignored(self, pipeline, engine, store):
        """Malformed resume data is treated as absent."""
        store.save(IDENTITY, b"not bencode")
        pipeline.add_magnet(MAGNET)
        request = engine.submitted[0]
        assert request.resume_data is None
        assert request.save_path == "."

    def test_mismatched_overlay_ignored(self, pipeline, engine, store):
        """A blob recorded for another torrent is ignored."""
        other = stored_params(info_hash=b"\xff" * 20).encode()
        store.save(IDENTITY, other)
        pipeline.add_magnet(MAGNET)
        assert engine.submitted[0].resume_data is None

    def test_invalid_magnet(self, pipeline, engine, events):
        """An unparsable link is logged and skipped."""
        assert pipeline.add_magnet("magnet:?dn=nohash") is False
        assert engine.submitted == []
        assert "invalid magnet link" in events.lines()[-1]

    def test_duplicates_forwarded(self, pipeline, engine):
        """The engine decides what to do with duplicates."""
        pipeline.add_magnet(MAGNET)
        pipeline.add_magnet(MAGNET)
        assert len(engine.submitted) == 2


class TestAddTorrentFile:
    """Descriptor ingestion."""

    def test_descriptor(self, pipeline, engine, tmp_path):
        """The descriptor path and parsed fields reach the request."""
        path = write_torrent(tmp_path, name="file-name")
        assert pipeline.add_torrent_file(path)
        request = engine.submitted[0]
        assert request.source.kind is SourceKind.FILE
        assert request.torrent_file == str(path)
        assert request.name == "file-name"
        assert request.info_hash == TorrentParser().parse(path).info_hash

    def test_missing_descriptor(self, pipeline, engine, events, tmp_path):
        """An unreadable descriptor is logged and skipped."""
        assert pipeline.add_torrent_file(tmp_path / "missing.torrent") is False
        assert engine.submitted == []
        assert "failed to load torrent" in events.lines()[-1]

    def test_engine_rejection(self, pipeline, engine, events, tmp_path):
        """A synchronous rejection is reported, not raised."""
        path = write_torrent(tmp_path)
        engine.rejected.add(TorrentParser().parse(path).info_hash)
        assert pipeline.add_torrent_file(path) is False
        assert "rejected by engine" in events.lines()[-1]

    def test_add_routes_by_prefix(self, pipeline, engine, tmp_path):
        """add() sends magnet links and paths to the right parser."""
        path = write_torrent(tmp_path)
        assert pipeline.add_sources([MAGNET, str(path), str(tmp_path / "nope.torrent")]) == 2
        assert [r.source.kind for r in engine.submitted] == [SourceKind.MAGNET, SourceKind.FILE]


class TestScanDirectory:
    """Monitored directory semantics."""

    def test_success_removes_file(self, pipeline, engine, tmp_path):
        """An ingested descriptor is removed from the spool."""
        spool_dir = tmp_path / "spool"
        spool_dir.mkdir()
        path = write_torrent(spool_dir)
        monitor = MonitorState()

        ingested = pipeline.scan_directory(monitor, SpoolDirectory(spool_dir), now=100.0)
        assert ingested == [path]
        assert not path.exists()
        assert len(engine.submitted) == 1
        assert monitor.next_scan == 105.0

    def test_failure_keeps_file_and_retries(self, pipeline, engine, tmp_path):
        """A rejected descriptor stays in place and is retried next scan."""
        spool_dir = tmp_path / "spool"
        spool_dir.mkdir()
        path = write_torrent(spool_dir)
        info_hash = TorrentParser().parse(path).info_hash
        engine.rejected.add(info_hash)
        monitor = MonitorState()
        spool = SpoolDirectory(spool_dir)

        assert pipeline.scan_directory(monitor, spool, now=0.0) == []
        assert path.exists()

        # Not due yet
        engine.rejected.clear()
        assert pipeline.scan_directory(monitor, spool, now=1.0) == []
        assert path.exists()

        assert pipeline.scan_directory(monitor, spool, now=5.0) == [path]
        assert not path.exists()

    def test_listing_failure_retried(self, pipeline, events, tmp_path):
        """A missing directory is reported and the scan rescheduled."""
        monitor = MonitorState()
        spool = SpoolDirectory(tmp_path / "missing")
        assert pipeline.scan_directory(monitor, spool, now=10.0, poll_interval=2.0) == []
        assert monitor.next_scan == 12.0
        assert "Failed to list monitor directory" in events.lines()[-1]

    def test_removal_failure_reported(self, pipeline, engine, events, tmp_path, monkeypatch):
        """A descriptor that cannot be removed is reported after it is added."""
        spool_dir = tmp_path / "spool"
        spool_dir.mkdir()
        path = write_torrent(spool_dir)

        def deny(self, missing_ok=False):
            raise PermissionError("read-only spool")

        monkeypatch.setattr(Path, "unlink", deny)
        ingested = pipeline.scan_directory(MonitorState(), SpoolDirectory(spool_dir), now=0.0)
        assert ingested == [path]
        assert len(engine.submitted) == 1
        assert path.exists()
        assert "Failed to remove torrent file" in events.lines()[-1]


class TestResumeReplay:
    """Startup replay of the resume store."""

    def test_request_from_resume(self, pipeline, store):
        """Stored flags are kept and the default save path filled in."""
        blob = stored_params(save_path=None).encode()
        path = store.save(IDENTITY, blob)
        request = pipeline.request_from_resume(path, blob)
        assert request.source.kind is SourceKind.RESUME
        assert request.resume_data == blob
        assert request.save_path == "."
        assert TorrentFlag.PAUSED in request.flags
        assert TorrentFlag.NEED_SAVE_RESUME not in request.flags

    def test_worker_submits_every_entry(self, pipeline, engine, store):
        """Valid blobs are submitted; malformed ones are skipped."""
        store.save(make_identity(1), stored_params(info_hash=make_identity(1).info_hash).encode())
        store.save(make_identity(2), stored_params(info_hash=make_identity(2).info_hash).encode())
        store.save(make_identity(3), b"garbage")

        worker = pipeline.start_resume_replay()
        worker.join(timeout=5)
        assert not worker.is_alive()
        assert worker.submitted == 2
        assert worker.skipped == 1
        assert {r.info_hash for r in engine.submitted} == {
            make_identity(1).info_hash,
            make_identity(2).info_hash,
        }
        assert all(r.source.kind is SourceKind.RESUME for r in engine.submitted)

    def test_worker_empty_store(self, engine, tmp_path):
        """An unlistable store ends the worker without submitting."""
        blocker = tmp_path / "file"
        blocker.write_text("x")
        pipeline = IngestionPipeline(engine, ResumeStore(blocker))
        worker = pipeline.start_resume_replay()
        worker.join(timeout=5)
        assert worker.submitted == 0
        assert engine.submitted == []
