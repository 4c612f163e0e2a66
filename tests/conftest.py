"""Pytest configuration and shared fixtures for torrentctl tests."""

from __future__ import annotations

import logging
from collections import deque
from pathlib import Path
from typing import Any

import pytest

from torrentctl.cli.keyboard import KeySource
from torrentctl.core import bencode
from torrentctl.core.identity import TorrentIdentity
from torrentctl.models import AddRequest, TorrentFlag
from torrentctl.session.alerts import AlertKind, AlertRecord, TorrentStatus
from torrentctl.session.engine import Engine, SaveFlags
from torrentctl.utils.exceptions import AddRejectedError


def pytest_configure(config):
    """Register all project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("unit", "marks tests as unit tests"),
        ("integration", "marks tests as integration tests"),
        ("core", "marks tests as core parsing tests"),
        ("storage", "marks tests as resume store/spool tests"),
        ("session", "marks tests as session lifecycle tests"),
        ("cli", "marks tests as CLI tests"),
        ("config", "marks tests as configuration tests"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep TORRENTCTL_* variables from the developer's shell out of tests."""
    import os

    for name in list(os.environ):
        if name.startswith("TORRENTCTL_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Clean up logging handlers after each test to prevent closed file errors."""
    yield
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)


def make_identity(seed: int) -> TorrentIdentity:
    """Deterministic identity for tests."""
    return TorrentIdentity(bytes([seed % 256]) * 20)


def make_status(seed: int, **kwargs: Any) -> TorrentStatus:
    """Torrent status with sensible defaults."""
    defaults: dict[str, Any] = {
        "identity": make_identity(seed),
        "name": f"torrent-{seed}",
        "state": "downloading",
        "has_metadata": True,
        "num_pieces": 100,
        "flags": frozenset({TorrentFlag.AUTO_MANAGED}),
    }
    defaults.update(kwargs)
    return TorrentStatus(**defaults)


def make_alert(
    kind: AlertKind,
    identity: TorrentIdentity | None = None,
    payload: Any = None,
    message: str | None = None,
    **kwargs: Any,
) -> AlertRecord:
    """Alert record with a readable default message."""
    return AlertRecord(
        kind=kind,
        message=message or f"{kind.value} alert",
        identity=identity,
        payload=payload,
        **kwargs,
    )


def write_torrent(
    directory: Path,
    name: str = "sample",
    length: int = 32768,
    announce: str | None = "http://tracker.example.com/announce",
) -> Path:
    """Write a minimal single-file .torrent and return its path."""
    info = {
        b"name": name.encode(),
        b"length": length,
        b"piece length": 16384,
        b"pieces": b"\x11" * 20 * max(1, length // 16384),
    }
    data: dict[bytes, Any] = {b"info": info}
    if announce:
        data[b"announce"] = announce.encode()
    path = directory / f"{name}.torrent"
    path.write_bytes(bencode.encode(data))
    return path


class FakeEngine(Engine):
    """In-memory engine that records calls and replays scripted alerts."""

    def __init__(self) -> None:
        self.submitted: list[AddRequest] = []
        self.rejected: set[bytes] = set()
        self.alerts: deque[AlertRecord] = deque()
        # Batches released one per wait_for_alert call when the queue is empty
        self.drain_script: deque[list[AlertRecord]] = deque()
        self.waits: list[float] = []
        self.save_requests: list[tuple[TorrentIdentity, SaveFlags]] = []
        self.statuses: list[TorrentStatus] = []
        self.calls: list[tuple[Any, ...]] = []
        self.paused = False
        self.closed = False
        self.session_state = b"d3:dhtde"
        self.loaded_state: bytes | None = None
        self.ip_rules: list[Any] | None = None
        self.updates_posted = 0

    def queue(self, *alerts: AlertRecord) -> None:
        self.alerts.extend(alerts)

    def submit(self, request: AddRequest) -> TorrentIdentity:
        if request.info_hash in self.rejected:
            msg = "rejected by engine"
            raise AddRejectedError(msg)
        self.submitted.append(request)
        return request.identity

    def pop_alerts(self) -> list[AlertRecord]:
        alerts = list(self.alerts)
        self.alerts.clear()
        return alerts

    def wait_for_alert(self, timeout: float) -> AlertRecord | None:
        self.waits.append(timeout)
        if not self.alerts and self.drain_script:
            self.alerts.extend(self.drain_script.popleft())
        return self.alerts[0] if self.alerts else None

    def request_save(self, identity: TorrentIdentity, flags: SaveFlags) -> None:
        self.save_requests.append((identity, flags))

    def pause(self) -> None:
        self.paused = True
        self.calls.append(("pause",))

    def resume(self) -> None:
        self.paused = False
        self.calls.append(("resume",))

    def is_paused(self) -> bool:
        return self.paused

    def enumerate_status(self, predicate=None) -> list[TorrentStatus]:
        if predicate is None:
            return list(self.statuses)
        return [s for s in self.statuses if predicate(s)]

    def set_max_connections(self, identity: TorrentIdentity, limit: int) -> None:
        self.calls.append(("set_max_connections", identity, limit))

    def connect_peer(self, identity: TorrentIdentity, host: str, port: int) -> None:
        self.calls.append(("connect_peer", identity, host, port))

    def post_updates(self) -> None:
        self.updates_posted += 1

    def load_session_state(self, data: bytes) -> None:
        self.loaded_state = data

    def save_session_state(self) -> bytes:
        return self.session_state

    def set_ip_filter(self, rules) -> None:
        self.ip_rules = list(rules)

    def close(self) -> None:
        self.closed = True
        self.calls.append(("close",))

    def remove_torrent(self, identity: TorrentIdentity, delete_files: bool = False) -> None:
        self.calls.append(("remove_torrent", identity, delete_files))

    def pause_torrent(self, identity: TorrentIdentity) -> None:
        self.calls.append(("pause_torrent", identity))

    def resume_torrent(self, identity: TorrentIdentity) -> None:
        self.calls.append(("resume_torrent", identity))

    def force_recheck(self, identity: TorrentIdentity) -> None:
        self.calls.append(("force_recheck", identity))

    def force_reannounce(self, identity: TorrentIdentity) -> None:
        self.calls.append(("force_reannounce", identity))

    def scrape_tracker(self, identity: TorrentIdentity) -> None:
        self.calls.append(("scrape_tracker", identity))

    def set_sequential(self, identity: TorrentIdentity, enabled: bool) -> None:
        self.calls.append(("set_sequential", identity, enabled))

    def set_auto_managed(self, identity: TorrentIdentity, enabled: bool) -> None:
        self.calls.append(("set_auto_managed", identity, enabled))

    def set_piece_deadlines(self, identity: TorrentIdentity, count: int) -> None:
        self.calls.append(("set_piece_deadlines", identity, count))

    def clear_error(self, identity: TorrentIdentity) -> None:
        self.calls.append(("clear_error", identity))

    def remove_web_seeds(self, identity: TorrentIdentity) -> None:
        self.calls.append(("remove_web_seeds", identity))

    def called(self, name: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == name]


class ScriptedKeys(KeySource):
    """Key source that replays a fixed sequence, then times out."""

    def __init__(self, keys: list[str] | None = None) -> None:
        self.keys: deque[str] = deque(keys or [])
        self.timeouts: list[float] = []

    def feed(self, *keys: str) -> None:
        self.keys.extend(keys)

    def read_key(self, timeout: float) -> str | None:
        self.timeouts.append(timeout)
        if self.keys:
            return self.keys.popleft()
        return None


@pytest.fixture
def engine() -> FakeEngine:
    """Fresh fake engine."""
    return FakeEngine()


@pytest.fixture
def keys() -> ScriptedKeys:
    """Empty scripted key source."""
    return ScriptedKeys()
