"""Torrent ingestion pipeline.

Every source converges on one add request shape:

- explicit sources from the command line or the ``m`` prompt (magnet links
  and descriptor paths),
- the monitored spool directory, scanned on an interval,
- the resume store, replayed once at startup by a background worker.

When a resume blob exists for the torrent, its parameters are overlaid
first; the fields the current invocation set explicitly win over it.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

from torrentctl.core.identity import TorrentIdentity
from torrentctl.core.magnet import is_magnet_uri, parse_magnet
from torrentctl.core.torrent import TorrentParser
from torrentctl.models import (
    AddRequest,
    AddTorrentOptions,
    SourceKind,
    TorrentFlag,
    TorrentSource,
)
from torrentctl.storage.resume_data import ResumeParams
from torrentctl.utils.exceptions import (
    AddRejectedError,
    DiskError,
    MagnetError,
    ResumeDataError,
    TorrentError,
)
from torrentctl.utils.logging_config import get_logger

if TYPE_CHECKING:  # pragma: no cover
    from torrentctl.session.engine import Engine
    from torrentctl.session.event_log import EventLog
    from torrentctl.session.state import MonitorState
    from torrentctl.storage.resume_store import ResumeStore
    from torrentctl.storage.spool import SpoolDirectory

logger = get_logger(__name__)


def _merge_trackers(first: list[str], second: list[str]) -> list[str]:
    merged = list(first)
    merged.extend(url for url in second if url not in merged)
    return merged


class IngestionPipeline:
    """Builds add requests from every source and hands them to the engine."""

    def __init__(
        self,
        engine: Engine,
        resume_store: ResumeStore,
        options: AddTorrentOptions | None = None,
        events: EventLog | None = None,
    ):
        """Initialize ingestion pipeline.

        Args:
            engine: Engine that receives the add requests
            resume_store: Source of overlay parameters
            options: Fields this invocation applies to every request
            events: Event log for failures seen on the main thread

        """
        self.engine = engine
        self.resume_store = resume_store
        self.options = options or AddTorrentOptions()
        self.events = events
        self.parser = TorrentParser()

    def _report(self, message: str) -> None:
        logger.warning("%s", message)
        if self.events is not None:
            self.events.add(message)

    def _load_overlay(self, identity: TorrentIdentity) -> tuple[dict[str, Any], bytes | None]:
        """Fetch stored parameters; missing and malformed blobs both yield none."""
        blob = self.resume_store.load(identity)
        if blob is None:
            return {}, None
        try:
            params = ResumeParams.decode(blob)
        except ResumeDataError as e:
            logger.debug("Ignoring resume data for %s: %s", identity, e)
            return {}, None
        if params.info_hash != identity.info_hash:
            logger.debug("Ignoring resume data for %s: info-hash mismatch", identity)
            return {}, None
        return params.to_request_fields(), blob

    def build_request(
        self,
        source: TorrentSource,
        identity: TorrentIdentity,
        source_fields: dict[str, Any] | None = None,
    ) -> AddRequest:
        """Assemble an add request.

        Precedence, lowest first: request defaults, stored overlay, fields
        derived from the source itself, fields set by this invocation.
        Mode flags from every layer are combined.
        """
        fields: dict[str, Any] = {"source": source, "info_hash": identity.info_hash}
        flags: set[TorrentFlag] = set()

        overlay, blob = self._load_overlay(identity)
        if blob is not None:
            flags |= overlay.pop("flags", set())
            fields.update(overlay)
            fields["resume_data"] = blob

        for key, value in (source_fields or {}).items():
            if value is None:
                continue
            if key == "trackers":
                value = _merge_trackers(fields.get("trackers", []), value)
            fields[key] = value

        explicit = self.options.explicit_fields()
        flags |= explicit.pop("flags", set())
        fields.update(explicit)
        fields["flags"] = flags
        return AddRequest(**fields)

    def submit(self, request: AddRequest, report: bool = True) -> bool:
        """Hand a request to the engine.

        Duplicates are forwarded as well; the engine deduplicates by identity.
        """
        try:
            self.engine.submit(request)
        except AddRejectedError as e:
            message = f"failed to add torrent {request.source.location}: {e.message}"
            if report:
                self._report(message)
            else:
                logger.warning("%s", message)
            return False
        logger.debug("Submitted %s (%s)", request.identity, request.source.kind)
        return True

    def add_magnet(self, uri: str) -> bool:
        """Add a torrent from a magnet link."""
        try:
            magnet = parse_magnet(uri)
            identity = magnet.identity
        except (MagnetError, ValueError) as e:
            self._report(f"invalid magnet link {uri!r}: {e}")
            return False

        request = self.build_request(
            TorrentSource(kind=SourceKind.MAGNET, location=uri),
            identity,
            {
                "name": magnet.display_name,
                "trackers": magnet.trackers or None,
                "magnet_uri": uri,
            },
        )
        return self.submit(request)

    def add_torrent_file(self, path: str | Path) -> bool:
        """Add a torrent from a descriptor file."""
        try:
            descriptor = self.parser.parse(path)
        except TorrentError as e:
            self._report(f"failed to load torrent {str(path)!r}: {e.message}")
            return False

        request = self.build_request(
            TorrentSource(kind=SourceKind.FILE, location=str(path)),
            descriptor.identity,
            {
                "name": descriptor.name,
                "trackers": descriptor.trackers or None,
                "torrent_file": str(descriptor.path),
            },
        )
        return self.submit(request)

    def add(self, source: str) -> bool:
        """Add a torrent from a magnet link or a descriptor path."""
        if is_magnet_uri(source):
            return self.add_magnet(source)
        return self.add_torrent_file(source)

    def add_sources(self, sources: list[str]) -> int:
        """Add every startup source, returning how many were submitted."""
        return sum(1 for source in sources if self.add(source))

    def scan_directory(
        self,
        monitor: MonitorState,
        spool: SpoolDirectory,
        now: float,
        poll_interval: float = 5.0,
    ) -> list[Path]:
        """Ingest descriptor files waiting in the spool directory.

        Does nothing until ``monitor.next_scan``. A file that is submitted is
        removed; a file that fails stays in place for the next scan.

        Returns:
            Files that were ingested

        """
        if not monitor.due(now):
            return []
        monitor.next_scan = now + poll_interval
        monitor.claimed.clear()

        try:
            pending = spool.pending()
        except DiskError as e:
            # Retried on the next poll
            self._report(e.message)
            return []

        ingested: list[Path] = []
        for path in pending:
            if path.name in monitor.claimed:
                continue
            monitor.claimed.add(path.name)
            if self.add_torrent_file(path):
                ingested.append(path)
                try:
                    spool.remove(path)
                except DiskError as e:
                    self._report(e.message)
        return ingested

    def request_from_resume(self, path: Path, blob: bytes) -> AddRequest:
        """Build the add request for a stored resume blob.

        Raises:
            ResumeDataError: If the blob cannot be decoded

        """
        params = ResumeParams.decode(blob)
        fields = params.to_request_fields()
        # Loaded from disk just now, so there is nothing new to save
        flags = set(fields.pop("flags", set())) - {TorrentFlag.NEED_SAVE_RESUME}
        fields.setdefault("save_path", self.options.save_path or ".")
        return AddRequest(
            source=TorrentSource(kind=SourceKind.RESUME, location=str(path)),
            info_hash=params.info_hash,
            resume_data=blob,
            flags=flags,
            **fields,
        )

    def start_resume_replay(self) -> ResumeReplayWorker:
        """Start replaying the resume store in the background."""
        worker = ResumeReplayWorker(self)
        worker.start()
        return worker


class ResumeReplayWorker(threading.Thread):
    """Resubmits every stored resume blob once.

    Runs alongside the main loop and only ever calls into the engine; it
    never touches controller state. Must be joined before shutdown.
    """

    def __init__(self, pipeline: IngestionPipeline):
        """Initialize replay worker."""
        super().__init__(name="torrentctl-resume-replay", daemon=True)
        self.pipeline = pipeline
        self.submitted = 0
        self.skipped = 0

    def run(self) -> None:
        """Enumerate the resume store and submit each entry."""
        store = self.pipeline.resume_store
        try:
            entries = store.entries()
        except DiskError as e:
            logger.warning("%s", e.message)
            return

        for path in entries:
            try:
                blob = path.read_bytes()
            except OSError as e:
                logger.warning("failed to load resume file %s: %s", path, e)
                self.skipped += 1
                continue
            try:
                request = self.pipeline.request_from_resume(path, blob)
            except ResumeDataError as e:
                logger.warning("failed to parse resume data %s: %s", path, e.message)
                self.skipped += 1
                continue
            if self.pipeline.submit(request, report=False):
                self.submitted += 1
            else:
                self.skipped += 1

        logger.info(
            "Resume replay finished: %d submitted, %d skipped",
            self.submitted,
            self.skipped,
        )
