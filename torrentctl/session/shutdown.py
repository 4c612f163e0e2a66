"""Shutdown sequencer.

Pauses the engine, asks every torrent with unsaved changes for resume data,
and waits until each of those requests (and any still in flight from the
main loop) has completed or failed before persisting global state.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from torrentctl.session.engine import SaveFlags
from torrentctl.utils.logging_config import LoggingContext, get_logger

if TYPE_CHECKING:  # pragma: no cover
    from torrentctl.session.alerts import TorrentStatus
    from torrentctl.session.dispatcher import AlertDispatcher
    from torrentctl.session.engine import Engine
    from torrentctl.session.pump import AlertPump
    from torrentctl.session.state import ControllerState

logger = get_logger(__name__)


class ShutdownPhase(Enum):
    """Shutdown sequencer states, in order."""

    IDLE = "idle"
    PAUSING = "pausing"
    ENUMERATING = "enumerating"
    REQUESTING = "requesting"
    DRAINING = "draining"
    PERSISTING = "persisting"
    CLOSED = "closed"


ProgressCallback = Callable[[ShutdownPhase, int], None]


def needs_final_save(status: TorrentStatus) -> bool:
    """Whether a torrent must be saved before exit."""
    return status.is_valid and status.has_metadata and status.need_save_resume


class ShutdownSequencer:
    """Runs the shutdown state machine once."""

    def __init__(
        self,
        engine: Engine,
        pump: AlertPump,
        dispatcher: AlertDispatcher,
        state: ControllerState,
        state_file: str | Path = ".ses_state",
        drain_timeout: float = 10.0,
        drain_batch: int = 32,
        progress: ProgressCallback | None = None,
    ):
        """Initialize shutdown sequencer.

        Args:
            engine: Engine being shut down
            pump: Alert pump used to drain completions
            dispatcher: Dispatcher that closes barrier slots
            state: Controller state holding the barrier
            state_file: Where global engine state is written
            drain_timeout: Seconds per bounded wait for an alert
            drain_batch: Drain alerts after this many save requests
            progress: Optional callback told about each phase and the barrier

        """
        self.engine = engine
        self.pump = pump
        self.dispatcher = dispatcher
        self.state = state
        self.state_file = Path(state_file)
        self.drain_timeout = drain_timeout
        self.drain_batch = drain_batch
        self.progress = progress
        self.phase = ShutdownPhase.IDLE
        self.history: list[ShutdownPhase] = [ShutdownPhase.IDLE]
        self.drain_iterations = 0

    def _enter(self, phase: ShutdownPhase) -> None:
        self.phase = phase
        self.history.append(phase)
        logger.debug(
            "Shutdown phase %s (outstanding saves: %d)",
            phase.value,
            self.state.barrier.count,
        )
        if self.progress is not None:
            self.progress(phase, self.state.barrier.count)

    def run(self) -> int:
        """Run every phase and return the process exit code."""
        if self.phase is not ShutdownPhase.IDLE:
            msg = f"Shutdown already ran (phase {self.phase.value})"
            raise RuntimeError(msg)

        with LoggingContext("shutdown", state_file=str(self.state_file)):
            self._enter(ShutdownPhase.PAUSING)
            self.engine.pause()

            self._enter(ShutdownPhase.ENUMERATING)
            torrents = self.engine.enumerate_status(needs_final_save)
            logger.info("Saving resume data for %d torrents", len(torrents))

            self._enter(ShutdownPhase.REQUESTING)
            for idx, status in enumerate(torrents, start=1):
                self.dispatcher.request_save(status.identity, SaveFlags.SAVE_INFO_DICT)
                if idx % self.drain_batch == 0:
                    self.dispatcher.dispatch_all(self.pump.poll())

            self._enter(ShutdownPhase.DRAINING)
            while not self.state.barrier.is_clear:
                self.drain_iterations += 1
                alerts = self.pump.drain(self.drain_timeout)
                if alerts:
                    self.dispatcher.dispatch_all(alerts)
                logger.debug(
                    "Waiting for resume data [%d]", self.state.barrier.count
                )

            self._enter(ShutdownPhase.PERSISTING)
            self._persist_session_state()

            self._enter(ShutdownPhase.CLOSED)
            self.engine.close()
        return 0

    def _persist_session_state(self) -> None:
        try:
            data = self.engine.save_session_state()
            self.state_file.write_bytes(data)
        except OSError as e:
            logger.warning("Failed to save session state to %s: %s", self.state_file, e)
            return
        logger.info("Saved session state to %s", self.state_file)
