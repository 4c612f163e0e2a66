"""Session controller: the main tick loop.

Each tick posts status requests to the engine, waits (bounded) for key
input, dispatches queued alerts, renders, and scans the spool directory when
due. The loop exits when `ControllerState.quit` is set, after which the
resume replay worker is joined and the shutdown sequencer runs.
"""

from __future__ import annotations

import signal
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from torrentctl.session.pump import AlertPump
from torrentctl.session.shutdown import ShutdownSequencer
from torrentctl.utils.exceptions import EngineError
from torrentctl.utils.logging_config import get_logger

if TYPE_CHECKING:  # pragma: no cover
    from torrentctl.cli.interactive import CommandProcessor
    from torrentctl.cli.keyboard import KeySource
    from torrentctl.models import Config
    from torrentctl.session.dispatcher import AlertDispatcher
    from torrentctl.session.engine import Engine
    from torrentctl.session.ingestion import IngestionPipeline, ResumeReplayWorker
    from torrentctl.session.shutdown import ProgressCallback
    from torrentctl.session.state import ControllerState
    from torrentctl.storage.spool import SpoolDirectory

logger = get_logger(__name__)

Renderer = Callable[["ControllerState"], None]


class SessionController:
    """Owns the session lifecycle from startup to shutdown."""

    def __init__(
        self,
        config: Config,
        engine: Engine,
        state: ControllerState,
        dispatcher: AlertDispatcher,
        ingestion: IngestionPipeline,
        commands: CommandProcessor,
        keys: KeySource,
        spool: SpoolDirectory | None = None,
        render: Renderer | None = None,
        shutdown_progress: ProgressCallback | None = None,
    ):
        """Initialize session controller."""
        self.config = config
        self.engine = engine
        self.state = state
        self.pump = AlertPump(engine)
        self.dispatcher = dispatcher
        self.ingestion = ingestion
        self.commands = commands
        self.keys = keys
        self.spool = spool
        self.render = render
        self.shutdown_progress = shutdown_progress
        self.replay_worker: ResumeReplayWorker | None = None

    @property
    def refresh_interval(self) -> float:
        """Input wait per tick, in seconds."""
        return self.config.session.refresh_interval_ms / 1000.0

    @property
    def state_file(self) -> Path:
        """Location of the persisted engine session state."""
        return Path(self.config.session.state_file)

    def load_session_state(self) -> bool:
        """Restore global engine state from the previous run, if present."""
        try:
            data = self.state_file.read_bytes()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("Failed to read session state %s: %s", self.state_file, e)
            return False
        try:
            self.engine.load_session_state(data)
        except EngineError as e:
            logger.warning("Ignoring session state %s: %s", self.state_file, e.message)
            self.state.events.add(f"failed to load session state: {e.message}")
            return False
        logger.debug("Loaded session state from %s", self.state_file)
        return True

    def startup(self, sources: list[str]) -> None:
        """Restore session state, add explicit sources, start resume replay."""
        self.load_session_state()
        added = self.ingestion.add_sources(sources)
        if sources:
            logger.info("Added %d of %d torrents from the command line", added, len(sources))
        self.replay_worker = self.ingestion.start_resume_replay()

    def tick(self, now: float) -> bool:
        """Run one iteration of the main loop.

        Returns:
            False once the loop should exit

        """
        if self.state.quit:
            return False

        self.engine.post_updates()

        self.commands.process(self.keys, self.refresh_interval)
        if self.state.quit:
            return False

        self.dispatcher.dispatch_all(self.pump.poll())

        if self.render is not None:
            self.render(self.state)

        if self.spool is not None:
            self.ingestion.scan_directory(
                self.state.monitor,
                self.spool,
                now,
                self.config.monitor.poll_interval,
            )
        return not self.state.quit

    def _handle_signal(self, signum: int, _frame: Any) -> None:
        logger.info("Received signal %d, shutting down", signum)
        self.state.request_quit()

    def _install_signal_handlers(self) -> dict[int, Any]:
        previous: dict[int, Any] = {}
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                previous[signum] = signal.signal(signum, self._handle_signal)
            except (ValueError, OSError):
                # Not on the main thread, or unsupported on this platform
                logger.debug("Cannot install handler for signal %d", signum)
        return previous

    def run(self, sources: list[str] | None = None) -> int:
        """Run the session until quit, then shut down.

        Returns:
            Process exit code (0 on normal shutdown)

        """
        previous = self._install_signal_handlers()
        try:
            self.startup(sources or [])
            while self.tick(time.monotonic()):
                pass

            if self.replay_worker is not None:
                self.replay_worker.join()
            return self.shutdown()
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)

    def shutdown(self) -> int:
        """Run the shutdown sequencer."""
        sequencer = ShutdownSequencer(
            self.engine,
            self.pump,
            self.dispatcher,
            self.state,
            state_file=self.state_file,
            drain_timeout=self.config.session.drain_timeout,
            drain_batch=self.config.session.drain_batch,
            progress=self.shutdown_progress,
        )
        return sequencer.run()
