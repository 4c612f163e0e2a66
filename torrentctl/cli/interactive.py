"""Interactive command processor.

Maps single keystrokes to engine actions and display toggles. One bounded
wait per UI tick; any keys already buffered are handled before returning.
Unknown keys are ignored.
"""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Callable, Iterator

from rich.markup import escape
from rich.prompt import Confirm, Prompt

from torrentctl.cli.keyboard import KEY_DOWN, KEY_EOF, KEY_LEFT, KEY_RIGHT, KEY_UP
from torrentctl.session.engine import SaveFlags
from torrentctl.utils.logging_config import get_logger

if TYPE_CHECKING:  # pragma: no cover
    from rich.console import Console
    from rich.live import Live

    from torrentctl.cli.keyboard import KeySource
    from torrentctl.session.alerts import TorrentStatus
    from torrentctl.session.dispatcher import AlertDispatcher
    from torrentctl.session.engine import Engine
    from torrentctl.session.ingestion import IngestionPipeline
    from torrentctl.session.state import ControllerState
    from torrentctl.storage.resume_store import ResumeStore

logger = get_logger(__name__)

MAX_DEADLINE_PIECES = 300

# Key -> DisplayOptions attribute
DISPLAY_TOGGLES: dict[str, str] = {
    "t": "show_trackers",
    "i": "show_peers",
    "l": "show_log",
    "d": "show_downloads",
    "y": "show_piece_matrix",
    "f": "show_file_progress",
    "P": "show_pad_files",
    "g": "show_dht_status",
    "u": "show_utp_stats",
    "x": "show_disk_stats",
    "1": "column_ip",
    "3": "column_timers",
    "4": "column_block",
    "5": "column_peer_rate",
    "6": "column_fails",
    "7": "column_send_buffers",
}


class Prompter:
    """Asks the user for input in the middle of the live view."""

    def __init__(self, console: Console, live: Live | None = None):
        """Initialize prompter."""
        self.console = console
        self.live = live

    @contextlib.contextmanager
    def _prompting(self, keys: KeySource) -> Iterator[None]:
        if self.live is not None:
            self.live.stop()
        try:
            with keys.line_mode():
                yield
        finally:
            if self.live is not None:
                self.live.start()

    def ask_magnet(self, keys: KeySource) -> str | None:
        """Ask for a magnet link; None if nothing was entered."""
        with self._prompting(keys):
            try:
                answer = Prompt.ask(
                    "Enter magnet link", console=self.console, default=""
                )
            except EOFError:
                return None
        answer = answer.strip()
        return answer or None

    def confirm_delete(self, name: str, keys: KeySource) -> bool:
        """Ask before deleting a torrent and its data."""
        with self._prompting(keys):
            try:
                return Confirm.ask(
                    f"[bold red]Are you sure you want to delete the files for "
                    f"'{escape(name)}'? This operation cannot be undone.[/bold red]",
                    console=self.console,
                    default=False,
                )
            except EOFError:
                return False


class CommandProcessor:
    """Turns keystrokes into engine actions."""

    def __init__(
        self,
        engine: Engine,
        state: ControllerState,
        ingestion: IngestionPipeline,
        dispatcher: AlertDispatcher,
        resume_store: ResumeStore,
        prompter: Prompter | None = None,
    ):
        """Initialize command processor.

        Args:
            engine: Engine receiving the actions
            state: Controller state (display toggles, selection, quit flag)
            ingestion: Pipeline used by the add-magnet command
            dispatcher: Issues save requests so the barrier stays balanced
            resume_store: Resume files removed by the delete command
            prompter: Prompts for magnet links and confirmations

        """
        self.engine = engine
        self.state = state
        self.ingestion = ingestion
        self.dispatcher = dispatcher
        self.resume_store = resume_store
        self.prompter = prompter
        self._keys: KeySource | None = None

        self.commands: dict[str, Callable[[], None]] = {
            " ": self.cmd_toggle_session_pause,
            "m": self.cmd_add_magnet,
            "q": self.cmd_quit,
            "W": self.cmd_remove_web_seeds,
            "D": self.cmd_delete,
            "j": self.cmd_force_recheck,
            "r": self.cmd_force_reannounce,
            "s": self.cmd_toggle_sequential,
            "R": self.cmd_save_all,
            "o": self.cmd_piece_deadlines,
            "v": self.cmd_scrape,
            "p": self.cmd_toggle_pause,
            "k": self.cmd_toggle_force_start,
            "c": self.cmd_clear_error,
            "h": self.cmd_help,
            KEY_LEFT: self.state.ui.previous_filter,
            KEY_RIGHT: self.state.ui.next_filter,
            KEY_UP: self.state.ui.arrow_up,
            KEY_DOWN: self.state.ui.arrow_down,
        }
        for key, name in DISPLAY_TOGGLES.items():
            self.commands[key] = self._toggle(name)

    def _toggle(self, name: str) -> Callable[[], None]:
        def toggle() -> None:
            self.state.display.toggle(name)

        return toggle

    def process(self, keys: KeySource, timeout: float) -> None:
        """Wait up to ``timeout`` for input, then handle every buffered key."""
        self._keys = keys
        key = keys.read_key(timeout)
        while key is not None:
            if key == KEY_EOF:
                self.state.request_quit()
                return
            self.handle_key(key)
            if self.state.quit:
                return
            key = keys.read_key(0)

    def handle_key(self, key: str) -> None:
        """Apply the command bound to ``key``."""
        if self.state.display.show_help:
            # Any key dismisses the help screen
            self.state.display.show_help = False
            return
        command = self.commands.get(key)
        if command is None:
            return
        command()

    def _active(self) -> TorrentStatus | None:
        return self.state.ui.active_torrent()

    # Session commands

    def cmd_toggle_session_pause(self) -> None:
        """Pause or resume the whole session."""
        if self.engine.is_paused():
            self.engine.resume()
        else:
            self.engine.pause()

    def cmd_add_magnet(self) -> None:
        """Prompt for a magnet link and add it."""
        if self.prompter is None or self._keys is None:
            return
        uri = self.prompter.ask_magnet(self._keys)
        if uri is None:
            self.state.events.add("failed to read magnet link")
            return
        self.ingestion.add_magnet(uri)

    def cmd_quit(self) -> None:
        """Leave the main loop."""
        self.state.request_quit()

    def cmd_save_all(self) -> None:
        """Request resume data for every torrent with unsaved changes."""
        for status in self.engine.enumerate_status(lambda st: st.need_save_resume):
            self.dispatcher.request_save(status.identity, SaveFlags.SAVE_INFO_DICT)

    def cmd_help(self) -> None:
        """Show the help screen until the next key."""
        self.state.display.show_help = True

    # Torrent commands

    def cmd_remove_web_seeds(self) -> None:
        """Drop every web seed of the selected torrent."""
        active = self._active()
        if active is not None:
            self.engine.remove_web_seeds(active.identity)

    def cmd_delete(self) -> None:
        """Delete the selected torrent, its data and its resume file."""
        active = self._active()
        if active is None or self.prompter is None or self._keys is None:
            return
        if not self.prompter.confirm_delete(active.name, self._keys):
            return
        if not self.resume_store.delete(active.identity):
            self.state.events.add(
                f'failed to delete resume file ("{self.resume_store.path_for(active.identity)}")'
            )
        if active.is_valid:
            self.engine.remove_torrent(active.identity, delete_files=True)
        else:
            self.state.events.add(
                f"failed to delete torrent, invalid handle: {active.name}"
            )

    def cmd_force_recheck(self) -> None:
        """Re-verify the selected torrent."""
        active = self._active()
        if active is not None:
            self.engine.force_recheck(active.identity)

    def cmd_force_reannounce(self) -> None:
        """Announce the selected torrent now."""
        active = self._active()
        if active is not None:
            self.engine.force_reannounce(active.identity)

    def cmd_toggle_sequential(self) -> None:
        """Toggle in-order download for the selected torrent."""
        active = self._active()
        if active is not None:
            self.engine.set_sequential(active.identity, not active.is_sequential)

    def cmd_piece_deadlines(self) -> None:
        """Set deadlines on the first pieces of the selected torrent."""
        active = self._active()
        if active is not None:
            self.engine.set_piece_deadlines(
                active.identity, min(active.num_pieces, MAX_DEADLINE_PIECES)
            )

    def cmd_scrape(self) -> None:
        """Scrape the selected torrent's trackers."""
        active = self._active()
        if active is not None:
            self.engine.scrape_tracker(active.identity)

    def cmd_toggle_pause(self) -> None:
        """Pause the selected torrent, or hand a stopped one back to the queue."""
        active = self._active()
        if active is None:
            return
        if active.is_paused and not active.is_auto_managed:
            self.engine.set_auto_managed(active.identity, True)
        else:
            self.engine.set_auto_managed(active.identity, False)
            self.engine.pause_torrent(active.identity)

    def cmd_toggle_force_start(self) -> None:
        """Toggle force-start (queue management off) for the selected torrent."""
        active = self._active()
        if active is None:
            return
        self.engine.set_auto_managed(active.identity, not active.is_auto_managed)
        if active.is_auto_managed and active.is_paused:
            self.engine.resume_torrent(active.identity)

    def cmd_clear_error(self) -> None:
        """Clear the selected torrent's error."""
        active = self._active()
        if active is not None:
            self.engine.clear_error(active.identity)
