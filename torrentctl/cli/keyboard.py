"""Single-key terminal input.

Keys are returned as one-character strings, arrow keys as the `KEY_*`
names below, and end of input as `KEY_EOF`. Every read is bounded by a
timeout so the control loop never blocks indefinitely.
"""

from __future__ import annotations

import contextlib
import os
import sys
import time
from abc import ABC, abstractmethod
from typing import Any, Iterator

KEY_UP = "UP"
KEY_DOWN = "DOWN"
KEY_LEFT = "LEFT"
KEY_RIGHT = "RIGHT"
KEY_EOF = "EOF"

_ANSI_ARROWS = {"A": KEY_UP, "B": KEY_DOWN, "C": KEY_RIGHT, "D": KEY_LEFT}
_WINDOWS_ARROWS = {"H": KEY_UP, "P": KEY_DOWN, "M": KEY_RIGHT, "K": KEY_LEFT}

IS_WINDOWS = sys.platform == "win32"


class KeySource(ABC):
    """Abstract source of keystrokes."""

    @abstractmethod
    def read_key(self, timeout: float) -> str | None:
        """Wait at most ``timeout`` seconds for a key.

        Returns:
            The key, `KEY_EOF` at end of input, or None on timeout

        """

    @contextlib.contextmanager
    def line_mode(self) -> Iterator[None]:
        """Temporarily restore echo and line editing for a prompt."""
        yield


class TerminalKeyReader(KeySource):
    """Reads keys from the controlling terminal without echo.

    Use as a context manager; the terminal mode is restored on exit.
    """

    def __init__(self, stream: Any = None):
        """Initialize key reader over ``stream`` (stdin by default)."""
        self.stream = stream or sys.stdin
        self._saved_attrs: Any = None

    def __enter__(self) -> TerminalKeyReader:
        """Switch the terminal to unbuffered, no-echo input."""
        if not IS_WINDOWS and self.stream.isatty():
            import termios
            import tty

            fd = self.stream.fileno()
            self._saved_attrs = termios.tcgetattr(fd)
            tty.setcbreak(fd)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Restore the terminal mode."""
        self._restore()
        return False

    def _restore(self) -> None:
        if self._saved_attrs is not None:
            import termios

            termios.tcsetattr(self.stream.fileno(), termios.TCSADRAIN, self._saved_attrs)

    @contextlib.contextmanager
    def line_mode(self) -> Iterator[None]:
        """Temporarily restore echo and line editing for a prompt."""
        saved = self._saved_attrs
        if saved is None:
            yield
            return
        self._restore()
        try:
            yield
        finally:
            import tty

            tty.setcbreak(self.stream.fileno())

    def read_key(self, timeout: float) -> str | None:
        """Wait at most ``timeout`` seconds for a key."""
        if IS_WINDOWS:
            return self._read_key_windows(timeout)
        return self._read_key_posix(timeout)

    def _wait_readable(self, timeout: float) -> bool:
        import select

        ready, _, _ = select.select([self.stream], [], [], max(0.0, timeout))
        return bool(ready)

    def _read_char(self) -> str:
        data = os.read(self.stream.fileno(), 1)
        return data.decode("latin-1") if data else ""

    def _read_key_posix(self, timeout: float) -> str | None:
        if not self._wait_readable(timeout):
            return None
        char = self._read_char()
        if char == "":
            return KEY_EOF
        if char != "\x1b":
            return char

        # Escape sequence: ESC [ <letter>
        if not self._wait_readable(0.05):
            return char
        if self._read_char() != "[":
            return None
        if not self._wait_readable(0.05):
            return None
        return _ANSI_ARROWS.get(self._read_char())

    def _read_key_windows(self, timeout: float) -> str | None:
        import msvcrt

        deadline = time.monotonic() + timeout
        while not msvcrt.kbhit():
            if time.monotonic() >= deadline:
                return None
            time.sleep(0.01)
        char = msvcrt.getwch()
        if char in ("\x00", "\xe0"):
            return _WINDOWS_ARROWS.get(msvcrt.getwch())
        return char
