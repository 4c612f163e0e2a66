"""Bounded event log shown beneath the torrent list."""

from __future__ import annotations

import time
from collections import deque
from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:  # pragma: no cover
    from torrentctl.session.alerts import AlertRecord

EVENT_LOG_CAPACITY = 20
TIMESTAMP_FORMAT = "%b %d %H:%M:%S"


def format_timestamp(ts: float | None = None) -> str:
    """Format a wall-clock time the way event lines are prefixed."""
    return time.strftime(TIMESTAMP_FORMAT, time.localtime(ts))


def format_event(message: str, ts: float | None = None) -> str:
    """Prefix a message with its timestamp."""
    return f"[{format_timestamp(ts)}] {message}"


def format_alert(alert: AlertRecord) -> str:
    """Format an alert for the event log."""
    return format_event(alert.message, alert.timestamp)


class EventLog:
    """Ring buffer of the most recent formatted events; oldest dropped first."""

    def __init__(self, capacity: int = EVENT_LOG_CAPACITY) -> None:
        """Initialize an empty log."""
        self._events: deque[str] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        """Maximum number of retained events."""
        return self._events.maxlen or 0

    def append(self, line: str) -> None:
        """Append an already formatted line."""
        self._events.append(line)

    def add(self, message: str, ts: float | None = None) -> str:
        """Format and append a message, returning the stored line."""
        line = format_event(message, ts)
        self._events.append(line)
        return line

    def clear(self) -> None:
        """Drop every event."""
        self._events.clear()

    def __len__(self) -> int:
        """Return the number of retained events."""
        return len(self._events)

    def __iter__(self) -> Iterator[str]:
        """Iterate oldest first."""
        return iter(self._events)

    def lines(self) -> list[str]:
        """Snapshot of the retained events, oldest first."""
        return list(self._events)
