"""Outstanding-save barrier."""

from __future__ import annotations

from torrentctl.utils.exceptions import BarrierUnderflowError


class OutstandingSaves:
    """Count of save requests still waiting for a terminal alert.

    Every increment is matched by exactly one save-succeeded or save-failed
    alert. Shutdown waits for the count to reach zero.
    """

    def __init__(self) -> None:
        """Initialize the barrier at zero."""
        self._count = 0

    @property
    def count(self) -> int:
        """Current number of in-flight save requests."""
        return self._count

    @property
    def is_clear(self) -> bool:
        """Whether no save is in flight."""
        return self._count == 0

    def increment(self) -> int:
        """Record a new save request."""
        self._count += 1
        return self._count

    def decrement(self) -> int:
        """Record a save completion or failure.

        Raises:
            BarrierUnderflowError: If no save is outstanding

        """
        if self._count == 0:
            msg = "Save completion observed with no outstanding save request"
            raise BarrierUnderflowError(msg)
        self._count -= 1
        return self._count

    def __repr__(self) -> str:
        """Return string representation."""
        return f"OutstandingSaves(count={self._count})"
