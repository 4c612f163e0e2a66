"""Alert pump: moves queued engine alerts to the dispatcher in order."""

from __future__ import annotations

from typing import TYPE_CHECKING

from torrentctl.utils.logging_config import get_logger

if TYPE_CHECKING:  # pragma: no cover
    from torrentctl.session.alerts import AlertRecord
    from torrentctl.session.engine import Engine

DEFAULT_DRAIN_TIMEOUT = 10.0

logger = get_logger(__name__)


class AlertPump:
    """Drains the engine's alert queue.

    `poll` is used once per UI tick and never blocks. `drain` is used during
    shutdown and waits a bounded time for the next alert, so a caller
    looping on the barrier never blocks forever if alerts are coalesced.
    """

    def __init__(self, engine: Engine):
        """Initialize alert pump."""
        self.engine = engine

    def poll(self) -> list[AlertRecord]:
        """Return every queued alert without blocking."""
        return self.engine.pop_alerts()

    def drain(self, timeout: float = DEFAULT_DRAIN_TIMEOUT) -> list[AlertRecord]:
        """Wait up to ``timeout`` seconds for an alert, then pop the queue.

        Returns:
            Alerts in emission order; empty if the wait timed out

        """
        if self.engine.wait_for_alert(timeout) is None:
            logger.debug("No alert within %.1fs", timeout)
            return []
        return self.engine.pop_alerts()
