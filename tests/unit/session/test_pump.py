"""Tests for the alert pump."""

from __future__ import annotations

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.session]

from conftest import make_alert
from torrentctl.session.alerts import AlertKind
from torrentctl.session.pump import DEFAULT_DRAIN_TIMEOUT, AlertPump


class TestAlertPump:
    """poll and drain."""

    def test_poll_preserves_order(self, engine):
        """poll returns every queued alert in emission order."""
        alerts = [make_alert(AlertKind.GENERIC, message=str(i)) for i in range(3)]
        engine.queue(*alerts)
        pump = AlertPump(engine)
        assert pump.poll() == alerts
        assert pump.poll() == []

    def test_drain_timeout_returns_empty(self, engine):
        """A wait that times out yields no alerts."""
        pump = AlertPump(engine)
        assert pump.drain(0.5) == []
        assert engine.waits == [0.5]

    def test_drain_returns_queued(self, engine):
        """drain waits, then pops everything queued."""
        engine.drain_script.append([make_alert(AlertKind.GENERIC)] * 2)
        pump = AlertPump(engine)
        assert len(pump.drain()) == 2
        assert engine.waits == [DEFAULT_DRAIN_TIMEOUT]
