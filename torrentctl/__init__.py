"""torrentctl - an interactive, alert-driven torrent client controller."""

from __future__ import annotations

__version__ = "0.1.0"
