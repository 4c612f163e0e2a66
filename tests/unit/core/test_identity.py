"""Tests for TorrentIdentity."""

from __future__ import annotations

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.core]

from torrentctl.core.identity import TorrentIdentity


class TestTorrentIdentity:
    """Identity construction and encoding."""

    def test_hex_round_trip(self):
        """hex() is lowercase and from_hex() restores the identity."""
        identity = TorrentIdentity(bytes(range(20)))
        assert identity.hex() == bytes(range(20)).hex()
        assert TorrentIdentity.from_hex(identity.hex().upper()) == identity
        assert str(identity) == identity.hex()

    @pytest.mark.parametrize("value", [b"", b"x" * 19, b"x" * 21, "a" * 20])
    def test_rejects_wrong_length(self, value):
        """Only 20-byte values are accepted."""
        with pytest.raises(ValueError, match="20 bytes"):
            TorrentIdentity(value)

    def test_hashable(self):
        """Identities work as dictionary keys."""
        a = TorrentIdentity(b"a" * 20)
        assert {a: 1}[TorrentIdentity(b"a" * 20)] == 1
