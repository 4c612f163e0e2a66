"""Torrent identity value type."""

from __future__ import annotations

from dataclasses import dataclass

INFO_HASH_LENGTH = 20


@dataclass(frozen=True)
class TorrentIdentity:
    """Fixed-length content hash identifying a torrent.

    Used as the resume file key and as the join key between add requests and
    engine alerts.
    """

    info_hash: bytes

    def __post_init__(self) -> None:
        """Validate hash length."""
        if not isinstance(self.info_hash, bytes) or len(self.info_hash) != INFO_HASH_LENGTH:
            msg = f"Info hash must be {INFO_HASH_LENGTH} bytes"
            raise ValueError(msg)

    @classmethod
    def from_hex(cls, value: str) -> TorrentIdentity:
        """Parse a 40-character hex key."""
        return cls(bytes.fromhex(value))

    def hex(self) -> str:
        """Stable lowercase hex encoding, used for file names."""
        return self.info_hash.hex()

    def __str__(self) -> str:
        """Return the hex form."""
        return self.hex()
