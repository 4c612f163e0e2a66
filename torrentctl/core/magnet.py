"""Magnet URI parsing (BEP 9) utilities.

Extracts the info-hash plus the optional display name, trackers and web
seeds. Anything else in the query string is left for the engine.
"""

from __future__ import annotations

import base64
import binascii
import urllib.parse
from dataclasses import dataclass, field

from torrentctl.core.identity import TorrentIdentity
from torrentctl.utils.exceptions import MagnetError

MAGNET_PREFIX = "magnet:"


@dataclass
class MagnetInfo:
    """Information extracted from a magnet link."""

    info_hash: bytes
    display_name: str | None
    trackers: list[str] = field(default_factory=list)
    web_seeds: list[str] = field(default_factory=list)

    @property
    def identity(self) -> TorrentIdentity:
        """Identity derived from the btih."""
        return TorrentIdentity(self.info_hash)


def is_magnet_uri(value: str) -> bool:
    """Check whether a CLI argument is a magnet link rather than a path."""
    return value[: len(MAGNET_PREFIX)].lower() == MAGNET_PREFIX


def _hex_or_base32_to_bytes(btih: str) -> bytes:
    """Decode btih which can be hex (40 chars) or base32 (32 chars)."""
    btih = btih.strip()
    try:
        if len(btih) == 40:
            return bytes.fromhex(btih)
        if len(btih) == 32:
            return base64.b32decode(btih.upper())
    except (ValueError, binascii.Error) as e:
        msg = f"Invalid btih {btih!r}: {e}"
        raise MagnetError(msg) from e
    msg = f"btih must be 40 hex or 32 base32 characters (got {len(btih)})"
    raise MagnetError(msg)


def parse_magnet(uri: str) -> MagnetInfo:
    """Parse a magnet URI and return `MagnetInfo`.

    Supports: xt=urn:btih:<hash>, dn, tr (multiple), ws (multiple).

    Raises:
        MagnetError: If the URI is not a magnet link or has no usable btih

    """
    parsed = urllib.parse.urlparse(uri.strip())
    if parsed.scheme.lower() != "magnet":
        msg = "Not a magnet URI"
        raise MagnetError(msg)

    qs = urllib.parse.parse_qs(parsed.query)
    btih_value = None
    for xt in qs.get("xt", []):
        if xt.lower().startswith("urn:btih:"):
            btih_value = xt[len("urn:btih:") :]
            break
    if not btih_value:
        msg = "Magnet URI missing xt=urn:btih"
        raise MagnetError(msg)

    return MagnetInfo(
        info_hash=_hex_or_base32_to_bytes(btih_value),
        display_name=qs.get("dn", [None])[0],
        trackers=qs.get("tr", []),
        web_seeds=qs.get("ws", []),
    )
