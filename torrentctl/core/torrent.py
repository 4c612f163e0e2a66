"""Torrent descriptor (.torrent) parsing.

Only what the control layer needs is extracted: the info-hash, display name,
trackers and piece layout. The descriptor path itself is handed to the
engine, which does its own full parse.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from torrentctl.core.bencode import BencodeDecoder
from torrentctl.core.identity import TorrentIdentity
from torrentctl.utils.exceptions import BencodeError, TorrentError


@dataclass
class TorrentDescriptor:
    """Summary of a parsed .torrent file."""

    path: Path
    info_hash: bytes
    name: str
    trackers: list[str] = field(default_factory=list)
    total_length: int = 0
    piece_length: int = 0
    num_pieces: int = 0

    @property
    def identity(self) -> TorrentIdentity:
        """Identity derived from the info dictionary."""
        return TorrentIdentity(self.info_hash)


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


class TorrentParser:
    """Parser for BitTorrent torrent files."""

    def parse(self, torrent_path: str | Path) -> TorrentDescriptor:
        """Parse a torrent file from a local path.

        Raises:
            TorrentError: If the file is missing, unreadable or malformed

        """
        path = Path(torrent_path)
        try:
            raw = path.read_bytes()
        except FileNotFoundError as e:
            msg = f"Torrent file not found: {path}"
            raise TorrentError(msg) from e
        except OSError as e:
            msg = f"Failed to read torrent file {path}: {e}"
            raise TorrentError(msg) from e

        try:
            data, info_span = self._decode_with_info_span(raw)
        except BencodeError as e:
            msg = f"Failed to parse torrent: {e}"
            raise TorrentError(msg) from e

        self._validate_torrent(data)
        info = data[b"info"]
        info_hash = hashlib.sha1(raw[info_span[0] : info_span[1]]).digest()  # nosec B324 - protocol hash

        return TorrentDescriptor(
            path=path,
            info_hash=info_hash,
            name=_text(info.get(b"name", path.stem)),
            trackers=self._extract_trackers(data),
            total_length=self._total_length(info),
            piece_length=int(info[b"piece length"]),
            num_pieces=len(info[b"pieces"]) // 20,
        )

    def _decode_with_info_span(
        self, raw: bytes
    ) -> tuple[dict[bytes, Any], tuple[int, int]]:
        """Decode the top-level dictionary, remembering where ``info`` sits.

        The info-hash must be computed over the original bytes, not a
        re-encoding, so the raw span is tracked while decoding.
        """
        decoder = BencodeDecoder(raw)
        if raw[:1] != b"d":
            msg = "Torrent file is not a bencoded dictionary"
            raise TorrentError(msg)
        decoder.pos = 1
        result: dict[bytes, Any] = {}
        span: tuple[int, int] | None = None
        while decoder.pos < len(raw) and raw[decoder.pos : decoder.pos + 1] != b"e":
            key = decoder.decode()
            if not isinstance(key, bytes):
                msg = "Dictionary keys must be strings"
                raise TorrentError(msg)
            start = decoder.pos
            result[key] = decoder.decode()
            if key == b"info":
                span = (start, decoder.pos)
        if decoder.pos >= len(raw):
            msg = "Unterminated torrent dictionary"
            raise TorrentError(msg)
        if span is None:
            msg = "Missing required key in torrent: info"
            raise TorrentError(msg)
        return result, span

    def _validate_torrent(self, data: dict[bytes, Any]) -> None:
        """Validate that the data is a usable v1 torrent."""
        info = data.get(b"info")
        if not isinstance(info, dict):
            msg = "Invalid info dictionary in torrent"
            raise TorrentError(msg)

        if b"length" not in info and b"files" not in info:
            msg = (
                "Torrent must specify either length (single file) or files (multi-file)"
            )
            raise TorrentError(msg)
        if not isinstance(info.get(b"piece length"), int):
            msg = "Missing piece length in torrent info"
            raise TorrentError(msg)
        pieces = info.get(b"pieces")
        if not isinstance(pieces, bytes) or len(pieces) % 20:
            msg = "Missing or malformed pieces in torrent info"
            raise TorrentError(msg)

    def _extract_trackers(self, data: dict[bytes, Any]) -> list[str]:
        trackers: list[str] = []
        announce = data.get(b"announce")
        if isinstance(announce, bytes):
            trackers.append(_text(announce))
        for tier in data.get(b"announce-list", []) or []:
            if not isinstance(tier, list):
                continue
            for url in tier:
                text = _text(url)
                if text not in trackers:
                    trackers.append(text)
        return trackers

    def _total_length(self, info: dict[bytes, Any]) -> int:
        if b"length" in info:
            return int(info[b"length"])
        return sum(int(f.get(b"length", 0)) for f in info.get(b"files", []))
