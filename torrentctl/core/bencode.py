"""Bencoding (BEP 3) encoder and decoder.

Used to read .torrent descriptors and the bencoded resume data layout.
"""

from __future__ import annotations

from typing import Any

from torrentctl.utils.exceptions import BencodeError


class BencodeDecodeError(BencodeError):
    """Raised when input is not valid bencoded data."""


class BencodeEncodeError(BencodeError):
    """Raised when a value cannot be bencoded."""


class BencodeDecoder:
    """Decoder for bencoded data."""

    def __init__(self, data: bytes) -> None:
        """Initialize decoder over ``data``."""
        self.data = data
        self.pos = 0

    def decode(self) -> Any:
        """Decode one value starting at the current position."""
        if self.pos >= len(self.data):
            msg = "Unexpected end of data"
            raise BencodeDecodeError(msg)

        char = self.data[self.pos : self.pos + 1]
        if char == b"i":
            return self._decode_int()
        if char == b"l":
            return self._decode_list()
        if char == b"d":
            return self._decode_dict()
        if char.isdigit():
            return self._decode_string()
        msg = f"Invalid bencode token {char!r} at position {self.pos}"
        raise BencodeDecodeError(msg)

    def _decode_int(self) -> int:
        end = self.data.find(b"e", self.pos)
        if end == -1:
            msg = "Unterminated integer"
            raise BencodeDecodeError(msg)
        raw = self.data[self.pos + 1 : end]
        if raw in (b"", b"-") or raw == b"-0":
            msg = f"Invalid integer {raw!r}"
            raise BencodeDecodeError(msg)
        digits = raw[1:] if raw.startswith(b"-") else raw
        if not digits.isdigit() or (len(digits) > 1 and digits.startswith(b"0")):
            msg = f"Invalid integer {raw!r}"
            raise BencodeDecodeError(msg)
        self.pos = end + 1
        return int(raw)

    def _decode_string(self) -> bytes:
        colon = self.data.find(b":", self.pos)
        if colon == -1:
            msg = "Missing ':' in string length"
            raise BencodeDecodeError(msg)
        length_raw = self.data[self.pos : colon]
        if not length_raw.isdigit():
            msg = f"Invalid string length {length_raw!r}"
            raise BencodeDecodeError(msg)
        length = int(length_raw)
        start = colon + 1
        end = start + length
        if end > len(self.data):
            msg = "String extends past end of data"
            raise BencodeDecodeError(msg)
        self.pos = end
        return self.data[start:end]

    def _decode_list(self) -> list[Any]:
        self.pos += 1
        items: list[Any] = []
        while True:
            if self.pos >= len(self.data):
                msg = "Unterminated list"
                raise BencodeDecodeError(msg)
            if self.data[self.pos : self.pos + 1] == b"e":
                self.pos += 1
                return items
            items.append(self.decode())

    def _decode_dict(self) -> dict[bytes, Any]:
        self.pos += 1
        result: dict[bytes, Any] = {}
        while True:
            if self.pos >= len(self.data):
                msg = "Unterminated dictionary"
                raise BencodeDecodeError(msg)
            if self.data[self.pos : self.pos + 1] == b"e":
                self.pos += 1
                return result
            key = self.decode()
            if not isinstance(key, bytes):
                msg = "Dictionary keys must be strings"
                raise BencodeDecodeError(msg)
            result[key] = self.decode()


class BencodeEncoder:
    """Encoder producing canonical bencoded bytes (sorted dictionary keys)."""

    def encode(self, value: Any) -> bytes:
        """Encode ``value``."""
        out: list[bytes] = []
        self._encode(value, out)
        return b"".join(out)

    def _encode(self, value: Any, out: list[bytes]) -> None:
        if isinstance(value, bool):
            out.append(b"i%de" % int(value))
        elif isinstance(value, int):
            out.append(b"i%de" % value)
        elif isinstance(value, bytes):
            out.append(b"%d:%s" % (len(value), value))
        elif isinstance(value, str):
            raw = value.encode("utf-8")
            out.append(b"%d:%s" % (len(raw), raw))
        elif isinstance(value, (list, tuple)):
            out.append(b"l")
            for item in value:
                self._encode(item, out)
            out.append(b"e")
        elif isinstance(value, dict):
            out.append(b"d")
            keys = {
                (k.encode("utf-8") if isinstance(k, str) else k): v
                for k, v in value.items()
            }
            for key in keys:
                if not isinstance(key, bytes):
                    msg = f"Dictionary key must be str or bytes, got {type(key).__name__}"
                    raise BencodeEncodeError(msg)
            for key in sorted(keys):
                self._encode(key, out)
                self._encode(keys[key], out)
            out.append(b"e")
        else:
            msg = f"Cannot bencode value of type {type(value).__name__}"
            raise BencodeEncodeError(msg)


def decode(data: bytes) -> Any:
    """Decode a complete bencoded document, rejecting trailing bytes."""
    decoder = BencodeDecoder(data)
    value = decoder.decode()
    if decoder.pos != len(data):
        msg = f"Trailing data after position {decoder.pos}"
        raise BencodeDecodeError(msg)
    return value


def encode(value: Any) -> bytes:
    """Encode a value to bencoded bytes."""
    return BencodeEncoder().encode(value)
