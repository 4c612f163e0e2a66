"""Resume parameters read back from a stored resume blob.

Blobs use the engine's bencoded resume layout. Only the fields that take
part in the add-request overlay are interpreted; the blob itself is still
passed to the engine verbatim.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from torrentctl.core import bencode
from torrentctl.core.identity import TorrentIdentity
from torrentctl.models import TorrentFlag
from torrentctl.utils.exceptions import BencodeError, ResumeDataError

FILE_FORMAT = b"libtorrent resume file"
FILE_VERSION = 1

# Boolean resume keys and the request flag each maps to
_FLAG_KEYS: dict[bytes, TorrentFlag] = {
    b"seed_mode": TorrentFlag.SEED_MODE,
    b"share_mode": TorrentFlag.SHARE_MODE,
    b"sequential_download": TorrentFlag.SEQUENTIAL_DOWNLOAD,
    b"paused": TorrentFlag.PAUSED,
    b"auto_managed": TorrentFlag.AUTO_MANAGED,
}

_INT_KEYS: dict[bytes, str] = {
    b"upload_rate_limit": "upload_limit",
    b"download_rate_limit": "download_limit",
    b"max_connections": "max_connections",
    b"max_uploads": "max_uploads",
}


def _text(value: Any, key: str) -> str:
    if not isinstance(value, bytes):
        msg = f"Resume field {key!r} must be a string"
        raise ResumeDataError(msg)
    return value.decode("utf-8", errors="replace")


class ResumeParams(BaseModel):
    """Previously persisted add parameters for one torrent."""

    info_hash: bytes = Field(
        ...,
        min_length=20,
        max_length=20,
        description="Torrent info hash",
    )
    name: str | None = Field(None, description="Display name")
    save_path: str | None = Field(None, description="Download directory")
    upload_limit: int | None = Field(None, description="Upload limit in bytes/s")
    download_limit: int | None = Field(None, description="Download limit in bytes/s")
    max_connections: int | None = Field(None, description="Connection cap")
    max_uploads: int | None = Field(None, description="Upload slot cap")
    flags: set[TorrentFlag] = Field(
        default_factory=set, description="Mode flags switched on in the blob"
    )
    trackers: list[str] = Field(default_factory=list, description="Tracker URLs")

    @property
    def identity(self) -> TorrentIdentity:
        """Identity recorded in the blob."""
        return TorrentIdentity(self.info_hash)

    @classmethod
    def decode(cls, blob: bytes) -> ResumeParams:
        """Decode a resume blob.

        Raises:
            ResumeDataError: If the blob is not a usable resume dictionary

        """
        try:
            data = bencode.decode(blob)
        except BencodeError as e:
            msg = f"Malformed resume data: {e}"
            raise ResumeDataError(msg) from e
        if not isinstance(data, dict):
            msg = "Resume data is not a dictionary"
            raise ResumeDataError(msg)

        info_hash = data.get(b"info-hash")
        if not isinstance(info_hash, bytes) or len(info_hash) != 20:
            msg = "Resume data has no valid info-hash"
            raise ResumeDataError(msg)

        fields: dict[str, Any] = {"info_hash": info_hash}
        if b"name" in data:
            fields["name"] = _text(data[b"name"], "name")
        if b"save_path" in data:
            fields["save_path"] = _text(data[b"save_path"], "save_path")

        for key, field_name in _INT_KEYS.items():
            if key not in data:
                continue
            value = data[key]
            if not isinstance(value, int):
                msg = f"Resume field {key.decode()!r} must be an integer"
                raise ResumeDataError(msg)
            fields[field_name] = value

        fields["flags"] = {
            flag for key, flag in _FLAG_KEYS.items() if data.get(key) not in (None, 0)
        }

        trackers: list[str] = []
        for tier in data.get(b"trackers", []) or []:
            urls = tier if isinstance(tier, list) else [tier]
            trackers.extend(_text(url, "trackers") for url in urls)
        fields["trackers"] = trackers

        return cls(**fields)

    def encode(self) -> bytes:
        """Encode these parameters in the resume layout."""
        data: dict[bytes, Any] = {
            b"file-format": FILE_FORMAT,
            b"file-version": FILE_VERSION,
            b"info-hash": self.info_hash,
        }
        if self.name is not None:
            data[b"name"] = self.name
        if self.save_path is not None:
            data[b"save_path"] = self.save_path
        for key, field_name in _INT_KEYS.items():
            value = getattr(self, field_name)
            if value is not None:
                data[key] = value
        for key, flag in _FLAG_KEYS.items():
            data[key] = int(flag in self.flags)
        if self.trackers:
            data[b"trackers"] = [[url] for url in self.trackers]
        return bencode.encode(data)

    def to_request_fields(self) -> dict[str, Any]:
        """Return the overlay as AddRequest fields (unset values omitted)."""
        fields = self.model_dump(exclude_none=True, exclude={"info_hash"})
        if not fields.get("trackers"):
            fields.pop("trackers", None)
        return fields
