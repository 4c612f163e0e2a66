"""On-disk resume store.

One blob per torrent, named ``<info-hash hex>.resume`` inside the resume
directory. Blob contents are owned by the engine and passed through untouched.
"""

from __future__ import annotations

import os
from pathlib import Path

from torrentctl.core.identity import TorrentIdentity
from torrentctl.utils.exceptions import ResumeStoreError
from torrentctl.utils.logging_config import get_logger

RESUME_SUFFIX = ".resume"
RESUME_DIR_NAME = ".resume"


class ResumeStore:
    """Maps a torrent identity to its persisted resume blob."""

    def __init__(self, directory: str | Path):
        """Initialize resume store.

        Args:
            directory: Resume directory; created if missing

        """
        self.directory = Path(directory)
        self.logger = get_logger(__name__)

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            # Later saves will surface the failure per torrent
            self.logger.warning(
                "Failed to create resume directory %s: %s", self.directory, e
            )

    @classmethod
    def for_save_path(cls, save_path: str | Path) -> ResumeStore:
        """Create the store that lives under a download directory."""
        return cls(Path(save_path) / RESUME_DIR_NAME)

    def path_for(self, identity: TorrentIdentity) -> Path:
        """Get resume file path for an identity."""
        return self.directory / f"{identity.hex()}{RESUME_SUFFIX}"

    def load(self, identity: TorrentIdentity) -> bytes | None:
        """Load a resume blob.

        Returns:
            The stored bytes, or None when missing or unreadable

        """
        path = self.path_for(identity)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            self.logger.debug("Failed to read resume file %s: %s", path, e)
            return None

    def save(self, identity: TorrentIdentity, data: bytes) -> Path:
        """Persist a resume blob, replacing any previous one atomically.

        Raises:
            ResumeStoreError: If the blob cannot be written

        """
        path = self.path_for(identity)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                self.logger.debug("Failed to remove temp file %s", tmp_path)
            msg = f"Failed to save resume file {path}: {e}"
            raise ResumeStoreError(msg, {"info_hash": identity.hex()}) from e

        self.logger.debug("Saved resume data: %s (%d bytes)", path, len(data))
        return path

    def delete(self, identity: TorrentIdentity) -> bool:
        """Delete the resume blob for an identity.

        Returns:
            True if a file was deleted, False otherwise

        """
        path = self.path_for(identity)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            self.logger.warning("Failed to delete resume file %s: %s", path, e)
            return False
        self.logger.debug("Deleted resume file: %s", path)
        return True

    def entries(self) -> list[Path]:
        """List stored resume files.

        Raises:
            ResumeStoreError: If the directory cannot be listed

        """
        try:
            return sorted(
                p
                for p in self.directory.iterdir()
                if p.suffix == RESUME_SUFFIX and p.is_file()
            )
        except OSError as e:
            msg = f"Failed to list resume directory {self.directory}: {e}"
            raise ResumeStoreError(msg) from e

