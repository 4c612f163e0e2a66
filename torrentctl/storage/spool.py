"""Monitored spool directory.

Descriptor files dropped into the directory are ingested once and then
removed. A file that fails ingestion stays behind and is picked up again on
the next poll.
"""

from __future__ import annotations

from pathlib import Path

from torrentctl.utils.exceptions import DiskError
from torrentctl.utils.logging_config import get_logger


class SpoolDirectory:
    """Polling view over a directory of pending descriptor files."""

    def __init__(self, directory: str | Path, suffix: str = ".torrent"):
        """Initialize spool directory.

        Args:
            directory: Directory to poll
            suffix: File suffix that marks a descriptor

        """
        self.directory = Path(directory)
        self.suffix = suffix
        self.logger = get_logger(__name__)

    def pending(self) -> list[Path]:
        """List descriptor files currently waiting in the spool.

        Order follows filesystem enumeration.

        Raises:
            DiskError: If the directory cannot be listed

        """
        try:
            return [
                p
                for p in self.directory.iterdir()
                if p.name.endswith(self.suffix) and p.is_file()
            ]
        except OSError as e:
            msg = f"Failed to list monitor directory {self.directory}: {e}"
            raise DiskError(msg) from e

    def remove(self, path: Path) -> None:
        """Remove an ingested file.

        Raises:
            DiskError: If the file cannot be removed

        """
        try:
            path.unlink()
        except OSError as e:
            msg = f"Failed to remove torrent file {path}: {e}"
            raise DiskError(msg) from e
        self.logger.debug("Removed ingested torrent file %s", path)
