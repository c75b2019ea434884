"""Local filesystem access used for file registration and deletion."""

import os
from pathlib import Path
from typing import NamedTuple
import logging

logger = logging.getLogger(__name__)


class FileStat(NamedTuple):
    size: int
    inode: int
    device_id: int
    hardlink_count: int


def stat_file(path: Path) -> FileStat:
    """Size, inode, device and link count of a file."""
    stat = path.stat()
    return FileStat(
        size=stat.st_size,
        inode=stat.st_ino,
        device_id=stat.st_dev,
        hardlink_count=stat.st_nlink,
    )


class LocalFilesystem:
    """Delete agent operating on the local filesystem."""

    def exists(self, path: str) -> bool:
        return os.path.lexists(path)

    def unlink(self, path: str) -> bool:
        """
        Remove a file.

        Returns False when the file was already gone. Any other OSError
        propagates to the caller.
        """
        try:
            os.unlink(path)
        except FileNotFoundError:
            logger.debug(f"Already absent: {path}")
            return False
        logger.info(f"Deleted {path}")
        return True
