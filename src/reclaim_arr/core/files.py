"""Registration of files newly detected on a volume."""

from pathlib import Path, PurePosixPath
from typing import Optional
import logging

from sqlalchemy.orm import Session

from reclaim_arr.core import filename_parser
from reclaim_arr.core.filesystem import stat_file
from reclaim_arr.core.matcher import CatalogueMatcher
from reclaim_arr.db.models import MediaFile, MovieFile, Volume

logger = logging.getLogger(__name__)


def register_file(
    session: Session,
    volume: Volume,
    relative_path: str,
    matcher: Optional[CatalogueMatcher] = None,
) -> MediaFile:
    """
    Record a file found on disk and try to match it.

    The file is read through the volume's local path; size, inode, device
    and link count are refreshed when the row already exists.
    """
    relative_path = relative_path.strip("/")
    stat = stat_file(Path(volume.path) / relative_path)

    media_file = session.query(MediaFile).filter_by(volume_id=volume.id, file_path=relative_path).first()
    if media_file is None:
        parsed = filename_parser.parse(PurePosixPath(relative_path).name)
        media_file = MediaFile(
            volume=volume,
            file_path=relative_path,
            file_name=PurePosixPath(relative_path).name,
            resolution=parsed.resolution,
            quality=parsed.quality,
            codec=parsed.codec,
        )
        session.add(media_file)
        logger.info(f"Registered new file {relative_path} on volume {volume.name}")

    media_file.file_size_bytes = stat.size
    media_file.inode = stat.inode
    media_file.device_id = stat.device_id
    media_file.hardlink_count = stat.hardlink_count
    session.flush()

    has_link = session.query(MovieFile.id).filter_by(media_file_id=media_file.id).first() is not None
    if matcher is not None and not has_link:
        link = matcher.match_single_file(media_file)
        if link is None:
            logger.debug(f"No catalogue match for {relative_path}")

    return media_file
