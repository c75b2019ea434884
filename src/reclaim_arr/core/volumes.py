"""Volume bookkeeping from the paths the watcher reports."""

from pathlib import PurePosixPath
from typing import Iterable, List
import logging

from sqlalchemy.orm import Session

from reclaim_arr.core.models import VolumeSyncResult
from reclaim_arr.core.path_remapper import normalize
from reclaim_arr.db.models import Volume, VolumeStatus

logger = logging.getLogger(__name__)


def sync_volumes(session: Session, watch_paths: Iterable[str]) -> VolumeSyncResult:
    """
    Create or reactivate a Volume per reported host path.

    Volumes whose host path is no longer reported become inactive; their
    files are kept.
    """
    result = VolumeSyncResult()
    reported = {normalize(p) for p in watch_paths if normalize(p)}

    existing = {normalize(v.host_path or ""): v for v in session.query(Volume).all()}

    for host_path in sorted(reported):
        volume = existing.get(host_path)
        if volume is None:
            session.add(Volume(
                name=PurePosixPath(host_path).name or host_path,
                path=host_path,
                host_path=host_path,
                status=VolumeStatus.ACTIVE.value,
            ))
            result.created += 1
            logger.info(f"Created volume for {host_path}")
        elif volume.status != VolumeStatus.ACTIVE.value:
            volume.status = VolumeStatus.ACTIVE.value
            result.reactivated += 1
            logger.info(f"Reactivated volume {volume.name}")

    for host_path, volume in existing.items():
        if host_path not in reported and volume.status == VolumeStatus.ACTIVE.value:
            volume.status = VolumeStatus.INACTIVE.value
            result.deactivated += 1
            logger.info(f"Deactivated volume {volume.name}: no longer watched")

    return result


def active_volumes(session: Session) -> List[Volume]:
    return session.query(Volume).filter_by(status=VolumeStatus.ACTIVE.value).all()
