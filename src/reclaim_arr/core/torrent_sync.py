"""Reconcile qBittorrent state with the media file store."""

from datetime import datetime, timedelta, timezone
from pathlib import PurePosixPath
from typing import Callable, Dict, List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from reclaim_arr.api.qbit_client import QBittorrentClient
from reclaim_arr.api.radarr_client import RadarrClient
from reclaim_arr.core import path_remapper, settings_store
from reclaim_arr.core.models import RootFolderMapping, TorrentInfo, TorrentSyncResult
from reclaim_arr.core.tracker_rules import TrackerRuleCache, extract_domain
from reclaim_arr.core.volumes import active_volumes
from reclaim_arr.db.models import (
    MediaFile,
    Movie,
    RadarrInstance,
    TorrentStat,
    TorrentStatHistory,
    TorrentStatus,
    Volume,
    utcnow,
)
from reclaim_arr.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

MEDIA_EXTENSIONS = {".mkv", ".mp4", ".avi", ".m4v", ".ts", ".wmv"}

STATE_MAP = {
    "uploading": TorrentStatus.SEEDING,
    "stalledUP": TorrentStatus.SEEDING,
    "forcedUP": TorrentStatus.SEEDING,
    "queuedUP": TorrentStatus.SEEDING,
    "checkingUP": TorrentStatus.SEEDING,
    "checkingResumeData": TorrentStatus.SEEDING,
    "moving": TorrentStatus.SEEDING,
    "pausedUP": TorrentStatus.PAUSED,
    "pausedDL": TorrentStatus.PAUSED,
    "stalledDL": TorrentStatus.STALLED,
    "queuedDL": TorrentStatus.STALLED,
    "checkingDL": TorrentStatus.STALLED,
    "downloading": TorrentStatus.STALLED,
    "forcedDL": TorrentStatus.STALLED,
    "metaDL": TorrentStatus.STALLED,
    "allocating": TorrentStatus.STALLED,
    "error": TorrentStatus.ERROR,
    "missingFiles": TorrentStatus.ERROR,
}


def map_state(state: str) -> TorrentStatus:
    """qBittorrent state string to TorrentStatus; unknown states count as seeding."""
    return STATE_MAP.get(state, TorrentStatus.SEEDING)


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value or value < 0:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


class _SyncPass:
    """State owned by a single sync() invocation."""

    def __init__(self, session: Session, history: Dict[str, Tuple[int, RadarrInstance]]):
        self.history = history
        self.trackers = TrackerRuleCache(session)
        volumes = active_volumes(session)
        self.mappings: List[RootFolderMapping] = path_remapper.build_mappings(
            [v.host_path or v.path for v in volumes], volumes
        )


class TorrentSyncService:
    """Periodic torrent reconciliation."""

    def __init__(
        self,
        session: Session,
        qbit: QBittorrentClient,
        radarr_factory: Callable[[RadarrInstance], RadarrClient],
        stale_after_minutes: int = 90,
        now: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.qbit = qbit
        self.radarr_factory = radarr_factory
        self.stale_after = timedelta(minutes=stale_after_minutes)
        self.now = now

        self.strategies: List[Callable[[TorrentInfo, _SyncPass], Optional[MediaFile]]] = [
            self._match_by_history,
            self._match_by_content_path,
            self._match_by_size,
        ]

    def sync(self) -> TorrentSyncResult:
        """Run one reconciliation pass and persist its counters."""
        result = TorrentSyncResult()

        if not self.qbit.is_configured():
            logger.info("qBittorrent is not configured, skipping torrent sync")
            return result

        started = self.now()
        try:
            torrents = self.qbit.list_torrents()
        except ExternalServiceError as e:
            logger.error(f"Torrent sync aborted: {e}")
            result.errors = 1
            self._save(result, started)
            return result

        sync_pass = _SyncPass(self.session, self._build_history_map())

        for torrent in torrents:
            try:
                self._process(torrent, sync_pass, result, started)
            except Exception as e:
                result.errors += 1
                logger.warning(f"Failed to sync torrent {torrent.hash} ({torrent.name}): {e}")

        result.new_trackers = sync_pass.trackers.created
        result.stale_removed = self.mark_stale(started)
        self._save(result, started)

        logger.info(
            f"Torrent sync: {result.torrents_synced} synced, {result.unmatched} unmatched, "
            f"{result.new_trackers} new trackers, {result.stale_removed} removed, {result.errors} errors"
        )
        return result

    def _save(self, result: TorrentSyncResult, synced_at: datetime) -> None:
        settings_store.record_torrent_sync(self.session, result.model_dump(), synced_at)
        self.session.commit()

    def _build_history_map(self) -> Dict[str, Tuple[int, RadarrInstance]]:
        history: Dict[str, Tuple[int, RadarrInstance]] = {}
        for instance in self.session.query(RadarrInstance).filter_by(is_active=True).all():
            try:
                records = self.radarr_factory(instance).get_history()
            except ExternalServiceError as e:
                logger.warning(f"Skipping Radarr '{instance.name}' history: {e}")
                continue

            for record in records:
                history[record.download_id.lower()] = (record.movie_id, instance)
        return history

    def _process(self, torrent: TorrentInfo, sync_pass: _SyncPass, result: TorrentSyncResult, now: datetime) -> None:
        torrent_hash = (torrent.hash or "").lower()
        if not torrent_hash:
            return

        domain = extract_domain(torrent.tracker)
        sync_pass.trackers.ensure(domain)

        # A database error rolls back this torrent only
        with self.session.begin_nested():
            media_file = None
            for strategy in self.strategies:
                media_file = strategy(torrent, sync_pass)
                if media_file is not None:
                    break

            if media_file is None:
                result.unmatched += 1
                logger.debug(f"No file matched torrent {torrent_hash} ({torrent.name})")
                return

            stat = self._upsert_stat(torrent_hash, torrent, media_file, domain, now)
            self._snapshot(stat, now)
        result.torrents_synced += 1

    # -- Match strategies ------------------------------------------------------

    def _match_by_history(self, torrent: TorrentInfo, sync_pass: _SyncPass) -> Optional[MediaFile]:
        entry = sync_pass.history.get(torrent.hash.lower())
        if entry is None:
            return None

        radarr_id, instance = entry
        movie = (
            self.session.query(Movie)
            .filter_by(radarr_id=radarr_id, radarr_instance_id=instance.id)
            .first()
        )
        if movie is None or not movie.media_files:
            return None
        return movie.media_files[0]

    def _lookup(self, volume: Volume, relative_path: str) -> Optional[MediaFile]:
        return self.session.query(MediaFile).filter_by(volume_id=volume.id, file_path=relative_path).first()

    def _match_by_content_path(self, torrent: TorrentInfo, sync_pass: _SyncPass) -> Optional[MediaFile]:
        if not torrent.content_path:
            return None

        host_path = self.qbit.map_client_path_to_host(torrent.content_path)
        media_file = path_remapper.remap(host_path, sync_pass.mappings, self._lookup)
        if media_file is not None:
            return media_file

        # Multi-file torrents report their directory
        resolved = path_remapper.resolve(host_path, sync_pass.mappings)
        if resolved is None:
            return None

        volume, directory = resolved
        candidates = (
            self.session.query(MediaFile)
            .filter(
                MediaFile.volume_id == volume.id,
                MediaFile.file_path.startswith(directory.rstrip("/") + "/", autoescape=True),
            )
            .order_by(MediaFile.file_size_bytes.desc(), MediaFile.id)
            .all()
        )

        seen_inodes = set()
        distinct = []
        for candidate in candidates:
            key = (candidate.device_id, candidate.inode) if candidate.inode is not None else ("id", candidate.id)
            if key in seen_inodes:
                continue
            seen_inodes.add(key)
            distinct.append(candidate)

        return distinct[0] if distinct else None

    def _match_by_size(self, torrent: TorrentInfo, sync_pass: _SyncPass) -> Optional[MediaFile]:
        try:
            files = self.qbit.list_files(torrent.hash)
        except ExternalServiceError as e:
            logger.debug(f"Size match skipped for {torrent.hash}: {e}")
            return None

        media = [f for f in files if PurePosixPath(f.name).suffix.lower() in MEDIA_EXTENSIONS]
        if not media:
            return None

        largest = max(media, key=lambda f: f.size)
        candidates = self.session.query(MediaFile).filter_by(file_size_bytes=largest.size).all()
        if len(candidates) == 1:
            return candidates[0]
        if not candidates:
            return None

        torrent_hash = torrent.hash.lower()
        by_hash = [
            c for c in candidates
            if torrent_hash in ((c.file_hash or "").lower(), (c.partial_hash or "").lower())
        ]
        if len(by_hash) == 1:
            return by_hash[0]

        logger.debug(f"Ambiguous size match for {torrent_hash}: {len(candidates)} files of {largest.size} bytes")
        return None

    # -- Persistence -------------------------------------------------------------

    def _upsert_stat(
        self,
        torrent_hash: str,
        torrent: TorrentInfo,
        media_file: MediaFile,
        domain: str,
        now: datetime,
    ) -> TorrentStat:
        stat = self.session.query(TorrentStat).filter_by(torrent_hash=torrent_hash).first()
        if stat is None:
            stat = TorrentStat(torrent_hash=torrent_hash, first_seen_at=now)
            self.session.add(stat)

        stat.media_file = media_file
        stat.torrent_name = torrent.name
        stat.tracker_domain = domain or None
        stat.ratio = round(torrent.ratio, 4)
        stat.seed_time_seconds = torrent.seeding_time
        stat.uploaded_bytes = torrent.uploaded
        stat.downloaded_bytes = torrent.downloaded
        stat.size_bytes = torrent.size
        stat.status = map_state(torrent.state).value
        stat.added_at = _from_timestamp(torrent.added_on)
        stat.last_activity_at = _from_timestamp(torrent.last_activity)
        stat.qbit_content_path = torrent.content_path
        stat.last_synced_at = now
        return stat

    def _snapshot(self, stat: TorrentStat, now: datetime) -> None:
        """Record at most one history row per torrent per UTC day."""
        today = now.date()
        if stat.id is not None:
            exists = (
                self.session.query(TorrentStatHistory.id)
                .filter_by(torrent_stat_id=stat.id, recorded_on=today)
                .first()
            )
            if exists is not None:
                return

        stat.history.append(TorrentStatHistory(
            ratio=stat.ratio,
            uploaded_bytes=stat.uploaded_bytes,
            seed_time_seconds=stat.seed_time_seconds,
            recorded_on=today,
            recorded_at=now,
        ))

    def mark_stale(self, now: Optional[datetime] = None) -> int:
        """Mark torrents unseen for longer than the stale window as removed."""
        cutoff = (now or self.now()) - self.stale_after
        stale = (
            self.session.query(TorrentStat)
            .filter(
                TorrentStat.last_synced_at < cutoff,
                TorrentStat.status != TorrentStatus.REMOVED.value,
            )
            .all()
        )
        for stat in stale:
            stat.status = TorrentStatus.REMOVED.value
            logger.info(f"Torrent {stat.torrent_hash} ({stat.torrent_name}) no longer in client, marked removed")
        return len(stale)


def clean_history(session: Session, older_than_days: int = 90, now: Optional[datetime] = None) -> int:
    """Delete snapshots older than the retention window."""
    cutoff = (now or utcnow()) - timedelta(days=older_than_days)
    deleted = (
        session.query(TorrentStatHistory)
        .filter(TorrentStatHistory.recorded_at < cutoff)
        .delete(synchronize_session=False)
    )
    logger.info(f"Deleted {deleted} torrent history snapshots older than {older_than_days} days")
    return deleted
