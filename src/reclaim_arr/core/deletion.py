"""Scheduled deletions: creation, execution and hardlink-replacement flow."""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import PurePosixPath
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union
import logging

from sqlalchemy.orm import Session

from reclaim_arr.api.radarr_client import RadarrClient
from reclaim_arr.core import path_remapper
from reclaim_arr.core.filesystem import LocalFilesystem
from reclaim_arr.core.hardlink import HardlinkReplacementSelector
from reclaim_arr.core.models import DeletionItemReport, DeletionReport
from reclaim_arr.core.notifications import LoggingNotificationSink, NotificationSink
from reclaim_arr.core.volumes import active_volumes
from reclaim_arr.db.models import (
    ActivityLog,
    DeletionStatus,
    ItemStatus,
    MediaFile,
    Movie,
    RadarrInstance,
    ScheduledDeletion,
    ScheduledDeletionItem,
    utcnow,
)
from reclaim_arr.exceptions import DeletionNotAllowedError, EntityNotFoundError, ExternalServiceError

logger = logging.getLogger(__name__)

RE_ACQUISITION_WARNING = "Radarr auto-search is still enabled for this movie. It may be re-downloaded."

EXECUTABLE_FROM = {
    DeletionStatus.PENDING.value,
    DeletionStatus.REMINDER_SENT.value,
    DeletionStatus.WAITING_WATCHER.value,
    DeletionStatus.EXECUTING.value,
}
CANCELLABLE_FROM = {DeletionStatus.PENDING.value, DeletionStatus.REMINDER_SENT.value}
DUE_STATUSES = CANCELLABLE_FROM


@dataclass(frozen=True)
class Deleted:
    pass


@dataclass(frozen=True)
class PartiallyFailed:
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Failed:
    errors: List[str] = field(default_factory=list)


Outcome = Union[Deleted, PartiallyFailed, Failed]


def item_status(outcome: Outcome) -> ItemStatus:
    return ItemStatus.FAILED if isinstance(outcome, Failed) else ItemStatus.DELETED


def run_status(outcomes: Iterable[Outcome]) -> DeletionStatus:
    """A run is completed only when every item was fully deleted."""
    if all(isinstance(o, Deleted) for o in outcomes):
        return DeletionStatus.COMPLETED
    return DeletionStatus.FAILED


def deletion_warning(deletion: ScheduledDeletion, movie: Movie) -> Optional[str]:
    """Warn when the movie stays monitored in Radarr after the deletion."""
    if deletion.delete_radarr_reference or deletion.disable_radarr_auto_search:
        return None
    if movie.radarr_id is None or movie.radarr_instance is None or not movie.radarr_instance.is_active:
        return None
    if not movie.radarr_monitored:
        return None
    return RE_ACQUISITION_WARNING


class DeletionService:
    """Executes ScheduledDeletions item by item."""

    def __init__(
        self,
        session: Session,
        radarr_factory: Callable[[RadarrInstance], RadarrClient],
        filesystem: Optional[LocalFilesystem] = None,
        notifier: Optional[NotificationSink] = None,
        selector: Optional[HardlinkReplacementSelector] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.radarr_factory = radarr_factory
        self.filesystem = filesystem or LocalFilesystem()
        self.notifier = notifier or LoggingNotificationSink()
        self.selector = selector
        self.now = now

    # -- Scheduling ------------------------------------------------------------

    def schedule_deletion(
        self,
        movie_ids: Sequence[int],
        scheduled_date: date,
        created_by: Optional[str] = None,
        media_file_ids: Optional[Dict[int, List[int]]] = None,
        delete_physical_files: bool = True,
        delete_radarr_reference: bool = False,
        delete_media_player_reference: bool = False,
        disable_radarr_auto_search: bool = False,
        reminder_days_before: Optional[int] = 3,
    ) -> ScheduledDeletion:
        """
        Create a pending deletion with one item per movie.

        ``media_file_ids`` narrows the files per movie id; by default every
        linked file of the movie is included.
        """
        deletion = ScheduledDeletion(
            created_by=created_by,
            scheduled_date=scheduled_date,
            status=DeletionStatus.PENDING.value,
            delete_physical_files=delete_physical_files,
            delete_radarr_reference=delete_radarr_reference,
            delete_media_player_reference=delete_media_player_reference,
            disable_radarr_auto_search=disable_radarr_auto_search,
            reminder_days_before=reminder_days_before,
        )

        for movie_id in movie_ids:
            movie = self.session.get(Movie, movie_id)
            if movie is None:
                raise EntityNotFoundError("Movie", movie_id)
            if movie.is_protected:
                raise DeletionNotAllowedError(f"Movie '{movie.title}' is protected")

            file_ids = (media_file_ids or {}).get(movie_id)
            if file_ids is None:
                file_ids = [f.id for f in movie.media_files]

            for file_id in file_ids:
                media_file = self.session.get(MediaFile, file_id)
                if media_file is not None and media_file.is_protected:
                    raise DeletionNotAllowedError(f"File '{media_file.file_name}' is protected")

            deletion.items.append(ScheduledDeletionItem(movie=movie, media_file_ids=list(file_ids)))

        self.session.add(deletion)
        self.session.flush()
        self._log("scheduled_deletion.created", deletion, {"items": len(deletion.items)})
        logger.info(f"Scheduled deletion {deletion.id} for {scheduled_date} with {len(deletion.items)} item(s)")
        return deletion

    def cancel(self, deletion: ScheduledDeletion) -> None:
        if deletion.status not in CANCELLABLE_FROM:
            raise DeletionNotAllowedError(f"Deletion {deletion.id} cannot be cancelled from '{deletion.status}'")

        deletion.status = DeletionStatus.CANCELLED.value
        self._log("scheduled_deletion.cancelled", deletion, {})
        self.session.commit()

    def find_due_deletions(self, today: Optional[date] = None) -> List[ScheduledDeletion]:
        today = today or self.now().date()
        return (
            self.session.query(ScheduledDeletion)
            .filter(
                ScheduledDeletion.status.in_(DUE_STATUSES),
                ScheduledDeletion.scheduled_date <= today,
            )
            .order_by(ScheduledDeletion.scheduled_date, ScheduledDeletion.id)
            .all()
        )

    def send_reminders(self, today: Optional[date] = None) -> int:
        """Notify once for pending deletions inside their reminder window."""
        today = today or self.now().date()
        pending = (
            self.session.query(ScheduledDeletion)
            .filter(
                ScheduledDeletion.status == DeletionStatus.PENDING.value,
                ScheduledDeletion.reminder_sent_at.is_(None),
                ScheduledDeletion.reminder_days_before.isnot(None),
            )
            .all()
        )

        sent = 0
        for deletion in pending:
            if deletion.scheduled_date - timedelta(days=deletion.reminder_days_before) > today:
                continue
            self._notify("deletion_reminder", deletion)
            deletion.status = DeletionStatus.REMINDER_SENT.value
            deletion.reminder_sent_at = self.now()
            sent += 1

        self.session.commit()
        return sent

    def process_due_deletions(self, today: Optional[date] = None) -> List[Tuple[ScheduledDeletion, DeletionReport]]:
        """Execute every due deletion; one failing deletion does not stop the others."""
        reports = []
        for deletion in self.find_due_deletions(today):
            try:
                reports.append((deletion, self.execute_deletion(deletion)))
            except Exception as e:
                logger.error(f"Deletion {deletion.id} aborted: {e}")
                self.session.rollback()
                deletion.status = DeletionStatus.FAILED.value
                self.session.commit()
        return reports

    # -- Execution ---------------------------------------------------------------

    def execute_deletion(self, deletion: ScheduledDeletion) -> DeletionReport:
        if deletion.status not in EXECUTABLE_FROM:
            raise DeletionNotAllowedError(f"Deletion {deletion.id} cannot run from '{deletion.status}'")

        deletion.status = DeletionStatus.EXECUTING.value
        self.session.commit()

        report = DeletionReport(started_at=self.now())
        outcomes: List[Outcome] = []
        # Shared by every item of the run
        seen: Set[int] = set()
        freed: Set[Tuple[int, int]] = set()

        for item in deletion.items:
            item_report = DeletionItemReport(item_id=item.id, movie=item.movie.title if item.movie else None)
            try:
                with self.session.begin_nested():
                    outcome = self._execute_item(deletion, item, item_report, seen, freed)
            except Exception as e:
                logger.error(f"Deletion item {item.id} failed: {e}")
                item_report.errors.append(str(e))
                outcome = Failed(list(item_report.errors))

            status = item_status(outcome)
            item.status = status.value
            item.error_message = "; ".join(item_report.errors) or None

            item_report.status = status.value
            report.items.append(item_report)
            report.success_count += item_report.files_deleted
            report.failed_count += item_report.files_failed
            report.space_freed_bytes += item_report.space_freed_bytes
            outcomes.append(outcome)

        final = run_status(outcomes)
        report.finished_at = self.now()
        deletion.status = final.value
        deletion.executed_at = report.finished_at
        deletion.execution_report = report.model_dump(mode="json")

        self._log("scheduled_deletion.executed", deletion, {
            "success": report.success_count,
            "failed": report.failed_count,
            "total_items": len(deletion.items),
        })
        self.session.commit()

        if final == DeletionStatus.COMPLETED:
            self._notify("deletion_completed", deletion, report)
        else:
            self._notify("deletion_failed", deletion, report)

        logger.info(
            f"Deletion {deletion.id} {final.value}: {report.success_count} deleted, "
            f"{report.failed_count} failed, {report.space_freed_bytes} bytes freed"
        )
        return report

    def _execute_item(
        self,
        deletion: ScheduledDeletion,
        item: ScheduledDeletionItem,
        item_report: DeletionItemReport,
        seen: Set[int],
        freed: Set[Tuple[int, int]],
    ) -> Outcome:
        """
        Delete the item's files, then dereference its movie.

        Only file errors decide the outcome; Radarr errors are reported on
        the item without failing it.
        """
        file_errors: List[str] = []

        if deletion.delete_physical_files:
            for file_id in item.media_file_ids or []:
                files = self._collect_with_siblings(file_id, seen)
                if files is None:
                    file_errors.append(f"Media file {file_id} not found")
                    item_report.files_failed += 1
                    continue
                for media_file in files:
                    error = self._delete_file(media_file, item_report, freed)
                    if error:
                        file_errors.append(error)

        item_report.errors.extend(file_errors)

        movie = item.movie
        if movie is not None:
            self._handle_radarr(deletion, movie, item_report)

        # Media-player dereference is not implemented
        item_report.media_player_dereferenced = False

        if not file_errors:
            return Deleted()
        if item_report.files_deleted > 0:
            return PartiallyFailed(file_errors)
        return Failed(file_errors)

    def _collect_with_siblings(self, file_id: int, seen: Set[int]) -> Optional[List[MediaFile]]:
        """
        The file plus every hardlink of it on other volumes, minus files
        already handled in this run. None when the file row does not exist.
        """
        if file_id in seen:
            return []
        seen.add(file_id)

        media_file = self.session.get(MediaFile, file_id)
        if media_file is None:
            return None

        files = [media_file]
        if media_file.inode is not None and media_file.device_id is not None:
            siblings = (
                self.session.query(MediaFile)
                .filter(
                    MediaFile.device_id == media_file.device_id,
                    MediaFile.inode == media_file.inode,
                    MediaFile.id != media_file.id,
                )
                .order_by(MediaFile.id)
                .all()
            )
            for sibling in siblings:
                if sibling.id not in seen:
                    seen.add(sibling.id)
                    files.append(sibling)
        return files

    def _delete_file(
        self,
        media_file: MediaFile,
        item_report: DeletionItemReport,
        freed: Set[Tuple[int, int]],
    ) -> Optional[str]:
        path = media_file.absolute_path
        try:
            self.filesystem.unlink(path)
        except OSError as e:
            logger.error(f"Failed to delete {path}: {e}")
            item_report.files_failed += 1
            return f"Failed to delete {path}: {e}"

        item_report.files_deleted += 1
        # Hardlinks share their blocks; count them once
        if media_file.inode is None or media_file.device_id is None:
            item_report.space_freed_bytes += media_file.file_size_bytes or 0
        elif (media_file.device_id, media_file.inode) not in freed:
            freed.add((media_file.device_id, media_file.inode))
            item_report.space_freed_bytes += media_file.file_size_bytes or 0

        self.session.delete(media_file)
        self.session.flush()
        return None

    def _handle_radarr(self, deletion: ScheduledDeletion, movie: Movie, item_report: DeletionItemReport) -> None:
        if movie.radarr_id is None or movie.radarr_instance is None:
            return

        if deletion.delete_radarr_reference:
            try:
                self.radarr_factory(movie.radarr_instance).dereference(
                    movie.radarr_id, delete_files=False, add_exclusion=False
                )
                item_report.radarr_dereferenced = True
            except ExternalServiceError as e:
                item_report.errors.append(f"Radarr dereference failed: {e}")
        elif deletion.disable_radarr_auto_search:
            try:
                self.radarr_factory(movie.radarr_instance).update_monitoring(movie.radarr_id, False)
                movie.radarr_monitored = False
            except ExternalServiceError as e:
                item_report.errors.append(f"Disabling Radarr auto-search failed: {e}")

    # -- Hardlink replacement ------------------------------------------------------

    def start_replacement(self, deletion: ScheduledDeletion, replacements: Dict[int, int]) -> bool:
        """
        Ask the watcher to relink media-player files before deleting.

        ``replacements`` maps the served file id to its replacement file id.
        Returns True when every request was accepted.
        """
        if self.selector is None:
            raise DeletionNotAllowedError("No hardlink agent configured")
        if deletion.status not in EXECUTABLE_FROM:
            raise DeletionNotAllowedError(f"Deletion {deletion.id} cannot run from '{deletion.status}'")

        all_accepted = True
        for current_id, replacement_id in replacements.items():
            current = self.session.get(MediaFile, current_id)
            if current is None:
                raise EntityNotFoundError("MediaFile", current_id)
            replacement = self.session.get(MediaFile, replacement_id)
            if replacement is None:
                raise EntityNotFoundError("MediaFile", replacement_id)

            if not self.selector.request_replacement(deletion.id, current, replacement):
                all_accepted = False

        deletion.status = (DeletionStatus.EXECUTING if all_accepted else DeletionStatus.WAITING_WATCHER).value
        self.session.commit()
        return all_accepted

    def complete_replacement(
        self,
        deletion_id: int,
        succeeded: bool,
        target_path: Optional[str] = None,
        error: Optional[str] = None,
    ) -> DeletionReport:
        """Continue a deletion once the watcher reports the relink result."""
        deletion = self.session.get(ScheduledDeletion, deletion_id)
        if deletion is None:
            raise EntityNotFoundError("ScheduledDeletion", deletion_id)

        if not succeeded:
            now = self.now()
            report = DeletionReport(
                started_at=now,
                finished_at=now,
                error=f"Hardlink creation failed: {error or 'unknown error'}",
            )
            logger.error(f"Hardlink replacement failed for deletion {deletion_id}: {error}")
            deletion.status = DeletionStatus.FAILED.value
            deletion.execution_report = report.model_dump(mode="json")
            self.session.commit()
            self._notify("deletion_failed", deletion, report)
            return report

        if target_path:
            self._register_player_file(target_path)

        for item in deletion.items:
            movie = item.movie
            if movie is None or movie.radarr_id is None or movie.radarr_instance is None:
                continue
            try:
                self.radarr_factory(movie.radarr_instance).rescan_movie(movie.radarr_id)
            except ExternalServiceError as e:
                logger.warning(f"Radarr rescan failed after hardlink: {e}")

        return self.execute_deletion(deletion)

    def _register_player_file(self, target_path: str) -> Optional[MediaFile]:
        volumes = active_volumes(self.session)
        mappings = path_remapper.build_mappings([v.root for v in volumes], volumes)
        resolved = path_remapper.resolve(target_path, mappings)
        if resolved is None:
            logger.warning(f"No volume holds hardlink target {target_path}")
            return None

        volume, relative_path = resolved
        media_file = self.session.query(MediaFile).filter_by(volume_id=volume.id, file_path=relative_path).first()
        if media_file is None:
            media_file = MediaFile(
                volume=volume,
                file_path=relative_path,
                file_name=PurePosixPath(relative_path).name,
            )
            self.session.add(media_file)
        media_file.is_linked_media_player = True
        self.session.flush()
        return media_file

    # -- Helpers -------------------------------------------------------------------

    def _log(self, action: str, deletion: ScheduledDeletion, details: dict) -> None:
        self.session.add(ActivityLog(
            user=deletion.created_by,
            action=action,
            entity_type="scheduled_deletion",
            entity_id=deletion.id,
            details=details,
        ))

    def _notify(self, event: str, *args) -> None:
        try:
            getattr(self.notifier, event)(*args)
        except Exception as e:
            logger.warning(f"Notification {event} failed: {e}")
