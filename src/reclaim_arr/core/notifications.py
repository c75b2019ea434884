"""Notification sink for deletion events."""

import logging
from typing import Optional

from reclaim_arr.core.models import DeletionReport
from reclaim_arr.db.models import ScheduledDeletion

logger = logging.getLogger(__name__)


class NotificationSink:
    """Receives deletion lifecycle events. Implementations must not raise."""

    def deletion_completed(self, deletion: ScheduledDeletion, report: DeletionReport) -> None:
        pass

    def deletion_failed(self, deletion: ScheduledDeletion, report: Optional[DeletionReport]) -> None:
        pass

    def deletion_reminder(self, deletion: ScheduledDeletion) -> None:
        pass


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the log."""

    def deletion_completed(self, deletion: ScheduledDeletion, report: DeletionReport) -> None:
        logger.info(
            f"Deletion {deletion.id} completed: {report.success_count} file(s) deleted, "
            f"{report.space_freed_bytes} bytes freed"
        )

    def deletion_failed(self, deletion: ScheduledDeletion, report: Optional[DeletionReport]) -> None:
        if report is None:
            logger.warning(f"Deletion {deletion.id} failed")
            return
        logger.warning(
            f"Deletion {deletion.id} failed: {report.success_count} deleted, {report.failed_count} failed"
        )

    def deletion_reminder(self, deletion: ScheduledDeletion) -> None:
        logger.info(f"Deletion {deletion.id} is scheduled for {deletion.scheduled_date}")
