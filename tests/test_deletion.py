"""Tests for scheduled deletion execution."""

from datetime import date
import os
from unittest.mock import Mock

import pytest

from reclaim_arr.core.deletion import (
    RE_ACQUISITION_WARNING,
    Deleted,
    DeletionService,
    Failed,
    PartiallyFailed,
    deletion_warning,
    item_status,
    run_status,
)
from reclaim_arr.core.filesystem import stat_file
from reclaim_arr.db.models import (
    ActivityLog,
    DeletionStatus,
    ItemStatus,
    MediaFile,
    MovieFile,
    ScheduledDeletion,
    Volume,
)
from reclaim_arr.exceptions import DeletionNotAllowedError, EntityNotFoundError, ExternalServiceError

from conftest import FIXED_NOW


@pytest.fixture
def notifier():
    return Mock()


@pytest.fixture
def selector():
    selector = Mock()
    selector.request_replacement.return_value = True
    return selector


@pytest.fixture
def service(session, radarr_factory, notifier, selector):
    return DeletionService(session, radarr_factory, notifier=notifier, selector=selector, now=lambda: FIXED_NOW)


@pytest.fixture
def on_disk(tmp_path, make_volume, make_media_file):
    """Create a real file inside a tmp_path volume."""
    volume = make_volume(str(tmp_path), name="disk")

    def factory(relative_path, size):
        path = tmp_path / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"x")
        return make_media_file(volume, relative_path, size=size)

    factory.volume = volume
    return factory


def test_partial_success_marks_item_deleted_and_run_failed(session, service, tmp_path, on_disk, make_movie, link):
    movie = make_movie("Inception", 2010)
    f1 = on_disk("Inception (2010)/Inception.mkv", size=1_500_000_000)
    link(movie, f1)
    deletion = service.schedule_deletion([movie.id], date(2026, 3, 15), media_file_ids={movie.id: [f1.id, 9999]})

    report = service.execute_deletion(deletion)

    item = report.items[0]
    assert item.files_deleted == 1
    assert item.files_failed == 1
    assert item.space_freed_bytes == 1_500_000_000
    assert item.status == "deleted"
    assert item.errors == ["Media file 9999 not found"]
    assert deletion.status == "failed"
    assert deletion.items[0].status == ItemStatus.DELETED.value
    assert not (tmp_path / "Inception (2010)/Inception.mkv").exists()
    assert session.query(MediaFile).count() == 0
    assert session.query(MovieFile).count() == 0


def test_all_files_deleted_completes_run(session, service, notifier, on_disk, make_movie, link):
    movie = make_movie("Heat", 1995)
    link(movie, on_disk("Heat.mkv", size=100))
    link(movie, on_disk("Heat.2160p.mkv", size=300))
    deletion = service.schedule_deletion([movie.id], date(2026, 3, 15), created_by="alice")

    report = service.execute_deletion(deletion)

    assert deletion.status == DeletionStatus.COMPLETED.value
    assert report.success_count == 2
    assert report.failed_count == 0
    assert report.space_freed_bytes == 400
    assert deletion.executed_at == FIXED_NOW
    assert deletion.execution_report["success_count"] == 2
    notifier.deletion_completed.assert_called_once()

    executed = session.query(ActivityLog).filter_by(action="scheduled_deletion.executed").one()
    assert executed.details == {"success": 2, "failed": 0, "total_items": 1}
    assert executed.user == "alice"


def test_already_missing_file_still_counts_as_deleted(session, service, on_disk, make_media_file, make_movie, link):
    movie = make_movie("Ghost", 1990)
    ghost = make_media_file(on_disk.volume, "Ghost.mkv", size=42)
    link(movie, ghost)
    deletion = service.schedule_deletion([movie.id], date(2026, 3, 15))

    report = service.execute_deletion(deletion)

    assert report.items[0].files_deleted == 1
    assert report.space_freed_bytes == 42
    assert deletion.status == "completed"


def test_unlink_error_keeps_row_and_fails_item(
    session, radarr_factory, notifier, make_volume, make_media_file, make_movie, link
):
    filesystem = Mock()
    filesystem.unlink.side_effect = PermissionError(13, "Permission denied")
    service = DeletionService(session, radarr_factory, filesystem=filesystem, notifier=notifier,
                              now=lambda: FIXED_NOW)
    movie = make_movie("Heat", 1995)
    media_file = make_media_file(make_volume("/data/movies"), "Heat.mkv")
    link(movie, media_file)
    deletion = service.schedule_deletion([movie.id], date(2026, 3, 15))

    report = service.execute_deletion(deletion)

    assert report.items[0].status == "failed"
    assert "Permission denied" in report.items[0].errors[0]
    assert deletion.status == "failed"
    assert session.get(MediaFile, media_file.id) is not None
    filesystem.unlink.assert_called_once_with("/data/movies/Heat.mkv")
    notifier.deletion_failed.assert_called_once()


def test_one_failing_item_does_not_stop_the_others(
    session, service, radarr_client, radarr_instance, on_disk, make_movie, link
):
    broken = make_movie("Broken", 2001, radarr_id=1, radarr_instance_id=radarr_instance.id)
    fine = make_movie("Fine", 2002)
    link(broken, on_disk("Broken.mkv", size=1))
    link(fine, on_disk("Fine.mkv", size=2))
    radarr_client.dereference.side_effect = RuntimeError("boom")
    deletion = service.schedule_deletion([broken.id, fine.id], date(2026, 3, 15), delete_radarr_reference=True)

    report = service.execute_deletion(deletion)

    assert [i.status for i in report.items] == ["failed", "deleted"]
    assert report.items[0].errors == ["boom"]
    assert report.items[1].files_deleted == 1


def test_radarr_failure_is_reported_without_failing_the_run(
    session, service, radarr_client, radarr_instance, on_disk, make_movie, link
):
    movie = make_movie("Heat", 1995, radarr_id=7, radarr_instance_id=radarr_instance.id)
    link(movie, on_disk("Heat.mkv", size=10))
    radarr_client.dereference.side_effect = ExternalServiceError("radarr", "503")
    deletion = service.schedule_deletion([movie.id], date(2026, 3, 15), delete_radarr_reference=True)

    report = service.execute_deletion(deletion)

    item = report.items[0]
    assert item.status == "deleted"
    assert item.radarr_dereferenced is False
    assert item.errors[0].startswith("Radarr dereference failed")
    assert deletion.status == "completed"
    assert deletion.items[0].error_message.startswith("Radarr dereference failed")
    assert report.success_count == 1


def test_file_shared_by_two_movies_is_deleted_once(session, service, on_disk, make_movie, link):
    first = make_movie("Alien", 1979)
    second = make_movie("Alien Director's Cut", 1979)
    shared = on_disk("Alien.mkv", size=50)
    link(first, shared)
    link(second, shared)
    deletion = service.schedule_deletion([first.id, second.id], date(2026, 3, 15))

    report = service.execute_deletion(deletion)

    assert [i.status for i in report.items] == ["deleted", "deleted"]
    assert [i.errors for i in report.items] == [[], []]
    assert report.success_count == 1
    assert report.space_freed_bytes == 50
    assert deletion.status == "completed"


def test_repeated_file_id_is_handled_once(session, service, on_disk, make_movie, link):
    movie = make_movie("Heat", 1995)
    media_file = on_disk("Heat.mkv", size=10)
    link(movie, media_file)
    deletion = service.schedule_deletion(
        [movie.id], date(2026, 3, 15), media_file_ids={movie.id: [media_file.id, media_file.id]}
    )

    report = service.execute_deletion(deletion)

    assert report.items[0].files_deleted == 1
    assert report.items[0].files_failed == 0
    assert deletion.status == "completed"


def test_hardlinks_on_other_volumes_are_deleted_too(
    session, service, tmp_path, make_volume, make_media_file, make_movie, link
):
    (tmp_path / "movies").mkdir()
    (tmp_path / "seeds").mkdir()
    library = make_volume(str(tmp_path / "movies"), name="movies")
    seeds = make_volume(str(tmp_path / "seeds"), name="seeds")
    original = tmp_path / "movies" / "Heat.mkv"
    original.write_bytes(b"x" * 10)
    os.link(original, tmp_path / "seeds" / "Heat.mkv")
    stat = stat_file(original)
    served = make_media_file(library, "Heat.mkv", size=10, inode=stat.inode, device_id=stat.device_id)
    make_media_file(seeds, "Heat.mkv", size=10, inode=stat.inode, device_id=stat.device_id)
    movie = make_movie("Heat", 1995)
    link(movie, served)
    deletion = service.schedule_deletion([movie.id], date(2026, 3, 15))

    report = service.execute_deletion(deletion)

    assert report.success_count == 2
    assert report.space_freed_bytes == 10
    assert not original.exists()
    assert not (tmp_path / "seeds" / "Heat.mkv").exists()
    assert session.query(MediaFile).count() == 0
    assert deletion.status == "completed"


def test_database_error_rolls_back_only_that_item(
    session, radarr_factory, notifier, make_volume, make_media_file, make_movie, link
):
    volume = make_volume("/data/movies")

    def unlink(path):
        if path.endswith("/Broken.mkv"):
            session.add(Volume(name="clash", path="/data/movies", host_path="/data/movies"))
            session.flush()
        return True

    filesystem = Mock()
    filesystem.unlink.side_effect = unlink
    service = DeletionService(session, radarr_factory, filesystem=filesystem, notifier=notifier,
                              now=lambda: FIXED_NOW)
    broken = make_movie("Broken", 2001)
    fine = make_movie("Fine", 2002)
    sample = make_media_file(volume, "Broken.sample.mkv")
    main = make_media_file(volume, "Broken.mkv")
    link(broken, sample)
    link(broken, main)
    link(fine, make_media_file(volume, "Fine.mkv"))
    deletion = service.schedule_deletion(
        [broken.id, fine.id], date(2026, 3, 15), media_file_ids={broken.id: [sample.id, main.id]}
    )

    report = service.execute_deletion(deletion)

    assert [i.status for i in report.items] == ["failed", "deleted"]
    assert report.items[0].errors
    assert deletion.status == "failed"
    assert session.get(MediaFile, sample.id) is not None
    assert session.get(MediaFile, main.id) is not None
    assert session.query(MediaFile).filter_by(file_path="Fine.mkv").count() == 0
    assert session.query(Volume).count() == 1
    assert session.query(ActivityLog).filter_by(action="scheduled_deletion.executed").count() == 1
    notifier.deletion_failed.assert_called_once()


def test_radarr_dereference_and_unmonitor(session, service, radarr_client, radarr_instance, on_disk, make_movie, link):
    removed = make_movie("Removed", 2000, radarr_id=1, radarr_instance_id=radarr_instance.id)
    link(removed, on_disk("Removed.mkv", size=1))
    first = service.schedule_deletion([removed.id], date(2026, 3, 15), delete_radarr_reference=True)
    assert service.execute_deletion(first).items[0].radarr_dereferenced
    radarr_client.dereference.assert_called_once_with(1, delete_files=False, add_exclusion=False)

    kept = make_movie("Kept", 2000, radarr_id=2, radarr_instance_id=radarr_instance.id)
    link(kept, on_disk("Kept.mkv", size=1))
    second = service.schedule_deletion([kept.id], date(2026, 3, 15), disable_radarr_auto_search=True)
    service.execute_deletion(second)
    radarr_client.update_monitoring.assert_called_once_with(2, False)
    assert kept.radarr_monitored is False


def test_keep_files_leaves_disk_alone(session, service, tmp_path, on_disk, make_movie, link):
    movie = make_movie("Heat", 1995)
    link(movie, on_disk("Heat.mkv", size=10))
    deletion = service.schedule_deletion([movie.id], date(2026, 3, 15), delete_physical_files=False)

    report = service.execute_deletion(deletion)

    assert report.success_count == 0
    assert (tmp_path / "Heat.mkv").exists()
    assert deletion.status == "completed"


@pytest.mark.parametrize("status", ["completed", "failed", "cancelled"])
def test_finished_deletions_cannot_run_again(session, service, make_movie, status):
    movie = make_movie("Heat", 1995)
    deletion = service.schedule_deletion([movie.id], date(2026, 3, 15))
    deletion.status = status

    with pytest.raises(DeletionNotAllowedError):
        service.execute_deletion(deletion)


def test_schedule_rejects_protected_and_unknown(session, service, make_volume, make_media_file, make_movie, link):
    protected = make_movie("Keep Me", 2000, is_protected=True)
    with pytest.raises(DeletionNotAllowedError):
        service.schedule_deletion([protected.id], date(2026, 3, 15))

    movie = make_movie("Heat", 1995)
    link(movie, make_media_file(make_volume("/data/movies"), "Heat.mkv", is_protected=True))
    with pytest.raises(DeletionNotAllowedError):
        service.schedule_deletion([movie.id], date(2026, 3, 15))

    with pytest.raises(EntityNotFoundError):
        service.schedule_deletion([4242], date(2026, 3, 15))


def test_cancel_only_before_execution(session, service, make_movie):
    movie = make_movie("Heat", 1995)
    deletion = service.schedule_deletion([movie.id], date(2026, 3, 20))

    service.cancel(deletion)
    assert deletion.status == "cancelled"
    assert session.query(ActivityLog).filter_by(action="scheduled_deletion.cancelled").count() == 1

    with pytest.raises(DeletionNotAllowedError):
        service.cancel(deletion)


def test_re_acquisition_warning(session, service, radarr_instance, make_movie):
    monitored = make_movie("Heat", 1995, radarr_id=7, radarr_instance_id=radarr_instance.id, radarr_monitored=True)
    plain = service.schedule_deletion([monitored.id], date(2026, 3, 20))
    unmonitor = service.schedule_deletion([monitored.id], date(2026, 3, 20), disable_radarr_auto_search=True)
    local_only = make_movie("Local", 2000)

    assert deletion_warning(plain, monitored) == RE_ACQUISITION_WARNING
    assert deletion_warning(unmonitor, monitored) is None
    assert deletion_warning(plain, local_only) is None


def test_reminders_sent_once_inside_window(session, service, notifier, make_movie):
    movie = make_movie("Heat", 1995)
    soon = service.schedule_deletion([movie.id], date(2026, 3, 17), reminder_days_before=3)
    later = service.schedule_deletion([movie.id], date(2026, 3, 30), reminder_days_before=3)

    assert service.send_reminders(date(2026, 3, 15)) == 1
    assert service.send_reminders(date(2026, 3, 15)) == 0
    assert soon.status == DeletionStatus.REMINDER_SENT.value
    assert later.status == DeletionStatus.PENDING.value
    notifier.deletion_reminder.assert_called_once_with(soon)


def test_process_due_runs_only_due_deletions(session, service, on_disk, make_movie, link):
    due_movie = make_movie("Due", 2000)
    link(due_movie, on_disk("Due.mkv", size=5))
    future_movie = make_movie("Future", 2000)
    due = service.schedule_deletion([due_movie.id], date(2026, 3, 14))
    future = service.schedule_deletion([future_movie.id], date(2026, 4, 1))

    results = service.process_due_deletions(date(2026, 3, 15))

    assert [d.id for d, _ in results] == [due.id]
    assert due.status == "completed"
    assert future.status == "pending"


def test_process_due_isolates_aborted_deletions(session, service, notifier, on_disk, make_movie, link):
    first_movie = make_movie("First", 2000)
    second_movie = make_movie("Second", 2000)
    link(second_movie, on_disk("Second.mkv", size=5))
    first = service.schedule_deletion([first_movie.id], date(2026, 3, 14))
    second = service.schedule_deletion([second_movie.id], date(2026, 3, 14))
    session.commit()

    original = service.execute_deletion

    def flaky(deletion):
        if deletion.id == first.id:
            raise RuntimeError("database went away")
        return original(deletion)

    service.execute_deletion = flaky
    results = service.process_due_deletions(date(2026, 3, 15))

    assert [d.id for d, _ in results] == [second.id]
    assert session.get(ScheduledDeletion, first.id).status == "failed"
    assert second.status == "completed"


def test_start_replacement_moves_to_executing_or_waiting(session, service, selector, on_disk, make_movie, link):
    movie = make_movie("Heat", 1995)
    served = on_disk("Heat (1995)/Heat.720p.mkv", size=1)
    better = on_disk("Heat (1995)/Heat.2160p.mkv", size=2)
    link(movie, served)
    link(movie, better)
    deletion = service.schedule_deletion([movie.id], date(2026, 3, 15), media_file_ids={movie.id: [served.id]})

    assert service.start_replacement(deletion, {served.id: better.id}) is True
    assert deletion.status == DeletionStatus.EXECUTING.value
    selector.request_replacement.assert_called_once_with(deletion.id, served, better)

    other = service.schedule_deletion([movie.id], date(2026, 3, 15), media_file_ids={movie.id: [served.id]})
    selector.request_replacement.return_value = False
    assert service.start_replacement(other, {served.id: better.id}) is False
    assert other.status == DeletionStatus.WAITING_WATCHER.value


def test_start_replacement_requires_agent(session, radarr_factory, make_movie):
    service = DeletionService(session, radarr_factory, now=lambda: FIXED_NOW)
    movie = make_movie("Heat", 1995)
    deletion = service.schedule_deletion([movie.id], date(2026, 3, 15))

    with pytest.raises(DeletionNotAllowedError):
        service.start_replacement(deletion, {})


def test_failed_replacement_fails_deletion(session, service, notifier, make_movie):
    movie = make_movie("Heat", 1995)
    deletion = service.schedule_deletion([movie.id], date(2026, 3, 15))
    deletion.status = DeletionStatus.WAITING_WATCHER.value

    report = service.complete_replacement(deletion.id, succeeded=False, error="cross-device link")

    assert deletion.status == "failed"
    assert report.error == "Hardlink creation failed: cross-device link"
    assert deletion.execution_report["error"] == report.error
    notifier.deletion_failed.assert_called_once()


def test_successful_replacement_registers_target_and_executes(
    session, service, radarr_client, radarr_instance, tmp_path, on_disk, make_movie, link
):
    movie = make_movie("Heat", 1995, radarr_id=7, radarr_instance_id=radarr_instance.id)
    served = on_disk("Heat (1995)/Heat.720p.mkv", size=700)
    link(movie, served)
    deletion = service.schedule_deletion([movie.id], date(2026, 3, 15), media_file_ids={movie.id: [served.id]})
    deletion.status = DeletionStatus.WAITING_WATCHER.value

    report = service.complete_replacement(
        deletion.id, succeeded=True, target_path=f"{tmp_path}/Heat (1995)/Heat.2160p.mkv"
    )

    registered = session.query(MediaFile).filter_by(file_path="Heat (1995)/Heat.2160p.mkv").one()
    assert registered.is_linked_media_player
    radarr_client.rescan_movie.assert_called_once_with(7)
    assert report.success_count == 1
    assert deletion.status == "completed"


def test_complete_replacement_unknown_deletion(service):
    with pytest.raises(EntityNotFoundError):
        service.complete_replacement(404, succeeded=True)


def test_status_derivation():
    assert item_status(Deleted()) == ItemStatus.DELETED
    assert item_status(PartiallyFailed(["x"])) == ItemStatus.DELETED
    assert item_status(Failed(["x"])) == ItemStatus.FAILED
    assert run_status([Deleted(), Deleted()]) == DeletionStatus.COMPLETED
    assert run_status([Deleted(), PartiallyFailed(["x"])]) == DeletionStatus.FAILED
    assert run_status([]) == DeletionStatus.COMPLETED
