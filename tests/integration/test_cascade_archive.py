from datetime import date, datetime, timezone

import pytest

from castline.core.batching import BatchWriter
from castline.core.cascade import CascadeArchiver
from castline.errors import CascadeIncomplete, NotFound

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _archiver(store, settings, **kwargs) -> CascadeArchiver:
    return CascadeArchiver(store, settings=settings, clock=lambda: FIXED_NOW, **kwargs)


def test_cascade_archives_project_and_all_dependents(store, seed, settings) -> None:
    seed.project("p1", status="booked")
    seed.role("r1")
    seed.role("r2", name="Stand-in")
    seed.booking("b1", "r1")
    seed.submission("s1", "r1", status="booked")
    seed.submission("s2", "r2", status="pinned")

    result = _archiver(store, settings).archive_project("p1", "coordinator-1")

    assert result.complete
    assert {name: outcome.succeeded for name, outcome in result.classes.items()} == {
        "projects": 1,
        "roles": 2,
        "bookings": 1,
        "submissions": 2,
    }

    project = store.get("projects", "p1")
    assert project["status"] == "archived"
    assert project["archivedBy"] == "coordinator-1"
    assert project["archivedAt"] == FIXED_NOW.isoformat()

    assert store.get("roles", "r1")["archivedWithProject"] is True
    assert store.get("bookings", "b1")["status"] == "completed"
    assert store.get("bookings", "b1")["archivedWithProject"] is True
    for submission_id in ("s1", "s2"):
        submission = store.get("submissions", submission_id)
        assert submission["status"] == "archived"
        assert submission["archivedWithProject"] is True


def test_cascade_leaves_other_projects_untouched(store, seed, settings) -> None:
    seed.project("p1")
    seed.project("p2", status="booking")
    seed.role("r1")
    seed.role("r9", project_id="p2")
    seed.submission("s1", "r1")
    seed.submission("s9", "r9", project_id="p2", status="pinned")
    seed.booking("b9", "r9", project_id="p2")

    _archiver(store, settings).archive_project("p1", "coordinator-1")

    assert store.get("projects", "p2")["status"] == "booking"
    assert "archivedWithProject" not in store.get("roles", "r9")
    assert store.get("submissions", "s9")["status"] == "pinned"
    assert store.get("bookings", "b9")["status"] == "confirmed"


def test_project_batch_commits_before_dependents(store, seed, settings) -> None:
    seed.project("p1")
    seed.role("r1")
    for index in range(1200):
        seed.submission(f"s{index:04d}", "r1")

    result = _archiver(store, settings).archive_project("p1", "coordinator-1")

    assert result.complete
    assert store.batch_log == [1, 1, 500, 500, 200]
    assert result.classes["submissions"].batches == 3


def test_failed_submission_batch_reports_partial_progress(store, seed, settings, flaky) -> None:
    seed.project("p1")
    for index in range(1200):
        seed.submission(f"s{index:04d}", "r1")

    wrapped = flaky(lambda batch: batch[0].doc_id == "s0500")
    writer = BatchWriter(wrapped, settings=settings, sleep=lambda _: None)
    result = _archiver(wrapped, settings, writer=writer).archive_project("p1", "coordinator-1")

    assert not result.complete
    submissions = result.classes["submissions"]
    assert (submissions.succeeded, submissions.failed) == (500, 700)
    assert result.first_error.startswith("submissions:")
    assert store.batch_log == [1, 500]
    assert store.get("projects", "p1")["status"] == "archived"
    assert store.get("submissions", "s0499")["status"] == "archived"
    assert store.get("submissions", "s0500")["status"] is None

    with pytest.raises(CascadeIncomplete) as excinfo:
        result.raise_for_incomplete()
    assert excinfo.value.entity_class == "submissions"
    assert excinfo.value.succeeded == 500
    assert excinfo.value.failed == 700


def test_failed_class_does_not_stop_later_classes(store, seed, settings, flaky) -> None:
    seed.project("p1")
    seed.role("r1")
    seed.booking("b1", "r1")
    seed.submission("s1", "r1")

    wrapped = flaky(lambda batch: batch[0].collection == "bookings")
    writer = BatchWriter(wrapped, settings=settings, sleep=lambda _: None)
    result = _archiver(wrapped, settings, writer=writer).archive_project("p1", "coordinator-1")

    assert result.classes["bookings"].failed == 1
    assert result.classes["submissions"].complete
    assert store.get("submissions", "s1")["status"] == "archived"
    assert [failure.entity_class for failure in result.incomplete()] == ["bookings"]


def test_failed_project_write_stops_cascade(store, seed, settings, flaky) -> None:
    seed.project("p1")
    seed.role("r1")

    wrapped = flaky(lambda batch: batch[0].collection == "projects")
    writer = BatchWriter(wrapped, settings=settings, sleep=lambda _: None)
    result = _archiver(wrapped, settings, writer=writer).archive_project("p1", "coordinator-1")

    assert not result.complete
    assert list(result.classes) == ["projects"]
    assert "archivedWithProject" not in store.get("roles", "r1")


def test_rerun_after_partial_failure_finishes_dependents(store, seed, settings, flaky) -> None:
    seed.project("p1")
    seed.role("r1")
    for index in range(600):
        seed.submission(f"s{index:04d}", "r1")

    wrapped = flaky(lambda batch: batch[0].doc_id == "s0500")
    writer = BatchWriter(wrapped, settings=settings, sleep=lambda _: None)
    first = _archiver(wrapped, settings, writer=writer).archive_project("p1", "coordinator-1")
    assert not first.complete

    second = _archiver(store, settings).archive_project("p1", "coordinator-1")

    assert second.already_archived
    assert second.complete
    assert list(second.classes) == ["submissions"]
    assert second.classes["submissions"].total == 100
    assert all(data["status"] == "archived" for _, data in store.query("submissions", projectId="p1"))


def test_archiving_twice_is_a_no_op(store, seed, settings) -> None:
    seed.project("p1")
    seed.role("r1")
    seed.booking("b1", "r1")
    seed.submission("s1", "r1")
    archiver = _archiver(store, settings)

    archiver.archive_project("p1", "coordinator-1")
    log = list(store.batch_log)
    again = archiver.archive_project("p1", "coordinator-2")

    assert again.already_archived
    assert again.complete
    assert again.classes == {}
    assert store.batch_log == log
    assert store.get("projects", "p1")["archivedBy"] == "coordinator-1"


def test_missing_project_raises(store, settings) -> None:
    with pytest.raises(NotFound):
        _archiver(store, settings).archive_project("nope", "coordinator-1")


def test_project_still_casting_can_be_archived(store, seed, settings) -> None:
    seed.project("p1", status="booking")
    result = _archiver(store, settings).archive_project("p1", "coordinator-1")
    assert result.complete
    assert store.get("projects", "p1")["status"] == "archived"


def test_individually_archived_role_moves_to_project_archive(store, seed, settings) -> None:
    seed.project("p1")
    seed.role("r1", archivedIndividually=True, archiveReason="cut from script")
    seed.submission("s1", "r1", status="archived", archivedIndividually=True)

    _archiver(store, settings).archive_project("p1", "coordinator-1")

    role = store.get("roles", "r1")
    assert role["archivedWithProject"] is True
    assert role["archivedIndividually"] is False
    assert store.get("submissions", "s1")["archivedIndividually"] is False


def test_cancel_before_dependents_marks_remaining_classes(store, seed, settings) -> None:
    seed.project("p1")
    seed.role("r1")
    seed.submission("s1", "r1")

    class AfterFirstBatch:
        def is_set(self) -> bool:
            return bool(store.batch_log)

    result = _archiver(store, settings).archive_project("p1", "coordinator-1", cancel=AfterFirstBatch())

    assert result.cancelled
    assert not result.complete
    assert result.classes["submissions"].total == 1
    assert result.classes["submissions"].succeeded == 0
    assert store.get("submissions", "s1")["status"] is None


def test_find_stale_projects_uses_shoot_end_threshold(store, seed, settings) -> None:
    seed.project("old-booked", status="booked", shootDateEnd="2026-01-10")
    seed.project("old-booking", status="booking", shootDateEnd="2026-01-30")
    seed.project("recent", status="booked", shootDateEnd="2026-02-20")
    seed.project("done", status="archived", shootDateEnd="2025-06-01")
    seed.project("undated", status="booked", shootDateEnd=None)

    threshold, candidates = _archiver(store, settings).find_stale_projects(30, today=date(2026, 3, 1))

    assert threshold == "2026-01-30"
    assert sorted(item.id for item in candidates) == ["old-booked"]


def test_stale_sweep_dry_run_writes_nothing(store, seed, settings) -> None:
    seed.project("p1", shootDateEnd="2025-12-01")

    sweep = _archiver(store, settings).archive_stale_projects(dry_run=True, today=date(2026, 3, 1))

    assert [item.id for item in sweep.candidates] == ["p1"]
    assert sweep.results == []
    assert store.batch_log == []


def test_stale_sweep_archives_with_migration_actor(store, seed, settings) -> None:
    seed.project("p1", shootDateEnd="2025-12-01")
    seed.project("p2", shootDateEnd="2025-12-15")
    seed.booking("b1", "r1")

    sweep = _archiver(store, settings).archive_stale_projects(today=date(2026, 3, 1))

    assert sweep.archived == 2
    assert store.get("projects", "p1")["archivedBy"] == "migration-script"
    assert store.get("bookings", "b1")["status"] == "completed"


def test_stale_sweep_rejects_non_positive_days(store, settings) -> None:
    with pytest.raises(ValueError):
        _archiver(store, settings).find_stale_projects(0)


def test_rerun_over_role_with_both_archive_flags(store, seed, settings) -> None:
    seed.project("p1", status="archived")
    seed.role("r1", archivedWithProject=True, archivedIndividually=True)
    seed.submission("s1", "r1")

    result = _archiver(store, settings).archive_project("p1", "coordinator-1")

    assert result.already_archived
    assert result.complete
    assert list(result.classes) == ["submissions"]
    assert store.get("submissions", "s1")["status"] == "archived"
