import json

import pytest
from typer.testing import CliRunner

from castline.cli.app import app
from castline.core.service import CastingService
from castline.errors import StoreError

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_store(monkeypatch, store):
    monkeypatch.setattr("castline.cli.app.open_store", lambda: store)
    monkeypatch.setattr("castline.cli.app.configure_logging", lambda *args, **kwargs: None)
    return store


def test_archive_project_command(store, seed) -> None:
    seed.project("p1")
    seed.role("r1")
    seed.submission("s1", "r1", status="pinned")

    result = runner.invoke(app, ["archive", "project", "--project-id", "p1", "--actor", "coordinator-1"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["complete"] is True
    assert payload["classes"]["submissions"]["succeeded"] == 1
    assert store.get("projects", "p1")["status"] == "archived"


def test_archive_missing_project_reports_error(store) -> None:
    result = runner.invoke(app, ["archive", "project", "--project-id", "nope", "--actor", "coordinator-1"])
    assert result.exit_code == 1
    assert "not_found" in result.output


def test_archive_role_blocked_by_booking(store, seed) -> None:
    seed.role("r1")
    seed.booking("b1", "r1")

    result = runner.invoke(app, ["archive", "role", "--role-id", "r1", "--actor", "coordinator-1"])

    assert result.exit_code == 1
    assert "has_active_bookings" in result.output


def test_archive_and_restore_role(store, seed) -> None:
    seed.role("r1")
    seed.submission("s1", "r1", status="pinned")

    archived = runner.invoke(
        app, ["archive", "role", "--role-id", "r1", "--actor", "coordinator-1", "--reason", "cut"]
    )
    assert archived.exit_code == 0
    assert json.loads(archived.stdout)["submissions_updated"] == 1

    restored = runner.invoke(app, ["archive", "restore-role", "--role-id", "r1"])
    assert restored.exit_code == 0
    assert store.get("submissions", "s1")["status"] is None


def test_active_bookings_command(store, seed) -> None:
    seed.role("r1")
    seed.booking("b1", "r1")
    seed.booking("b2", "r1", archivedWithProject=True)

    result = runner.invoke(app, ["archive", "active-bookings", "--role-id", "r1"])

    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"role_id": "r1", "active_bookings": 1}


def test_stale_sweep_dry_run(store, seed) -> None:
    seed.project("p1", shootDateEnd="2020-01-01")

    result = runner.invoke(app, ["archive", "stale", "--dry-run"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert [item["id"] for item in payload["candidates"]] == ["p1"]
    assert store.get("projects", "p1")["status"] == "booked"


def test_stale_sweep_with_confirmation(store, seed) -> None:
    seed.project("p1", shootDateEnd="2020-01-01")

    result = runner.invoke(app, ["archive", "stale", "--yes"])

    assert result.exit_code == 0
    project = store.get("projects", "p1")
    assert project["status"] == "archived"
    assert project["archivedBy"] == "migration-script"


def test_stale_sweep_aborts_without_confirmation(store, seed) -> None:
    seed.project("p1", shootDateEnd="2020-01-01")

    result = runner.invoke(app, ["archive", "stale"], input="n\n")

    assert result.exit_code == 1
    assert store.get("projects", "p1")["status"] == "booked"


def test_integrity_audit_and_repair(store, seed) -> None:
    seed.role("r-new", name="Extra")
    seed.submission("s1", "r-old", role_name="Extra")

    audit = runner.invoke(app, ["integrity", "audit"])
    assert audit.exit_code == 0
    assert json.loads(audit.stdout)["fixable"] == 1

    repair = runner.invoke(app, ["integrity", "repair", "--yes"])
    assert repair.exit_code == 0
    assert store.get("submissions", "s1")["roleId"] == "r-new"


def test_remap_role_command(store, seed) -> None:
    seed.role("r-new")
    seed.booking("b1", "r-old")

    result = runner.invoke(app, ["integrity", "remap-role", "--old-role-id", "r-old", "--new-role-id", "r-new"])

    assert result.exit_code == 0
    assert store.get("bookings", "b1")["roleId"] == "r-new"


def test_migrate_submission_status_command(store, seed) -> None:
    seed.submission("s1", "r1", status="selected")

    dry = runner.invoke(app, ["migrate", "submission-status", "--dry-run"])
    assert dry.exit_code == 0
    assert store.get("submissions", "s1")["status"] == "selected"

    applied = runner.invoke(app, ["migrate", "submission-status"])
    assert applied.exit_code == 0
    assert json.loads(applied.stdout)["updated"] == 1
    assert store.get("submissions", "s1")["status"] == "booked"


def test_clear_bookings_then_archive_role(store, seed) -> None:
    seed.role("r1")
    seed.submission("s1", "r1", status="booked")
    seed.booking("b1", "r1", submissionId="s1")

    cleared = runner.invoke(app, ["archive", "clear-bookings", "--role-id", "r1", "--yes"])
    assert cleared.exit_code == 0
    assert json.loads(cleared.stdout)["succeeded"] == 1

    archived = runner.invoke(app, ["archive", "role", "--role-id", "r1", "--actor", "coordinator-1"])
    assert archived.exit_code == 0
    assert store.get("submissions", "s1")["status"] == "archived"


def test_log_level_option_is_passed_to_logging(monkeypatch, store) -> None:
    levels = []
    monkeypatch.setattr("castline.cli.app.configure_logging", levels.append)

    result = runner.invoke(app, ["--log-level", "debug", "archive", "active-bookings", "--role-id", "r1"])

    assert result.exit_code == 0
    assert levels == ["debug"]


def test_unknown_log_level_is_rejected(monkeypatch, store) -> None:
    def _configure(level=None):
        raise ValueError(f"unknown log level '{level}'")

    monkeypatch.setattr("castline.cli.app.configure_logging", _configure)

    result = runner.invoke(app, ["--log-level", "loud", "archive", "active-bookings", "--role-id", "r1"])

    assert result.exit_code == 2


def test_audit_with_malformed_submission_reports_error(store, seed) -> None:
    seed.role("r1")
    store.put("submissions", "s-bad", {"projectId": "p1", "status": "pinned"})

    result = runner.invoke(app, ["integrity", "audit"])

    assert result.exit_code == 1
    assert "malformed_document" in result.output
    assert "Traceback" not in result.output


def test_repair_with_malformed_submission_reports_error(store, seed) -> None:
    store.put("submissions", "s-bad", {"projectId": "p1", "status": "pinned"})

    result = runner.invoke(app, ["integrity", "repair", "--yes"])

    assert result.exit_code == 1
    assert "malformed_document" in result.output


def test_stale_sweep_with_malformed_project_reports_error(store, seed) -> None:
    seed.project("p1", shootDateEnd="2020-01-01", archivedAt="not-a-date")

    result = runner.invoke(app, ["archive", "stale", "--dry-run"])

    assert result.exit_code == 1
    assert "malformed_document" in result.output


def test_migration_read_failure_reports_error(monkeypatch, store) -> None:
    def _broken(self, **kwargs):
        raise StoreError("simulated read failure")

    monkeypatch.setattr(CastingService, "backfill_booking_physical", _broken)

    result = runner.invoke(app, ["migrate", "booking-physical"])

    assert result.exit_code == 1
    assert "store_error" in result.output
