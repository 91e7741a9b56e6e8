from __future__ import annotations

import json
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, NoReturn

import typer
from pydantic import BaseModel

from castline.core.service import CastingService
from castline.db.init import init_database
from castline.db.session import get_document_store
from castline.db.store import DocumentStore
from castline.errors import CastingError
from castline.logging_config import configure_logging

app = typer.Typer(help="Castline operator CLI")
archive_app = typer.Typer(help="Archive and restore projects and roles")
integrity_app = typer.Typer(help="Submission/role referential integrity")
migrate_app = typer.Typer(help="Legacy data migrations")

app.add_typer(archive_app, name="archive")
app.add_typer(integrity_app, name="integrity")
app.add_typer(migrate_app, name="migrate")

_INITIALIZED = False


@app.callback()
def main(
    log_level: str = typer.Option("", "--log-level", help="Overrides LOG_LEVEL for castline loggers"),
) -> None:
    try:
        configure_logging(log_level or None)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--log-level") from exc


def ensure_initialized() -> None:
    global _INITIALIZED
    if _INITIALIZED:
        return
    init_database()
    _INITIALIZED = True


def open_store() -> DocumentStore:
    ensure_initialized()
    return get_document_store()


def _service() -> CastingService:
    return CastingService(open_store())


def _echo(payload: BaseModel | dict[str, Any]) -> None:
    data = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else payload
    typer.echo(json.dumps(data, indent=2))


def _fail(exc: CastingError) -> NoReturn:
    typer.echo(json.dumps({"ok": False, "error": exc.code, "message": str(exc)}, indent=2), err=True)
    raise typer.Exit(code=1)


@contextmanager
def cancel_on_interrupt() -> Iterator[threading.Event]:
    """First Ctrl+C stops after the batch in flight instead of mid-batch."""
    cancel = threading.Event()

    def _handler(signum: int, frame: Any) -> None:
        typer.echo("Cancelling after the current batch...", err=True)
        cancel.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


@app.command("init")
def init_cmd() -> None:
    """Initialize the data directory and document table."""
    result = init_database()
    typer.echo(json.dumps({"ok": True, **result}, indent=2))


@archive_app.command("project")
def archive_project(
    project_id: str = typer.Option(..., "--project-id"),
    actor: str = typer.Option(..., "--actor"),
) -> None:
    service = _service()
    try:
        with cancel_on_interrupt() as cancel:
            result = service.cascade_archive_project(project_id, actor, cancel=cancel)
    except CastingError as exc:
        _fail(exc)
    _echo({"complete": result.complete, **result.model_dump(mode="json")})
    if not result.complete:
        raise typer.Exit(code=1)


@archive_app.command("stale")
def archive_stale(
    days: int = typer.Option(0, "--days", min=0, help="Defaults to ARCHIVE_AFTER_DAYS"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt"),
    actor: str = typer.Option("", "--actor"),
) -> None:
    """Archive projects whose shoot ended more than --days ago."""
    service = _service()
    try:
        preview = service.archive_stale_projects(days=days or None, dry_run=True)
    except CastingError as exc:
        _fail(exc)
    if dry_run or not preview.candidates:
        _echo(preview)
        return

    _echo({"threshold": preview.threshold, "candidates": [item.model_dump() for item in preview.candidates]})
    if not yes:
        typer.confirm("Archive these projects and complete their bookings?", abort=True)

    try:
        with cancel_on_interrupt() as cancel:
            sweep = service.archive_stale_projects(
                days=days or None,
                actor=actor or service.settings.migration_actor,
                cancel=cancel,
            )
    except CastingError as exc:
        _fail(exc)
    _echo({"archived": sweep.archived, **sweep.model_dump(mode="json")})


@archive_app.command("role")
def archive_role(
    role_id: str = typer.Option(..., "--role-id"),
    actor: str = typer.Option(..., "--actor"),
    reason: str = typer.Option("", "--reason"),
) -> None:
    service = _service()
    try:
        result = service.archive_role(role_id, actor, reason or None)
    except CastingError as exc:
        _fail(exc)
    _echo(result)


@archive_app.command("restore-role")
def restore_role(role_id: str = typer.Option(..., "--role-id")) -> None:
    service = _service()
    try:
        result = service.restore_role(role_id)
    except CastingError as exc:
        _fail(exc)
    _echo(result)


@archive_app.command("active-bookings")
def active_bookings(role_id: str = typer.Option(..., "--role-id")) -> None:
    service = _service()
    try:
        count = service.get_active_booking_count(role_id)
    except CastingError as exc:
        _fail(exc)
    _echo({"role_id": role_id, "active_bookings": count})


@archive_app.command("clear-bookings")
def clear_bookings(
    role_id: str = typer.Option(..., "--role-id"),
    yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt"),
) -> None:
    """Delete every booking for a role so the role can be archived."""
    service = _service()
    if not yes:
        typer.confirm(f"Delete all bookings for role {role_id}?", abort=True)
    try:
        with cancel_on_interrupt() as cancel:
            outcome = service.delete_bookings_for_role(role_id, cancel=cancel)
    except CastingError as exc:
        _fail(exc)
    _echo({"role_id": role_id, **outcome.model_dump(mode="json")})
    if not outcome.complete:
        raise typer.Exit(code=1)


@integrity_app.command("audit")
def integrity_audit() -> None:
    service = _service()
    try:
        report = service.audit_submission_integrity()
    except CastingError as exc:
        _fail(exc)
    _echo(report)


@integrity_app.command("repair")
def integrity_repair(yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt")) -> None:
    """Audit, show the proposed fixes, then apply them."""
    service = _service()
    try:
        report = service.audit_submission_integrity()
    except CastingError as exc:
        _fail(exc)
    if not report.proposed_fixes:
        _echo({"ok": True, "message": "no fixable submissions", "unresolved": report.unresolved})
        return

    _echo({"proposed_fixes": [fix.model_dump() for fix in report.proposed_fixes]})
    if not yes:
        typer.confirm(f"Update roleId on {len(report.proposed_fixes)} submission(s)?", abort=True)

    try:
        with cancel_on_interrupt() as cancel:
            result = service.repair_submissions(report.proposed_fixes, cancel=cancel)
    except CastingError as exc:
        _fail(exc)
    _echo(result)
    if result.failed or result.cancelled:
        raise typer.Exit(code=1)


@integrity_app.command("remap-role")
def integrity_remap_role(
    old_role_id: str = typer.Option(..., "--old-role-id"),
    new_role_id: str = typer.Option(..., "--new-role-id"),
) -> None:
    service = _service()
    try:
        result = service.remap_role(old_role_id, new_role_id)
    except CastingError as exc:
        _fail(exc)
    _echo(result)


@migrate_app.command("submission-status")
def migrate_submission_status(dry_run: bool = typer.Option(False, "--dry-run")) -> None:
    service = _service()
    try:
        summary = service.migrate_legacy_submission_statuses(dry_run=dry_run)
    except CastingError as exc:
        _fail(exc)
    _echo(summary)
    if summary.errors:
        raise typer.Exit(code=1)


@migrate_app.command("booking-physical")
def migrate_booking_physical(dry_run: bool = typer.Option(False, "--dry-run")) -> None:
    service = _service()
    try:
        summary = service.backfill_booking_physical(dry_run=dry_run)
    except CastingError as exc:
        _fail(exc)
    _echo(summary)
    if summary.errors:
        raise typer.Exit(code=1)
