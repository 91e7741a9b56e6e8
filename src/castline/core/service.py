from __future__ import annotations

from collections.abc import Sequence

from castline.config import Settings, get_settings
from castline.core.batching import BatchWriter, CancelToken
from castline.core.bookings import BookingService
from castline.core.cascade import CascadeArchiver
from castline.core.integrity import IntegrityAuditor
from castline.core.migrations import LegacyMigrator
from castline.core.projects import ProjectStatusService
from castline.core.roles import RoleArchiver
from castline.core.transitions import StatusTransitionValidator
from castline.db.store import DocumentStore
from castline.types import (
    BackfillSummary,
    Booking,
    BookingStatus,
    ClassOutcome,
    CascadeResult,
    IntegrityReport,
    MigrationSummary,
    Project,
    ProposedFix,
    RemapResult,
    RepairResult,
    RoleArchiveResult,
    SweepResult,
)


class CastingService:
    """Entry points used by operator jobs and admin handlers.

    The store is passed in; nothing here holds state between calls.
    """

    def __init__(self, store: DocumentStore, *, settings: Settings | None = None):
        self.store = store
        self.settings = settings or get_settings()
        self.validator = StatusTransitionValidator()
        writer = BatchWriter(store, settings=self.settings)
        self.archiver = CascadeArchiver(store, settings=self.settings, validator=self.validator, writer=writer)
        self.roles = RoleArchiver(store, settings=self.settings, validator=self.validator, writer=writer)
        self.auditor = IntegrityAuditor(store, settings=self.settings, writer=writer)
        self.migrator = LegacyMigrator(store, settings=self.settings, validator=self.validator, writer=writer)
        self.bookings = BookingService(store, settings=self.settings, validator=self.validator, writer=writer)
        self.projects = ProjectStatusService(store, archiver=self.archiver, validator=self.validator)

    def cascade_archive_project(
        self,
        project_id: str,
        actor: str,
        *,
        cancel: CancelToken | None = None,
    ) -> CascadeResult:
        return self.archiver.archive_project(project_id, actor, cancel=cancel)

    def archive_stale_projects(
        self,
        *,
        days: int | None = None,
        dry_run: bool = False,
        actor: str | None = None,
        cancel: CancelToken | None = None,
    ) -> SweepResult:
        return self.archiver.archive_stale_projects(actor=actor, days=days, dry_run=dry_run, cancel=cancel)

    def archive_role(self, role_id: str, actor: str, reason: str | None = None) -> RoleArchiveResult:
        return self.roles.archive_role(role_id, actor, reason)

    def restore_role(self, role_id: str) -> RoleArchiveResult:
        return self.roles.restore_role(role_id)

    def get_active_booking_count(self, role_id: str) -> int:
        return self.roles.get_active_booking_count(role_id)

    def audit_submission_integrity(self) -> IntegrityReport:
        return self.auditor.audit()

    def repair_submissions(
        self,
        fixes: Sequence[ProposedFix],
        *,
        cancel: CancelToken | None = None,
    ) -> RepairResult:
        return self.auditor.repair(fixes, cancel=cancel)

    def remap_role(self, old_role_id: str, new_role_id: str) -> RemapResult:
        return self.auditor.remap_role(old_role_id, new_role_id)

    def migrate_legacy_submission_statuses(self, *, dry_run: bool = False) -> MigrationSummary:
        return self.migrator.migrate_submission_statuses(dry_run=dry_run)

    def backfill_booking_physical(self, *, dry_run: bool = False) -> BackfillSummary:
        return self.migrator.backfill_booking_physical(dry_run=dry_run)

    def advance_project_status(
        self,
        project_id: str,
        requested: str,
        actor: str,
        *,
        cancel: CancelToken | None = None,
    ) -> Project | CascadeResult:
        return self.projects.advance(project_id, requested, actor, cancel=cancel)

    def create_booking(self, submission_id: str, actor: str, **fields) -> Booking:
        return self.bookings.create_booking(submission_id, actor, **fields)

    def update_booking_status(self, booking_id: str, status: BookingStatus) -> Booking:
        return self.bookings.update_booking_status(booking_id, status)

    def create_bookings_batch(
        self,
        submission_ids: Sequence[str],
        actor: str,
        *,
        cancel: CancelToken | None = None,
        **fields,
    ) -> list[Booking]:
        return self.bookings.create_bookings_batch(submission_ids, actor, cancel=cancel, **fields)

    def delete_booking(self, booking_id: str) -> Booking:
        return self.bookings.delete_booking(booking_id)

    def delete_bookings_for_role(self, role_id: str, *, cancel: CancelToken | None = None) -> ClassOutcome:
        return self.bookings.delete_bookings_for_role(role_id, cancel=cancel)
