from __future__ import annotations

import logging

from castline.config import Settings, get_settings
from castline.core.batching import BatchWriter, CancelToken
from castline.core.transitions import StatusTransitionValidator
from castline.db.repositories import Repository, update
from castline.db.store import DocumentStore
from castline.errors import (
    AlreadyArchived,
    CannotRestoreProjectArchived,
    CascadeIncomplete,
    HasActiveBookings,
    IllegalTransition,
    StoreError,
)
from castline.types import ROLES, SUBMISSIONS, RoleArchiveResult, utcnow_iso

logger = logging.getLogger(__name__)


class RoleArchiver:
    """Archives and restores a single role independently of its project."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        settings: Settings | None = None,
        validator: StatusTransitionValidator | None = None,
        writer: BatchWriter | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.repo = Repository(store)
        self.validator = validator or StatusTransitionValidator()
        self.writer = writer or BatchWriter(store, settings=self.settings)

    def get_active_booking_count(self, role_id: str, *, fail_open: bool | None = None) -> int:
        """Bookings for the role that were not archived with their project.

        With ``fail_open`` a failed read is logged and reported as zero, which
        suits dashboards. The archive precondition always reads fail-closed.
        """
        if fail_open is None:
            fail_open = self.settings.active_booking_count_fail_open
        try:
            return len(self.repo.active_bookings_for_role(role_id))
        except StoreError:
            if not fail_open:
                raise
            logger.exception("Active booking count failed role_id=%s; reporting 0", role_id)
            return 0

    def archive_role(
        self,
        role_id: str,
        actor: str,
        reason: str | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> RoleArchiveResult:
        role = self.repo.get_role(role_id)
        if role.is_archived:
            raise AlreadyArchived(ROLES, role_id)

        active = self.get_active_booking_count(role_id, fail_open=False)
        if active > 0:
            raise HasActiveBookings(role_id, active)

        now = utcnow_iso()
        self.store.batch_write(
            [
                update(
                    ROLES,
                    role_id,
                    {
                        "archivedIndividually": True,
                        "archivedAt": now,
                        "archivedBy": actor,
                        "archiveReason": reason or "",
                        "updatedAt": now,
                    },
                )
            ]
        )

        status = self.validator.archive_status("submission")
        mutations = [
            update(
                SUBMISSIONS,
                submission.id,
                {"status": status, "archivedIndividually": True, "updatedAt": now},
            )
            for submission in self.repo.submissions_for_role(role_id)
            if not submission.archived_with_project
        ]
        outcome, _ = self.writer.write(mutations, label=SUBMISSIONS, cancel=cancel)
        if not outcome.complete:
            raise CascadeIncomplete(SUBMISSIONS, outcome.succeeded, outcome.total - outcome.succeeded, outcome.error)

        logger.info("Archived role role_id=%s actor=%s submissions=%s", role_id, actor, outcome.succeeded)
        return RoleArchiveResult(role_id=role_id, submissions_updated=outcome.succeeded)

    def restore_role(self, role_id: str, *, cancel: CancelToken | None = None) -> RoleArchiveResult:
        role = self.repo.get_role(role_id)
        if role.archived_with_project:
            raise CannotRestoreProjectArchived(role_id)
        if not role.archived_individually:
            raise IllegalTransition("role", "active", "restored")

        now = utcnow_iso()
        # archivedAt/archivedBy stay on the role as the audit trail.
        self.store.batch_write(
            [update(ROLES, role_id, {"archivedIndividually": False, "archiveReason": "", "updatedAt": now})]
        )

        mutations = []
        for submission in self.repo.submissions_for_role(role_id):
            if not submission.archived_individually:
                continue
            mutations.append(
                update(
                    SUBMISSIONS,
                    submission.id,
                    {"status": None, "archivedIndividually": False, "updatedAt": now},
                )
            )
        outcome, _ = self.writer.write(mutations, label=SUBMISSIONS, cancel=cancel)
        if not outcome.complete:
            raise CascadeIncomplete(SUBMISSIONS, outcome.succeeded, outcome.total - outcome.succeeded, outcome.error)

        logger.info("Restored role role_id=%s submissions=%s", role_id, outcome.succeeded)
        return RoleArchiveResult(role_id=role_id, submissions_updated=outcome.succeeded)
