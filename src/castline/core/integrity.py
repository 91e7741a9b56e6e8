from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence

from castline.config import Settings, get_settings
from castline.core.batching import BatchWriter, CancelToken
from castline.db.repositories import Repository, update
from castline.db.store import DocumentStore
from castline.types import (
    BOOKINGS,
    SUBMISSIONS,
    AmbiguousRoleMatch,
    IntegrityReport,
    OrphanedBooking,
    ProposedFix,
    RemapResult,
    RepairResult,
    Role,
    utcnow_iso,
)

logger = logging.getLogger(__name__)


def _match_key(name: str, project_id: str) -> tuple[str, str]:
    return name.lower(), project_id


class IntegrityAuditor:
    """Finds submissions whose role reference no longer resolves.

    Roles recreated under a new id with the same name leave submissions
    pointing at the old id. The audit proposes the replacement only when
    exactly one role in the same project carries the submission's role name
    (case-insensitive); every other case is left for a human. Detection
    never writes; ``repair`` is a separate call that applies proposed fixes.

    Both collections are scanned in full, which assumes they stay bounded.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        settings: Settings | None = None,
        writer: BatchWriter | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.repo = Repository(store)
        self.writer = writer or BatchWriter(store, settings=self.settings)

    def audit(self, *, include_bookings: bool = True) -> IntegrityReport:
        roles = self.repo.list_roles()
        submissions = self.repo.list_submissions()
        role_ids = {role.id for role in roles}

        by_name: dict[tuple[str, str], list[Role]] = defaultdict(list)
        for role in roles:
            by_name[_match_key(role.name, role.project_id)].append(role)

        report = IntegrityReport(submissions_scanned=len(submissions), roles_scanned=len(roles))
        for submission in submissions:
            if submission.role_id in role_ids:
                report.valid += 1
                continue

            matches = by_name.get(_match_key(submission.role_name, submission.project_id), [])
            if len(matches) == 1:
                report.fixable += 1
                report.proposed_fixes.append(
                    ProposedFix(
                        submission_id=submission.id,
                        old_role_id=submission.role_id,
                        new_role_id=matches[0].id,
                        role_name=submission.role_name,
                        project_id=submission.project_id,
                    )
                )
            else:
                report.unresolved += 1
                report.unresolved_submissions.append(
                    AmbiguousRoleMatch(
                        submission_id=submission.id,
                        role_id=submission.role_id,
                        role_name=submission.role_name,
                        project_id=submission.project_id,
                        reason="ambiguous" if matches else "no_match",
                        candidates=sorted(role.id for role in matches),
                    )
                )

        if include_bookings:
            report.orphaned_bookings = [
                OrphanedBooking(
                    booking_id=booking.id,
                    role_id=booking.role_id,
                    project_id=booking.project_id,
                    user_id=booking.user_id,
                )
                for booking in self.repo.list_bookings()
                if booking.role_id not in role_ids
            ]

        logger.info(
            "Integrity audit submissions=%s roles=%s valid=%s fixable=%s unresolved=%s orphaned_bookings=%s",
            report.submissions_scanned,
            report.roles_scanned,
            report.valid,
            report.fixable,
            report.unresolved,
            len(report.orphaned_bookings),
        )
        return report

    def repair(self, fixes: Sequence[ProposedFix], *, cancel: CancelToken | None = None) -> RepairResult:
        now = utcnow_iso()
        mutations = [
            update(SUBMISSIONS, fix.submission_id, {"roleId": fix.new_role_id, "updatedAt": now})
            for fix in fixes
        ]
        outcome, cancelled = self.writer.write(mutations, label=SUBMISSIONS, cancel=cancel)
        result = RepairResult(
            requested=len(fixes),
            applied=outcome.succeeded,
            failed=outcome.failed,
            batches=outcome.batches,
            cancelled=cancelled,
            first_error=outcome.error,
        )
        logger.info(
            "Submission repair requested=%s applied=%s failed=%s batches=%s",
            result.requested,
            result.applied,
            result.failed,
            result.batches,
        )
        return result

    def remap_role(
        self,
        old_role_id: str,
        new_role_id: str,
        *,
        cancel: CancelToken | None = None,
    ) -> RemapResult:
        """Point every booking and submission at ``old_role_id`` to ``new_role_id``."""
        self.repo.get_role(new_role_id)
        now = utcnow_iso()
        result = RemapResult(old_role_id=old_role_id, new_role_id=new_role_id)

        booking_mutations = [
            update(BOOKINGS, booking.id, {"roleId": new_role_id, "updatedAt": now})
            for booking in self.repo.bookings_for_role(old_role_id)
        ]
        result.bookings, cancelled = self.writer.write(booking_mutations, label=BOOKINGS, cancel=cancel)
        if cancelled:
            return result

        submission_mutations = [
            update(SUBMISSIONS, submission.id, {"roleId": new_role_id, "updatedAt": now})
            for submission in self.repo.submissions_for_role(old_role_id)
        ]
        result.submissions, _ = self.writer.write(submission_mutations, label=SUBMISSIONS, cancel=cancel)

        logger.info(
            "Role remap %s->%s bookings=%s submissions=%s",
            old_role_id,
            new_role_id,
            result.bookings.succeeded,
            result.submissions.succeeded,
        )
        return result
