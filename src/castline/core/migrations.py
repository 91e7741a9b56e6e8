from __future__ import annotations

import logging
from collections.abc import Callable

from castline.config import Settings, get_settings
from castline.core.batching import BatchWriter, CancelToken
from castline.core.snapshots import sanitize_talent_profile, talent_name
from castline.core.transitions import StatusTransitionValidator
from castline.db.repositories import Repository, update
from castline.db.store import DocumentStore, Mutation
from castline.errors import MalformedDocument
from castline.types import (
    BOOKINGS,
    SUBMISSIONS,
    BackfillSummary,
    MigrationSummary,
    StatusChange,
    Submission,
    utcnow_iso,
)

logger = logging.getLogger(__name__)


class LegacyMigrator:
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

    def migrate_submission_statuses(
        self,
        *,
        dry_run: bool = False,
        cancel: CancelToken | None = None,
    ) -> MigrationSummary:
        """Move submissions from the four legacy statuses to the current set.

        The ``pinned`` boolean is dropped from every document that carries
        it; a submission that was pinned and would otherwise become new is
        migrated to ``pinned``.
        """
        documents = self.repo.submission_documents()
        summary = MigrationSummary(total=len(documents), dry_run=dry_run)
        mutations: list[Mutation] = []

        for doc_id, data in documents:
            try:
                submission = Submission.from_document(doc_id, data)
            except MalformedDocument:
                logger.exception("Skipping submission %s", doc_id)
                summary.errors += 1
                continue

            migration = self.validator.migrate_legacy_submission_status(
                submission.status,
                submission.pinned,
                has_pinned_field="pinned" in data,
            )
            if not migration.changed:
                summary.unchanged += 1
                continue

            values = {}
            if migration.new_status != migration.old_status:
                values["status"] = migration.new_status
            delete_fields = ("pinned",) if migration.removes_pinned_flag else ()
            mutations.append(update(SUBMISSIONS, submission.id, values, delete_fields=delete_fields))
            summary.changes.append(
                StatusChange(
                    submission_id=submission.id,
                    old_status=migration.old_status,
                    new_status=migration.new_status,
                    removed_pinned_flag=migration.removes_pinned_flag,
                )
            )
            logger.debug("Submission %s: %r -> %r", submission.id, migration.old_status, migration.new_status)

        if dry_run:
            summary.updated = len(mutations)
            return summary

        outcome, _ = self.writer.write(mutations, label=SUBMISSIONS, cancel=cancel)
        summary.updated = outcome.succeeded
        summary.errors += outcome.failed
        logger.info(
            "Submission status migration updated=%s unchanged=%s errors=%s total=%s",
            summary.updated,
            summary.unchanged,
            summary.errors,
            summary.total,
        )
        return summary

    def backfill_booking_physical(
        self,
        *,
        dry_run: bool = False,
        profile_loader: Callable[[str], dict | None] | None = None,
        cancel: CancelToken | None = None,
    ) -> BackfillSummary:
        """Rebuild ``talentProfile`` snapshots that lack consolidated physical data.

        The snapshot is rebuilt from the applicant's current profile document.
        Bookings without a user id or whose profile is gone are skipped.
        """
        load_profile = profile_loader or self.repo.get_profile
        bookings = self.repo.list_bookings()
        summary = BackfillSummary(total=len(bookings), dry_run=dry_run)
        mutations: list[Mutation] = []
        now = utcnow_iso()

        for booking in bookings:
            if booking.has_physical_snapshot:
                summary.skipped += 1
                continue
            if not booking.user_id:
                logger.warning("Skipping booking %s: no userId", booking.id)
                summary.skipped += 1
                continue
            profile = load_profile(booking.user_id)
            if profile is None:
                logger.warning("Skipping booking %s: profile not found for user %s", booking.id, booking.user_id)
                summary.skipped += 1
                continue

            snapshot = sanitize_talent_profile(profile)
            mutations.append(update(BOOKINGS, booking.id, {"talentProfile": snapshot, "updatedAt": now}))
            summary.updated_ids.append(booking.id)
            logger.debug("Backfilled booking %s for %s", booking.id, talent_name(snapshot))

        if dry_run:
            summary.updated = len(mutations)
            return summary

        outcome, _ = self.writer.write(mutations, label=BOOKINGS, cancel=cancel)
        summary.updated = outcome.succeeded
        summary.errors += outcome.failed
        if outcome.succeeded < len(summary.updated_ids):
            summary.updated_ids = summary.updated_ids[: outcome.succeeded]
        logger.info(
            "Booking physical backfill updated=%s skipped=%s errors=%s total=%s",
            summary.updated,
            summary.skipped,
            summary.errors,
            summary.total,
        )
        return summary
