from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence

from castline.config import Settings, get_settings
from castline.core.batching import BatchWriter, CancelToken
from castline.core.snapshots import sanitize_talent_profile, talent_name
from castline.core.transitions import StatusTransitionValidator
from castline.db.repositories import Repository, create, delete, update
from castline.db.store import DocumentStore, Mutation
from castline.errors import CascadeIncomplete, DuplicateBooking
from castline.types import BOOKINGS, SUBMISSIONS, Booking, BookingStatus, ClassOutcome, Submission, utcnow_iso

logger = logging.getLogger(__name__)


class BookingService:
    """Turns accepted submissions into bookings, and undoes them.

    Every booking write travels in the same batch as the status change on
    its submission, so the two never disagree.
    """

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

    def _duplicate_reason(self, submission: Submission) -> str | None:
        if self.repo.bookings_for_submission(submission.id):
            return f"submission {submission.id} has already been booked"
        for existing in self.repo.bookings_for_role(submission.role_id):
            if existing.user_id == submission.user_id and existing.status != "cancelled":
                return f"user {submission.user_id} is already booked for role {submission.role_id}"
        return None

    def _new_booking(
        self,
        submission: Submission,
        actor: str,
        *,
        status: BookingStatus,
        special_instructions: str,
        internal_notes: str,
        now: str,
    ) -> Booking:
        if status not in ("pending", "confirmed"):
            raise ValueError("a new booking starts as pending or confirmed")
        return Booking(
            id=uuid.uuid4().hex,
            submission_id=submission.id,
            project_id=submission.project_id,
            role_id=submission.role_id,
            user_id=submission.user_id,
            role_name=submission.role_name,
            project_title=submission.project_title,
            status=status,
            confirmed_by=actor,
            talent_profile=sanitize_talent_profile(submission.profile_data),
            archived_with_project=False,
            confirmed_at=now,
            special_instructions=special_instructions,
            internal_notes=internal_notes,
            talent_notified=False,
            talent_confirmed=False,
            created_at=now,
            updated_at=now,
        )

    @staticmethod
    def _book(booking: Booking, now: str) -> list[Mutation]:
        return [
            create(BOOKINGS, booking.id, booking.to_document()),
            update(SUBMISSIONS, booking.submission_id, {"status": "booked", "updatedAt": now}),
        ]

    def _unbook(self, booking: Booking, now: str) -> list[Mutation]:
        mutations = [delete(BOOKINGS, booking.id)]
        submission = self.repo.find_submission(booking.submission_id) if booking.submission_id else None
        if submission is not None and submission.status == "booked":
            self.validator.validate_submission(submission.status, "pinned")
            mutations.append(update(SUBMISSIONS, submission.id, {"status": "pinned", "updatedAt": now}))
        return mutations

    def create_booking(
        self,
        submission_id: str,
        actor: str,
        *,
        status: BookingStatus = "pending",
        special_instructions: str = "",
        internal_notes: str = "",
    ) -> Booking:
        submission = self.repo.get_submission(submission_id)
        reason = self._duplicate_reason(submission)
        if reason:
            raise DuplicateBooking(reason)
        self.validator.validate_submission(submission.status, "booked")

        now = utcnow_iso()
        booking = self._new_booking(
            submission,
            actor,
            status=status,
            special_instructions=special_instructions,
            internal_notes=internal_notes,
            now=now,
        )
        self.store.batch_write(self._book(booking, now))
        logger.info("Booked submission_id=%s booking_id=%s actor=%s", submission_id, booking.id, actor)
        return self.repo.get_booking(booking.id)

    def create_bookings_batch(
        self,
        submission_ids: Sequence[str],
        actor: str,
        *,
        status: BookingStatus = "pending",
        special_instructions: str = "",
        internal_notes: str = "",
        cancel: CancelToken | None = None,
    ) -> list[Booking]:
        """Book several submissions at once.

        Submissions that are already booked, or whose applicant already holds
        a booking for the role, are skipped with a warning. If every
        submission is skipped, ``DuplicateBooking`` is raised and nothing is
        written.
        """
        now = utcnow_iso()
        bookings: list[Booking] = []
        skipped: list[str] = []
        seen: set[tuple[str, str]] = set()

        for submission_id in dict.fromkeys(submission_ids):
            submission = self.repo.get_submission(submission_id)
            reason = self._duplicate_reason(submission)
            if reason is None and (submission.user_id, submission.role_id) in seen:
                reason = f"user {submission.user_id} appears twice for role {submission.role_id}"
            if reason:
                skipped.append(f"{talent_name(submission.profile_data) or submission.user_id} ({reason})")
                continue
            self.validator.validate_submission(submission.status, "booked")
            seen.add((submission.user_id, submission.role_id))
            bookings.append(
                self._new_booking(
                    submission,
                    actor,
                    status=status,
                    special_instructions=special_instructions,
                    internal_notes=internal_notes,
                    now=now,
                )
            )

        if skipped:
            logger.warning("Skipped duplicate bookings: %s", "; ".join(skipped))
        if not bookings:
            raise DuplicateBooking("all submissions are already booked")

        outcome, _ = self.writer.write_groups(
            [self._book(booking, now) for booking in bookings],
            label=BOOKINGS,
            cancel=cancel,
        )
        if outcome.error:
            raise CascadeIncomplete(BOOKINGS, outcome.succeeded, outcome.failed, outcome.error)
        logger.info("Booked %s of %s submission(s) actor=%s", outcome.succeeded, len(submission_ids), actor)
        return bookings[: outcome.succeeded]

    def update_booking_status(self, booking_id: str, status: BookingStatus) -> Booking:
        booking = self.repo.get_booking(booking_id)
        self.validator.validate_booking(booking.status, status)

        now = utcnow_iso()
        mutations: list[Mutation] = [update(BOOKINGS, booking_id, {"status": status, "updatedAt": now})]
        if status == "confirmed":
            mutations[0] = update(
                BOOKINGS,
                booking_id,
                {"status": status, "talentConfirmed": True, "talentConfirmedAt": now, "updatedAt": now},
            )
        if status == "cancelled" and booking.submission_id:
            # A cancelled booking returns its submission to the shortlist.
            submission = self.repo.get_submission(booking.submission_id)
            if submission.status == "booked":
                self.validator.validate_submission(submission.status, "pinned")
                mutations.append(update(SUBMISSIONS, submission.id, {"status": "pinned", "updatedAt": now}))

        self.store.batch_write(mutations)
        logger.info("Booking status booking_id=%s %s->%s", booking_id, booking.status, status)
        return self.repo.get_booking(booking_id)

    def delete_booking(self, booking_id: str) -> Booking:
        """Remove a booking and return a booked submission to ``pinned``."""
        booking = self.repo.get_booking(booking_id)
        self.store.batch_write(self._unbook(booking, utcnow_iso()))
        logger.info("Deleted booking booking_id=%s role_id=%s", booking_id, booking.role_id)
        return booking

    def delete_bookings_for_role(self, role_id: str, *, cancel: CancelToken | None = None) -> ClassOutcome:
        """Remove every booking for a role, e.g. when the role is cut.

        Counts on the outcome are bookings.
        """
        now = utcnow_iso()
        groups = [self._unbook(booking, now) for booking in self.repo.bookings_for_role(role_id)]
        outcome, _ = self.writer.write_groups(groups, label=BOOKINGS, cancel=cancel)
        logger.info(
            "Deleted bookings role_id=%s deleted=%s failed=%s total=%s",
            role_id,
            outcome.succeeded,
            outcome.failed,
            outcome.total,
        )
        return outcome
