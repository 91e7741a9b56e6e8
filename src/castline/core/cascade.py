from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta

from castline.config import Settings, get_settings
from castline.core.batching import BatchWriter, CancelToken
from castline.core.transitions import StatusTransitionValidator
from castline.db.repositories import Repository, update
from castline.db.store import DocumentStore, Mutation
from castline.types import (
    BOOKINGS,
    PROJECTS,
    ROLES,
    SUBMISSIONS,
    CascadeResult,
    ClassOutcome,
    StaleProject,
    SweepResult,
    utcnow,
)

logger = logging.getLogger(__name__)

SWEEP_STATUSES = ("booking", "booked")


class CascadeArchiver:
    """Archives a project and propagates the archive to its dependents.

    The project document is committed on its own before any dependent batch,
    so readers never see archived dependents under a live project. Roles,
    bookings and submissions are then written class by class. There is no
    cross-class atomicity: a failed class is reported on the result and the
    whole operation can be re-run, since every write is an overwrite with
    the same target values.

    Two cascades on the same project must not run concurrently; callers are
    expected to serialize them.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        settings: Settings | None = None,
        validator: StatusTransitionValidator | None = None,
        writer: BatchWriter | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.repo = Repository(store)
        self.validator = validator or StatusTransitionValidator()
        self.writer = writer or BatchWriter(store, settings=self.settings)
        self.clock = clock

    def archive_project(
        self,
        project_id: str,
        actor: str,
        *,
        cancel: CancelToken | None = None,
    ) -> CascadeResult:
        project = self.repo.get_project(project_id)
        result = CascadeResult(project_id=project_id, actor=actor)

        if project.is_archived:
            result.already_archived = True
            self._archive_dependents(result, project_id, self.clock().isoformat(), cancel, pending_only=True)
            logger.info(
                "Project already archived project_id=%s resumed=%s",
                project_id,
                sorted(result.classes),
            )
            return result

        self.validator.validate_project(project.status, self.validator.archive_status("project"))
        now = self.clock().isoformat()

        project_mutation = update(
            PROJECTS,
            project_id,
            {
                "status": self.validator.archive_status("project"),
                "archivedAt": now,
                "archivedBy": actor,
                "updatedAt": now,
            },
        )
        if not self._write(result, PROJECTS, [project_mutation], cancel):
            return result

        self._archive_dependents(result, project_id, now, cancel)
        logger.info(
            "Cascade archive project_id=%s actor=%s complete=%s %s",
            project_id,
            actor,
            result.complete,
            " ".join(f"{name}={outcome.succeeded}/{outcome.total}" for name, outcome in result.classes.items()),
        )
        return result

    def _archive_dependents(
        self,
        result: CascadeResult,
        project_id: str,
        now: str,
        cancel: CancelToken | None,
        *,
        pending_only: bool = False,
    ) -> None:
        dependents: list[tuple[str, Callable[[], list[Mutation]]]] = [
            (ROLES, lambda: self._role_mutations(project_id, now, pending_only)),
            (BOOKINGS, lambda: self._booking_mutations(project_id, now, pending_only)),
            (SUBMISSIONS, lambda: self._submission_mutations(project_id, now, pending_only)),
        ]
        for entity_class, build in dependents:
            mutations = build()
            if pending_only and not mutations:
                continue
            if result.cancelled:
                result.classes[entity_class] = ClassOutcome(total=len(mutations))
                continue
            self._write(result, entity_class, mutations, cancel)

    def _write(
        self,
        result: CascadeResult,
        entity_class: str,
        mutations: list[Mutation],
        cancel: CancelToken | None,
    ) -> bool:
        outcome, cancelled = self.writer.write(mutations, label=entity_class, cancel=cancel)
        result.classes[entity_class] = outcome
        if cancelled:
            result.cancelled = True
        if outcome.error and result.first_error is None:
            result.first_error = f"{entity_class}: {outcome.error}"
        return outcome.complete

    def _role_mutations(self, project_id: str, now: str, pending_only: bool = False) -> list[Mutation]:
        # Project archival supersedes an individual archive; the two flags never coexist.
        return [
            update(ROLES, role.id, {"archivedWithProject": True, "archivedIndividually": False, "updatedAt": now})
            for role in self.repo.roles_for_project(project_id)
            if not (pending_only and role.archived_with_project)
        ]

    def _booking_mutations(self, project_id: str, now: str, pending_only: bool = False) -> list[Mutation]:
        status = self.validator.archive_status("booking")
        return [
            update(BOOKINGS, booking.id, {"status": status, "archivedWithProject": True, "updatedAt": now})
            for booking in self.repo.bookings_for_project(project_id)
            if not (pending_only and booking.archived_with_project)
        ]

    def _submission_mutations(self, project_id: str, now: str, pending_only: bool = False) -> list[Mutation]:
        status = self.validator.archive_status("submission")
        return [
            update(
                SUBMISSIONS,
                submission.id,
                {"status": status, "archivedWithProject": True, "archivedIndividually": False, "updatedAt": now},
            )
            for submission in self.repo.submissions_for_project(project_id)
            if not (pending_only and submission.archived_with_project)
        ]

    def find_stale_projects(self, days: int | None = None, *, today: date | None = None) -> tuple[str, list[StaleProject]]:
        """Projects still booking/booked whose shoot ended more than ``days`` ago."""
        days = self.settings.archive_after_days if days is None else days
        if days < 1:
            raise ValueError("days must be at least 1")
        threshold = ((today or self.clock().date()) - timedelta(days=days)).isoformat()

        candidates: list[StaleProject] = []
        for status in SWEEP_STATUSES:
            for project in self.repo.list_projects(status=status):
                if project.shoot_date_end and project.shoot_date_end < threshold:
                    candidates.append(
                        StaleProject(
                            id=project.id,
                            title=project.title,
                            status=project.status,
                            shoot_date_end=project.shoot_date_end,
                        )
                    )
        return threshold, candidates

    def archive_stale_projects(
        self,
        *,
        actor: str | None = None,
        days: int | None = None,
        dry_run: bool = False,
        today: date | None = None,
        cancel: CancelToken | None = None,
    ) -> SweepResult:
        threshold, candidates = self.find_stale_projects(days, today=today)
        sweep = SweepResult(threshold=threshold, dry_run=dry_run, candidates=candidates)
        if dry_run or not candidates:
            return sweep

        actor = actor or self.settings.migration_actor
        for candidate in candidates:
            if cancel is not None and cancel.is_set():
                logger.warning("Stale project sweep cancelled after %s project(s)", len(sweep.results))
                break
            sweep.results.append(self.archive_project(candidate.id, actor, cancel=cancel))

        logger.info("Stale project sweep archived=%s candidates=%s", sweep.archived, len(candidates))
        return sweep
