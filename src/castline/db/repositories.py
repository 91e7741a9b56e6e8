from __future__ import annotations

from typing import Any, TypeVar

from castline.db.store import DocumentStore, Mutation
from castline.errors import NotFound
from castline.types import (
    PROFILES,
    Booking,
    Entity,
    Project,
    Role,
    Submission,
)

EntityT = TypeVar("EntityT", bound=Entity)


def update(collection: str, doc_id: str, values: dict[str, Any], *, delete_fields: tuple[str, ...] = ()) -> Mutation:
    return Mutation(collection=collection, doc_id=doc_id, op="update", values=values, delete_fields=delete_fields)


def create(collection: str, doc_id: str, values: dict[str, Any]) -> Mutation:
    return Mutation(collection=collection, doc_id=doc_id, op="set", values=values)


def delete(collection: str, doc_id: str) -> Mutation:
    return Mutation(collection=collection, doc_id=doc_id, op="delete")


class Repository:
    """Typed reads over the four casting collections.

    Every call goes to the store; nothing is cached, so consistency checks
    always see the latest committed state.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def _get(self, model: type[EntityT], doc_id: str) -> EntityT:
        return model.from_document(doc_id, self.store.get(model.collection, doc_id))

    def _find(self, model: type[EntityT], doc_id: str) -> EntityT | None:
        try:
            return self._get(model, doc_id)
        except NotFound:
            return None

    def _query(self, model: type[EntityT], **equals: Any) -> list[EntityT]:
        return [model.from_document(doc_id, data) for doc_id, data in self.store.query(model.collection, **equals)]

    def get_project(self, project_id: str) -> Project:
        return self._get(Project, project_id)

    def list_projects(self, status: str | None = None) -> list[Project]:
        if status is None:
            return self._query(Project)
        return self._query(Project, status=status)

    def get_role(self, role_id: str) -> Role:
        return self._get(Role, role_id)

    def find_role(self, role_id: str) -> Role | None:
        return self._find(Role, role_id)

    def list_roles(self) -> list[Role]:
        return self._query(Role)

    def roles_for_project(self, project_id: str) -> list[Role]:
        return self._query(Role, projectId=project_id)

    def find_submission(self, submission_id: str) -> Submission | None:
        return self._find(Submission, submission_id)

    def get_submission(self, submission_id: str) -> Submission:
        return self._get(Submission, submission_id)

    def list_submissions(self) -> list[Submission]:
        return self._query(Submission)

    def submission_documents(self) -> list[tuple[str, dict[str, Any]]]:
        """Raw submission documents, for callers that need to see which keys are stored."""
        return self.store.query(Submission.collection)

    def submissions_for_project(self, project_id: str) -> list[Submission]:
        return self._query(Submission, projectId=project_id)

    def submissions_for_role(self, role_id: str) -> list[Submission]:
        return self._query(Submission, roleId=role_id)

    def get_booking(self, booking_id: str) -> Booking:
        return self._get(Booking, booking_id)

    def list_bookings(self) -> list[Booking]:
        return self._query(Booking)

    def bookings_for_project(self, project_id: str) -> list[Booking]:
        return self._query(Booking, projectId=project_id)

    def bookings_for_role(self, role_id: str) -> list[Booking]:
        return self._query(Booking, roleId=role_id)

    def bookings_for_submission(self, submission_id: str) -> list[Booking]:
        return self._query(Booking, submissionId=submission_id)

    def active_bookings_for_role(self, role_id: str) -> list[Booking]:
        # Bookings written before the archive flag existed have no field at all.
        return [booking for booking in self.bookings_for_role(role_id) if booking.is_active]

    def get_profile(self, user_id: str) -> dict[str, Any] | None:
        try:
            return self.store.get(PROFILES, user_id)
        except NotFound:
            return None

