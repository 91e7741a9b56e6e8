from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import pytest

from castline.config import Settings
from castline.db.store import MemoryDocumentStore, Mutation
from castline.errors import StoreError


class FlakyStore:
    """Wraps a store and rejects batches matching ``fail_when``."""

    def __init__(self, inner: MemoryDocumentStore, fail_when: Callable[[Sequence[Mutation]], bool]):
        self.inner = inner
        self.fail_when = fail_when
        self.max_batch_size = inner.max_batch_size
        self.attempts: list[int] = []

    def get(self, collection: str, doc_id: str) -> dict[str, Any]:
        return self.inner.get(collection, doc_id)

    def query(self, collection: str, **equals: Any) -> list[tuple[str, dict[str, Any]]]:
        return self.inner.query(collection, **equals)

    def batch_write(self, mutations: Sequence[Mutation]) -> None:
        self.attempts.append(len(mutations))
        if self.fail_when(mutations):
            raise StoreError("simulated store outage")
        self.inner.batch_write(mutations)


class BrokenReadStore(MemoryDocumentStore):
    def query(self, collection: str, **equals: Any) -> list[tuple[str, dict[str, Any]]]:
        if collection == "bookings":
            raise StoreError("simulated read failure")
        return super().query(collection, **equals)


class Seeder:
    def __init__(self, store: MemoryDocumentStore):
        self.store = store

    def project(self, project_id: str = "p1", **fields: Any) -> None:
        data = {"title": f"Project {project_id}", "status": "booked", "shootDateEnd": "2026-01-10"} | fields
        self.store.put("projects", project_id, data)

    def role(self, role_id: str, project_id: str = "p1", name: str = "Extra", **fields: Any) -> None:
        data = {
            "projectId": project_id,
            "name": name,
            "requirements": "",
            "rate": "$200/day",
            "location": "Atlanta, GA",
        } | fields
        self.store.put("roles", role_id, data)

    def submission(
        self,
        submission_id: str,
        role_id: str,
        project_id: str = "p1",
        role_name: str = "Extra",
        **fields: Any,
    ) -> None:
        data = {
            "userId": f"user-{submission_id}",
            "roleId": role_id,
            "roleName": role_name,
            "projectId": project_id,
            "projectTitle": f"Project {project_id}",
            "status": None,
            "profileData": {},
        } | fields
        self.store.put("submissions", submission_id, data)

    def booking(self, booking_id: str, role_id: str, project_id: str = "p1", **fields: Any) -> None:
        data = {
            "projectId": project_id,
            "roleId": role_id,
            "userId": f"user-{booking_id}",
            "status": "confirmed",
        } | fields
        self.store.put("bookings", booking_id, data)


@pytest.fixture
def settings() -> Settings:
    return Settings(app_env="test", cascade_retry_attempts=3, cascade_retry_backoff_sec=0)


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def seed(store: MemoryDocumentStore) -> Seeder:
    return Seeder(store)


@pytest.fixture
def flaky(store: MemoryDocumentStore) -> Callable[[Callable[[Sequence[Mutation]], bool]], FlakyStore]:
    def _wrap(fail_when: Callable[[Sequence[Mutation]], bool]) -> FlakyStore:
        return FlakyStore(store, fail_when)

    return _wrap


@pytest.fixture
def broken_read_store() -> BrokenReadStore:
    return BrokenReadStore()
