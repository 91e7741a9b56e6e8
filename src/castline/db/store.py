"""Document store contract and its two implementations.

A store exposes three primitives: ``get`` a single document, ``query`` a
collection with equality filters, and ``batch_write`` a list of mutations as
one atomic unit. Batches larger than the store's mutation ceiling are
rejected with ``BatchTooLarge``; callers chunk their own mutation lists so
that the atomic unit stays visible at the call site.

Equality filters follow document-store semantics: a document that lacks the
filtered field never matches.
"""

from __future__ import annotations

import copy
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from castline.db.models import DocumentRecord
from castline.errors import BatchTooLarge, NotFound, StoreError

MAX_BATCH_SIZE = 500

MutationOp = Literal["set", "update", "delete"]
Document = tuple[str, dict[str, Any]]


@dataclass(slots=True, frozen=True)
class Mutation:
    collection: str
    doc_id: str
    op: MutationOp = "update"
    values: dict[str, Any] = field(default_factory=dict)
    delete_fields: tuple[str, ...] = ()


class DocumentStore(Protocol):
    max_batch_size: int

    def get(self, collection: str, doc_id: str) -> dict[str, Any]: ...

    def query(self, collection: str, **equals: Any) -> list[Document]: ...

    def batch_write(self, mutations: Sequence[Mutation]) -> None: ...


def _matches(data: dict[str, Any], equals: dict[str, Any]) -> bool:
    for key, expected in equals.items():
        if key not in data or data[key] != expected:
            return False
    return True


def _apply(current: dict[str, Any] | None, mutation: Mutation) -> dict[str, Any] | None:
    if mutation.op == "delete":
        return None
    if mutation.op == "set":
        return copy.deepcopy(mutation.values)
    if mutation.op == "update":
        if current is None:
            raise NotFound(mutation.collection, mutation.doc_id)
        merged = dict(current)
        merged.update(copy.deepcopy(mutation.values))
        for name in mutation.delete_fields:
            merged.pop(name, None)
        return merged
    raise ValueError(f"unsupported mutation op '{mutation.op}'")


def _check_size(mutations: Sequence[Mutation], limit: int) -> None:
    if len(mutations) > limit:
        raise BatchTooLarge(len(mutations), limit)


class MemoryDocumentStore:
    def __init__(
        self,
        *,
        max_batch_size: int = MAX_BATCH_SIZE,
        documents: dict[str, dict[str, dict[str, Any]]] | None = None,
    ):
        self.max_batch_size = max_batch_size
        self._collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        for collection, docs in (documents or {}).items():
            for doc_id, data in docs.items():
                self._collections[collection][doc_id] = copy.deepcopy(data)
        self.batch_log: list[int] = []

    def get(self, collection: str, doc_id: str) -> dict[str, Any]:
        data = self._collections.get(collection, {}).get(doc_id)
        if data is None:
            raise NotFound(collection, doc_id)
        return copy.deepcopy(data)

    def query(self, collection: str, **equals: Any) -> list[Document]:
        return [
            (doc_id, copy.deepcopy(data))
            for doc_id, data in self._collections.get(collection, {}).items()
            if _matches(data, equals)
        ]

    def batch_write(self, mutations: Sequence[Mutation]) -> None:
        _check_size(mutations, self.max_batch_size)

        staged: dict[tuple[str, str], dict[str, Any] | None] = {}
        for mutation in mutations:
            key = (mutation.collection, mutation.doc_id)
            if key in staged:
                current = staged[key]
            else:
                current = self._collections.get(mutation.collection, {}).get(mutation.doc_id)
            staged[key] = _apply(current, mutation)

        for (collection, doc_id), data in staged.items():
            if data is None:
                self._collections[collection].pop(doc_id, None)
            else:
                self._collections[collection][doc_id] = data
        self.batch_log.append(len(mutations))

    def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self._collections[collection][doc_id] = copy.deepcopy(data)

    def seed(self, collection: str, documents: Iterable[dict[str, Any]]) -> None:
        for item in documents:
            payload = dict(item)
            self.put(collection, str(payload.pop("id")), payload)


class SqlDocumentStore:
    def __init__(self, session_factory: sessionmaker[Session], *, max_batch_size: int = MAX_BATCH_SIZE):
        self.session_factory = session_factory
        self.max_batch_size = max_batch_size

    def get(self, collection: str, doc_id: str) -> dict[str, Any]:
        try:
            with self.session_factory() as session:
                record = self._find(session, collection, doc_id)
                data = copy.deepcopy(record.data) if record is not None else None
        except SQLAlchemyError as exc:
            raise StoreError(f"read of {collection}/{doc_id} failed: {exc}") from exc
        if data is None:
            raise NotFound(collection, doc_id)
        return data

    def query(self, collection: str, **equals: Any) -> list[Document]:
        statement = (
            select(DocumentRecord)
            .where(DocumentRecord.collection == collection)
            .order_by(DocumentRecord.id.asc())
        )
        try:
            with self.session_factory() as session:
                records = session.scalars(statement).all()
                return [
                    (record.doc_id, copy.deepcopy(record.data))
                    for record in records
                    if _matches(record.data, equals)
                ]
        except SQLAlchemyError as exc:
            raise StoreError(f"query on {collection} failed: {exc}") from exc

    def batch_write(self, mutations: Sequence[Mutation]) -> None:
        _check_size(mutations, self.max_batch_size)

        with self.session_factory() as session:
            try:
                for mutation in mutations:
                    record = self._find(session, mutation.collection, mutation.doc_id)
                    data = _apply(record.data if record is not None else None, mutation)
                    if data is None:
                        if record is not None:
                            session.delete(record)
                            session.flush()
                    elif record is None:
                        session.add(
                            DocumentRecord(collection=mutation.collection, doc_id=mutation.doc_id, data=data)
                        )
                        session.flush()
                    else:
                        record.data = data
                session.commit()
            except NotFound:
                session.rollback()
                raise
            except SQLAlchemyError as exc:
                session.rollback()
                raise StoreError(f"batch of {len(mutations)} mutations failed: {exc}") from exc

    @staticmethod
    def _find(session: Session, collection: str, doc_id: str) -> DocumentRecord | None:
        statement = select(DocumentRecord).where(
            DocumentRecord.collection == collection,
            DocumentRecord.doc_id == doc_id,
        )
        return session.scalar(statement)

