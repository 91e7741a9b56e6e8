from __future__ import annotations


class CastingError(Exception):
    code = "casting_error"
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(CastingError):
    code = "not_found"

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class AlreadyArchived(CastingError):
    code = "already_archived"

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id} is already archived")
        self.collection = collection
        self.doc_id = doc_id


class IllegalTransition(CastingError):
    code = "illegal_transition"

    def __init__(self, kind: str, current: str | None, requested: str | None) -> None:
        super().__init__(f"{kind} status cannot move from {current!r} to {requested!r}")
        self.kind = kind
        self.current = current
        self.requested = requested


class HasActiveBookings(CastingError):
    code = "has_active_bookings"

    def __init__(self, role_id: str, count: int) -> None:
        super().__init__(
            f"cannot archive role {role_id} with {count} active booking(s); "
            "complete or archive the project first"
        )
        self.role_id = role_id
        self.count = count


class CannotRestoreProjectArchived(CastingError):
    code = "cannot_restore_project_archived"

    def __init__(self, role_id: str) -> None:
        super().__init__(
            f"role {role_id} is archived with its project; restore the project instead"
        )
        self.role_id = role_id


class BatchTooLarge(CastingError):
    code = "batch_too_large"

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"batch of {size} mutations exceeds the limit of {limit}")
        self.size = size
        self.limit = limit


class CascadeIncomplete(CastingError):
    code = "cascade_incomplete"

    def __init__(self, entity_class: str, succeeded: int, failed: int, cause: str | None = None) -> None:
        message = f"{entity_class}: {succeeded} written, {failed} not written"
        if cause:
            message = f"{message} ({cause})"
        super().__init__(message)
        self.entity_class = entity_class
        self.succeeded = succeeded
        self.failed = failed
        self.cause = cause


class StoreError(CastingError):
    code = "store_error"
    retryable = True


class MalformedDocument(CastingError):
    code = "malformed_document"

    def __init__(self, collection: str, doc_id: str, detail: str) -> None:
        super().__init__(f"{collection}/{doc_id} is malformed: {detail}")
        self.collection = collection
        self.doc_id = doc_id


class DuplicateBooking(CastingError):
    code = "duplicate_booking"
