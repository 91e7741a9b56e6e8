from __future__ import annotations

from dataclasses import dataclass, field

from castline.errors import IllegalTransition
from castline.types import EntityKind

LEGACY_SUBMISSION_STATUS: dict[str, str | None] = {
    "pending": None,
    "reviewed": "pinned",
    "selected": "booked",
    "rejected": "rejected",
}

PROJECT_TRANSITIONS: dict[str, frozenset[str]] = {
    "booking": frozenset({"booked", "archived"}),
    "booked": frozenset({"archived"}),
    "archived": frozenset(),
}

# None is a new, untriaged submission.
SUBMISSION_TRANSITIONS: dict[str | None, frozenset[str | None]] = {
    None: frozenset({"pinned", "booked", "rejected", "archived"}),
    "pinned": frozenset({None, "booked", "rejected", "archived"}),
    "rejected": frozenset({None, "pinned", "archived"}),
    "booked": frozenset({"pinned", "archived"}),
    "archived": frozenset({None}),
}

BOOKING_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "cancelled", "completed"}),
    "confirmed": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

ARCHIVE_STATUS: dict[str, str] = {
    "project": "archived",
    "submission": "archived",
    "booking": "completed",
}


@dataclass(slots=True, frozen=True)
class LegacyStatusMigration:
    old_status: str | None
    new_status: str | None
    removes_pinned_flag: bool

    @property
    def changed(self) -> bool:
        return self.removes_pinned_flag or self.new_status != self.old_status


@dataclass(slots=True)
class StatusTransitionValidator:
    """Pure checks for the casting status machines. No I/O."""

    graphs: dict[str, dict] = field(
        default_factory=lambda: {
            "project": PROJECT_TRANSITIONS,
            "submission": SUBMISSION_TRANSITIONS,
            "booking": BOOKING_TRANSITIONS,
        }
    )

    def validate(self, kind: EntityKind, current: str | None, requested: str | None) -> str | None:
        graph = self.graphs.get(kind)
        if graph is None:
            raise ValueError(f"unsupported entity kind '{kind}'")
        allowed = graph.get(current)
        if allowed is None or requested not in allowed:
            raise IllegalTransition(kind, current, requested)
        return requested

    def validate_project(self, current: str, requested: str) -> str:
        return self.validate("project", current, requested)

    def validate_submission(self, current: str | None, requested: str | None) -> str | None:
        return self.validate("submission", current, requested)

    def validate_booking(self, current: str, requested: str) -> str:
        return self.validate("booking", current, requested)

    def archive_status(self, kind: EntityKind) -> str:
        """Target status written by archival.

        Archival is an overwrite rather than a graph move, so re-running it
        over already archived documents writes the same values again.
        """
        return ARCHIVE_STATUS[kind]

    def migrate_legacy_submission_status(
        self,
        status: str | None,
        pinned_flag: bool | None = None,
        *,
        has_pinned_field: bool | None = None,
    ) -> LegacyStatusMigration:
        """Map a legacy status and decide whether the ``pinned`` field goes.

        ``has_pinned_field`` says whether the stored document has the key at
        all, so a stored ``pinned: null`` is removed too. Without it, only a
        non-null flag counts as present.
        """
        if status in LEGACY_SUBMISSION_STATUS:
            new_status = LEGACY_SUBMISSION_STATUS[status]
        else:
            new_status = status

        if pinned_flag is True and new_status is None:
            new_status = "pinned"

        if has_pinned_field is None:
            has_pinned_field = pinned_flag is not None
        return LegacyStatusMigration(
            old_status=status,
            new_status=new_status,
            removes_pinned_flag=has_pinned_field,
        )
