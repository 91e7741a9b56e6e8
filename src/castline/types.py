from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from castline.errors import CascadeIncomplete, MalformedDocument

logger = logging.getLogger(__name__)

PROJECTS = "projects"
ROLES = "roles"
SUBMISSIONS = "submissions"
BOOKINGS = "bookings"
PROFILES = "profiles"

ProjectStatus = Literal["booking", "booked", "archived"]
SubmissionStatus = Literal["pinned", "booked", "rejected", "archived"]
BookingStatus = Literal["pending", "confirmed", "completed", "cancelled"]
EntityKind = Literal["project", "submission", "booking"]
EntityClass = Literal["projects", "roles", "bookings", "submissions"]

PHYSICAL_SOURCES: dict[str, tuple[str, ...]] = {
    "appearance": (
        "gender",
        "ethnicity",
        "height",
        "weight",
        "hairColor",
        "hairLength",
        "eyeColor",
        "dateOfBirth",
    ),
    "sizes": (
        "shirtSize",
        "pantsWaist",
        "pantsInseam",
        "dressSize",
        "suitSize",
        "shoeSize",
        "shoeSizeGender",
    ),
    "details": (
        "visibleTattoos",
        "tattoosDescription",
        "piercings",
        "piercingsDescription",
        "facialHair",
    ),
}
PHYSICAL_FLAGS = frozenset({"visibleTattoos", "piercings"})
PHYSICAL_ATTRIBUTES: tuple[str, ...] = tuple(
    name for names in PHYSICAL_SOURCES.values() for name in names
)


def utcnow() -> datetime:
    return datetime.now(UTC)


def utcnow_iso() -> str:
    return utcnow().isoformat()


class Entity(BaseModel):
    """Base for documents read from the store.

    Field names are snake_case in Python and camelCase in the stored
    document. Unknown document fields are kept so that writing a model back
    never drops data owned by other parts of the platform.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    collection: ClassVar[str] = ""

    id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]):
        payload = {key: value for key, value in data.items() if key != "id"}
        try:
            return cls.model_validate({**payload, "id": doc_id})
        except ValidationError as exc:
            errors = "; ".join(
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
            )
            raise MalformedDocument(cls.collection, doc_id, errors) from exc

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude={"id"}, exclude_none=False)


class Project(Entity):
    collection: ClassVar[str] = PROJECTS

    title: str = ""
    status: ProjectStatus = "booking"
    shoot_date_start: str | None = None
    shoot_date_end: str | None = None
    archived_at: datetime | None = None
    archived_by: str | None = None

    @property
    def is_archived(self) -> bool:
        return self.status == "archived"


class Role(Entity):
    collection: ClassVar[str] = ROLES

    project_id: str
    name: str = ""
    requirements: str = ""
    rate: str = ""
    date: str | None = None
    location: str = ""
    archived_with_project: bool = False
    archived_individually: bool = False
    archive_reason: str = ""
    archived_at: datetime | None = None
    archived_by: str | None = None

    @model_validator(mode="before")
    @classmethod
    def normalize_archive_provenance(cls, data: Any) -> Any:
        # Older archive jobs set archivedWithProject without clearing
        # archivedIndividually; the project archive takes precedence.
        if not isinstance(data, dict):
            return data
        with_project = data.get("archivedWithProject", data.get("archived_with_project"))
        key = "archivedIndividually" if "archivedIndividually" in data else "archived_individually"
        if with_project and data.get(key):
            logger.warning("Role %s carries both archive flags; reading it as archived with its project", data.get("id"))
            data = {**data, key: False}
        return data

    @property
    def is_archived(self) -> bool:
        return self.archived_with_project or self.archived_individually


class Submission(Entity):
    collection: ClassVar[str] = SUBMISSIONS

    user_id: str = ""
    role_id: str
    role_name: str = ""
    project_id: str
    project_title: str = ""
    # Legacy documents may still hold pending/reviewed/selected until migrated.
    status: str | None = None
    pinned: bool | None = None
    profile_data: dict[str, Any] = Field(default_factory=dict)
    archived_with_project: bool = False
    archived_individually: bool = False


class Booking(Entity):
    collection: ClassVar[str] = BOOKINGS

    submission_id: str | None = None
    project_id: str
    role_id: str
    user_id: str = ""
    role_name: str = ""
    project_title: str = ""
    status: BookingStatus = "pending"
    confirmed_by: str | None = None
    confirmed_at: datetime | None = None
    talent_profile: dict[str, Any] | None = None
    special_instructions: str = ""
    internal_notes: str = ""
    talent_notified: bool = False
    talent_confirmed: bool = False
    archived_with_project: bool = False

    @property
    def is_active(self) -> bool:
        return not self.archived_with_project

    @property
    def has_physical_snapshot(self) -> bool:
        physical = (self.talent_profile or {}).get("physical") or {}
        return bool(physical.get("gender")) and bool(physical.get("ethnicity"))


class ClassOutcome(BaseModel):
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    batches: int = 0
    error: str | None = None

    @property
    def complete(self) -> bool:
        return self.failed == 0 and self.succeeded == self.total


class CascadeResult(BaseModel):
    project_id: str
    actor: str
    already_archived: bool = False
    cancelled: bool = False
    classes: dict[str, ClassOutcome] = Field(default_factory=dict)
    first_error: str | None = None

    @property
    def complete(self) -> bool:
        return not self.cancelled and all(outcome.complete for outcome in self.classes.values())

    def incomplete(self) -> list[CascadeIncomplete]:
        return [
            CascadeIncomplete(name, outcome.succeeded, outcome.total - outcome.succeeded, outcome.error)
            for name, outcome in self.classes.items()
            if not outcome.complete
        ]

    def raise_for_incomplete(self) -> None:
        failures = self.incomplete()
        if failures:
            raise failures[0]


class StaleProject(BaseModel):
    id: str
    title: str
    status: ProjectStatus
    shoot_date_end: str


class SweepResult(BaseModel):
    threshold: str
    dry_run: bool
    candidates: list[StaleProject] = Field(default_factory=list)
    results: list[CascadeResult] = Field(default_factory=list)

    @property
    def archived(self) -> int:
        return sum(1 for result in self.results if result.complete and not result.already_archived)


class RoleArchiveResult(BaseModel):
    role_id: str
    submissions_updated: int = 0


class ProposedFix(BaseModel):
    submission_id: str
    old_role_id: str
    new_role_id: str
    role_name: str
    project_id: str


class AmbiguousRoleMatch(BaseModel):
    submission_id: str
    role_id: str
    role_name: str
    project_id: str
    reason: Literal["no_match", "ambiguous"]
    candidates: list[str] = Field(default_factory=list)


class OrphanedBooking(BaseModel):
    booking_id: str
    role_id: str
    project_id: str
    user_id: str


class IntegrityReport(BaseModel):
    submissions_scanned: int = 0
    roles_scanned: int = 0
    valid: int = 0
    fixable: int = 0
    unresolved: int = 0
    proposed_fixes: list[ProposedFix] = Field(default_factory=list)
    unresolved_submissions: list[AmbiguousRoleMatch] = Field(default_factory=list)
    orphaned_bookings: list[OrphanedBooking] = Field(default_factory=list)

    @property
    def orphaned(self) -> int:
        return self.fixable + self.unresolved


class RepairResult(BaseModel):
    requested: int = 0
    applied: int = 0
    failed: int = 0
    batches: int = 0
    cancelled: bool = False
    first_error: str | None = None


class RemapResult(BaseModel):
    old_role_id: str
    new_role_id: str
    bookings: ClassOutcome = Field(default_factory=ClassOutcome)
    submissions: ClassOutcome = Field(default_factory=ClassOutcome)


class StatusChange(BaseModel):
    submission_id: str
    old_status: str | None
    new_status: str | None
    removed_pinned_flag: bool = False


class MigrationSummary(BaseModel):
    total: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: int = 0
    dry_run: bool = False
    changes: list[StatusChange] = Field(default_factory=list)


class BackfillSummary(BaseModel):
    total: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    dry_run: bool = False
    updated_ids: list[str] = Field(default_factory=list)
