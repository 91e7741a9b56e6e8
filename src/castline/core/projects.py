from __future__ import annotations

import logging

from castline.core.batching import CancelToken
from castline.core.cascade import CascadeArchiver
from castline.core.transitions import StatusTransitionValidator
from castline.db.repositories import Repository, update
from castline.db.store import DocumentStore
from castline.types import PROJECTS, CascadeResult, Project, utcnow_iso

logger = logging.getLogger(__name__)


class ProjectStatusService:
    def __init__(
        self,
        store: DocumentStore,
        *,
        archiver: CascadeArchiver | None = None,
        validator: StatusTransitionValidator | None = None,
    ):
        self.store = store
        self.repo = Repository(store)
        self.validator = validator or StatusTransitionValidator()
        self.archiver = archiver or CascadeArchiver(store, validator=self.validator)

    def advance(
        self,
        project_id: str,
        requested: str,
        actor: str,
        *,
        cancel: CancelToken | None = None,
    ) -> Project | CascadeResult:
        project = self.repo.get_project(project_id)
        self.validator.validate_project(project.status, requested)

        if requested == "archived":
            return self.archiver.archive_project(project_id, actor, cancel=cancel)

        self.store.batch_write([update(PROJECTS, project_id, {"status": requested, "updatedAt": utcnow_iso()})])
        logger.info("Project status advanced project_id=%s %s->%s actor=%s", project_id, project.status, requested, actor)
        return self.repo.get_project(project_id)
