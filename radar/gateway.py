from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from radar.config import Settings, get_settings
from radar.db import Store, call_bounded
from radar.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from radar.ledger import ScoreLedger
from radar.models import Project, TimelineEntry
from radar.orchestrator import EvaluationOrchestrator
from radar.validation import validate_project, validate_submission

log = logging.getLogger(__name__)


def describe_submission(entry_type: str, content: str) -> str:
    """Short human summary shown on the timeline."""
    content = content.strip()
    if entry_type == "text":
        first_line = content.splitlines()[0] if content else ""
        return first_line[:80] + ("..." if len(first_line) > 80 else "")
    if entry_type == "link":
        return f"Link: {content[:200]}"
    return f"{entry_type.capitalize()}: {content.rsplit('/', 1)[-1][:200]}"


class IngestionGateway:
    """Accepts registrations and submissions.

    ``submit`` performs one durable write and hands the new entry to the
    orchestrator without waiting for its evaluation.
    """

    def __init__(
        self,
        store: Store,
        ledger: ScoreLedger,
        orchestrator: EvaluationOrchestrator,
        settings: Settings | None = None,
    ):
        self.store = store
        self.ledger = ledger
        self.orchestrator = orchestrator
        self.settings = settings or get_settings()

    def register_project(self, team_name: str, email: str) -> Project:
        result = validate_project(team_name, email)
        if not result.ok:
            raise ValidationError(result.reasons)
        team_name, email = team_name.strip(), email.strip().lower()
        now = datetime.now(UTC)
        try:
            with self.store.session_scope() as session:
                existing = session.execute(
                    select(Project.id).where(or_(Project.team_name == team_name, Project.email == email))
                ).first()
                if existing:
                    raise ConflictError("Project with this team name or email already exists")
                project = Project(
                    team_name=team_name, email=email, status="active",
                    last_sequence=0, created_at=now, updated_at=now,
                )
                session.add(project)
                session.commit()
        except IntegrityError as exc:
            raise ConflictError("Project with this team name or email already exists") from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not register project: {exc}") from exc
        log.info("Registered project %s (%s)", project.id, team_name)
        return project

    async def submit(
        self,
        project_id: int,
        content: str,
        entry_type: str = "text",
        description: str | None = None,
    ) -> int:
        """Record a submission and schedule its evaluation. Returns the new entry id."""
        entry = await self.record(project_id, content, entry_type, description)
        return entry.id

    async def record(
        self,
        project_id: int,
        content: str,
        entry_type: str = "text",
        description: str | None = None,
    ) -> TimelineEntry:
        """Like :meth:`submit`, but returns the stored entry with its sequence.

        Store calls run in a worker thread bounded by ``store_timeout``. An
        insert that lands after the timeout stays pending and is picked up by
        the orchestrator's sweep.
        """
        result = validate_submission(entry_type, content, self.settings.max_content_chars)
        if not result.ok:
            raise ValidationError(result.reasons)
        timeout = self.settings.store_timeout
        if await call_bounded(self.ledger.get_project, project_id, timeout=timeout) is None:
            raise NotFoundError("Project", project_id)

        content = content.strip()
        entry = await call_bounded(
            self.ledger.insert, project_id, entry_type, content,
            description=(description or "").strip()[:300] or describe_submission(entry_type, content),
            timeout=timeout,
        )
        self.orchestrator.schedule(entry.id)
        return entry
