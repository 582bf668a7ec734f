"""Score ledger: the append-only, per-project log of timeline entries.

The ledger owns the two things every other component relies on:

- **sequence**: allocated here by an atomic increment of the project's
  counter, strictly increasing and unique per project.  It is the only
  ordering key; ``created_at`` is never used to decide what is "latest".
- **commit_evaluation**: a single conditional UPDATE that attaches an
  evaluation to an entry that has none.  An entry is therefore either
  unevaluated or fully evaluated, and a second commit is a no-op.

All methods are synchronous and open their own session from the store
handle; the orchestrator runs them in a worker thread under a timeout.
SQLAlchemy failures are surfaced as :class:`PersistenceError`.
"""
from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from radar.db import Store
from radar.errors import NotFoundError, PersistenceError
from radar.models import Project, TimelineEntry
from radar.schemas import Evaluation

log = logging.getLogger(__name__)


class ScoreLedger:
    def __init__(self, store: Store):
        self.store = store

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def next_sequence(self, session: Session, project_id: int) -> int:
        """Advance and return the project's sequence counter inside *session*'s transaction."""
        result = session.execute(
            update(Project)
            .where(Project.id == project_id)
            .values(last_sequence=Project.last_sequence + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Project", project_id)
        return session.execute(
            select(Project.last_sequence).where(Project.id == project_id)
        ).scalar_one()

    def insert(
        self, project_id: int, entry_type: str, content: str, description: str = "",
    ) -> TimelineEntry:
        """Create an unevaluated entry with the next sequence number."""
        try:
            with self.store.session_scope() as session:
                sequence = self.next_sequence(session, project_id)
                now = datetime.now(UTC)
                entry = TimelineEntry(
                    project_id=project_id, sequence=sequence, entry_type=entry_type,
                    content=content, description=description, created_at=now,
                    status="pending", attempts=0, last_error="",
                )
                session.add(entry)
                session.execute(
                    update(Project)
                    .where(Project.id == project_id)
                    .values(
                        updated_at=now,
                        status=case((Project.status == "active", "submitted"), else_=Project.status),
                    )
                    .execution_options(synchronize_session=False)
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not insert entry for project {project_id}: {exc}") from exc
        log.info("Inserted entry %s (project=%s, seq=%s)", entry.id, project_id, sequence)
        return entry

    def commit_evaluation(self, entry_id: int, evaluation: Evaluation) -> bool:
        """Attach *evaluation* to an unevaluated entry.

        Returns ``False`` without writing when the entry already carries an
        evaluation, so the first successful commit always wins.
        """
        values = {
            "evaluation_json": evaluation.model_dump_json(),
            "final_score": evaluation.scores.final_score,
            "degraded": evaluation.degraded,
            "evaluated_at": evaluation.evaluated_at,
            "status": "evaluated",
            "last_error": "",
        }
        try:
            with self.store.session_scope() as session:
                result = session.execute(
                    update(TimelineEntry)
                    .where(TimelineEntry.id == entry_id, TimelineEntry.evaluated_at.is_(None))
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                project_id = session.execute(
                    select(TimelineEntry.project_id).where(TimelineEntry.id == entry_id)
                ).scalar_one_or_none()
                if project_id is None:
                    raise NotFoundError("Entry", entry_id)
                if result.rowcount == 0:
                    log.info("Entry %s already evaluated, commit skipped", entry_id)
                    return False
                session.execute(
                    update(Project)
                    .where(Project.id == project_id)
                    .values(status="evaluated")
                    .execution_options(synchronize_session=False)
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not commit evaluation for entry {entry_id}: {exc}") from exc
        log.info("Committed evaluation for entry %s (final=%.1f, degraded=%s)",
                 entry_id, evaluation.scores.final_score, evaluation.degraded)
        return True

    def record_attempt(self, entry_id: int) -> None:
        self._update_unevaluated(entry_id, attempts=TimelineEntry.attempts + 1)

    def mark_failed(self, entry_id: int, reason: str) -> None:
        """Flag an entry for the reprocessing sweep. Evaluated entries are left alone."""
        self._update_unevaluated(entry_id, status="failed", last_error=reason[:2000])

    def _update_unevaluated(self, entry_id: int, **values) -> None:
        try:
            with self.store.session_scope() as session:
                session.execute(
                    update(TimelineEntry)
                    .where(TimelineEntry.id == entry_id, TimelineEntry.evaluated_at.is_(None))
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not update entry {entry_id}: {exc}") from exc

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get_project(self, project_id: int) -> Project | None:
        with self.store.session_scope() as session:
            return session.get(Project, project_id)

    def all_projects(self) -> list[Project]:
        with self.store.session_scope() as session:
            return list(session.execute(select(Project).order_by(Project.id)).scalars().all())

    def get_entry(self, entry_id: int) -> TimelineEntry | None:
        with self.store.session_scope() as session:
            return session.get(TimelineEntry, entry_id)

    def entries_for(
        self, project_id: int, limit: int | None = None, before_sequence: int | None = None,
    ) -> list[TimelineEntry]:
        """Entries of a project, highest sequence first."""
        query = select(TimelineEntry).where(TimelineEntry.project_id == project_id)
        if before_sequence is not None:
            query = query.where(TimelineEntry.sequence < before_sequence)
        query = query.order_by(TimelineEntry.sequence.desc())
        if limit is not None:
            query = query.limit(limit)
        with self.store.session_scope() as session:
            return list(session.execute(query).scalars().all())

    def latest_evaluated(self, project_id: int, before_sequence: int | None = None) -> TimelineEntry | None:
        """The evaluated entry with the highest sequence, optionally below *before_sequence*."""
        query = select(TimelineEntry).where(
            TimelineEntry.project_id == project_id,
            TimelineEntry.evaluated_at.is_not(None),
        )
        if before_sequence is not None:
            query = query.where(TimelineEntry.sequence < before_sequence)
        query = query.order_by(TimelineEntry.sequence.desc()).limit(1)
        with self.store.session_scope() as session:
            return session.execute(query).scalars().first()

    def latest_evaluated_all(self) -> dict[int, TimelineEntry]:
        """``latest_evaluated`` for every project in one grouped query."""
        latest = (
            select(TimelineEntry.project_id, func.max(TimelineEntry.sequence).label("max_seq"))
            .where(TimelineEntry.evaluated_at.is_not(None))
            .group_by(TimelineEntry.project_id)
            .subquery()
        )
        query = select(TimelineEntry).join(
            latest,
            (TimelineEntry.project_id == latest.c.project_id)
            & (TimelineEntry.sequence == latest.c.max_seq),
        )
        with self.store.session_scope() as session:
            return {e.project_id: e for e in session.execute(query).scalars().all()}

    def count_entries(self, project_id: int) -> int:
        with self.store.session_scope() as session:
            return session.execute(
                select(func.count(TimelineEntry.id)).where(TimelineEntry.project_id == project_id)
            ).scalar_one()

    def stuck_entries(self) -> list[int]:
        """Ids of entries still waiting for an evaluation (pending or failed)."""
        with self.store.session_scope() as session:
            return list(session.execute(
                select(TimelineEntry.id)
                .where(TimelineEntry.evaluated_at.is_(None))
                .order_by(TimelineEntry.id)
            ).scalars().all())
