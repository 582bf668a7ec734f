"""Shared read operations and wiring for the Radar API and MCP server."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from radar.config import Settings, get_settings
from radar.content import ContentStore
from radar.db import Store
from radar.errors import NotFoundError
from radar.gateway import IngestionGateway
from radar.leaderboard import LeaderboardResolver
from radar.ledger import ScoreLedger
from radar.models import Project, TimelineEntry
from radar.orchestrator import EvaluationOrchestrator
from radar.scorer import ScoringEngine, default_engine
from radar.utils import entry_evaluation, isoformat

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


@dataclass
class Pipeline:
    """Every component, built once around a single store handle."""
    settings: Settings
    store: Store
    ledger: ScoreLedger
    orchestrator: EvaluationOrchestrator
    gateway: IngestionGateway
    leaderboard: LeaderboardResolver

    async def shutdown(self) -> None:
        await self.orchestrator.drain()
        self.store.close()


def open_pipeline(
    settings: Settings | None = None,
    engine: ScoringEngine | None = None,
    content: ContentStore | None = None,
) -> Pipeline:
    settings = settings or get_settings()
    store = Store(settings.database_path, busy_timeout=settings.store_timeout)
    ledger = ScoreLedger(store)
    orchestrator = EvaluationOrchestrator(
        ledger,
        engine if engine is not None else default_engine(),
        content or ContentStore(settings.uploads_dir),
        settings,
    )
    return Pipeline(
        settings=settings,
        store=store,
        ledger=ledger,
        orchestrator=orchestrator,
        gateway=IngestionGateway(store, ledger, orchestrator, settings),
        leaderboard=LeaderboardResolver(ledger),
    )


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def entry_summary(entry: TimelineEntry) -> dict:
    evaluation = entry_evaluation(entry)
    return {
        "id": entry.id, "project_id": entry.project_id, "sequence": entry.sequence,
        "type": entry.entry_type, "content": entry.content, "description": entry.description,
        "created_at": isoformat(entry.created_at),
        "status": "evaluated" if entry.is_evaluated else entry.status,
        "attempts": entry.attempts,
        "evaluation": evaluation.model_dump(mode="json") if evaluation is not None else None,
    }


def project_summary(project: Project, latest: TimelineEntry | None, entry_count: int) -> dict:
    return {
        "id": project.id, "team_name": project.team_name, "email": project.email,
        "status": project.status,
        "created_at": isoformat(project.created_at), "updated_at": isoformat(project.updated_at),
        "entry_count": entry_count,
        "current_score": (latest.final_score or 0.0) if latest is not None else 0.0,
        "last_evaluated_sequence": latest.sequence if latest is not None else None,
    }


# ---------------------------------------------------------------------------
# Read operations
# ---------------------------------------------------------------------------


def get_project(ledger: ScoreLedger, project_id: int) -> dict:
    project = ledger.get_project(project_id)
    if project is None:
        raise NotFoundError("Project", project_id)
    return project_summary(project, ledger.latest_evaluated(project_id), ledger.count_entries(project_id))


def list_projects(ledger: ScoreLedger) -> list[dict]:
    latest = ledger.latest_evaluated_all()
    return [
        project_summary(p, latest.get(p.id), ledger.count_entries(p.id))
        for p in ledger.all_projects()
    ]


def get_timeline(ledger: ScoreLedger, project_id: int) -> list[dict]:
    """All entries of a project, most recent sequence first."""
    if ledger.get_project(project_id) is None:
        raise NotFoundError("Project", project_id)
    return [entry_summary(e) for e in ledger.entries_for(project_id)]


def get_entry(ledger: ScoreLedger, entry_id: int) -> dict:
    entry = ledger.get_entry(entry_id)
    if entry is None:
        raise NotFoundError("Entry", entry_id)
    return entry_summary(entry)
