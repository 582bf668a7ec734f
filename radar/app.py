from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request

from radar import services
from radar.config import get_settings
from radar.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from radar.schemas import (
    EntryOut,
    LeaderboardRow,
    ProjectCreate,
    ProjectOut,
    SubmissionCreate,
    SubmitResult,
    SweepResult,
)
from radar.services import Pipeline, open_pipeline

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # A pipeline placed on app.state beforehand (tests) is used as-is and left open
    pipeline: Pipeline | None = getattr(app.state, "pipeline", None)
    owned = pipeline is None
    if owned:
        pipeline = open_pipeline()
        app.state.pipeline = pipeline
        await pipeline.orchestrator.sweep()
    try:
        yield
    finally:
        if owned:
            await pipeline.shutdown()
            del app.state.pipeline
        else:
            await pipeline.orchestrator.drain()


app = FastAPI(
    title="HackRadar",
    version="0.1.0",
    description=(
        "Hackathon project tracker. Teams register, submit timeline updates, "
        "and every update is scored asynchronously by an LLM judge. "
        "The leaderboard always reflects each project's most recent evaluated update."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Projects", "description": "Register and browse hackathon projects."},
        {"name": "Timeline", "description": "Submit updates and read evaluated timeline entries."},
        {"name": "Leaderboard", "description": "Latest score per project, highest first."},
        {"name": "Admin", "description": "Administrative operations."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline


def _raise_http(exc: Exception):
    """Translate a domain error into the matching HTTP status."""
    if isinstance(exc, ConflictError):
        raise HTTPException(409, str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(400, str(exc)) from exc
    if isinstance(exc, NotFoundError):
        raise HTTPException(404, str(exc)) from exc
    if isinstance(exc, PersistenceError):
        log.error("Store failure while handling request: %s", exc)
        raise HTTPException(503, "Storage temporarily unavailable") from exc
    raise exc


# ---------------------------------------------------------------------------
# Routes: Projects
# ---------------------------------------------------------------------------


@app.post("/api/projects", response_model=ProjectOut, status_code=201,
          tags=["Projects"], summary="Register a new hackathon project")
async def register_project(body: ProjectCreate, pipeline: Pipeline = Depends(get_pipeline)):
    try:
        project = pipeline.gateway.register_project(body.team_name, body.email)
    except (ValidationError, PersistenceError) as exc:
        _raise_http(exc)
    return services.project_summary(project, None, 0)


@app.get("/api/projects", response_model=list[ProjectOut],
         tags=["Projects"], summary="List all projects with their current score")
async def list_projects(pipeline: Pipeline = Depends(get_pipeline)):
    return services.list_projects(pipeline.ledger)


@app.get("/api/projects/{project_id}", response_model=ProjectOut,
         tags=["Projects"], summary="Get one project with its current score")
async def get_project(project_id: int, pipeline: Pipeline = Depends(get_pipeline)):
    try:
        return services.get_project(pipeline.ledger, project_id)
    except NotFoundError as exc:
        _raise_http(exc)


# ---------------------------------------------------------------------------
# Routes: Timeline
# ---------------------------------------------------------------------------


@app.post("/api/projects/{project_id}/entries", response_model=SubmitResult, status_code=202,
          tags=["Timeline"], summary="Submit an update; it is evaluated in the background")
async def submit_entry(project_id: int, body: SubmissionCreate, pipeline: Pipeline = Depends(get_pipeline)):
    try:
        entry = await pipeline.gateway.record(
            project_id, body.content, entry_type=body.type, description=body.description,
        )
    except (ValidationError, NotFoundError, PersistenceError) as exc:
        _raise_http(exc)
    return {"entry_id": entry.id, "sequence": entry.sequence, "status": "pending"}


@app.get("/api/projects/{project_id}/timeline", response_model=list[EntryOut],
         tags=["Timeline"], summary="All entries of a project, newest sequence first")
async def get_timeline(project_id: int, pipeline: Pipeline = Depends(get_pipeline)):
    try:
        return services.get_timeline(pipeline.ledger, project_id)
    except NotFoundError as exc:
        _raise_http(exc)


@app.get("/api/entries/{entry_id}", response_model=EntryOut,
         tags=["Timeline"], summary="One entry with its evaluation (null while pending)")
async def get_entry(entry_id: int, pipeline: Pipeline = Depends(get_pipeline)):
    try:
        return services.get_entry(pipeline.ledger, entry_id)
    except NotFoundError as exc:
        _raise_http(exc)


# ---------------------------------------------------------------------------
# Routes: Leaderboard
# ---------------------------------------------------------------------------


@app.get("/api/leaderboard", response_model=list[LeaderboardRow],
         tags=["Leaderboard"], summary="Ranked latest scores for every project")
async def get_leaderboard(pipeline: Pipeline = Depends(get_pipeline)):
    return pipeline.leaderboard.get_leaderboard()


# ---------------------------------------------------------------------------
# Routes: Admin
# ---------------------------------------------------------------------------


@app.post("/api/admin/sweep", response_model=SweepResult,
          tags=["Admin"], summary="Reschedule every pending or failed entry")
async def sweep(pipeline: Pipeline = Depends(get_pipeline)):
    try:
        rescheduled = await pipeline.orchestrator.sweep()
    except PersistenceError as exc:
        _raise_http(exc)
    return {"rescheduled": rescheduled}


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("radar.app:app", host="127.0.0.1", port=8001)


if __name__ == "__main__":
    main()
