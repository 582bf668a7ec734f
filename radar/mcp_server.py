import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import Context, FastMCP

from radar import services
from radar.config import get_settings
from radar.errors import ConflictError, NotFoundError, PersistenceError, RadarError, ValidationError
from radar.services import Pipeline, open_pipeline

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def radar_lifespan(server: FastMCP) -> AsyncIterator[Pipeline]:
    pipeline = open_pipeline()
    await pipeline.orchestrator.sweep()
    try:
        yield pipeline
    finally:
        await pipeline.shutdown()


mcp = FastMCP(
    "HackRadar",
    instructions=(
        "HackRadar tracks hackathon projects and scores every timeline update with an LLM judge. "
        "Start with get_leaderboard() for the standings, list_projects() to browse, "
        "submit_update(project_id, content) to add an update, then get_entry(entry_id) "
        "to read its evaluation once scoring finishes."
    ),
    lifespan=radar_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _pipeline(ctx: Context) -> Pipeline:
    return ctx.request_context.lifespan_context


def _error(exc: RadarError) -> dict:
    if isinstance(exc, ConflictError):
        code = "conflict"
    elif isinstance(exc, ValidationError):
        code = "validation"
    elif isinstance(exc, NotFoundError):
        code = "not_found"
    elif isinstance(exc, PersistenceError):
        code = "persistence"
    else:
        code = "error"
    return {"error": str(exc), "error_code": code}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("radar://overview")
def radar_overview() -> str:
    """Overview of HackRadar: data model, workflow, and scoring rubric."""
    return json.dumps({
        "system": "HackRadar: live scoring for hackathon projects",
        "data_model": {
            "project": "A registered hackathon team with a unique team name and email.",
            "entry": "One timeline update (text, link, file or image). Carries a per-project sequence number.",
            "evaluation": "Sub-scores, evidence, gaps, recommendations and the delta to the previous evaluated entry.",
        },
        "workflow": [
            "1. register_project(team_name, email) to create a project.",
            "2. submit_update(project_id, content, entry_type) returns an entry id immediately.",
            "3. get_entry(entry_id) shows status pending until scoring finishes.",
            "4. get_timeline(project_id) lists every update, newest sequence first.",
            "5. get_leaderboard() ranks projects by their latest evaluated entry.",
        ],
        "scores": {
            "clarity": "0-10, weight 0.15",
            "problem_value": "0-10, weight 0.20",
            "feasibility_signal": "0-10, weight 0.15",
            "originality": "0-10, weight 0.15",
            "impact_convert": "0-10, weight 0.20",
            "submission_readiness": "0-10, weight 0.15",
            "final_score": "0-100, weighted sum times 10",
        },
        "degraded": "True when the LLM judge was unavailable and a heuristic fallback produced the scores.",
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Projects
# ---------------------------------------------------------------------------


@mcp.tool()
def register_project(team_name: str, email: str, ctx: Context) -> dict:
    """Register a new hackathon project. Team name and email must both be unused."""
    pipeline = _pipeline(ctx)
    try:
        project = pipeline.gateway.register_project(team_name, email)
    except RadarError as exc:
        return _error(exc)
    return services.project_summary(project, None, 0)


@mcp.tool()
def list_projects(ctx: Context) -> list[dict]:
    """List every project with its current score and entry count."""
    return services.list_projects(_pipeline(ctx).ledger)


# ---------------------------------------------------------------------------
# Tools: Timeline
# ---------------------------------------------------------------------------


@mcp.tool()
async def submit_update(
    project_id: int, content: str, ctx: Context,
    entry_type: str = "text", description: str | None = None,
) -> dict:
    """Submit a timeline update. Scoring runs in the background.

    Args:
        project_id: Project to add the update to.
        content: The text itself, a URL for type "link", or an uploads-relative path for "file"/"image".
        entry_type: One of text, link, file, image.
        description: Optional one-line summary; derived from the content when omitted.
    """
    pipeline = _pipeline(ctx)
    try:
        entry = await pipeline.gateway.record(project_id, content, entry_type=entry_type, description=description)
    except RadarError as exc:
        return _error(exc)
    return {"entry_id": entry.id, "sequence": entry.sequence, "status": "pending"}


@mcp.tool()
def get_timeline(project_id: int, ctx: Context) -> list[dict] | dict:
    """All entries of a project, newest sequence first, with their evaluations."""
    try:
        return services.get_timeline(_pipeline(ctx).ledger, project_id)
    except NotFoundError as exc:
        return _error(exc)


@mcp.tool()
def get_entry(entry_id: int, ctx: Context) -> dict:
    """One entry with its evaluation. Evaluation is null while status is pending."""
    try:
        return services.get_entry(_pipeline(ctx).ledger, entry_id)
    except NotFoundError as exc:
        return _error(exc)


# ---------------------------------------------------------------------------
# Tools: Leaderboard & Admin
# ---------------------------------------------------------------------------


@mcp.tool()
def get_leaderboard(ctx: Context) -> list[dict]:
    """Projects ranked by the final score of their latest evaluated entry."""
    rows = _pipeline(ctx).leaderboard.get_leaderboard()
    return [row.model_dump(mode="json") for row in rows]


@mcp.tool()
async def sweep_pending(ctx: Context) -> dict:
    """Reschedule evaluation for every entry that is still pending or failed."""
    try:
        rescheduled = await _pipeline(ctx).orchestrator.sweep()
    except PersistenceError as exc:
        return _error(exc)
    return {"rescheduled": rescheduled}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the HackRadar MCP server over stdio."""
    # stdout carries the protocol; basicConfig logs to stderr
    logging.basicConfig(level=get_settings().log_level.upper())
    mcp.run()


if __name__ == "__main__":
    main()
