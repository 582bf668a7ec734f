"""Pydantic schemas for evaluations and the Radar API."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

SUB_SCORE_KEYS = (
    "clarity", "problem_value", "feasibility_signal",
    "originality", "impact_convert", "submission_readiness",
)


class Scores(BaseModel):
    clarity: float = Field(0.0, ge=0, le=10)
    problem_value: float = Field(0.0, ge=0, le=10)
    feasibility_signal: float = Field(0.0, ge=0, le=10)
    originality: float = Field(0.0, ge=0, le=10)
    impact_convert: float = Field(0.0, ge=0, le=10)
    submission_readiness: float = Field(0.0, ge=0, le=10)
    final_score: float = Field(0.0, ge=0, le=100)


class CategoryChange(BaseModel):
    category: str
    change: float
    why: str


class Delta(BaseModel):
    total_change: float = 0.0
    percent_change: float = 0.0
    direction: str = "stable"  # up | down | stable
    previous_entry_id: int | None = None
    previous_sequence: int | None = None
    category_changes: list[CategoryChange] = []


class Evaluation(BaseModel):
    scores: Scores
    evidence: list[str] = []
    gaps: list[str] = []
    recommendations: list[str] = []
    delta: Delta = Delta()
    degraded: bool = False
    llm_model: str = ""
    evaluated_at: datetime


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class ProjectCreate(BaseModel):
    team_name: str
    email: str


class SubmissionCreate(BaseModel):
    content: str
    type: str = "text"
    description: str | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class ProjectOut(BaseModel):
    id: int
    team_name: str
    email: str
    status: str
    created_at: str | None = None
    updated_at: str | None = None
    entry_count: int = 0
    current_score: float = 0.0
    last_evaluated_sequence: int | None = None


class EntryOut(BaseModel):
    id: int
    project_id: int
    sequence: int
    type: str
    content: str
    description: str
    created_at: str | None = None
    status: str
    attempts: int = 0
    evaluation: Evaluation | None = None


class SubmitResult(BaseModel):
    entry_id: int
    sequence: int
    status: str = "pending"


class LeaderboardRow(BaseModel):
    rank: int
    project_id: int
    team_name: str
    email: str
    scores: Scores
    last_evaluated_sequence: int | None = None
    entry_id: int | None = None
    degraded: bool = False


class SweepResult(BaseModel):
    rescheduled: list[int]
