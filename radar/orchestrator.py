"""Evaluation orchestrator: scores one timeline entry per task.

Each entry gets exactly one tracked asyncio task.  Tasks never coordinate with
each other; the only shared resource is the store, and the only entry mutation
is the ledger's conditional ``commit_evaluation``.

Pipeline per entry
------------------
1. Build a bounded, deterministically truncated prompt context from the entry
   and the project's most recent earlier entries.
2. Ask the scoring engine (under a timeout) and validate its answer.
3. On any engine problem fall back to the heuristic evaluation (``degraded``).
4. Read the latest evaluated entry with a smaller sequence and compute the
   delta.  This is re-read on every commit attempt, so two evaluations in
   flight for one project each see whatever was latest when they commit.
5. Commit, retrying store failures with exponential backoff.  Exhausted
   retries flag the entry ``failed`` for :meth:`EvaluationOrchestrator.sweep`.

Suspension points are the engine call and store calls; store calls run in a
worker thread bounded by ``store_timeout``.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any

from radar.config import Settings, get_settings
from radar.content import ContentStore
from radar.db import call_bounded
from radar.errors import NotFoundError, PersistenceError
from radar.ledger import ScoreLedger
from radar.models import TimelineEntry
from radar.schemas import SUB_SCORE_KEYS, CategoryChange, Delta, Evaluation, Scores
from radar.scorer import ScoringEngine, build_evaluation, fallback_evaluation, validate_engine_response
from radar.utils import entry_evaluation

log = logging.getLogger(__name__)

_CHANGE_EXPLANATIONS: dict[str, tuple[str, str]] = {
    "clarity": ("Message became clearer", "Message clarity decreased"),
    "problem_value": ("Better problem articulation", "Problem less clear"),
    "feasibility_signal": ("More evidence of working solution", "Feasibility concerns"),
    "originality": ("Innovation highlighted", "Less differentiation shown"),
    "impact_convert": ("Stronger conversion potential", "Weaker call-to-action"),
    "submission_readiness": ("More artifacts submitted", "Missing components"),
}


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def build_prompt_context(
    team_name: str,
    entry: TimelineEntry,
    text: str,
    prior: list[tuple[TimelineEntry, str]],
    max_chars: int,
) -> str:
    """Render the current entry first, then earlier ones, and cut at *max_chars*."""
    sections = [
        f"PROJECT: {team_name}",
        f"SUBMISSION #{entry.sequence} ({entry.entry_type.upper()})",
    ]
    if entry.description:
        sections.append(f"DESCRIPTION: {entry.description}")
    sections.append(text)
    for earlier, earlier_text in prior:
        sections.append(f"\n--- EARLIER SUBMISSION #{earlier.sequence} ({earlier.entry_type.upper()}) ---")
        if earlier.description:
            sections.append(f"DESCRIPTION: {earlier.description}")
        sections.append(earlier_text)
    return "\n".join(sections)[:max_chars]


def explain_change(category: str, change: float) -> str:
    up, down = _CHANGE_EXPLANATIONS.get(category, (f"{category} improved", f"{category} declined"))
    return up if change > 0 else down


def compute_delta(current: Scores, previous: TimelineEntry | None) -> Delta:
    """Signed change against *previous*, the nearest earlier evaluated entry."""
    if previous is None or previous.final_score is None:
        return Delta()
    prev_final = previous.final_score
    total = round(current.final_score - prev_final, 1)
    percent = round(abs(total / prev_final * 100), 1) if prev_final > 0 else 0.0

    changes: list[CategoryChange] = []
    prev_eval = entry_evaluation(previous)
    if prev_eval is not None:
        for key in SUB_SCORE_KEYS:
            change = round(getattr(current, key) - getattr(prev_eval.scores, key), 1)
            if abs(change) > 0.5:
                changes.append(CategoryChange(category=key, change=change, why=explain_change(key, change)))

    return Delta(
        total_change=total,
        percent_change=percent,
        direction="up" if total > 0 else "down" if total < 0 else "stable",
        previous_entry_id=previous.id,
        previous_sequence=previous.sequence,
        category_changes=changes,
    )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class EvaluationOrchestrator:
    def __init__(
        self,
        ledger: ScoreLedger,
        engine: ScoringEngine,
        content: ContentStore,
        settings: Settings | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.ledger = ledger
        self.engine = engine
        self.content = content
        self.settings = settings or get_settings()
        self._sleep = sleep
        self._tasks: dict[int, asyncio.Task] = {}

    # -----------------------------------------------------------------------
    # Task tracking
    # -----------------------------------------------------------------------

    def schedule(self, entry_id: int) -> asyncio.Task:
        """Start the evaluation task for *entry_id*, or return the one in flight."""
        task = self._tasks.get(entry_id)
        if task is not None and not task.done():
            return task
        task = asyncio.create_task(self.run(entry_id), name=f"evaluate-entry-{entry_id}")
        self._tasks[entry_id] = task
        task.add_done_callback(partial(self._forget, entry_id))
        log.info("Scheduled evaluation for entry %s", entry_id)
        return task

    def _forget(self, entry_id: int, task: asyncio.Task) -> None:
        if self._tasks.get(entry_id) is task:
            del self._tasks[entry_id]
        if not task.cancelled() and task.exception() is not None:
            log.error("Evaluation task for entry %s stopped: %s", entry_id, task.exception())

    def in_flight(self) -> list[int]:
        return sorted(self._tasks)

    async def drain(self) -> None:
        """Wait until every tracked task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def sweep(self) -> list[int]:
        """Reschedule every unevaluated entry that has no task in flight."""
        rescheduled: list[int] = []
        for entry_id in await self._store_call(self.ledger.stuck_entries):
            if entry_id in self._tasks:
                continue
            self.schedule(entry_id)
            rescheduled.append(entry_id)
        if rescheduled:
            log.info("Sweep rescheduled %d entries: %s", len(rescheduled), rescheduled)
        return rescheduled

    # -----------------------------------------------------------------------
    # Pipeline
    # -----------------------------------------------------------------------

    async def run(self, entry_id: int) -> Evaluation | None:
        """Evaluate one entry. Returns the committed evaluation, or ``None`` if nothing was written."""
        entry = await self._store_call(self.ledger.get_entry, entry_id)
        if entry is None:
            raise NotFoundError("Entry", entry_id)
        if entry.is_evaluated:
            log.info("Entry %s already evaluated, nothing to do", entry_id)
            return None

        context = await self.build_context(entry)
        evaluation = await self.judge(entry, context)
        return await self.commit(entry, evaluation)

    async def build_context(self, entry: TimelineEntry) -> str:
        prior = await self._store_call(
            self.ledger.entries_for, entry.project_id, self.settings.context_entries, entry.sequence,
        )
        project = await self._store_call(self.ledger.get_project, entry.project_id)
        team_name = project.team_name if project is not None else f"project {entry.project_id}"

        text = await self.content.resolve(entry.entry_type, entry.content)
        prior_texts = [(e, await self.content.resolve(e.entry_type, e.content)) for e in prior]
        return build_prompt_context(team_name, entry, text, prior_texts, self.settings.max_context_chars)

    async def judge(self, entry: TimelineEntry, context: str) -> Evaluation:
        """Engine evaluation, or the degraded fallback on any engine problem."""
        timeout = self.settings.engine_timeout
        try:
            raw = await asyncio.wait_for(self.engine.score(context, timeout), timeout)
            judgment = validate_engine_response(raw)
        except Exception as exc:
            log.warning("Scoring engine failed for entry %s, using fallback: %s", entry.id, exc)
            return fallback_evaluation(entry.entry_type, entry.content, entry.description)
        return build_evaluation(judgment, degraded=False, model=getattr(self.engine, "model", ""))

    async def commit(self, entry: TimelineEntry, evaluation: Evaluation) -> Evaluation | None:
        attempts = max(1, self.settings.commit_attempts)
        delay = self.settings.commit_backoff
        last_error = ""
        for attempt in range(1, attempts + 1):
            try:
                await self._store_call(self.ledger.record_attempt, entry.id)
                previous = await self._store_call(
                    self.ledger.latest_evaluated, entry.project_id, entry.sequence,
                )
                final = evaluation.model_copy(update={"delta": compute_delta(evaluation.scores, previous)})
                applied = await self._store_call(self.ledger.commit_evaluation, entry.id, final)
            except PersistenceError as exc:
                last_error = str(exc)
                log.warning("Commit attempt %d/%d for entry %s failed: %s", attempt, attempts, entry.id, exc)
                if attempt < attempts:
                    await self._sleep(delay)
                    delay = min(delay * 2, self.settings.commit_backoff_max)
                continue
            if not applied:
                log.info("Entry %s was evaluated elsewhere first; keeping that evaluation", entry.id)
                return None
            return final

        log.error("Giving up on entry %s after %d commit attempts, flagged for reprocessing", entry.id, attempts)
        try:
            await self._store_call(self.ledger.mark_failed, entry.id, last_error)
        except PersistenceError as exc:
            log.error("Could not flag entry %s as failed, it stays pending: %s", entry.id, exc)
        return None

    async def _store_call(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await call_bounded(fn, *args, timeout=self.settings.store_timeout)
