"""Leaderboard resolver.

A project's standing is the evaluation on its highest-*sequence* evaluated
entry.  Pending entries never hide an earlier score, an older entry that
finished scoring late never supersedes a newer one, and projects with no
evaluated entry are listed last with zero scores.  Ties break on ascending
project id so the ranking is fully deterministic.
"""
from __future__ import annotations

import logging

from radar.ledger import ScoreLedger
from radar.schemas import LeaderboardRow, Scores
from radar.utils import entry_evaluation

log = logging.getLogger(__name__)


class LeaderboardResolver:
    def __init__(self, ledger: ScoreLedger):
        self.ledger = ledger

    def get_leaderboard(self) -> list[LeaderboardRow]:
        projects = self.ledger.all_projects()
        latest = self.ledger.latest_evaluated_all()

        rows: list[dict] = []
        for project in projects:
            row = {
                "project_id": project.id,
                "team_name": project.team_name,
                "email": project.email,
                "scores": Scores(),
                "last_evaluated_sequence": None,
                "entry_id": None,
                "degraded": False,
            }
            entry = latest.get(project.id)
            if entry is not None:
                evaluation = entry_evaluation(entry)
                row["scores"] = (
                    evaluation.scores if evaluation is not None
                    else Scores(final_score=entry.final_score or 0.0)
                )
                row["last_evaluated_sequence"] = entry.sequence
                row["entry_id"] = entry.id
                row["degraded"] = entry.degraded
            rows.append(row)

        rows.sort(key=lambda r: (
            r["last_evaluated_sequence"] is None, -r["scores"].final_score, r["project_id"],
        ))
        return [LeaderboardRow(rank=i, **row) for i, row in enumerate(rows, start=1)]
