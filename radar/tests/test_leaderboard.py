"""Tests for leaderboard resolution."""
from __future__ import annotations

from datetime import UTC, datetime

import pytest

from radar.db import Store
from radar.leaderboard import LeaderboardResolver
from radar.ledger import ScoreLedger
from radar.models import Project
from radar.schemas import Evaluation, Scores


@pytest.fixture()
def store(tmp_path):
    s = Store(tmp_path / "radar.db")
    yield s
    s.close()


@pytest.fixture()
def ledger(store):
    return ScoreLedger(store)


@pytest.fixture()
def resolver(ledger):
    return LeaderboardResolver(ledger)


def add_project(store: Store, name: str) -> int:
    with store.session_scope() as session:
        project = Project(team_name=name, email=f"{name.lower()}@hack.dev", last_sequence=0)
        session.add(project)
        session.commit()
        return project.id


def evaluate(ledger: ScoreLedger, project_id: int, final: float, degraded: bool = False) -> int:
    entry = ledger.insert(project_id, "text", f"scored {final}")
    evaluation = Evaluation(
        scores=Scores(clarity=final / 10, final_score=final),
        degraded=degraded,
        evaluated_at=datetime.now(UTC),
    )
    ledger.commit_evaluation(entry.id, evaluation)
    return entry.id


class TestLeaderboard:
    def test_empty(self, resolver):
        assert resolver.get_leaderboard() == []

    def test_unscored_projects_listed_with_zeros(self, store, ledger, resolver):
        a = add_project(store, "Alpha")
        b = add_project(store, "Beta")
        ledger.insert(b, "text", "pending only")
        evaluate(ledger, a, 35.0)

        rows = resolver.get_leaderboard()
        assert [r.project_id for r in rows] == [a, b]
        assert rows[1].scores == Scores()
        assert rows[1].last_evaluated_sequence is None
        assert rows[1].entry_id is None

    def test_sorted_by_final_then_project_id(self, store, ledger, resolver):
        ids = [add_project(store, name) for name in ("Alpha", "Beta", "Gamma", "Delta")]
        evaluate(ledger, ids[0], 50.0)
        evaluate(ledger, ids[1], 80.0)
        evaluate(ledger, ids[2], 50.0)

        rows = resolver.get_leaderboard()
        assert [r.project_id for r in rows] == [ids[1], ids[0], ids[2], ids[3]]
        assert [r.rank for r in rows] == [1, 2, 3, 4]

    def test_latest_sequence_wins_even_when_lower(self, store, ledger, resolver):
        pid = add_project(store, "Alpha")
        evaluate(ledger, pid, 90.0)
        latest = evaluate(ledger, pid, 40.0, degraded=True)

        row = resolver.get_leaderboard()[0]
        assert row.scores.final_score == 40.0
        assert row.entry_id == latest
        assert row.last_evaluated_sequence == 2
        assert row.degraded is True

    def test_pending_entry_keeps_previous_score(self, store, ledger, resolver):
        pid = add_project(store, "Alpha")
        evaluate(ledger, pid, 70.0)
        ledger.insert(pid, "text", "still being judged")
        row = resolver.get_leaderboard()[0]
        assert row.scores.final_score == 70.0
        assert row.last_evaluated_sequence == 1

    def test_repeatable(self, store, ledger, resolver):
        for name, final in (("Alpha", 10.0), ("Beta", 20.0)):
            evaluate(ledger, add_project(store, name), final)
        assert resolver.get_leaderboard() == resolver.get_leaderboard()

    def test_unscored_ranks_below_a_zero_score(self, store, ledger, resolver):
        unscored = add_project(store, "Alpha")
        zero = add_project(store, "Beta")
        evaluate(ledger, zero, 0.0)

        rows = resolver.get_leaderboard()
        assert [r.project_id for r in rows] == [zero, unscored]
        assert rows[0].last_evaluated_sequence == 1
        assert rows[1].last_evaluated_sequence is None
