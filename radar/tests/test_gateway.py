"""Tests for project registration and submission intake."""
from __future__ import annotations

import asyncio
import time
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from radar.config import Settings
from radar.db import Store
from radar.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from radar.gateway import IngestionGateway, describe_submission
from radar.ledger import ScoreLedger
from radar.validation import validate_project, validate_submission


@pytest.fixture()
def settings(tmp_path):
    return Settings(database_path=tmp_path / "radar.db", uploads_dir=tmp_path / "uploads",
                    max_content_chars=500)


@pytest.fixture()
def store(settings):
    s = Store(settings.database_path)
    yield s
    s.close()


@pytest.fixture()
def ledger(store):
    return ScoreLedger(store)


@pytest.fixture()
def orchestrator():
    return MagicMock()


@pytest.fixture()
def gateway(store, ledger, orchestrator, settings):
    return IngestionGateway(store, ledger, orchestrator, settings)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    def test_valid_submission(self):
        assert validate_submission("text", "hello", 100).ok

    @pytest.mark.parametrize("url", [
        "https://rocket.dev",
        "rocket.dev/demo",
        "https://demo.example.com:8080/app",
        "https://example.com?ref=hn",
        "http://localhost:3000",
        "https://github.com/team/rocket#readme",
    ])
    def test_valid_links(self, url):
        assert validate_submission("link", url, 20000).ok

    @pytest.mark.parametrize("url", ["ftp://files.dev/x", "https://", "http://bad host.dev"])
    def test_invalid_links(self, url):
        assert not validate_submission("link", url, 20000).ok

    @pytest.mark.parametrize("entry_type,content,reason", [
        ("video", "hello", "type must be one of"),
        ("text", "   ", "content is empty"),
        ("text", None, "content is empty"),
        ("text", "x" * 101, "exceeds 100 characters"),
        ("link", "not a url at all", "link content must be a URL"),
    ])
    def test_invalid_submission(self, entry_type, content, reason):
        result = validate_submission(entry_type, content, 100)
        assert not result.ok
        assert any(reason in r for r in result.reasons)

    def test_project_reasons_are_collected(self):
        result = validate_project("", "nope")
        assert not result.ok
        assert len(result.reasons) == 2


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegisterProject:
    def test_register(self, gateway, ledger):
        project = gateway.register_project("  Team Rocket ", "Rocket@Hack.dev")
        stored = ledger.get_project(project.id)
        assert stored.team_name == "Team Rocket"
        assert stored.email == "rocket@hack.dev"
        assert stored.status == "active"
        assert stored.last_sequence == 0

    def test_invalid(self, gateway):
        with pytest.raises(ValidationError) as exc_info:
            gateway.register_project("Team Rocket", "not-an-email")
        assert exc_info.value.reasons == ["a valid email is required"]

    @pytest.mark.parametrize("team_name,email", [
        ("Team Rocket", "other@hack.dev"),
        ("Other Team", "ROCKET@hack.dev"),
    ])
    def test_duplicate(self, gateway, team_name, email):
        gateway.register_project("Team Rocket", "rocket@hack.dev")
        with pytest.raises(ConflictError):
            gateway.register_project(team_name, email)

    def test_conflict_is_a_validation_error(self):
        assert issubclass(ConflictError, ValidationError)

    def test_store_failure(self, gateway, store):
        boom = OperationalError("INSERT", {}, Exception("disk I/O error"))
        with patch.object(store, "session_scope", side_effect=boom):
            with pytest.raises(PersistenceError):
                gateway.register_project("Team Rocket", "rocket@hack.dev")


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submit_records_and_schedules_once(self, gateway, ledger, orchestrator):
        pid = gateway.register_project("Team Rocket", "rocket@hack.dev").id
        entry_id = await gateway.submit(pid, "  We shipped the MVP!\nMore details below.  ")

        entry = ledger.get_entry(entry_id)
        assert entry.sequence == 1
        assert entry.status == "pending"
        assert entry.content == "We shipped the MVP!\nMore details below."
        assert entry.description == "We shipped the MVP!"
        orchestrator.schedule.assert_called_once_with(entry_id)

    @pytest.mark.asyncio
    async def test_explicit_description(self, gateway, ledger):
        pid = gateway.register_project("Team Rocket", "rocket@hack.dev").id
        entry_id = await gateway.submit(pid, "https://rocket.dev", entry_type="link", description="Landing page")
        assert ledger.get_entry(entry_id).description == "Landing page"

    @pytest.mark.asyncio
    async def test_invalid_payload_writes_nothing(self, gateway, ledger, orchestrator):
        pid = gateway.register_project("Team Rocket", "rocket@hack.dev").id
        with pytest.raises(ValidationError):
            await gateway.submit(pid, "x" * 501)
        with pytest.raises(ValidationError):
            await gateway.submit(pid, "hello", entry_type="hologram")
        assert ledger.count_entries(pid) == 0
        assert ledger.get_project(pid).last_sequence == 0
        orchestrator.schedule.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_project(self, gateway, orchestrator):
        with pytest.raises(NotFoundError):
            await gateway.submit(404, "hello")
        orchestrator.schedule.assert_not_called()

    @pytest.mark.asyncio
    async def test_persistence_failure_surfaces(self, gateway, ledger, orchestrator):
        pid = gateway.register_project("Team Rocket", "rocket@hack.dev").id
        with patch.object(ledger, "insert", side_effect=PersistenceError("database is locked")):
            with pytest.raises(PersistenceError):
                await gateway.submit(pid, "hello")
        orchestrator.schedule.assert_not_called()

    @pytest.mark.asyncio
    async def test_sequences_follow_submission_order(self, gateway, ledger):
        pid = gateway.register_project("Team Rocket", "rocket@hack.dev").id
        ids = [await gateway.submit(pid, f"update {i}") for i in range(3)]
        assert [ledger.get_entry(i).sequence for i in ids] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_record_returns_stored_entry(self, gateway, ledger, orchestrator):
        pid = gateway.register_project("Team Rocket", "rocket@hack.dev").id
        await gateway.submit(pid, "first")
        entry = await gateway.record(pid, "second")
        assert entry.sequence == 2
        assert entry.status == "pending"
        assert ledger.get_entry(entry.id).content == "second"
        orchestrator.schedule.assert_called_with(entry.id)

    @pytest.mark.asyncio
    async def test_slow_store_does_not_block_the_loop(self, gateway, ledger, orchestrator, settings):
        pid = gateway.register_project("Team Rocket", "rocket@hack.dev").id
        settings.store_timeout = 0.2
        ticks = []

        async def ticker():
            for _ in range(5):
                ticks.append(time.monotonic())
                await asyncio.sleep(0.01)

        def slow_lookup(project_id):
            time.sleep(0.5)

        with patch.object(ledger, "get_project", side_effect=slow_lookup):
            with pytest.raises(PersistenceError):
                await asyncio.gather(gateway.submit(pid, "hello"), ticker())
        assert len(ticks) == 5
        assert ledger.count_entries(pid) == 0
        orchestrator.schedule.assert_not_called()


class TestDescribeSubmission:
    def test_text_uses_first_line(self):
        assert describe_submission("text", "Headline\nbody") == "Headline"
        assert describe_submission("text", "a" * 100) == "a" * 80 + "..."

    def test_link_and_files(self):
        assert describe_submission("link", "https://rocket.dev") == "Link: https://rocket.dev"
        assert describe_submission("file", "decks/final.pdf") == "File: final.pdf"
        assert describe_submission("image", "shot.png") == "Image: shot.png"
