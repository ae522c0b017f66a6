"""Tests for session persistence, migration and idle sweeping."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta

import pytest

from secretary.models import Stage, Turn
from secretary.services.sessions import SessionStore, session_key
from secretary.services.store import FailoverStore


class TestGetAndSave:
    @pytest.mark.asyncio
    async def test_get_creates_and_persists_new_session(self, sessions, memory_store):
        session = await sessions.get("5511999990000")
        assert session.identity == "5511999990000"
        assert session.stage == Stage.START
        assert session.revision == 0
        assert memory_store.memory.has(session_key("5511999990000"))

    @pytest.mark.asyncio
    async def test_save_round_trip_increments_revision(self, sessions):
        session = await sessions.get("u1")
        session.first_name = "Maria"
        session.stage = Stage.PROBLEM
        session.conversation_history.append(Turn(role="user", content="Oi"))
        await sessions.save("u1", session)

        loaded = await sessions.get("u1")
        assert loaded.first_name == "Maria"
        assert loaded.stage == Stage.PROBLEM
        assert loaded.conversation_history[0].content == "Oi"
        assert loaded.revision == 1

        await sessions.save("u1", loaded)
        assert (await sessions.get("u1")).revision == 2

    @pytest.mark.asyncio
    async def test_save_reports_durability(self, flaky_backend, sessions):
        durable_sessions = SessionStore(FailoverStore(flaky_backend))
        session = await durable_sessions.get("u1")
        assert await durable_sessions.save("u1", session) is True

        memory_session = await sessions.get("u1")
        assert await sessions.save("u1", memory_session) is False

    @pytest.mark.asyncio
    async def test_durable_hit_renews_without_new_revision(self, flaky_backend):
        store = SessionStore(FailoverStore(flaky_backend))
        await store.get("u1")
        calls = flaky_backend.calls

        session = await store.get("u1")

        # One read plus the TTL-renewing write
        assert flaky_backend.calls == calls + 2
        assert session.revision == 0

    @pytest.mark.asyncio
    async def test_durable_outage_still_serves_session(self, flaky_backend):
        store = SessionStore(FailoverStore(flaky_backend))
        flaky_backend.fail = True
        session = await store.get("u1")
        assert session.stage == Stage.START
        assert store.store.degraded is True
        assert await store.save("u1", session) is False


class TestMalformedPayloads:
    @pytest.mark.asyncio
    async def test_malformed_durable_payload_degrades(self, flaky_backend):
        await flaky_backend.set(session_key("u1"), "{not json")
        store = SessionStore(FailoverStore(flaky_backend))

        session = await store.get("u1")

        assert store.store.degraded is True
        assert session.stage == Stage.START
        assert store.store.memory.has(session_key("u1"))

    @pytest.mark.asyncio
    async def test_malformed_memory_payload_starts_fresh(self, sessions, memory_store):
        await memory_store.set(session_key("u1"), "[1, 2")
        session = await sessions.get("u1")
        assert session.stage == Stage.START


class TestMigration:
    @pytest.mark.asyncio
    async def test_legacy_payload_is_migrated_on_read(self, sessions, memory_store):
        legacy = {
            "firstName": "Ana",
            "nepqStage": "problem_duration",
            "problemDescription": "dor nas costas",
            "lastIntent": "valores",
            "repeatCount": 2,
            "lastActivity": 1_700_000_000_000,
            "conversationHistory": [{"role": "user", "content": "Oi"}],
            "clinicConfig": {"doctorName": "Dr. Legado", "calendarId": "cal-legacy"},
        }
        await memory_store.set(session_key("u1"), json.dumps(legacy))

        session = await sessions.get("u1")

        assert session.schema_version == 1
        assert session.first_name == "Ana"
        assert session.stage == Stage.PROBLEM
        assert session.problem_context == "dor nas costas"
        assert session.last_intent.value == "price"
        assert session.repeat_count == 2
        assert session.tenant_config.name == "Dr. Legado"
        assert session.tenant_config.calendar_id == "cal-legacy"
        assert len(session.conversation_history) == 1


class TestConcurrentWrites:
    @pytest.mark.asyncio
    async def test_later_write_wins_and_conflict_is_counted(self, sessions):
        await sessions.get("u1")
        first = await sessions.get("u1")
        second = await sessions.get("u1")

        first.first_name = "Ana"
        await sessions.save("u1", first)
        second.first_name = "Bruno"
        await sessions.save("u1", second)

        final = await sessions.get("u1")
        assert final.first_name == "Bruno"
        assert final.revision == 2
        assert (await sessions.stats())["write_conflicts"] == 1

    @pytest.mark.asyncio
    async def test_gathered_saves_leave_a_complete_session(self, sessions):
        base = await sessions.get("u1")
        copies = [base.model_copy(deep=True) for _ in range(5)]
        for i, copy in enumerate(copies):
            copy.first_name = f"Nome{i}"

        await asyncio.gather(*(sessions.save("u1", c) for c in copies))

        final = await sessions.get("u1")
        assert final.first_name in {f"Nome{i}" for i in range(5)}
        assert final.revision >= 1


class TestResetAndStats:
    @pytest.mark.asyncio
    async def test_reset_wipes_everything_but_identity(self, sessions):
        session = await sessions.get("u1")
        session.first_name = "Carlos"
        session.stage = Stage.CLOSING
        session.problem_context = "enxaqueca"
        await sessions.save("u1", session)

        fresh = await sessions.reset_session("u1")

        assert fresh.identity == "u1"
        loaded = await sessions.get("u1")
        assert loaded.first_name is None
        assert loaded.stage == Stage.START
        assert loaded.problem_context is None
        assert loaded.conversation_history == []

    @pytest.mark.asyncio
    async def test_stats(self, sessions):
        await sessions.get("a")
        await sessions.get("b")
        stats = await sessions.stats()
        assert stats == {
            "count": 2,
            "backend": "memory",
            "degraded": True,
            "write_conflicts": 0,
        }


class TestIdleSweep:
    @pytest.mark.asyncio
    async def test_sweeps_idle_and_unparsable_sessions(self, sessions, memory_store):
        stale = await sessions.get("stale")
        stale.last_activity = datetime.now(UTC) - timedelta(hours=3)
        await sessions.save("stale", stale)
        await sessions.get("active")
        await memory_store.set(session_key("broken"), "garbage")

        removed = sessions.sweep_idle()

        assert removed == 2
        assert not memory_store.memory.has(session_key("stale"))
        assert not memory_store.memory.has(session_key("broken"))
        assert memory_store.memory.has(session_key("active"))

    @pytest.mark.asyncio
    async def test_sweep_uses_given_now(self, sessions, memory_store):
        await sessions.get("u1")
        assert sessions.sweep_idle() == 0
        later = datetime.now(UTC) + timedelta(hours=2, minutes=1)
        assert sessions.sweep_idle(now=later) == 1
