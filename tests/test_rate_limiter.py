"""Tests for the sliding-window rate limiter."""

from __future__ import annotations

import pytest

from secretary.models import Turn
from secretary.services.rate_limiter import RateLimiter, threshold_for


class TestThresholdTiers:
    def test_cold_start(self):
        assert threshold_for(0) == 5

    def test_default(self):
        assert threshold_for(1) == 10
        assert threshold_for(20) == 10

    def test_engaged(self):
        assert threshold_for(21) == 15
        assert threshold_for(500) == 15


class TestSlidingWindow:
    @pytest.mark.asyncio
    async def test_cold_start_allows_five_then_rejects(self, sessions, clock):
        limiter = RateLimiter(sessions, clock=clock)
        results = [await limiter.is_rate_limited("u1", 0) for _ in range(6)]
        assert results == [False] * 5 + [True]

    @pytest.mark.asyncio
    async def test_rejected_attempts_do_not_extend_window(self, sessions, clock):
        limiter = RateLimiter(sessions, clock=clock)
        for _ in range(5):
            await limiter.is_rate_limited("u1", 0)
        clock.advance(30)
        assert await limiter.is_rate_limited("u1", 0) is True
        clock.advance(30)
        # The first five are now exactly 60s old and fall out of the window
        assert await limiter.is_rate_limited("u1", 0) is False

    @pytest.mark.asyncio
    async def test_identities_are_independent(self, sessions, clock):
        limiter = RateLimiter(sessions, clock=clock)
        for _ in range(5):
            await limiter.is_rate_limited("u1", 0)
        assert await limiter.is_rate_limited("u1", 0) is True
        assert await limiter.is_rate_limited("u2", 0) is False

    @pytest.mark.asyncio
    async def test_allowed_count_never_exceeds_threshold_in_any_window(self, sessions, clock):
        limiter = RateLimiter(sessions, clock=clock)
        accepted: list[float] = []
        for _ in range(120):
            if not await limiter.is_rate_limited("u1", 5):
                accepted.append(clock.now)
            clock.advance(2)

        for t in accepted:
            in_window = [a for a in accepted if t - 60 < a <= t]
            assert len(in_window) <= 10

    @pytest.mark.asyncio
    async def test_malformed_window_is_discarded(self, sessions, memory_store, clock):
        await memory_store.set("ratelimit:u1", "not-json")
        limiter = RateLimiter(sessions, clock=clock)
        assert await limiter.is_rate_limited("u1", 0) is False


class TestHistoryLookup:
    @pytest.mark.asyncio
    async def test_reads_history_length_from_session(self, sessions, clock):
        session = await sessions.get("u1")
        session.conversation_history = [
            Turn(role="user", content=str(i)) for i in range(21)
        ]
        await sessions.save("u1", session)

        limiter = RateLimiter(sessions, clock=clock)
        results = [await limiter.is_rate_limited("u1") for _ in range(16)]
        assert results == [False] * 15 + [True]

    @pytest.mark.asyncio
    async def test_new_identity_gets_cold_start_tier(self, sessions, clock):
        limiter = RateLimiter(sessions, clock=clock)
        results = [await limiter.is_rate_limited("brand-new") for _ in range(6)]
        assert results[-1] is True
        assert results[:5] == [False] * 5
