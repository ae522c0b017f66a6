"""Tests for the LLM cost governor."""

from __future__ import annotations

import asyncio
import threading

import pytest

from secretary.services.cost import (
    BudgetCaps,
    BudgetExceededError,
    CostCounters,
    CostGovernor,
)


def _caps(**overrides) -> BudgetCaps:
    values = dict(
        hourly_tokens=1_000, hourly_requests=10, daily_tokens=5_000, daily_requests=50,
    )
    values.update(overrides)
    return BudgetCaps(**values)


class TestCounters:
    def test_add_updates_both_windows(self):
        counters = CostCounters()
        counters.add(120)
        counters.add(30, requests=2)
        snap = counters.snapshot()
        assert (snap["hourly"].tokens, snap["hourly"].requests) == (150, 3)
        assert (snap["daily"].tokens, snap["daily"].requests) == (150, 3)

    def test_reset_hourly_keeps_daily(self):
        counters = CostCounters()
        counters.add(100)
        counters.reset_hourly()
        snap = counters.snapshot()
        assert snap["hourly"].tokens == 0
        assert snap["daily"].tokens == 100

    def test_concurrent_adds_are_not_lost(self):
        counters = CostCounters()

        def _worker():
            for _ in range(1_000):
                counters.add(1)

        threads = [threading.Thread(target=_worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        snap = counters.snapshot()
        assert snap["hourly"].tokens == 8_000
        assert snap["daily"].requests == 8_000


class TestCheckBudget:
    def test_under_caps_passes(self):
        governor = CostGovernor(caps=_caps())
        governor.record(999)
        governor.check_budget()

    def test_cap_is_inclusive(self):
        governor = CostGovernor(caps=_caps())
        governor.record(1_000)
        with pytest.raises(BudgetExceededError) as exc_info:
            governor.check_budget()
        assert exc_info.value.scope == "hourly"
        assert exc_info.value.metric == "tokens"

    def test_hourly_checked_before_daily(self):
        governor = CostGovernor(caps=_caps(daily_tokens=500))
        governor.record(1_000)
        with pytest.raises(BudgetExceededError) as exc_info:
            governor.check_budget()
        assert exc_info.value.scope == "hourly"

    def test_daily_cap_alone(self):
        governor = CostGovernor(caps=_caps())
        for _ in range(6):
            governor.record(900)
            governor.counters.reset_hourly()
        with pytest.raises(BudgetExceededError) as exc_info:
            governor.check_budget()
        assert (exc_info.value.scope, exc_info.value.metric) == ("daily", "tokens")

    def test_request_cap(self):
        governor = CostGovernor(caps=_caps())
        for _ in range(10):
            governor.record(1)
        with pytest.raises(BudgetExceededError) as exc_info:
            governor.check_budget()
        assert exc_info.value.metric == "requests"

    def test_stats(self):
        governor = CostGovernor(caps=_caps())
        governor.record(42)
        assert governor.stats() == {
            "hourly": {"tokens": 42, "requests": 1},
            "daily": {"tokens": 42, "requests": 1},
        }


class TestResetTimers:
    @pytest.mark.asyncio
    async def test_hourly_timer_resets_counters(self):
        governor = CostGovernor(
            caps=_caps(), hourly_interval=0.01, daily_interval=3600,
        )
        governor.record(1_000)
        governor.start()
        try:
            await asyncio.sleep(0.05)
            governor.check_budget()
            assert governor.stats()["daily"]["tokens"] == 1_000
        finally:
            await governor.stop()

    @pytest.mark.asyncio
    async def test_start_is_idempotent_and_stop_cancels(self):
        governor = CostGovernor(caps=_caps())
        governor.start()
        tasks = list(governor._tasks)
        governor.start()
        assert governor._tasks == tasks
        await governor.stop()
        assert all(task.done() for task in tasks)
