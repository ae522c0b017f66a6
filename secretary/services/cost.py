"""Global hourly / daily token and request budget for LLM calls.

``CostCounters`` is the only process-wide mutable state in the secretary.
It is an explicit object (not module globals) so tests and the governor can
each own one.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass

from secretary.config import (
    DAILY_REQUEST_CAP,
    DAILY_TOKEN_CAP,
    HOURLY_REQUEST_CAP,
    HOURLY_TOKEN_CAP,
)
from secretary.services.metrics import metrics

logger = logging.getLogger(__name__)

HOUR_SECONDS = 60 * 60
DAY_SECONDS = 24 * HOUR_SECONDS


class BudgetExceededError(Exception):
    """Raised by :meth:`CostGovernor.check_budget` when a cap is reached."""

    def __init__(self, scope: str, metric: str):
        self.scope = scope
        self.metric = metric
        super().__init__(f"{scope} {metric} budget exhausted")


@dataclass
class CounterPair:
    tokens: int = 0
    requests: int = 0


@dataclass(frozen=True)
class BudgetCaps:
    hourly_tokens: int = HOURLY_TOKEN_CAP
    hourly_requests: int = HOURLY_REQUEST_CAP
    daily_tokens: int = DAILY_TOKEN_CAP
    daily_requests: int = DAILY_REQUEST_CAP


class CostCounters:
    """Hourly and daily counters behind a single lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hourly = CounterPair()
        self._daily = CounterPair()

    def add(self, tokens: int, requests: int = 1) -> None:
        """Increment both windows in one critical section."""
        with self._lock:
            self._hourly.tokens += tokens
            self._hourly.requests += requests
            self._daily.tokens += tokens
            self._daily.requests += requests

    def snapshot(self) -> dict[str, CounterPair]:
        with self._lock:
            return {
                "hourly": CounterPair(self._hourly.tokens, self._hourly.requests),
                "daily": CounterPair(self._daily.tokens, self._daily.requests),
            }

    def reset_hourly(self) -> None:
        with self._lock:
            self._hourly = CounterPair()

    def reset_daily(self) -> None:
        with self._lock:
            self._daily = CounterPair()


class CostGovernor:
    """Fails fast once any cap is reached; resets on wall-clock intervals."""

    def __init__(
        self,
        counters: CostCounters | None = None,
        caps: BudgetCaps | None = None,
        *,
        hourly_interval: float = HOUR_SECONDS,
        daily_interval: float = DAY_SECONDS,
    ):
        self.counters = counters or CostCounters()
        self.caps = caps or BudgetCaps()
        self._intervals = {"hourly": hourly_interval, "daily": daily_interval}
        self._tasks: list[asyncio.Task] = []

    def check_budget(self) -> None:
        """Raise :class:`BudgetExceededError` if any counter is at its cap."""
        snap = self.counters.snapshot()
        limits = (
            ("hourly", "tokens", snap["hourly"].tokens, self.caps.hourly_tokens),
            ("hourly", "requests", snap["hourly"].requests, self.caps.hourly_requests),
            ("daily", "tokens", snap["daily"].tokens, self.caps.daily_tokens),
            ("daily", "requests", snap["daily"].requests, self.caps.daily_requests),
        )
        for scope, metric, used, cap in limits:
            if used >= cap:
                logger.warning("LLM budget exhausted: %s %s %d/%d", scope, metric, used, cap)
                metrics.record_event("BudgetExceeded", scope=scope, metric=metric)
                raise BudgetExceededError(scope, metric)

    def record(self, tokens_used: int) -> None:
        self.counters.add(tokens_used, 1)

    def stats(self) -> dict:
        snap = self.counters.snapshot()
        return {
            "hourly": {"tokens": snap["hourly"].tokens, "requests": snap["hourly"].requests},
            "daily": {"tokens": snap["daily"].tokens, "requests": snap["daily"].requests},
        }

    # ── Reset timers ─────────────────────────────────────────────────

    async def _reset_loop(self, scope: str) -> None:
        reset = self.counters.reset_hourly if scope == "hourly" else self.counters.reset_daily
        interval = self._intervals[scope]
        while True:
            await asyncio.sleep(interval)
            reset()
            logger.info("Reset %s LLM budget counters", scope)

    def start(self) -> None:
        """Launch the two reset timers on the running loop (idempotent)."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._reset_loop("hourly"), name="budget-hourly-reset"),
            asyncio.create_task(self._reset_loop("daily"), name="budget-daily-reset"),
        ]

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
