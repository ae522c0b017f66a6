"""Tests for turning a free-text preference into a calendar slot."""

from __future__ import annotations

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from secretary.scheduling import Slot, resolve_preference

TZ = ZoneInfo("America/Sao_Paulo")
# A Monday, mid-morning
NOW = datetime(2026, 10, 19, 10, 0, tzinfo=TZ)


def _start(preference: str) -> datetime:
    slot = resolve_preference(preference, now=NOW)
    assert slot is not None, preference
    return slot.start


class TestRelativeDays:
    def test_tomorrow_afternoon(self):
        assert _start("amanhã à tarde") == datetime(2026, 10, 20, 14, 0, tzinfo=TZ)

    def test_day_after_tomorrow(self):
        assert _start("depois de amanhã de manhã") == datetime(2026, 10, 21, 9, 0, tzinfo=TZ)

    def test_today_later(self):
        assert _start("hoje às 16h") == datetime(2026, 10, 19, 16, 0, tzinfo=TZ)

    def test_past_time_today_rolls_to_tomorrow(self):
        assert _start("hoje às 9h") == datetime(2026, 10, 20, 9, 0, tzinfo=TZ)

    def test_english(self):
        assert _start("tomorrow at 3pm") == datetime(2026, 10, 20, 15, 0, tzinfo=TZ)


class TestWeekdays:
    def test_next_friday_morning(self):
        assert _start("sexta de manhã") == datetime(2026, 10, 23, 9, 0, tzinfo=TZ)

    def test_same_weekday_means_next_week(self):
        assert _start("segunda") == datetime(2026, 10, 26, 9, 0, tzinfo=TZ)

    def test_hyphenated_weekday(self):
        assert _start("quarta-feira 14:30") == datetime(2026, 10, 21, 14, 30, tzinfo=TZ)


class TestExplicitDates:
    def test_day_and_month(self):
        assert _start("25/10 às 15:30") == datetime(2026, 10, 25, 15, 30, tzinfo=TZ)

    def test_past_date_rolls_to_next_year(self):
        assert _start("10/01") == datetime(2027, 1, 10, 9, 0, tzinfo=TZ)

    def test_explicit_year(self):
        assert _start("05/11/2026 de tarde") == datetime(2026, 11, 5, 14, 0, tzinfo=TZ)

    def test_invalid_date_without_time(self):
        assert resolve_preference("31/02", now=NOW) is None


class TestDefaults:
    def test_time_only_means_tomorrow(self):
        assert _start("às 11h") == datetime(2026, 10, 20, 11, 0, tzinfo=TZ)

    def test_period_only_means_tomorrow(self):
        assert _start("à noite") == datetime(2026, 10, 20, 18, 0, tzinfo=TZ)

    @pytest.mark.parametrize("text", ["qualquer dia", "tanto faz", ""])
    def test_unrecognized(self, text):
        assert resolve_preference(text, now=NOW) is None


class TestSlot:
    def test_one_hour_slot(self):
        slot = resolve_preference("amanhã 14h", now=NOW)
        assert slot.end - slot.start == timedelta(hours=1)

    def test_describe(self):
        start = datetime(2026, 10, 20, 14, 0, tzinfo=TZ)
        slot = Slot(start=start, end=start + timedelta(hours=1))
        assert slot.describe() == "20/10/2026 às 14:00"

    def test_uses_clinic_timezone(self):
        utc_now = NOW.astimezone(ZoneInfo("UTC"))
        slot = resolve_preference("amanhã 14h", now=utc_now)
        assert slot.start.utcoffset() == timedelta(hours=-3)
