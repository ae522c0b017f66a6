"""Turn a free-text day/period preference into a concrete calendar slot."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from secretary.config import CLINIC_TIMEZONE
from secretary.intent import normalize

SLOT_MINUTES = 60
DEFAULT_HOUR = 9

_RELATIVE_DAYS = (
    ("depois de amanha", 2),
    ("day after tomorrow", 2),
    ("amanha", 1),
    ("tomorrow", 1),
    ("hoje", 0),
    ("today", 0),
)

_WEEKDAYS = {
    "segunda": 0, "terca": 1, "quarta": 2, "quinta": 3, "sexta": 4, "sabado": 5, "domingo": 6,
    "monday": 0, "tuesday": 1, "wednesday": 2, "thursday": 3, "friday": 4,
    "saturday": 5, "sunday": 6,
}

_PERIODS = {
    "manha": 9, "morning": 9,
    "tarde": 14, "afternoon": 14,
    "noite": 18, "evening": 18,
}

_DATE_RE = re.compile(r"\b(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?\b")
_TIME_RE = re.compile(r"\b(\d{1,2})(?::(\d{2})|h(\d{2})?|\s*(am|pm))(?!/)")


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime

    def describe(self) -> str:
        return self.start.strftime("%d/%m/%Y às %H:%M")


def _resolve_day(text: str, today: date) -> date | None:
    for phrase, offset in _RELATIVE_DAYS:
        if re.search(rf"\b{phrase}\b", text):
            return today + timedelta(days=offset)

    match = _DATE_RE.search(text)
    if match:
        day, month, year = match.groups()
        year = int(year) if year else today.year
        if year < 100:
            year += 2000
        try:
            resolved = date(year, int(month), int(day))
        except ValueError:
            return None
        if match.group(3) is None and resolved < today:
            resolved = resolved.replace(year=today.year + 1)
        return resolved

    for word, weekday in _WEEKDAYS.items():
        if re.search(rf"\b{word}\b", text):
            ahead = (weekday - today.weekday()) % 7 or 7
            return today + timedelta(days=ahead)
    return None


def _resolve_time(text: str) -> time | None:
    for match in _TIME_RE.finditer(text):
        hour = int(match.group(1))
        minute = int(match.group(2) or match.group(3) or 0)
        meridiem = match.group(4)
        if meridiem == "pm" and hour < 12:
            hour += 12
        elif meridiem == "am" and hour == 12:
            hour = 0
        if hour <= 23 and minute <= 59:
            return time(hour, minute)

    for word, hour in _PERIODS.items():
        if re.search(rf"\b{word}\b", text):
            return time(hour, 0)
    return None


def resolve_preference(
    preference: str,
    now: datetime | None = None,
    timezone: str = CLINIC_TIMEZONE,
) -> Slot | None:
    """Resolve *preference* to a one-hour slot in the clinic timezone.

    A time without a day means tomorrow; a day without a time means the
    start of the morning.  Returns ``None`` when neither is recognisable.
    """
    tz = ZoneInfo(timezone)
    now = now.astimezone(tz) if now else datetime.now(tz)
    text = normalize(preference)

    day = _resolve_day(text, now.date())
    at = _resolve_time(text)
    if day is None and at is None:
        return None

    day = day or now.date() + timedelta(days=1)
    at = at or time(DEFAULT_HOUR, 0)
    start = datetime.combine(day, at, tzinfo=tz)
    if start <= now:
        start += timedelta(days=1)
    return Slot(start=start, end=start + timedelta(minutes=SLOT_MINUTES))
