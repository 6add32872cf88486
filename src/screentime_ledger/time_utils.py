from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Protocol
from zoneinfo import ZoneInfo


DEFAULT_TZ = "Europe/Oslo"


def now_local(tz_name: str = DEFAULT_TZ) -> datetime:
    return datetime.now(tz=ZoneInfo(tz_name))


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def __init__(self, tz_name: str = DEFAULT_TZ) -> None:
        self.tz_name = tz_name

    def now(self) -> datetime:
        return now_local(self.tz_name)


class FixedClock:
    """Manually advanced clock for tests and replays."""

    def __init__(self, current: datetime) -> None:
        self.current = current

    def now(self) -> datetime:
        return self.current

    def set(self, current: datetime) -> None:
        self.current = current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


def week_start_for_day(day: date) -> date:
    return day - timedelta(days=day.weekday())


def is_last_day_of_week(day: date) -> bool:
    return day.weekday() == 6


def days_between(start: date, end_exclusive: date) -> list[date]:
    days: list[date] = []
    current = start
    while current < end_exclusive:
        days.append(current)
        current += timedelta(days=1)
    return days
