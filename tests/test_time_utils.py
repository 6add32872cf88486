from datetime import date, datetime
from zoneinfo import ZoneInfo

from screentime_ledger.time_utils import (
    FixedClock,
    SystemClock,
    days_between,
    is_last_day_of_week,
    week_start_for_day,
)


def test_system_clock_is_timezone_aware() -> None:
    now = SystemClock("Europe/Oslo").now()
    assert now.tzinfo is not None
    assert str(now.tzinfo) == "Europe/Oslo"


def test_week_start_for_day() -> None:
    assert week_start_for_day(date(2026, 2, 9)) == date(2026, 2, 9)
    assert week_start_for_day(date(2026, 2, 15)) == date(2026, 2, 9)
    assert is_last_day_of_week(date(2026, 2, 15)) is True
    assert is_last_day_of_week(date(2026, 2, 16)) is False


def test_days_between_excludes_end() -> None:
    assert days_between(date(2026, 2, 27), date(2026, 3, 2)) == [
        date(2026, 2, 27),
        date(2026, 2, 28),
        date(2026, 3, 1),
    ]
    assert days_between(date(2026, 2, 9), date(2026, 2, 9)) == []


def test_fixed_clock_crosses_local_midnight() -> None:
    clock = FixedClock(datetime(2026, 3, 28, 23, 30, tzinfo=ZoneInfo("Europe/Oslo")))
    clock.advance(hours=1)
    assert clock.now().date() == date(2026, 3, 29)
