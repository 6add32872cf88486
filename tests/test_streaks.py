from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from screentime_ledger.db import Database
from screentime_ledger.db_models import DailyOutcome
from screentime_ledger.service import ScreenTimeService
from screentime_ledger.shared_store import JsonFileUsageStore
from screentime_ledger.streaks import compute_streak
from screentime_ledger.time_utils import FixedClock


def _dt(y: int, m: int, d: int, h: int = 10, minute: int = 0) -> datetime:
    return datetime(y, m, d, h, minute, tzinfo=ZoneInfo("Europe/Oslo"))


def _outcome(day: int, failed: bool = False, waived: bool = False) -> DailyOutcome:
    return DailyOutcome(
        day=date(2026, 2, day),
        week_start=date(2026, 2, 9),
        failed=failed,
        waived=waived,
        penalty=0,
        over_limit_apps=("x",) if failed else (),
        evaluated_at=_dt(2026, 2, day, 23),
    )


def test_empty_history_has_no_streak() -> None:
    record = compute_streak([])
    assert record.current_streak == 0
    assert record.longest_streak == 0
    assert record.last_evaluated_date is None


def test_failure_resets_current_but_keeps_longest() -> None:
    record = compute_streak([_outcome(9), _outcome(10), _outcome(11), _outcome(12, failed=True), _outcome(13)])
    assert record.current_streak == 1
    assert record.longest_streak == 3
    assert record.last_evaluated_date == date(2026, 2, 13)


def test_waived_failure_still_breaks_streak() -> None:
    record = compute_streak([_outcome(9), _outcome(10, failed=True, waived=True)])
    assert record.current_streak == 0
    assert record.longest_streak == 1


def test_gap_between_scored_days_breaks_streak() -> None:
    record = compute_streak([_outcome(13), _outcome(9), _outcome(10)])
    assert record.current_streak == 1
    assert record.longest_streak == 2


def test_streak_follows_ledger_rollover(tmp_path) -> None:
    clock = FixedClock(_dt(2026, 2, 9))
    svc = ScreenTimeService(Database(tmp_path / "app.db"), JsonFileUsageStore(tmp_path / "data.json"), clock)
    svc.add_monitored_app("x", "X", 60)
    assert svc.streak().current_streak == 0

    clock.set(_dt(2026, 2, 10, 21))
    assert svc.streak().current_streak == 1
    svc.record_usage_snapshot("x", 65)

    clock.set(_dt(2026, 2, 11))
    assert svc.streak().current_streak == 0
    assert svc.streak().longest_streak == 1

    clock.set(_dt(2026, 2, 13))
    record = svc.streak()
    assert record.current_streak == 2
    assert record.longest_streak == 2
    assert record.last_evaluated_date == date(2026, 2, 12)
