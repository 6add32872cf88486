from __future__ import annotations

import json
from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from screentime_ledger.db import Database
from screentime_ledger.jobs_runner import run_job, run_summary
from screentime_ledger.reconciler_config import ReconcilerConfig
from screentime_ledger.service import ScreenTimeService
from screentime_ledger.shared_store import JsonFileUsageStore
from screentime_ledger.time_utils import FixedClock


def _dt(y: int, m: int, d: int, h: int = 10, minute: int = 0) -> datetime:
    return datetime(y, m, d, h, minute, tzinfo=ZoneInfo("Europe/Oslo"))


def _service(tmp_path, clock: FixedClock) -> ScreenTimeService:
    return ScreenTimeService(
        Database(tmp_path / "app.db"),
        JsonFileUsageStore(tmp_path / "screen_time_data.json"),
        clock,
        reconciler_config=ReconcilerConfig(poll_offsets=(0.0,)),
    )


def test_disabled_job_does_nothing(tmp_path) -> None:
    svc = _service(tmp_path, FixedClock(_dt(2026, 2, 9)))
    svc.db.set_app_config({"job.rollover_enabled": False}, actor="test")
    run_job("rollover", svc)
    assert svc.db.get_ledger_meta("ledger_start_day") is None
    assert svc.ledger.plans() == []


def test_rollover_job_scores_previous_days(tmp_path) -> None:
    clock = FixedClock(_dt(2026, 2, 9))
    svc = _service(tmp_path, clock)
    svc.add_monitored_app("x", "X", 60)
    svc.record_usage_snapshot("x", 65)

    clock.set(_dt(2026, 2, 10, 0, 5))
    run_job("rollover", svc)
    assert svc.db.get_ledger_meta("last_evaluated_day") == "2026-02-09"
    assert svc.db.get_outcome(date(2026, 2, 9)).failed is True
    assert svc.current_balance() == 6


def test_poll_job_applies_report(tmp_path) -> None:
    clock = FixedClock(_dt(2026, 2, 9))
    svc = _service(tmp_path, clock)
    svc.add_monitored_app("x", "X", 60)
    (tmp_path / "screen_time_data.json").write_text(
        json.dumps({"total_usage": 30, "per_app_usage": {"X": 30}, "last_updated": clock.now().timestamp()}),
        encoding="utf-8",
    )
    run_job("poll", svc)
    assert svc.reconciler.minutes_used("x") == 30


def test_summary_job_text(tmp_path) -> None:
    svc = _service(tmp_path, FixedClock(_dt(2026, 2, 9)))
    svc.add_monitored_app("x", "X", 60)
    text = run_summary(svc)
    assert "Credits: 7/7" in text
    assert "Weekly allowance" in text


def test_unknown_job_exits(tmp_path) -> None:
    svc = _service(tmp_path, FixedClock(_dt(2026, 2, 9)))
    with pytest.raises(SystemExit):
        run_job("reminders", svc)
