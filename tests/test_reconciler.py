from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

from screentime_ledger.db import Database
from screentime_ledger.db_models import AppMinutes, UsageSource
from screentime_ledger.errors import UnknownApp
from screentime_ledger.goal_store import GoalStore
from screentime_ledger.reconciler import SnapshotChanged, UsageReconciler
from screentime_ledger.reconciler_config import ReconcilerConfig
from screentime_ledger.shared_store import JsonFileUsageStore
from screentime_ledger.time_utils import FixedClock


def _dt(y: int, m: int, d: int, h: int = 10, minute: int = 0) -> datetime:
    return datetime(y, m, d, h, minute, tzinfo=ZoneInfo("Europe/Oslo"))


def _setup(tmp_path, **kwargs):
    clock = FixedClock(_dt(2026, 2, 9))
    db = Database(tmp_path / "app.db")
    goals = GoalStore(db, clock)
    store_path = tmp_path / "screen_time_data.json"
    rec = UsageReconciler(db, goals, JsonFileUsageStore(store_path), clock, **kwargs)
    events: list[SnapshotChanged] = []
    rec.snapshots.subscribe(events.append)
    return clock, goals, rec, store_path, events


def _write_report(
    path: Path,
    clock: FixedClock,
    per_app: dict[str, int],
    total: int | None = None,
    generation: int | None = None,
    last_updated: datetime | None = None,
) -> None:
    payload = {
        "total_usage": total if total is not None else sum(per_app.values()),
        "apps_count": len(per_app),
        "top_apps": [{"name": name, "minutes": minutes} for name, minutes in per_app.items()],
        "last_updated": (last_updated or clock.now()).timestamp(),
        "per_app_usage": per_app,
    }
    if generation is not None:
        payload["generation"] = generation
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_external_report_wins_over_local_estimate(tmp_path) -> None:
    clock, goals, rec, store_path, events = _setup(tmp_path)
    goals.add_goal("youtube", "YouTube", 60)

    rec.record_local_estimate("youtube", 50)
    _write_report(store_path, clock, {"YouTube": 30})
    result = rec.poll_once()

    snap = rec.current_snapshot("youtube")
    assert snap.minutes_used == 30
    assert snap.source == UsageSource.EXTERNAL_REPORT
    assert snap.peak_minutes == 50
    assert len(result.changed) == 1

    # later local estimates no longer override the external figure
    after = rec.record_local_estimate("youtube", 80)
    assert after.minutes_used == 30
    assert [e.snapshot.minutes_used for e in events] == [50, 30]
    assert events[1].previous_minutes == 50


def test_local_estimates_never_decrease(tmp_path) -> None:
    _, goals, rec, _, events = _setup(tmp_path)
    goals.add_goal("x", "X", 60)
    rec.record_local_estimate("x", 20)
    rec.record_local_estimate("x", 10)
    assert rec.minutes_used("x") == 20
    assert len(events) == 1


def test_zero_or_smaller_external_value_never_overwrites(tmp_path) -> None:
    clock, goals, rec, store_path, _ = _setup(tmp_path)
    goals.add_goal("youtube", "YouTube", 60)

    _write_report(store_path, clock, {"YouTube": 40})
    rec.poll_once()
    _write_report(store_path, clock, {"YouTube": 0}, total=0)
    rec.poll_once()
    assert rec.minutes_used("youtube") == 40
    assert rec.total_minutes() == 40

    _write_report(store_path, clock, {"YouTube": 25})
    rec.poll_once()
    assert rec.minutes_used("youtube") == 40


def test_replaying_same_report_is_idempotent(tmp_path) -> None:
    clock, goals, rec, store_path, events = _setup(tmp_path)
    goals.add_goal("youtube", "YouTube", 60)
    _write_report(store_path, clock, {"YouTube": 40})

    first = rec.poll_once()
    second = rec.poll_once()
    assert len(first.changed) == 1
    assert second.changed == ()
    assert len(events) == 1
    assert rec.minutes_used("youtube") == 40


def test_report_matches_goal_case_insensitively(tmp_path) -> None:
    clock, goals, rec, store_path, _ = _setup(tmp_path)
    goals.add_goal("instagram", "Instagram", 60)
    _write_report(store_path, clock, {" INSTAGRAM ": 12})
    rec.poll_once()
    assert rec.minutes_used("instagram") == 12


def test_placeholders_are_excluded_from_ranking_not_from_total(tmp_path) -> None:
    clock, goals, rec, store_path, _ = _setup(tmp_path)
    goals.add_goal("instagram", "Instagram", 60)
    _write_report(
        store_path,
        clock,
        {"Instagram": 30, "app 902388": 45, "unknown": 10, "FamilyControls Agent": 5, "Zero App": 0},
        total=90,
    )
    rec.poll_once()

    assert rec.top_distractions() == [AppMinutes(name="Instagram", minutes=30)]
    assert rec.total_minutes() == 90
    assert rec.is_placeholder("App 12") is True
    assert rec.is_placeholder("App Store") is False


def test_placeholder_app_id_never_gets_usage(tmp_path) -> None:
    _, goals, rec, _, events = _setup(tmp_path)
    goals.add_goal("app 902388", "app 902388", 30)
    assert rec.record_local_estimate("app 902388", 45) is None
    assert rec.current_snapshot("app 902388") is None
    assert events == []


def test_top_distractions_respect_configured_limit(tmp_path) -> None:
    clock, _, rec, store_path, _ = _setup(tmp_path, config=ReconcilerConfig(top_apps_limit=2))
    _write_report(store_path, clock, {"A": 10, "B": 30, "C": 20})
    rec.poll_once()
    assert [a.name for a in rec.top_distractions()] == ["B", "C"]
    assert [a.name for a in rec.top_distractions(limit=1)] == ["B"]


def test_unreadable_store_marks_day_degraded_until_next_good_read(tmp_path) -> None:
    clock, goals, rec, store_path, _ = _setup(tmp_path)
    goals.add_goal("youtube", "YouTube", 60)
    rec.record_local_estimate("youtube", 20)

    store_path.write_text("{not json", encoding="utf-8")
    result = rec.poll_once()
    assert result.degraded is True
    assert rec.is_degraded() is True
    assert rec.minutes_used("youtube") == 20

    _write_report(store_path, clock, {"YouTube": 25})
    result = rec.poll_once()
    assert result.degraded is False
    assert rec.is_degraded() is False
    assert rec.minutes_used("youtube") == 25


def test_missing_store_file_is_not_degraded(tmp_path) -> None:
    _, _, rec, _, _ = _setup(tmp_path)
    result = rec.poll_once()
    assert result.skipped == "no-data"
    assert rec.is_degraded() is False


def test_report_from_previous_day_is_ignored(tmp_path) -> None:
    clock, goals, rec, store_path, _ = _setup(tmp_path)
    goals.add_goal("youtube", "YouTube", 60)
    _write_report(store_path, clock, {"YouTube": 200}, last_updated=clock.now() - timedelta(days=1))

    result = rec.poll_once()
    assert result.skipped == "stale"
    assert rec.current_snapshot("youtube") is None


def test_unchanged_generation_short_circuits_unforced_reads(tmp_path) -> None:
    clock, goals, rec, store_path, _ = _setup(tmp_path)
    goals.add_goal("youtube", "YouTube", 60)

    _write_report(store_path, clock, {"YouTube": 10}, generation=4)
    assert rec.poll_once(force=False).skipped is None
    assert rec.minutes_used("youtube") == 10

    _write_report(store_path, clock, {"YouTube": 15}, generation=4)
    assert rec.poll_once(force=False).skipped == "generation-unchanged"
    assert rec.minutes_used("youtube") == 10

    assert rec.poll_once(force=True).skipped is None
    assert rec.minutes_used("youtube") == 15


def test_record_usage_validates_input(tmp_path) -> None:
    _, goals, rec, _, _ = _setup(tmp_path)
    goals.add_goal("x", "X", 60)
    with pytest.raises(UnknownApp):
        rec.record_local_estimate("nope", 10)
    with pytest.raises(ValueError):
        rec.record_local_estimate("x", -1)


def test_schedule_polls_once_per_offset(tmp_path) -> None:
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    clock, goals, rec, store_path, _ = _setup(tmp_path, sleep=fake_sleep)
    goals.add_goal("youtube", "YouTube", 60)
    _write_report(store_path, clock, {"YouTube": 10})

    results = asyncio.run(rec.run_schedule())
    assert len(results) == 8
    assert [round(d) for d in delays] == [1, 2, 3, 6, 9, 12, 15]
    assert len(results[0].changed) == 1
    assert all(r.changed == () for r in results[1:])


def test_polling_task_can_be_cancelled(tmp_path) -> None:
    async def scenario() -> tuple[bool, bool, bool]:
        gate = asyncio.Event()

        async def blocked_sleep(_delay: float) -> None:
            await gate.wait()

        _, _, rec, _, _ = _setup(tmp_path, sleep=blocked_sleep)
        task = rec.start_polling()
        await asyncio.sleep(0)
        running = rec.polling
        cancelled = rec.cancel_polling()
        with pytest.raises(asyncio.CancelledError):
            await task
        return running, cancelled, rec.polling

    running, cancelled, still_polling = asyncio.run(scenario())
    assert running is True
    assert cancelled is True
    assert still_polling is False
