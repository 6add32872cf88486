from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from screentime_ledger.db import Database
from screentime_ledger.errors import DuplicateApp, UnknownApp
from screentime_ledger.goal_store import GoalStore
from screentime_ledger.time_utils import FixedClock


def _dt(y: int, m: int, d: int, h: int = 10, minute: int = 0) -> datetime:
    return datetime(y, m, d, h, minute, tzinfo=ZoneInfo("Europe/Oslo"))


def _store(tmp_path) -> tuple[GoalStore, FixedClock]:
    clock = FixedClock(_dt(2026, 2, 9))
    return GoalStore(Database(tmp_path / "app.db"), clock), clock


def test_add_goal_rejects_duplicates(tmp_path) -> None:
    store, _ = _store(tmp_path)
    goal = store.add_goal("youtube", "YouTube", 60)
    assert goal.daily_limit_minutes == 60
    assert goal.enabled is True
    with pytest.raises(DuplicateApp):
        store.add_goal("youtube", "YouTube again", 90)
    assert store.get_goal("youtube").display_name == "YouTube"


def test_add_goal_requires_positive_limit(tmp_path) -> None:
    store, _ = _store(tmp_path)
    with pytest.raises(ValueError):
        store.add_goal("youtube", "YouTube", 0)
    with pytest.raises(ValueError):
        store.add_goal("   ", "Blank", 30)


def test_extend_limit_only_when_strictly_increasing(tmp_path) -> None:
    store, clock = _store(tmp_path)
    store.add_goal("x", "X", 60)

    assert store.extend_limit("x", 30) is False
    assert store.extend_limit("x", 60) is False
    assert store.current_limit("x") == 60

    assert store.extend_limit("x", 90) is True
    assert store.current_limit("x") == 90
    assert store.is_extended("x") is True
    assert store.extend_limit("x", 75) is False
    assert store.current_limit("x") == 90

    clock.set(_dt(2026, 2, 10))
    assert store.current_limit("x") == 60
    assert store.is_extended("x") is False
    assert store.get_goal("x").daily_limit_minutes == 60


def test_unknown_app_raises(tmp_path) -> None:
    store, _ = _store(tmp_path)
    with pytest.raises(UnknownApp):
        store.get_goal("nope")
    with pytest.raises(UnknownApp):
        store.extend_limit("nope", 90)
    with pytest.raises(UnknownApp):
        store.disable_goal("nope")


def test_disable_and_enable_goal(tmp_path) -> None:
    store, clock = _store(tmp_path)
    store.add_goal("a", "A", 30)
    store.add_goal("b", "B", 30)

    clock.set(_dt(2026, 2, 11))
    disabled = store.disable_goal("a")
    assert disabled.enabled is False
    assert [g.app_id for g in store.list_active_goals()] == ["b"]
    assert disabled.counts_on(date(2026, 2, 11)) is True
    assert disabled.counts_on(date(2026, 2, 12)) is False
    assert [g.app_id for g in store.goals_for_day(date(2026, 2, 11))] == ["a", "b"]
    assert [g.app_id for g in store.goals_for_day(date(2026, 2, 12))] == ["b"]

    enabled = store.enable_goal("a")
    assert enabled.enabled is True
    assert enabled.disabled_at is None
    assert {g.app_id for g in store.list_active_goals()} == {"a", "b"}


def test_goal_does_not_count_before_creation(tmp_path) -> None:
    store, _ = _store(tmp_path)
    goal = store.add_goal("a", "A", 30)
    assert goal.counts_on(date(2026, 2, 8)) is False
    assert goal.counts_on(date(2026, 2, 9)) is True


def test_scheduled_base_limit_takes_effect_next_day(tmp_path) -> None:
    store, clock = _store(tmp_path)
    store.add_goal("x", "X", 60)

    goal = store.schedule_base_limit("x", 30)
    assert goal.pending_limit_minutes == 30
    assert goal.pending_effective_date == date(2026, 2, 10)
    assert store.current_limit("x") == 60
    assert store.base_limit("x", date(2026, 2, 10)) == 30

    with pytest.raises(ValueError):
        store.schedule_base_limit("x", 30, effective_day=date(2026, 2, 9))

    clock.set(_dt(2026, 2, 10))
    assert store.apply_pending_limits(date(2026, 2, 10)) == ["x"]
    applied = store.get_goal("x")
    assert applied.daily_limit_minutes == 30
    assert applied.pending_limit_minutes is None
    assert store.apply_pending_limits(date(2026, 2, 10)) == []
