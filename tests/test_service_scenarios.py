from __future__ import annotations

import json
import random
from datetime import datetime
from zoneinfo import ZoneInfo

from screentime_ledger.db import Database
from screentime_ledger.db_models import BlockingState, TransactionReason
from screentime_ledger.errors import AccountabilityFeeAlreadyPaid, InsufficientCredits, LimitNotIncreasing, NotBlocked
from screentime_ledger.health import PetHealthState
from screentime_ledger.service import ScreenTimeService
from screentime_ledger.shared_store import JsonFileUsageStore
from screentime_ledger.time_utils import FixedClock


def _dt(y: int, m: int, d: int, h: int = 10, minute: int = 0) -> datetime:
    return datetime(y, m, d, h, minute, tzinfo=ZoneInfo("Europe/Oslo"))


def _service(tmp_path) -> tuple[ScreenTimeService, FixedClock]:
    clock = FixedClock(_dt(2026, 2, 9))
    db = Database(tmp_path / "app.db")
    return ScreenTimeService(db, JsonFileUsageStore(tmp_path / "screen_time_data.json"), clock), clock


def test_balance_always_matches_transactions(tmp_path) -> None:
    svc, clock = _service(tmp_path)
    apps = ["a", "b"]
    for app_id in apps:
        svc.add_monitored_app(app_id, app_id.upper(), 30)

    rng = random.Random(7)
    expected_errors = (InsufficientCredits, NotBlocked, LimitNotIncreasing, AccountabilityFeeAlreadyPaid)
    for step in range(80):
        app_id = rng.choice(apps)
        action = rng.choice(["usage", "usage", "extend", "unblock", "fee", "grant"])
        try:
            if action == "usage":
                svc.record_usage_snapshot(app_id, rng.randint(0, 60))
            elif action == "extend":
                svc.extend_limit(app_id, svc.goals.current_limit(app_id) + rng.randint(1, 20))
            elif action == "unblock":
                svc.unblock_with_credit(app_id)
            elif action == "fee":
                svc.pay_accountability_fee()
            else:
                svc.manual_grant(rng.randint(1, 3))
        except expected_errors:
            pass

        plan = svc.ledger.current_plan()
        total = sum(tx.amount for tx in svc.transaction_history())
        assert plan.credits_remaining == max(0, min(7, total))
        assert 0 <= plan.credits_remaining <= 7
        if step % 6 == 5:
            clock.advance(days=1)

    assert svc.ledger.halted is False
    assert len(svc.ledger.plans()) >= 2


def test_status_view_reflects_usage_and_credits(tmp_path) -> None:
    svc, clock = _service(tmp_path)
    svc.add_monitored_app("instagram", "Instagram", 60)
    svc.add_monitored_app("youtube", "YouTube", 120)
    (tmp_path / "screen_time_data.json").write_text(
        json.dumps(
            {
                "total_usage": 200,
                "apps_count": 4,
                "top_apps": [],
                "last_updated": clock.now().timestamp(),
                "per_app_usage": {"Instagram": 70, "YouTube": 100, "app 42424": 20, "Safari": 10},
            }
        ),
        encoding="utf-8",
    )
    svc.poll_usage()

    view = svc.status()
    assert view.credits_remaining == 7
    assert view.total_minutes == 200
    assert view.pet.percentage == 77
    assert view.pet.state == PetHealthState.HAPPY
    states = {app.app_id: app.state for app in view.apps}
    assert states == {"instagram": BlockingState.OVER_LIMIT_BLOCKED, "youtube": BlockingState.NEAR_LIMIT}
    assert [a.name for a in view.top_distractions] == ["YouTube", "Instagram", "Safari"]
    assert view.degraded is False
    assert view.ledger_halted is False


def test_overnight_failure_is_attributed_to_monitored_apps_only(tmp_path) -> None:
    svc, clock = _service(tmp_path)
    svc.add_monitored_app("instagram", "Instagram", 60)
    svc.add_monitored_app("app 42424", "app 42424", 10)
    (tmp_path / "screen_time_data.json").write_text(
        json.dumps(
            {
                "total_usage": 110,
                "per_app_usage": {"Instagram": 70, "app 42424": 40},
                "last_updated": clock.now().timestamp(),
            }
        ),
        encoding="utf-8",
    )
    svc.poll_usage()

    clock.set(_dt(2026, 2, 10))
    assert svc.current_balance() == 6
    penalty = [tx for tx in svc.transaction_history() if tx.reason == TransactionReason.OVER_LIMIT_PENALTY]
    assert len(penalty) == 1
    assert penalty[0].related_app_id == "instagram"
    assert svc.db.get_outcome(_dt(2026, 2, 9).date()).over_limit_apps == ("instagram",)


def test_reconciler_can_be_switched_off(tmp_path) -> None:
    svc, clock = _service(tmp_path)
    svc.add_monitored_app("x", "X", 60)
    svc.db.set_app_config({"feature.reconciler_enabled": False})
    (tmp_path / "screen_time_data.json").write_text(
        json.dumps({"per_app_usage": {"X": 70}, "last_updated": clock.now().timestamp()}),
        encoding="utf-8",
    )
    assert svc.poll_usage().skipped == "disabled"
    assert svc.reconciler.minutes_used("x") == 0
