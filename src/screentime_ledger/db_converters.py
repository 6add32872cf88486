from __future__ import annotations

import json
import sqlite3
from datetime import date, datetime

from screentime_ledger.db_models import (
    CreditTransaction,
    DailyOutcome,
    DailyUsageTotal,
    MonitoredAppGoal,
    TransactionReason,
    UsageSnapshot,
    UsageSource,
    WeeklyPlan,
)


def _opt_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def _opt_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_goal(row: sqlite3.Row) -> MonitoredAppGoal:
    keys = row.keys()
    pending = row["pending_limit_minutes"] if "pending_limit_minutes" in keys else None
    pending_date = row["pending_effective_date"] if "pending_effective_date" in keys else None
    return MonitoredAppGoal(
        app_id=row["app_id"],
        display_name=row["display_name"],
        daily_limit_minutes=int(row["daily_limit_minutes"]),
        enabled=bool(row["enabled"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        last_modified_at=datetime.fromisoformat(row["last_modified_at"]),
        disabled_at=_opt_datetime(row["disabled_at"]),
        pending_limit_minutes=int(pending) if pending is not None else None,
        pending_effective_date=_opt_date(pending_date),
    )


def _row_to_snapshot(row: sqlite3.Row) -> UsageSnapshot:
    return UsageSnapshot(
        app_id=row["app_id"],
        day=date.fromisoformat(row["day"]),
        minutes_used=int(row["minutes_used"]),
        source_timestamp=datetime.fromisoformat(row["source_timestamp"]),
        source=UsageSource(row["source"]),
        peak_minutes=int(row["peak_minutes"]),
    )


def _row_to_usage_total(row: sqlite3.Row) -> DailyUsageTotal:
    return DailyUsageTotal(
        day=date.fromisoformat(row["day"]),
        total_minutes=int(row["total_minutes"]),
        apps_count=int(row["apps_count"]),
        source=UsageSource(row["source"]),
        last_updated=_opt_datetime(row["last_updated"]),
        degraded=bool(row["degraded"]),
    )


def _row_to_plan(row: sqlite3.Row) -> WeeklyPlan:
    return WeeklyPlan(
        week_start=date.fromisoformat(row["week_start"]),
        credits_remaining=int(row["credits_remaining"]),
        failure_count=int(row["failure_count"]),
        accountability_fee_paid_date=_opt_date(row["accountability_fee_paid_date"]),
        closed=bool(row["closed"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_transaction(row: sqlite3.Row) -> CreditTransaction:
    return CreditTransaction(
        id=int(row["id"]),
        week_start=date.fromisoformat(row["week_start"]),
        day=date.fromisoformat(row["day"]),
        amount=int(row["amount"]),
        nominal_amount=int(row["nominal_amount"]),
        reason=TransactionReason(row["reason"]),
        related_app_id=row["related_app_id"],
        note=row["note"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_outcome(row: sqlite3.Row) -> DailyOutcome:
    try:
        apps = tuple(str(a) for a in json.loads(row["over_limit_apps"] or "[]"))
    except json.JSONDecodeError:
        apps = ()
    return DailyOutcome(
        day=date.fromisoformat(row["day"]),
        week_start=date.fromisoformat(row["week_start"]),
        failed=bool(row["failed"]),
        waived=bool(row["waived"]),
        penalty=int(row["penalty"]),
        over_limit_apps=apps,
        evaluated_at=datetime.fromisoformat(row["evaluated_at"]),
    )
