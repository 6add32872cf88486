from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum


class UsageSource(str, Enum):
    LOCAL_ESTIMATE = "local-estimate"
    EXTERNAL_REPORT = "external-report"


class TransactionReason(str, Enum):
    OVER_LIMIT_PENALTY = "over-limit-penalty"
    EXTENSION_FEE = "extension-fee"
    UNBLOCK_FEE = "unblock-fee"
    ACCOUNTABILITY_FEE_RESTORE = "accountability-fee-restore"
    MANUAL_GRANT = "manual-grant"
    WEEKLY_ALLOWANCE = "weekly-allowance"


class BlockingState(str, Enum):
    ACTIVE = "active"
    NEAR_LIMIT = "near-limit"
    OVER_LIMIT_BLOCKED = "over-limit-blocked"
    UNBLOCKED_PAID = "unblocked-paid"
    EXTENDED_ACTIVE = "extended-active"


@dataclass(frozen=True)
class MonitoredAppGoal:
    app_id: str
    display_name: str
    daily_limit_minutes: int
    enabled: bool
    created_at: datetime
    last_modified_at: datetime
    disabled_at: datetime | None = None
    pending_limit_minutes: int | None = None
    pending_effective_date: date | None = None

    def counts_on(self, day: date) -> bool:
        if self.created_at.date() > day:
            return False
        if self.disabled_at is not None and self.disabled_at.date() < day:
            return False
        return True


@dataclass(frozen=True)
class UsageSnapshot:
    app_id: str
    day: date
    minutes_used: int
    source_timestamp: datetime
    source: UsageSource
    peak_minutes: int


@dataclass(frozen=True)
class DailyUsageTotal:
    day: date
    total_minutes: int
    apps_count: int
    source: UsageSource
    last_updated: datetime | None
    degraded: bool


@dataclass(frozen=True)
class AppMinutes:
    name: str
    minutes: int


@dataclass(frozen=True)
class CreditTransaction:
    id: int
    week_start: date
    day: date
    amount: int
    nominal_amount: int
    reason: TransactionReason
    related_app_id: str | None
    note: str | None
    created_at: datetime


@dataclass(frozen=True)
class WeeklyPlan:
    week_start: date
    credits_remaining: int
    failure_count: int
    accountability_fee_paid_date: date | None
    closed: bool
    created_at: datetime


@dataclass(frozen=True)
class DailyOutcome:
    day: date
    week_start: date
    failed: bool
    waived: bool
    penalty: int
    over_limit_apps: tuple[str, ...]
    evaluated_at: datetime


@dataclass(frozen=True)
class StreakRecord:
    current_streak: int
    longest_streak: int
    last_evaluated_date: date | None
