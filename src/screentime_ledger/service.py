from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date

from screentime_ledger.blocking import BlockingStateMachine
from screentime_ledger.config import Settings
from screentime_ledger.db import Database
from screentime_ledger.db_models import (
    AppMinutes,
    BlockingState,
    CreditTransaction,
    MonitoredAppGoal,
    StreakRecord,
    UsageSnapshot,
    UsageSource,
)
from screentime_ledger.errors import LimitNotIncreasing, NotBlocked
from screentime_ledger.goal_store import GoalStore
from screentime_ledger.health import PetHealth, pet_health
from screentime_ledger.ledger import CreditLedger
from screentime_ledger.reconciler import PollResult, UsageReconciler
from screentime_ledger.reconciler_config import ReconcilerConfig
from screentime_ledger.shared_store import JsonFileUsageStore, SharedUsageStore
from screentime_ledger.streaks import StreakEngine
from screentime_ledger.time_utils import Clock, SystemClock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppStatus:
    app_id: str
    display_name: str
    minutes_used: int
    base_limit: int
    current_limit: int
    state: BlockingState


@dataclass(frozen=True)
class StatusView:
    day: date
    week_start: date
    credits_remaining: int
    failure_count: int
    fee_waived_today: bool
    apps: tuple[AppStatus, ...]
    total_minutes: int
    top_distractions: tuple[AppMinutes, ...]
    streak: StreakRecord
    pet: PetHealth
    degraded: bool
    ledger_halted: bool


class ScreenTimeService:
    """Wires the goal store, reconciler, ledger, blocking and streaks together.

    Built once per process and passed to whoever needs it. Compound actions
    (check state, charge, then change the limit) run under one lock.
    """

    def __init__(
        self,
        db: Database,
        store: SharedUsageStore,
        clock: Clock,
        reconciler_config: ReconcilerConfig | None = None,
    ) -> None:
        self.db = db
        self.clock = clock
        self.goals = GoalStore(db, clock)
        self.reconciler = UsageReconciler(db, self.goals, store, clock, reconciler_config)
        self.ledger = CreditLedger(db, self.goals, clock)
        self.blocking = BlockingStateMachine(self.goals, self.reconciler, self.ledger, clock)
        self.streaks = StreakEngine(self.ledger)
        self._lock = threading.RLock()

        self.reconciler.snapshots.subscribe(self.blocking.on_snapshot)
        self.ledger.transactions.subscribe(self.blocking.on_transaction)

    def _touch_ledger(self) -> None:
        # any access opens the ledger for today; usage keeps flowing after a halt
        if not self.ledger.halted:
            self.ledger.ensure_rolled_over()

    # --- upstream actions

    def add_monitored_app(self, app_id: str, display_name: str, limit_minutes: int) -> MonitoredAppGoal:
        with self._lock:
            self._touch_ledger()
            return self.goals.add_goal(app_id, display_name, limit_minutes)

    def disable_app(self, app_id: str) -> MonitoredAppGoal:
        with self._lock:
            return self.goals.disable_goal(app_id)

    def enable_app(self, app_id: str) -> MonitoredAppGoal:
        with self._lock:
            return self.goals.enable_goal(app_id)

    def schedule_base_limit(self, app_id: str, limit_minutes: int, effective_day: date | None = None) -> MonitoredAppGoal:
        with self._lock:
            return self.goals.schedule_base_limit(app_id, limit_minutes, effective_day)

    def extend_limit(self, app_id: str, new_limit_minutes: int) -> CreditTransaction:
        with self._lock:
            self.ledger.ensure_rolled_over()
            current = self.goals.current_limit(app_id)
            if new_limit_minutes <= current:
                raise LimitNotIncreasing(app_id, current, new_limit_minutes)
            tx = self.ledger.charge_extension(app_id)
            self.goals.extend_limit(app_id, new_limit_minutes)
            self.blocking.refresh(app_id)
            return tx

    def unblock_with_credit(self, app_id: str) -> CreditTransaction:
        with self._lock:
            self.ledger.ensure_rolled_over()
            state = self.blocking.state(app_id)
            if state != BlockingState.OVER_LIMIT_BLOCKED:
                raise NotBlocked(app_id, state.value)
            return self.ledger.charge_unblock(app_id)

    def pay_accountability_fee(self) -> CreditTransaction:
        with self._lock:
            return self.ledger.pay_accountability_fee()

    def manual_grant(self, amount: int, note: str | None = None) -> CreditTransaction:
        with self._lock:
            return self.ledger.manual_grant(amount, note)

    def record_usage_snapshot(
        self,
        app_id: str,
        minutes: int,
        source: UsageSource = UsageSource.LOCAL_ESTIMATE,
    ) -> UsageSnapshot | None:
        with self._lock:
            self._touch_ledger()
            return self.reconciler.record_usage(app_id, minutes, source)

    def poll_usage(self, force: bool = True) -> PollResult:
        with self._lock:
            if not self.db.is_feature_enabled("reconciler"):
                now = self.clock.now()
                return PollResult(day=now.date(), polled_at=now, skipped="disabled")
            self._touch_ledger()
            return self.reconciler.poll_once(force=force)

    async def poll_schedule(self) -> list[PollResult]:
        if not self.db.is_feature_enabled("reconciler"):
            logger.info("feature disabled: reconciler")
            return []
        return await self.reconciler.run_schedule()

    # --- downstream observations

    def current_balance(self) -> int:
        return self.ledger.balance()

    def blocking_state(self, app_id: str) -> BlockingState:
        return self.blocking.state(app_id)

    def streak(self) -> StreakRecord:
        return self.streaks.streak()

    def transaction_history(self, week_start: date | None = None) -> list[CreditTransaction]:
        return self.ledger.history(week_start)

    def status(self) -> StatusView:
        with self._lock:
            plan = self.ledger.current_plan()
            today = self.clock.now().date()
            apps: list[AppStatus] = []
            for goal in self.goals.goals_for_day(today):
                apps.append(
                    AppStatus(
                        app_id=goal.app_id,
                        display_name=goal.display_name,
                        minutes_used=self.reconciler.minutes_used(goal.app_id, today),
                        base_limit=self.goals.base_limit(goal.app_id, today),
                        current_limit=self.goals.current_limit(goal.app_id, today),
                        state=self.blocking.state(goal.app_id, today),
                    )
                )
            total = self.reconciler.total_minutes(today)
            return StatusView(
                day=today,
                week_start=plan.week_start,
                credits_remaining=plan.credits_remaining,
                failure_count=plan.failure_count,
                fee_waived_today=self.ledger.fee_waived(today),
                apps=tuple(apps),
                total_minutes=total,
                top_distractions=tuple(self.reconciler.top_distractions(today)),
                streak=self.streaks.streak(),
                pet=pet_health(total),
                degraded=self.reconciler.is_degraded(today),
                ledger_halted=self.ledger.halted,
            )


def build_service(settings: Settings, clock: Clock | None = None) -> ScreenTimeService:
    db = Database(settings.database_path)
    store = JsonFileUsageStore(settings.shared_store_path)
    return ScreenTimeService(
        db=db,
        store=store,
        clock=clock or SystemClock(settings.tz),
        reconciler_config=settings.reconciler,
    )
