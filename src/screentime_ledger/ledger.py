from __future__ import annotations

import logging
import threading
from datetime import date, timedelta
from typing import Callable, TypeVar

from screentime_ledger.db import Database
from screentime_ledger.db_constants import EXTENSION_FEE_CREDITS, UNBLOCK_FEE_CREDITS, WEEKLY_CREDITS
from screentime_ledger.db_models import CreditTransaction, DailyOutcome, TransactionReason, WeeklyPlan
from screentime_ledger.errors import AccountabilityFeeAlreadyPaid, InsufficientCredits, InvariantViolation
from screentime_ledger.events import EventChannel
from screentime_ledger.goal_store import GoalStore
from screentime_ledger.time_utils import Clock, days_between, is_last_day_of_week, week_start_for_day

logger = logging.getLogger(__name__)

T = TypeVar("T")

START_DAY_KEY = "ledger_start_day"
LAST_EVALUATED_KEY = "last_evaluated_day"


class CreditLedger:
    """Weekly credit balance, daily scoring and paid actions.

    All mutations run under one re-entrant lock. Each one appends exactly one
    transaction and re-checks that the clamped transaction sum equals the
    balance in the same sqlite transaction. A failed check rolls the change
    back and halts the ledger: every later mutation raises InvariantViolation.
    """

    def __init__(
        self,
        db: Database,
        goals: GoalStore,
        clock: Clock,
        transactions: EventChannel[CreditTransaction] | None = None,
        outcomes: EventChannel[DailyOutcome] | None = None,
    ) -> None:
        self.db = db
        self.goals = goals
        self.clock = clock
        self.transactions: EventChannel[CreditTransaction] = transactions or EventChannel("credit-transaction")
        self.outcomes: EventChannel[DailyOutcome] = outcomes or EventChannel("daily-outcome")
        self._lock = threading.RLock()
        self._halted: str | None = None

    @property
    def halted(self) -> bool:
        return self._halted is not None

    def _today(self) -> date:
        return self.clock.now().date()

    def _guarded(self, action: Callable[[], T]) -> T:
        with self._lock:
            if self._halted is not None:
                raise InvariantViolation(f"ledger halted: {self._halted}")
            try:
                return action()
            except InvariantViolation as exc:
                self._halted = str(exc)
                logger.critical("Credit ledger invariant violated, halting mutations: %s", exc)
                raise

    # --- rollover

    def _start_day(self, today: date) -> date:
        raw = self.db.get_ledger_meta(START_DAY_KEY)
        if raw is None:
            self.db.set_ledger_meta(START_DAY_KEY, today.isoformat())
            return today
        return date.fromisoformat(raw)

    def _ensure_plan(self, week_start: date) -> WeeklyPlan:
        plan = self.db.get_plan(week_start)
        if plan is not None:
            return plan
        plan = self.db.create_plan(week_start, self.clock.now())
        logger.info("Opened weekly plan %s with %s credits", week_start, plan.credits_remaining)
        return plan

    def _score_day(self, day: date) -> DailyOutcome:
        week_start = week_start_for_day(day)
        plan = self._ensure_plan(week_start)

        over_limit: list[str] = []
        for goal in self.goals.goals_for_day(day):
            limit = self.goals.current_limit(goal.app_id, day)
            snapshot = self.db.get_snapshot(goal.app_id, day)
            used = snapshot.minutes_used if snapshot else 0
            if used > limit:
                over_limit.append(goal.app_id)

        failed = bool(over_limit)
        waived = failed and self.db.has_transaction_on(day, TransactionReason.ACCOUNTABILITY_FEE_RESTORE)
        penalty = plan.failure_count + 1 if failed and self.db.is_feature_enabled("penalties") else 0
        outcome, tx = self.db.record_day_outcome(
            day,
            week_start,
            failed,
            waived,
            penalty,
            over_limit,
            self.clock.now(),
            close_week=is_last_day_of_week(day),
        )
        if tx is not None:
            logger.info(
                "Day %s failed (%s): penalty %s applied %s, balance now %s",
                day,
                ", ".join(over_limit),
                penalty,
                tx.amount,
                self.db.get_plan(week_start).credits_remaining,
            )
            self.transactions.publish(tx)
        elif waived:
            logger.info("Day %s failed (%s) but the accountability fee waived it", day, ", ".join(over_limit))
        return outcome

    def _roll(self) -> list[DailyOutcome]:
        today = self._today()
        start = self._start_day(today)
        last_raw = self.db.get_ledger_meta(LAST_EVALUATED_KEY)
        first = date.fromisoformat(last_raw) + timedelta(days=1) if last_raw else start

        max_catchup = self.db.get_ledger_tuning()["max_catchup_days"]
        if (today - first).days > max_catchup:
            skipped_to = today - timedelta(days=max_catchup)
            logger.warning("Ledger catch-up capped: skipping %s..%s", first, skipped_to - timedelta(days=1))
            first = skipped_to

        scored: list[DailyOutcome] = []
        for day in days_between(first, today):
            scored.append(self._score_day(day))
            self.db.set_ledger_meta(LAST_EVALUATED_KEY, day.isoformat())

        self.goals.apply_pending_limits(today)
        current_week = week_start_for_day(today)
        for plan in self.db.list_plans():
            if plan.week_start < current_week and not plan.closed:
                self.db.close_plan(plan.week_start)
        self._ensure_plan(current_week)

        for outcome in scored:
            self.outcomes.publish(outcome)
        return scored

    def ensure_rolled_over(self) -> list[DailyOutcome]:
        """Score every not-yet-evaluated day before today and open the current week."""
        return self._guarded(self._roll)

    def current_plan(self) -> WeeklyPlan:
        def _current() -> WeeklyPlan:
            self._roll()
            return self.db.verify_plan(week_start_for_day(self._today()))

        with self._lock:
            if self._halted is None:
                return self._guarded(_current)
            plan = self.db.get_plan(week_start_for_day(self._today()))
            if plan is None:
                raise InvariantViolation(f"ledger halted: {self._halted}")
            return plan

    def balance(self) -> int:
        return self.current_plan().credits_remaining

    # --- waivers

    def fee_waived(self, day: date | None = None) -> bool:
        target = day or self._today()
        plan = self.db.get_plan(week_start_for_day(target))
        return plan is not None and plan.accountability_fee_paid_date == target

    def is_unblocked(self, app_id: str, day: date | None = None) -> bool:
        return bool(self.db.list_app_transactions(app_id, day or self._today(), TransactionReason.UNBLOCK_FEE))

    # --- mutations

    def _append(
        self,
        nominal_amount: int,
        reason: TransactionReason,
        *,
        related_app_id: str | None = None,
        note: str | None = None,
        target_balance: int | None = None,
        fee_paid: bool = False,
    ) -> CreditTransaction:
        self._roll()
        today = self._today()
        tx, plan = self.db.append_credit_change(
            week_start_for_day(today),
            today,
            nominal_amount,
            reason,
            self.clock.now(),
            related_app_id=related_app_id,
            note=note,
            target_balance=target_balance,
            fee_paid_date=today if fee_paid else None,
        )
        logger.info(
            "Credit %s %+d (nominal %+d) app=%s balance=%s",
            reason.value,
            tx.amount,
            tx.nominal_amount,
            related_app_id or "-",
            plan.credits_remaining,
        )
        self.transactions.publish(tx)
        return tx

    def _charge(self, reason: TransactionReason, cost: int, app_id: str) -> CreditTransaction:
        self._roll()
        if self.fee_waived():
            return self._append(0, reason, related_app_id=app_id, note="waived: accountability fee paid today")
        available = self.db.get_plan(week_start_for_day(self._today())).credits_remaining
        if available < cost:
            raise InsufficientCredits(required=cost, available=available)
        return self._append(-cost, reason, related_app_id=app_id)

    def charge_extension(self, app_id: str) -> CreditTransaction:
        return self._guarded(lambda: self._charge(TransactionReason.EXTENSION_FEE, EXTENSION_FEE_CREDITS, app_id))

    def charge_unblock(self, app_id: str) -> CreditTransaction:
        return self._guarded(lambda: self._charge(TransactionReason.UNBLOCK_FEE, UNBLOCK_FEE_CREDITS, app_id))

    def pay_accountability_fee(self) -> CreditTransaction:
        def _pay() -> CreditTransaction:
            self._roll()
            today = self._today()
            plan = self.db.get_plan(week_start_for_day(today))
            if plan.accountability_fee_paid_date == today:
                raise AccountabilityFeeAlreadyPaid(f"accountability fee already paid on {today}")
            return self._append(
                WEEKLY_CREDITS - plan.credits_remaining,
                TransactionReason.ACCOUNTABILITY_FEE_RESTORE,
                target_balance=WEEKLY_CREDITS,
                fee_paid=True,
            )

        return self._guarded(_pay)

    def manual_grant(self, amount: int, note: str | None = None) -> CreditTransaction:
        if amount < 1:
            raise ValueError("grant amount must be positive")
        return self._guarded(lambda: self._append(amount, TransactionReason.MANUAL_GRANT, note=note))

    # --- history

    def history(self, week_start: date | None = None) -> list[CreditTransaction]:
        target = week_start or self.current_plan().week_start
        return self.db.list_transactions(target)

    def daily_outcomes(self) -> list[DailyOutcome]:
        return self.db.list_outcomes()

    def plans(self) -> list[WeeklyPlan]:
        return self.db.list_plans()
