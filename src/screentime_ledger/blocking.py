from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from screentime_ledger.db_models import BlockingState, CreditTransaction
from screentime_ledger.events import EventChannel
from screentime_ledger.goal_store import GoalStore
from screentime_ledger.ledger import CreditLedger
from screentime_ledger.reconciler import SnapshotChanged, UsageReconciler
from screentime_ledger.time_utils import Clock

logger = logging.getLogger(__name__)


def derive_blocking_state(
    peak_minutes: int,
    base_limit: int,
    effective_limit: int,
    unblocked: bool,
    near_limit_percent: int = 80,
) -> BlockingState:
    """Pure state for one app and day.

    `peak_minutes` is the highest usage accepted that day, so a later drop in
    the reported figure never lifts a block.
    """
    if unblocked:
        return BlockingState.UNBLOCKED_PAID
    if effective_limit > base_limit:
        if peak_minutes >= effective_limit:
            return BlockingState.OVER_LIMIT_BLOCKED
        return BlockingState.EXTENDED_ACTIVE
    if peak_minutes >= base_limit:
        return BlockingState.OVER_LIMIT_BLOCKED
    if peak_minutes * 100 >= base_limit * near_limit_percent:
        return BlockingState.NEAR_LIMIT
    return BlockingState.ACTIVE


@dataclass(frozen=True)
class BlockingChange:
    app_id: str
    day: date
    previous: BlockingState | None
    current: BlockingState


class BlockingStateMachine:
    """Recomputes enforcement state from usage, limits and the ledger. Stores nothing."""

    def __init__(
        self,
        goals: GoalStore,
        reconciler: UsageReconciler,
        ledger: CreditLedger,
        clock: Clock,
        changes: EventChannel[BlockingChange] | None = None,
    ) -> None:
        self.goals = goals
        self.reconciler = reconciler
        self.ledger = ledger
        self.clock = clock
        self.changes: EventChannel[BlockingChange] = changes or EventChannel("blocking-change")
        # last published state per (app, day); days before today are dropped
        self._published: dict[tuple[str, date], BlockingState] = {}

    def state(self, app_id: str, day: date | None = None) -> BlockingState:
        target = day or self.clock.now().date()
        goal = self.goals.get_goal(app_id)
        if not goal.counts_on(target):
            return BlockingState.ACTIVE
        near = self.ledger.db.get_ledger_tuning()["near_limit_percent"]
        return derive_blocking_state(
            peak_minutes=self.reconciler.peak_minutes(app_id, target),
            base_limit=self.goals.base_limit(app_id, target),
            effective_limit=self.goals.current_limit(app_id, target),
            unblocked=self.ledger.is_unblocked(app_id, target),
            near_limit_percent=near,
        )

    def refresh(self, app_id: str, day: date | None = None) -> BlockingState:
        target = day or self.clock.now().date()
        current = self.state(app_id, target)
        key = (app_id, target)
        previous = self._published.get(key)
        if previous != current:
            today = self.clock.now().date()
            self._published = {k: v for k, v in self._published.items() if k[1] >= today}
            self._published[key] = current
            if previous is not None or current != BlockingState.ACTIVE:
                logger.info("Blocking %s on %s: %s -> %s", app_id, target, previous, current.value)
            self.changes.publish(BlockingChange(app_id=app_id, day=target, previous=previous, current=current))
        return current

    def on_snapshot(self, change: SnapshotChanged) -> None:
        if change.snapshot.day == self.clock.now().date():
            self.refresh(change.snapshot.app_id, change.snapshot.day)

    def on_transaction(self, tx: CreditTransaction) -> None:
        if tx.related_app_id:
            self.refresh(tx.related_app_id, tx.day)
