from __future__ import annotations

import logging
from datetime import date, timedelta

from screentime_ledger.db import Database
from screentime_ledger.db_models import MonitoredAppGoal
from screentime_ledger.errors import DuplicateApp, UnknownApp
from screentime_ledger.time_utils import Clock

logger = logging.getLogger(__name__)


class GoalStore:
    """Catalog of monitored apps and their per-day limits."""

    def __init__(self, db: Database, clock: Clock) -> None:
        self.db = db
        self.clock = clock

    def _today(self) -> date:
        return self.clock.now().date()

    def add_goal(self, app_id: str, display_name: str, limit_minutes: int) -> MonitoredAppGoal:
        app_id = app_id.strip()
        if not app_id:
            raise ValueError("app_id must not be empty")
        if limit_minutes < 1:
            raise ValueError("daily limit must be at least 1 minute")
        goal = self.db.insert_goal(app_id, display_name.strip() or app_id, limit_minutes, self.clock.now())
        if goal is None:
            raise DuplicateApp(app_id)
        logger.info("Monitoring %s (%s) with limit=%s", app_id, goal.display_name, limit_minutes)
        return goal

    def get_goal(self, app_id: str) -> MonitoredAppGoal:
        goal = self.db.get_goal(app_id)
        if goal is None:
            raise UnknownApp(app_id)
        return goal

    def list_goals(self) -> list[MonitoredAppGoal]:
        return self.db.list_goals()

    def list_active_goals(self) -> list[MonitoredAppGoal]:
        return self.db.list_goals(enabled_only=True)

    def goals_for_day(self, day: date) -> list[MonitoredAppGoal]:
        return [g for g in self.db.list_goals() if g.counts_on(day)]

    def disable_goal(self, app_id: str) -> MonitoredAppGoal:
        self.get_goal(app_id)
        self.db.set_goal_enabled(app_id, False, self.clock.now())
        logger.info("Disabled goal %s", app_id)
        return self.get_goal(app_id)

    def enable_goal(self, app_id: str) -> MonitoredAppGoal:
        self.get_goal(app_id)
        self.db.set_goal_enabled(app_id, True, self.clock.now())
        logger.info("Enabled goal %s", app_id)
        return self.get_goal(app_id)

    @staticmethod
    def base_limit_on(goal: MonitoredAppGoal, day: date) -> int:
        if (
            goal.pending_limit_minutes is not None
            and goal.pending_effective_date is not None
            and goal.pending_effective_date <= day
        ):
            return goal.pending_limit_minutes
        return goal.daily_limit_minutes

    def base_limit(self, app_id: str, day: date | None = None) -> int:
        return self.base_limit_on(self.get_goal(app_id), day or self._today())

    def current_limit(self, app_id: str, day: date | None = None) -> int:
        goal = self.get_goal(app_id)
        target = day or self._today()
        override = self.db.get_day_limit(app_id, target)
        base = self.base_limit_on(goal, target)
        if override is None:
            return base
        return max(base, override)

    def is_extended(self, app_id: str, day: date | None = None) -> bool:
        target = day or self._today()
        override = self.db.get_day_limit(app_id, target)
        return override is not None and override > self.base_limit(app_id, target)

    def extend_limit(self, app_id: str, new_limit_minutes: int, day: date | None = None) -> bool:
        """Raise the limit for one day. Returns False, changing nothing, unless it strictly increases."""
        target = day or self._today()
        current = self.current_limit(app_id, target)
        if new_limit_minutes <= current:
            return False
        self.db.set_day_limit(app_id, target, new_limit_minutes, self.clock.now())
        logger.info("Extended %s on %s: %s -> %s", app_id, target, current, new_limit_minutes)
        return True

    def schedule_base_limit(self, app_id: str, limit_minutes: int, effective_day: date | None = None) -> MonitoredAppGoal:
        if limit_minutes < 1:
            raise ValueError("daily limit must be at least 1 minute")
        today = self._today()
        effective = effective_day or today + timedelta(days=1)
        if effective <= today:
            raise ValueError("base limit changes take effect from tomorrow at the earliest")
        self.get_goal(app_id)
        self.db.set_pending_limit(app_id, limit_minutes, effective, self.clock.now())
        logger.info("Scheduled base limit %s for %s from %s", limit_minutes, app_id, effective)
        return self.get_goal(app_id)

    def apply_pending_limits(self, day: date) -> list[str]:
        applied = self.db.apply_pending_limits(day, self.clock.now())
        if applied:
            logger.info("Applied pending base limits for %s", ", ".join(applied))
        return applied
