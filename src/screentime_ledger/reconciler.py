from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Awaitable, Callable, Sequence

from screentime_ledger.db import Database
from screentime_ledger.db_models import AppMinutes, MonitoredAppGoal, UsageSnapshot, UsageSource
from screentime_ledger.errors import DegradedUsageData
from screentime_ledger.events import EventChannel
from screentime_ledger.goal_store import GoalStore
from screentime_ledger.reconciler_config import ReconcilerConfig
from screentime_ledger.shared_store import ExternalUsageReport, SharedUsageStore
from screentime_ledger.time_utils import Clock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotChanged:
    snapshot: UsageSnapshot
    previous_minutes: int | None


@dataclass(frozen=True)
class PollResult:
    day: date
    polled_at: datetime
    changed: tuple[SnapshotChanged, ...] = ()
    degraded: bool = False
    skipped: str | None = None
    total_minutes: int | None = None


@dataclass
class _MergeOutcome:
    snapshot: UsageSnapshot | None
    changed: SnapshotChanged | None = None


class UsageReconciler:
    """Merges local estimates and the external usage report into one figure per app and day."""

    def __init__(
        self,
        db: Database,
        goals: GoalStore,
        store: SharedUsageStore,
        clock: Clock,
        config: ReconcilerConfig | None = None,
        snapshots: EventChannel[SnapshotChanged] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.db = db
        self.goals = goals
        self.store = store
        self.clock = clock
        self.config = config or ReconcilerConfig()
        self.snapshots: EventChannel[SnapshotChanged] = snapshots or EventChannel("usage-snapshot")
        self._sleep = sleep
        self._patterns = [re.compile(p, re.IGNORECASE) for p in self.config.placeholder_patterns]
        self._task: asyncio.Task[list[PollResult]] | None = None

    # --- placeholder filtering

    def is_placeholder(self, name: str) -> bool:
        cleaned = name.strip()
        if not cleaned:
            return True
        lowered = cleaned.lower()
        if lowered in self.config.placeholder_literals:
            return True
        if any(s in lowered for s in self.config.placeholder_substrings):
            return True
        return any(p.match(cleaned) for p in self._patterns)

    # --- merging

    def _merge(self, app_id: str, day: date, minutes: int, source: UsageSource, at: datetime) -> _MergeOutcome:
        prev = self.db.get_snapshot(app_id, day)
        minutes = max(0, int(minutes))

        if source == UsageSource.LOCAL_ESTIMATE:
            if prev is not None and prev.source == UsageSource.EXTERNAL_REPORT and prev.minutes_used > 0:
                return _MergeOutcome(snapshot=prev)
            merged = max(prev.minutes_used if prev else 0, minutes)
        else:
            if minutes == 0 and prev is not None:
                return _MergeOutcome(snapshot=prev)
            prev_external = prev.minutes_used if prev and prev.source == UsageSource.EXTERNAL_REPORT else 0
            merged = max(prev_external, minutes)

        if prev is not None and prev.minutes_used == merged and prev.source == source:
            return _MergeOutcome(snapshot=prev)

        peak = max(prev.peak_minutes if prev else 0, merged)
        snapshot = self.db.save_snapshot(app_id, day, merged, peak, source, at, self.clock.now())
        changed = None
        if prev is None or prev.minutes_used != merged:
            changed = SnapshotChanged(snapshot=snapshot, previous_minutes=prev.minutes_used if prev else None)
            logger.debug("usage %s %s: %s -> %s (%s)", app_id, day, changed.previous_minutes, merged, source.value)
        return _MergeOutcome(snapshot=snapshot, changed=changed)

    def _publish(self, changes: Sequence[SnapshotChanged]) -> None:
        for change in changes:
            self.snapshots.publish(change)

    def record_local_estimate(self, app_id: str, minutes: int, at: datetime | None = None) -> UsageSnapshot | None:
        return self.record_usage(app_id, minutes, UsageSource.LOCAL_ESTIMATE, at)

    def record_usage(
        self,
        app_id: str,
        minutes: int,
        source: UsageSource,
        at: datetime | None = None,
    ) -> UsageSnapshot | None:
        """Record one usage figure for a monitored app on the local day of `at`."""
        if minutes < 0:
            raise ValueError("minutes must not be negative")
        self.goals.get_goal(app_id)
        if self.is_placeholder(app_id):
            return None
        when = at or self.clock.now()
        outcome = self._merge(app_id, when.date(), minutes, source, when)
        if outcome.changed is not None:
            self._publish([outcome.changed])
        return outcome.snapshot

    def current_snapshot(self, app_id: str, day: date | None = None) -> UsageSnapshot | None:
        return self.db.get_snapshot(app_id, day or self.clock.now().date())

    def minutes_used(self, app_id: str, day: date | None = None) -> int:
        snapshot = self.current_snapshot(app_id, day)
        return snapshot.minutes_used if snapshot else 0

    def peak_minutes(self, app_id: str, day: date | None = None) -> int:
        snapshot = self.current_snapshot(app_id, day)
        return snapshot.peak_minutes if snapshot else 0

    # --- external report

    def _lookup_minutes(self, per_app: dict[str, int], goal: MonitoredAppGoal) -> int | None:
        for key in (goal.app_id, goal.display_name):
            if key in per_app:
                return per_app[key]
        normalized = {k.strip().lower(): v for k, v in per_app.items()}
        for key in (goal.app_id, goal.display_name):
            value = normalized.get(key.strip().lower())
            if value is not None:
                return value
        return None

    def _ranked(self, apps: dict[str, int]) -> list[AppMinutes]:
        ranked = [
            AppMinutes(name=name, minutes=minutes)
            for name, minutes in apps.items()
            if minutes > 0 and not self.is_placeholder(name)
        ]
        ranked.sort(key=lambda a: (-a.minutes, a.name.lower()))
        return ranked[: self.config.top_apps_limit]

    def _is_stale(self, report: ExternalUsageReport, today: date) -> bool:
        if report.last_updated is None:
            return False
        tz = self.clock.now().tzinfo
        reported_day = datetime.fromtimestamp(report.last_updated, tz=tz).date()
        return reported_day != today

    def apply_report(self, report: ExternalUsageReport, force: bool = True) -> PollResult:
        now = self.clock.now()
        day = now.date()

        if report.generation is not None and not force:
            if self.db.get_usage_generation(day) == report.generation:
                return PollResult(day=day, polled_at=now, skipped="generation-unchanged")

        if self._is_stale(report, day):
            logger.debug("Ignoring usage report from a previous day (last_updated=%s)", report.last_updated)
            return PollResult(day=day, polled_at=now, skipped="stale")

        per_app = report.per_app_minutes()
        changes: list[SnapshotChanged] = []
        for goal in self.goals.goals_for_day(day):
            if self.is_placeholder(goal.app_id):
                continue
            minutes = self._lookup_minutes(per_app, goal)
            if minutes is None:
                continue
            outcome = self._merge(goal.app_id, day, minutes, UsageSource.EXTERNAL_REPORT, now)
            if outcome.changed is not None:
                changes.append(outcome.changed)

        prev_total = self.db.get_usage_total(day)
        prev_external_total = (
            prev_total.total_minutes if prev_total and prev_total.source == UsageSource.EXTERNAL_REPORT else 0
        )
        last_updated = datetime.fromtimestamp(report.last_updated, tz=now.tzinfo) if report.last_updated else now
        if report.total_usage > 0 or prev_external_total == 0:
            total = self.db.save_usage_total(
                day,
                max(prev_external_total, report.total_usage),
                max(report.apps_count, prev_total.apps_count if prev_total else 0),
                UsageSource.EXTERNAL_REPORT,
                last_updated,
                report.generation,
            )
        else:
            total = prev_total
        self.db.mark_usage_degraded(day, False)

        ranked = self._ranked(per_app)
        if ranked:
            self.db.replace_top_apps(day, ranked)

        self._publish(changes)
        return PollResult(
            day=day,
            polled_at=now,
            changed=tuple(changes),
            total_minutes=total.total_minutes if total else None,
        )

    def poll_once(self, force: bool = True) -> PollResult:
        now = self.clock.now()
        try:
            report = self.store.read()
        except DegradedUsageData as exc:
            logger.warning("Usage store unreadable, keeping local estimates: %s", exc)
            self.db.mark_usage_degraded(now.date(), True)
            return PollResult(day=now.date(), polled_at=now, degraded=True)
        if report is None:
            return PollResult(day=now.date(), polled_at=now, skipped="no-data")
        return self.apply_report(report, force=force)

    # --- schedule

    async def run_schedule(self, offsets: Sequence[float] | None = None) -> list[PollResult]:
        """Poll at each offset (seconds after the trigger), then stop."""
        schedule = sorted(offsets if offsets is not None else self.config.poll_offsets)
        loop = asyncio.get_running_loop()
        started = loop.time()
        results: list[PollResult] = []
        for idx, offset in enumerate(schedule):
            delay = started + offset - loop.time()
            if delay > 0:
                await self._sleep(delay)
            # only the first read is forced; later ones may short-circuit on an unchanged generation
            results.append(self.poll_once(force=idx == 0))
        return results

    def start_polling(self) -> asyncio.Task[list[PollResult]]:
        self.cancel_polling()
        self._task = asyncio.get_running_loop().create_task(self.run_schedule())
        return self._task

    def cancel_polling(self) -> bool:
        task = self._task
        self._task = None
        if task is None or task.done():
            return False
        task.cancel()
        return True

    @property
    def polling(self) -> bool:
        return self._task is not None and not self._task.done()

    # --- read side

    def is_degraded(self, day: date | None = None) -> bool:
        total = self.db.get_usage_total(day or self.clock.now().date())
        return bool(total and total.degraded)

    def total_minutes(self, day: date | None = None) -> int:
        """Grand total for the day. The external total is taken as reported."""
        target = day or self.clock.now().date()
        total = self.db.get_usage_total(target)
        if total is not None and total.source == UsageSource.EXTERNAL_REPORT and total.total_minutes > 0:
            return total.total_minutes
        return sum(s.minutes_used for s in self.db.list_snapshots(target) if not self.is_placeholder(s.app_id))

    def top_distractions(self, day: date | None = None, limit: int | None = None) -> list[AppMinutes]:
        target = day or self.clock.now().date()
        stored = {a.name: a.minutes for a in self.db.list_top_apps(target)}
        if not stored:
            names: dict[str, str] = {}
            for goal in self.goals.list_goals():
                names[goal.app_id] = goal.display_name
            stored = {names.get(s.app_id, s.app_id): s.minutes_used for s in self.db.list_snapshots(target)}
        ranked = self._ranked(stored)
        return ranked[:limit] if limit is not None else ranked
