from __future__ import annotations

import sqlite3
from datetime import date, datetime
from typing import Protocol

from screentime_ledger.db_converters import _row_to_goal
from screentime_ledger.db_models import MonitoredAppGoal


class DbProtocol(Protocol):
    def _connect(self) -> sqlite3.Connection: ...
    def get_goal(self, app_id: str) -> MonitoredAppGoal | None: ...


class GoalMixin:
    def insert_goal(
        self: DbProtocol,
        app_id: str,
        display_name: str,
        daily_limit_minutes: int,
        created_at: datetime,
    ) -> MonitoredAppGoal | None:
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO monitored_goals(
                    app_id, display_name, daily_limit_minutes, enabled, created_at, last_modified_at
                )
                VALUES (?, ?, ?, 1, ?, ?)
                """,
                (app_id, display_name, daily_limit_minutes, created_at.isoformat(), created_at.isoformat()),
            )
            if cur.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM monitored_goals WHERE app_id = ?", (app_id,)).fetchone()
        assert row is not None
        return _row_to_goal(row)

    def get_goal(self: DbProtocol, app_id: str) -> MonitoredAppGoal | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM monitored_goals WHERE app_id = ?", (app_id,)).fetchone()
        return _row_to_goal(row) if row else None

    def list_goals(self: DbProtocol, enabled_only: bool = False) -> list[MonitoredAppGoal]:
        query = "SELECT * FROM monitored_goals"
        if enabled_only:
            query += " WHERE enabled = 1"
        query += " ORDER BY created_at, app_id"
        with self._connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_goal(r) for r in rows]

    def set_goal_enabled(self: DbProtocol, app_id: str, enabled: bool, changed_at: datetime) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE monitored_goals
                SET enabled = ?, disabled_at = ?, last_modified_at = ?
                WHERE app_id = ?
                """,
                (
                    1 if enabled else 0,
                    None if enabled else changed_at.isoformat(),
                    changed_at.isoformat(),
                    app_id,
                ),
            )
        return cur.rowcount > 0

    def get_day_limit(self: DbProtocol, app_id: str, day: date) -> int | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT limit_minutes FROM goal_day_limits WHERE app_id = ? AND day = ?",
                (app_id, day.isoformat()),
            ).fetchone()
        return int(row["limit_minutes"]) if row else None

    def set_day_limit(self: DbProtocol, app_id: str, day: date, limit_minutes: int, updated_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO goal_day_limits(app_id, day, limit_minutes, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(app_id, day) DO UPDATE SET
                    limit_minutes=excluded.limit_minutes,
                    updated_at=excluded.updated_at
                """,
                (app_id, day.isoformat(), limit_minutes, updated_at.isoformat()),
            )
            conn.execute(
                "UPDATE monitored_goals SET last_modified_at = ? WHERE app_id = ?",
                (updated_at.isoformat(), app_id),
            )

    def set_pending_limit(
        self: DbProtocol,
        app_id: str,
        limit_minutes: int,
        effective_day: date,
        changed_at: datetime,
    ) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE monitored_goals
                SET pending_limit_minutes = ?, pending_effective_date = ?, last_modified_at = ?
                WHERE app_id = ?
                """,
                (limit_minutes, effective_day.isoformat(), changed_at.isoformat(), app_id),
            )
        return cur.rowcount > 0

    def apply_pending_limits(self: DbProtocol, day: date, applied_at: datetime) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT app_id FROM monitored_goals
                WHERE pending_limit_minutes IS NOT NULL AND pending_effective_date <= ?
                """,
                (day.isoformat(),),
            ).fetchall()
            applied = [str(r["app_id"]) for r in rows]
            conn.execute(
                """
                UPDATE monitored_goals
                SET daily_limit_minutes = pending_limit_minutes,
                    pending_limit_minutes = NULL,
                    pending_effective_date = NULL,
                    last_modified_at = ?
                WHERE pending_limit_minutes IS NOT NULL AND pending_effective_date <= ?
                """,
                (applied_at.isoformat(), day.isoformat()),
            )
        return applied
