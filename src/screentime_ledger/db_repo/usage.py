from __future__ import annotations

import sqlite3
from datetime import date, datetime
from typing import Protocol

from screentime_ledger.db_converters import _row_to_snapshot, _row_to_usage_total
from screentime_ledger.db_models import AppMinutes, DailyUsageTotal, UsageSnapshot, UsageSource


class DbProtocol(Protocol):
    def _connect(self) -> sqlite3.Connection: ...
    def get_usage_total(self, day: date) -> DailyUsageTotal | None: ...


class UsageMixin:
    def get_snapshot(self: DbProtocol, app_id: str, day: date) -> UsageSnapshot | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM usage_snapshots WHERE app_id = ? AND day = ?",
                (app_id, day.isoformat()),
            ).fetchone()
        return _row_to_snapshot(row) if row else None

    def list_snapshots(self: DbProtocol, day: date) -> list[UsageSnapshot]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM usage_snapshots WHERE day = ? ORDER BY minutes_used DESC, app_id",
                (day.isoformat(),),
            ).fetchall()
        return [_row_to_snapshot(r) for r in rows]

    def save_snapshot(
        self: DbProtocol,
        app_id: str,
        day: date,
        minutes_used: int,
        peak_minutes: int,
        source: UsageSource,
        source_timestamp: datetime,
        updated_at: datetime,
    ) -> UsageSnapshot:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO usage_snapshots(
                    app_id, day, minutes_used, peak_minutes, source, source_timestamp, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(app_id, day) DO UPDATE SET
                    minutes_used=excluded.minutes_used,
                    peak_minutes=excluded.peak_minutes,
                    source=excluded.source,
                    source_timestamp=excluded.source_timestamp,
                    updated_at=excluded.updated_at
                """,
                (
                    app_id,
                    day.isoformat(),
                    minutes_used,
                    peak_minutes,
                    source.value,
                    source_timestamp.isoformat(),
                    updated_at.isoformat(),
                ),
            )
            row = conn.execute(
                "SELECT * FROM usage_snapshots WHERE app_id = ? AND day = ?",
                (app_id, day.isoformat()),
            ).fetchone()
        assert row is not None
        return _row_to_snapshot(row)

    def get_usage_total(self: DbProtocol, day: date) -> DailyUsageTotal | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM usage_totals WHERE day = ?", (day.isoformat(),)).fetchone()
        return _row_to_usage_total(row) if row else None

    def save_usage_total(
        self: DbProtocol,
        day: date,
        total_minutes: int,
        apps_count: int,
        source: UsageSource,
        last_updated: datetime | None,
        generation: int | None = None,
    ) -> DailyUsageTotal:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO usage_totals(day, total_minutes, apps_count, source, last_updated, degraded, generation)
                VALUES (?, ?, ?, ?, ?, 0, ?)
                ON CONFLICT(day) DO UPDATE SET
                    total_minutes=excluded.total_minutes,
                    apps_count=excluded.apps_count,
                    source=excluded.source,
                    last_updated=excluded.last_updated,
                    generation=COALESCE(excluded.generation, usage_totals.generation)
                """,
                (
                    day.isoformat(),
                    total_minutes,
                    apps_count,
                    source.value,
                    last_updated.isoformat() if last_updated else None,
                    generation,
                ),
            )
            row = conn.execute("SELECT * FROM usage_totals WHERE day = ?", (day.isoformat(),)).fetchone()
        assert row is not None
        return _row_to_usage_total(row)

    def get_usage_generation(self: DbProtocol, day: date) -> int | None:
        with self._connect() as conn:
            row = conn.execute("SELECT generation FROM usage_totals WHERE day = ?", (day.isoformat(),)).fetchone()
        if row is None or row["generation"] is None:
            return None
        return int(row["generation"])

    def mark_usage_degraded(self: DbProtocol, day: date, degraded: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO usage_totals(day, degraded) VALUES (?, ?)
                ON CONFLICT(day) DO UPDATE SET degraded=excluded.degraded
                """,
                (day.isoformat(), 1 if degraded else 0),
            )

    def replace_top_apps(self: DbProtocol, day: date, apps: list[AppMinutes]) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM usage_top_apps WHERE day = ?", (day.isoformat(),))
            conn.executemany(
                "INSERT INTO usage_top_apps(day, position, name, minutes) VALUES (?, ?, ?, ?)",
                [(day.isoformat(), idx, app.name, app.minutes) for idx, app in enumerate(apps)],
            )

    def list_top_apps(self: DbProtocol, day: date) -> list[AppMinutes]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT name, minutes FROM usage_top_apps WHERE day = ? ORDER BY position",
                (day.isoformat(),),
            ).fetchall()
        return [AppMinutes(name=str(r["name"]), minutes=int(r["minutes"])) for r in rows]
