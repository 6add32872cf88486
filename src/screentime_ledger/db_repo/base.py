from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path


class BaseDatabase:
    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """
            )
            current = {row["version"] for row in conn.execute("SELECT version FROM schema_migrations")}

            migrations: dict[int, str] = {
                1: """
                    CREATE TABLE monitored_goals (
                        app_id TEXT PRIMARY KEY,
                        display_name TEXT NOT NULL,
                        daily_limit_minutes INTEGER NOT NULL CHECK(daily_limit_minutes > 0),
                        enabled INTEGER NOT NULL DEFAULT 1,
                        created_at TEXT NOT NULL,
                        last_modified_at TEXT NOT NULL,
                        disabled_at TEXT
                    );

                    CREATE TABLE goal_day_limits (
                        app_id TEXT NOT NULL,
                        day TEXT NOT NULL,
                        limit_minutes INTEGER NOT NULL CHECK(limit_minutes > 0),
                        updated_at TEXT NOT NULL,
                        PRIMARY KEY(app_id, day),
                        FOREIGN KEY (app_id) REFERENCES monitored_goals(app_id)
                    );
                """,
                2: """
                    CREATE TABLE usage_snapshots (
                        app_id TEXT NOT NULL,
                        day TEXT NOT NULL,
                        minutes_used INTEGER NOT NULL CHECK(minutes_used >= 0),
                        peak_minutes INTEGER NOT NULL CHECK(peak_minutes >= 0),
                        source TEXT NOT NULL CHECK(source IN ('local-estimate', 'external-report')),
                        source_timestamp TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        PRIMARY KEY(app_id, day)
                    );

                    CREATE INDEX idx_usage_snapshots_day ON usage_snapshots(day);

                    CREATE TABLE usage_totals (
                        day TEXT PRIMARY KEY,
                        total_minutes INTEGER NOT NULL DEFAULT 0,
                        apps_count INTEGER NOT NULL DEFAULT 0,
                        source TEXT NOT NULL DEFAULT 'local-estimate',
                        last_updated TEXT,
                        degraded INTEGER NOT NULL DEFAULT 0,
                        generation INTEGER
                    );

                    CREATE TABLE usage_top_apps (
                        day TEXT NOT NULL,
                        position INTEGER NOT NULL,
                        name TEXT NOT NULL,
                        minutes INTEGER NOT NULL,
                        PRIMARY KEY(day, position)
                    );
                """,
                3: """
                    CREATE TABLE weekly_plans (
                        week_start TEXT PRIMARY KEY,
                        credits_remaining INTEGER NOT NULL CHECK(credits_remaining BETWEEN 0 AND 7),
                        failure_count INTEGER NOT NULL DEFAULT 0,
                        accountability_fee_paid_date TEXT,
                        closed INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL
                    );

                    CREATE TABLE credit_transactions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        week_start TEXT NOT NULL,
                        day TEXT NOT NULL,
                        amount INTEGER NOT NULL,
                        nominal_amount INTEGER NOT NULL,
                        reason TEXT NOT NULL,
                        related_app_id TEXT,
                        note TEXT,
                        created_at TEXT NOT NULL,
                        FOREIGN KEY (week_start) REFERENCES weekly_plans(week_start)
                    );

                    CREATE INDEX idx_credit_transactions_week ON credit_transactions(week_start, id);
                    CREATE INDEX idx_credit_transactions_day ON credit_transactions(day, reason);

                    CREATE TABLE daily_outcomes (
                        day TEXT PRIMARY KEY,
                        week_start TEXT NOT NULL,
                        failed INTEGER NOT NULL,
                        waived INTEGER NOT NULL DEFAULT 0,
                        penalty INTEGER NOT NULL DEFAULT 0,
                        over_limit_apps TEXT NOT NULL DEFAULT '[]',
                        evaluated_at TEXT NOT NULL
                    );

                    CREATE TABLE ledger_meta (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL
                    );
                """,
                4: """
                    CREATE TABLE IF NOT EXISTS app_config (
                        key TEXT PRIMARY KEY,
                        value_json TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        updated_by TEXT
                    );

                    CREATE TABLE IF NOT EXISTS admin_audit_log (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        actor TEXT,
                        action TEXT NOT NULL,
                        target TEXT NOT NULL,
                        payload_json TEXT,
                        created_at TEXT NOT NULL
                    );
                """,
                5: """
                    ALTER TABLE monitored_goals ADD COLUMN pending_limit_minutes INTEGER;
                    ALTER TABLE monitored_goals ADD COLUMN pending_effective_date TEXT;
                """,
            }

            now = datetime.now().isoformat(timespec="seconds")
            for version in sorted(migrations):
                if version in current:
                    continue
                conn.executescript(migrations[version])
                conn.execute(
                    "INSERT INTO schema_migrations(version, applied_at) VALUES (?, ?)",
                    (version, now),
                )
