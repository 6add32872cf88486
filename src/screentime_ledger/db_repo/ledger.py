from __future__ import annotations

import json
import sqlite3
from datetime import date, datetime, timedelta
from typing import Protocol

from screentime_ledger.db_constants import WEEKLY_CREDITS
from screentime_ledger.db_converters import _row_to_outcome, _row_to_plan, _row_to_transaction
from screentime_ledger.db_models import CreditTransaction, DailyOutcome, TransactionReason, WeeklyPlan
from screentime_ledger.errors import InvariantViolation


class DbProtocol(Protocol):
    def _connect(self) -> sqlite3.Connection: ...
    def get_plan(self, week_start: date) -> WeeklyPlan | None: ...


def _clamp_credits(value: int) -> int:
    return max(0, min(WEEKLY_CREDITS, value))


def _verify_plan(conn: sqlite3.Connection, week_start: date) -> WeeklyPlan:
    row = conn.execute("SELECT * FROM weekly_plans WHERE week_start = ?", (week_start.isoformat(),)).fetchone()
    if row is None:
        raise InvariantViolation(f"weekly plan {week_start} vanished")
    plan = _row_to_plan(row)
    total = conn.execute(
        "SELECT COALESCE(SUM(amount), 0) AS total FROM credit_transactions WHERE week_start = ?",
        (week_start.isoformat(),),
    ).fetchone()["total"]
    if _clamp_credits(int(total)) != plan.credits_remaining:
        raise InvariantViolation(
            f"plan {week_start}: clamped transaction sum {total} != credits_remaining {plan.credits_remaining}"
        )
    return plan


def _insert_transaction(
    conn: sqlite3.Connection,
    week_start: date,
    day: date,
    amount: int,
    nominal_amount: int,
    reason: TransactionReason,
    related_app_id: str | None,
    note: str | None,
    created_at: datetime,
) -> CreditTransaction:
    cur = conn.execute(
        """
        INSERT INTO credit_transactions(
            week_start, day, amount, nominal_amount, reason, related_app_id, note, created_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            week_start.isoformat(),
            day.isoformat(),
            amount,
            nominal_amount,
            reason.value,
            related_app_id,
            note,
            created_at.isoformat(),
        ),
    )
    row = conn.execute("SELECT * FROM credit_transactions WHERE id = ?", (int(cur.lastrowid),)).fetchone()
    return _row_to_transaction(row)


def _apply_change(
    conn: sqlite3.Connection,
    week_start: date,
    day: date,
    nominal_amount: int,
    reason: TransactionReason,
    related_app_id: str | None,
    note: str | None,
    created_at: datetime,
    *,
    target_balance: int | None = None,
) -> CreditTransaction:
    row = conn.execute("SELECT * FROM weekly_plans WHERE week_start = ?", (week_start.isoformat(),)).fetchone()
    if row is None:
        raise InvariantViolation(f"no weekly plan for {week_start}")
    plan = _row_to_plan(row)
    if plan.closed:
        raise InvariantViolation(f"weekly plan {week_start} is closed")

    if target_balance is not None:
        new_balance = _clamp_credits(target_balance)
    else:
        new_balance = _clamp_credits(plan.credits_remaining + nominal_amount)
    applied = new_balance - plan.credits_remaining

    tx = _insert_transaction(
        conn, week_start, day, applied, nominal_amount, reason, related_app_id, note, created_at
    )
    conn.execute(
        "UPDATE weekly_plans SET credits_remaining = ? WHERE week_start = ?",
        (new_balance, week_start.isoformat()),
    )
    return tx


class LedgerMixin:
    def get_plan(self: DbProtocol, week_start: date) -> WeeklyPlan | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM weekly_plans WHERE week_start = ?", (week_start.isoformat(),)
            ).fetchone()
        return _row_to_plan(row) if row else None

    def list_plans(self: DbProtocol) -> list[WeeklyPlan]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM weekly_plans ORDER BY week_start").fetchall()
        return [_row_to_plan(r) for r in rows]

    def create_plan(self: DbProtocol, week_start: date, created_at: datetime) -> WeeklyPlan:
        """Open a week with the full allowance. Idempotent per week start."""
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO weekly_plans(
                    week_start, credits_remaining, failure_count, accountability_fee_paid_date, closed, created_at
                )
                VALUES (?, ?, 0, NULL, 0, ?)
                """,
                (week_start.isoformat(), WEEKLY_CREDITS, created_at.isoformat()),
            )
            if cur.rowcount > 0:
                _insert_transaction(
                    conn,
                    week_start,
                    min(max(created_at.date(), week_start), week_start + timedelta(days=6)),
                    WEEKLY_CREDITS,
                    WEEKLY_CREDITS,
                    TransactionReason.WEEKLY_ALLOWANCE,
                    None,
                    None,
                    created_at,
                )
            plan = _verify_plan(conn, week_start)
        return plan

    def close_plan(self: DbProtocol, week_start: date) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE weekly_plans SET closed = 1 WHERE week_start = ? AND closed = 0",
                (week_start.isoformat(),),
            )
        return cur.rowcount > 0

    def append_credit_change(
        self: DbProtocol,
        week_start: date,
        day: date,
        nominal_amount: int,
        reason: TransactionReason,
        created_at: datetime,
        *,
        related_app_id: str | None = None,
        note: str | None = None,
        target_balance: int | None = None,
        fee_paid_date: date | None = None,
    ) -> tuple[CreditTransaction, WeeklyPlan]:
        """Append one transaction and move the balance by its applied amount.

        The whole change rolls back when the plan no longer satisfies
        clamp(sum(amount)) == credits_remaining.
        """
        with self._connect() as conn:
            tx = _apply_change(
                conn,
                week_start,
                day,
                nominal_amount,
                reason,
                related_app_id,
                note,
                created_at,
                target_balance=target_balance,
            )
            if fee_paid_date is not None:
                conn.execute(
                    "UPDATE weekly_plans SET accountability_fee_paid_date = ? WHERE week_start = ?",
                    (fee_paid_date.isoformat(), week_start.isoformat()),
                )
            plan = _verify_plan(conn, week_start)
        return tx, plan

    def record_day_outcome(
        self: DbProtocol,
        day: date,
        week_start: date,
        failed: bool,
        waived: bool,
        nominal_penalty: int,
        over_limit_apps: list[str],
        evaluated_at: datetime,
        *,
        close_week: bool = False,
    ) -> tuple[DailyOutcome, CreditTransaction | None]:
        """Persist a scored day together with its penalty. Re-scoring a day is a no-op.

        The outcome row is claimed first, so a second writer scoring the same
        day finds it and returns the stored outcome instead.
        """
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO daily_outcomes(
                    day, week_start, failed, waived, penalty, over_limit_apps, evaluated_at
                )
                VALUES (?, ?, ?, ?, 0, ?, ?)
                """,
                (
                    day.isoformat(),
                    week_start.isoformat(),
                    1 if failed else 0,
                    1 if waived else 0,
                    json.dumps(over_limit_apps),
                    evaluated_at.isoformat(),
                ),
            )
            if cur.rowcount == 0:
                existing = conn.execute("SELECT * FROM daily_outcomes WHERE day = ?", (day.isoformat(),)).fetchone()
                return _row_to_outcome(existing), None

            tx: CreditTransaction | None = None
            if failed and not waived and nominal_penalty > 0:
                tx = _apply_change(
                    conn,
                    week_start,
                    day,
                    -nominal_penalty,
                    TransactionReason.OVER_LIMIT_PENALTY,
                    over_limit_apps[0] if len(over_limit_apps) == 1 else None,
                    ", ".join(over_limit_apps) or None,
                    evaluated_at,
                )
                conn.execute(
                    "UPDATE daily_outcomes SET penalty = ? WHERE day = ?",
                    (-tx.amount, day.isoformat()),
                )
            if failed and not waived:
                conn.execute(
                    "UPDATE weekly_plans SET failure_count = failure_count + 1 WHERE week_start = ?",
                    (week_start.isoformat(),),
                )
            _verify_plan(conn, week_start)
            if close_week:
                conn.execute("UPDATE weekly_plans SET closed = 1 WHERE week_start = ?", (week_start.isoformat(),))
            row = conn.execute("SELECT * FROM daily_outcomes WHERE day = ?", (day.isoformat(),)).fetchone()
        return _row_to_outcome(row), tx

    def verify_plan(self: DbProtocol, week_start: date) -> WeeklyPlan:
        with self._connect() as conn:
            return _verify_plan(conn, week_start)

    def list_transactions(self: DbProtocol, week_start: date | None = None) -> list[CreditTransaction]:
        query = "SELECT * FROM credit_transactions"
        params: tuple[str, ...] = ()
        if week_start is not None:
            query += " WHERE week_start = ?"
            params = (week_start.isoformat(),)
        query += " ORDER BY id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_transaction(r) for r in rows]

    def has_transaction_on(self: DbProtocol, day: date, reason: TransactionReason) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM credit_transactions WHERE day = ? AND reason = ? LIMIT 1",
                (day.isoformat(), reason.value),
            ).fetchone()
        return row is not None

    def list_app_transactions(
        self: DbProtocol, app_id: str, day: date, reason: TransactionReason
    ) -> list[CreditTransaction]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM credit_transactions
                WHERE related_app_id = ? AND day = ? AND reason = ?
                ORDER BY id
                """,
                (app_id, day.isoformat(), reason.value),
            ).fetchall()
        return [_row_to_transaction(r) for r in rows]

    def get_outcome(self: DbProtocol, day: date) -> DailyOutcome | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM daily_outcomes WHERE day = ?", (day.isoformat(),)).fetchone()
        return _row_to_outcome(row) if row else None

    def list_outcomes(self: DbProtocol, until: date | None = None) -> list[DailyOutcome]:
        query = "SELECT * FROM daily_outcomes"
        params: tuple[str, ...] = ()
        if until is not None:
            query += " WHERE day <= ?"
            params = (until.isoformat(),)
        query += " ORDER BY day"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_outcome(r) for r in rows]

    def get_ledger_meta(self: DbProtocol, key: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM ledger_meta WHERE key = ?", (key,)).fetchone()
        return str(row["value"]) if row else None

    def set_ledger_meta(self: DbProtocol, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO ledger_meta(key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value
                """,
                (key, value),
            )
