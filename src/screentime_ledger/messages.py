from __future__ import annotations

from screentime_ledger.db_constants import WEEKLY_CREDITS
from screentime_ledger.db_models import BlockingState, CreditTransaction, TransactionReason
from screentime_ledger.service import StatusView

REASON_LABELS = {
    TransactionReason.WEEKLY_ALLOWANCE: "Weekly allowance",
    TransactionReason.OVER_LIMIT_PENALTY: "Over-limit penalty",
    TransactionReason.EXTENSION_FEE: "Limit extension",
    TransactionReason.UNBLOCK_FEE: "Unblock",
    TransactionReason.ACCOUNTABILITY_FEE_RESTORE: "Accountability fee",
    TransactionReason.MANUAL_GRANT: "Manual grant",
}

STATE_LABELS = {
    BlockingState.ACTIVE: "🟢 active",
    BlockingState.NEAR_LIMIT: "🟡 near limit",
    BlockingState.OVER_LIMIT_BLOCKED: "🔴 blocked",
    BlockingState.UNBLOCKED_PAID: "🔓 unblocked",
    BlockingState.EXTENDED_ACTIVE: "⏫ extended",
}


def format_minutes_hm(minutes: int) -> str:
    sign = "-" if minutes < 0 else ""
    total = abs(minutes)
    h, m = divmod(total, 60)
    if m == 0:
        return f"{sign}{h}h"
    if h == 0:
        return f"{sign}{m}m"
    return f"{sign}{h}h {m}m"


def _credit_bar(credits: int) -> str:
    filled = max(0, min(WEEKLY_CREDITS, credits))
    return "●" * filled + "○" * (WEEKLY_CREDITS - filled)


def transaction_line(tx: CreditTransaction) -> str:
    label = REASON_LABELS.get(tx.reason, tx.reason.value)
    app = f" [{tx.related_app_id}]" if tx.related_app_id else ""
    amount = f"{tx.amount:+d}"
    if tx.amount != tx.nominal_amount:
        amount += f" (of {tx.nominal_amount:+d})"
    note = f" | {tx.note}" if tx.note else ""
    return f"{tx.day.isoformat()} {label}{app}: {amount}{note}"


def history_message(transactions: list[CreditTransaction]) -> str:
    if not transactions:
        return "No credit activity this week."
    return "\n".join(["💳 Credit history", *(transaction_line(tx) for tx in transactions)])


def status_message(view: StatusView) -> str:
    lines = [
        f"📊 Status — {view.day.isoformat()}",
        "",
        f"💳 Credits: {view.credits_remaining}/{WEEKLY_CREDITS} {_credit_bar(view.credits_remaining)}",
        f"❌ Failures this week: {view.failure_count}",
    ]
    if view.fee_waived_today:
        lines.append("🛡️ Accountability fee paid today: fees waived until midnight")
    lines.append(
        f"🔥 Streak: {view.streak.current_streak} days | Best: {view.streak.longest_streak}"
    )
    lines.append(f"🐾 Pet health: {view.pet.percentage}% ({view.pet.state.value})")
    lines.append(f"📱 Screen time today: {format_minutes_hm(view.total_minutes)}")
    if view.degraded:
        lines.append("⚠️ Usage data may be out of date")

    if view.apps:
        lines.extend(["", "Monitored apps:"])
        for app in view.apps:
            limit = format_minutes_hm(app.current_limit)
            if app.current_limit != app.base_limit:
                limit += f" (base {format_minutes_hm(app.base_limit)})"
            lines.append(
                f"  {app.display_name}: {format_minutes_hm(app.minutes_used)} / {limit} — {STATE_LABELS[app.state]}"
            )

    if view.top_distractions:
        lines.extend(["", "Top distractions:"])
        for idx, app in enumerate(view.top_distractions, start=1):
            lines.append(f"  {idx}. {app.name} — {format_minutes_hm(app.minutes)}")

    if view.ledger_halted:
        lines.extend(["", "‼️ Ledger halted after an integrity failure. Credit actions are disabled."])
    return "\n".join(lines)
