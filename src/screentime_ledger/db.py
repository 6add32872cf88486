from __future__ import annotations

from screentime_ledger.db_repo import BaseDatabase, GoalMixin, LedgerMixin, SystemMixin, UsageMixin


class Database(BaseDatabase, GoalMixin, UsageMixin, LedgerMixin, SystemMixin):
    """sqlite store for goals, usage, the credit ledger and runtime config."""
