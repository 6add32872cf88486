from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable

from screentime_ledger.db_models import DailyOutcome, StreakRecord
from screentime_ledger.ledger import CreditLedger


def compute_streak(outcomes: Iterable[DailyOutcome]) -> StreakRecord:
    """Derive the streak from scored days.

    A day passes when no monitored app went over its limit. A waived failure
    is still a failure. An unscored gap between two days breaks the run.
    """
    ordered = sorted(outcomes, key=lambda o: o.day)
    if not ordered:
        return StreakRecord(current_streak=0, longest_streak=0, last_evaluated_date=None)

    run = 0
    longest = 0
    prev_day: date | None = None
    for outcome in ordered:
        if prev_day is not None and outcome.day - prev_day > timedelta(days=1):
            run = 0
        run = 0 if outcome.failed else run + 1
        longest = max(longest, run)
        prev_day = outcome.day

    return StreakRecord(current_streak=run, longest_streak=longest, last_evaluated_date=ordered[-1].day)


class StreakEngine:
    def __init__(self, ledger: CreditLedger) -> None:
        self.ledger = ledger
        self._cached: StreakRecord | None = None
        ledger.outcomes.subscribe(self._invalidate)

    def _invalidate(self, _outcome: DailyOutcome) -> None:
        self._cached = None

    def streak(self) -> StreakRecord:
        if not self.ledger.halted:
            self.ledger.ensure_rolled_over()
        if self._cached is None:
            self._cached = compute_streak(self.ledger.daily_outcomes())
        return self._cached
