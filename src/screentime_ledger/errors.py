from __future__ import annotations


class LedgerError(Exception):
    """Base class for errors returned to callers of the screen-time core."""


class DuplicateApp(LedgerError):
    def __init__(self, app_id: str) -> None:
        super().__init__(f"app already monitored: {app_id}")
        self.app_id = app_id


class UnknownApp(LedgerError):
    def __init__(self, app_id: str) -> None:
        super().__init__(f"app is not monitored: {app_id}")
        self.app_id = app_id


class LimitNotIncreasing(LedgerError):
    def __init__(self, app_id: str, current_limit: int, requested_limit: int) -> None:
        super().__init__(
            f"limit for {app_id} must increase: current={current_limit} requested={requested_limit}"
        )
        self.app_id = app_id
        self.current_limit = current_limit
        self.requested_limit = requested_limit


class InsufficientCredits(LedgerError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"insufficient credits: required={required} available={available}")
        self.required = required
        self.available = available


class NotBlocked(LedgerError):
    def __init__(self, app_id: str, state: str) -> None:
        super().__init__(f"app {app_id} is not blocked (state={state})")
        self.app_id = app_id
        self.state = state


class AccountabilityFeeAlreadyPaid(LedgerError):
    pass


class DegradedUsageData(LedgerError):
    """Shared usage store could not be read. Advisory only."""


class InvariantViolation(LedgerError):
    """Ledger balance no longer matches its transactions. Never recovered silently."""
