from .base import BaseDatabase
from .goals import GoalMixin
from .usage import UsageMixin
from .ledger import LedgerMixin
from .system import SystemMixin

__all__ = [
    "BaseDatabase",
    "GoalMixin",
    "UsageMixin",
    "LedgerMixin",
    "SystemMixin",
]
