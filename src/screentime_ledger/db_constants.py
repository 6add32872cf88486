from __future__ import annotations

from typing import Any

WEEKLY_CREDITS = 7
EXTENSION_FEE_CREDITS = 1
UNBLOCK_FEE_CREDITS = 1

APP_CONFIG_DEFAULTS: dict[str, Any] = {
    "feature.reconciler_enabled": True,
    "feature.penalties_enabled": True,
    "job.rollover_enabled": True,
    "job.poll_enabled": True,
    "job.summary_enabled": True,
    "blocking.near_limit_percent": 80,
    "ledger.max_catchup_days": 35,
}

JOB_CONFIG_KEYS = {
    "rollover": "job.rollover_enabled",
    "poll": "job.poll_enabled",
    "summary": "job.summary_enabled",
}

CONFIG_INT_BOUNDS = {
    "blocking.near_limit_percent": (1, 99),
    "ledger.max_catchup_days": (1, 366),
}
