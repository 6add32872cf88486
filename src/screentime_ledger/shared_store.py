from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from screentime_ledger.db_models import AppMinutes
from screentime_ledger.errors import DegradedUsageData

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExternalUsageReport:
    total_usage: int
    apps_count: int
    top_apps: tuple[AppMinutes, ...]
    last_updated: float | None
    per_app_usage: dict[str, int] = field(default_factory=dict)
    generation: int | None = None

    def per_app_minutes(self) -> dict[str, int]:
        if self.per_app_usage:
            return dict(self.per_app_usage)
        minutes: dict[str, int] = {}
        for app in self.top_apps:
            minutes[app.name] = max(minutes.get(app.name, 0), app.minutes)
        return minutes


class SharedUsageStore(Protocol):
    def read(self) -> ExternalUsageReport | None: ...


def _minutes(value: Any) -> int:
    try:
        return max(0, int(float(value)))
    except (TypeError, ValueError):
        return 0


def parse_report(payload: dict[str, Any]) -> ExternalUsageReport:
    top_apps: list[AppMinutes] = []
    raw_top = payload.get("top_apps")
    if isinstance(raw_top, list):
        for item in raw_top:
            if not isinstance(item, dict) or "name" not in item:
                continue
            top_apps.append(AppMinutes(name=str(item["name"]), minutes=_minutes(item.get("minutes"))))

    per_app: dict[str, int] = {}
    raw_per_app = payload.get("per_app_usage")
    if isinstance(raw_per_app, dict):
        per_app = {str(k): _minutes(v) for k, v in raw_per_app.items()}

    last_updated: float | None
    try:
        last_updated = float(payload["last_updated"]) if payload.get("last_updated") is not None else None
    except (TypeError, ValueError):
        last_updated = None

    generation: int | None
    try:
        generation = int(payload["generation"]) if payload.get("generation") is not None else None
    except (TypeError, ValueError):
        generation = None

    return ExternalUsageReport(
        total_usage=_minutes(payload.get("total_usage")),
        apps_count=_minutes(payload.get("apps_count")),
        top_apps=tuple(top_apps),
        last_updated=last_updated,
        per_app_usage=per_app,
        generation=generation,
    )


class JsonFileUsageStore:
    """Read-only view of the JSON file the usage reporter writes.

    A missing file means nothing was reported yet. Anything else that prevents
    a clean read raises DegradedUsageData.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def read(self) -> ExternalUsageReport | None:
        if not self.path.exists():
            return None
        try:
            # re-read on every call, the reporter may rewrite the file at any time
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise DegradedUsageData(f"cannot read {self.path}: {exc}") from exc
        if not text.strip():
            return None
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise DegradedUsageData(f"malformed usage data in {self.path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise DegradedUsageData(f"unexpected usage payload type in {self.path}")
        return parse_report(payload)
