from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Any, Protocol

from screentime_ledger.db_constants import APP_CONFIG_DEFAULTS, CONFIG_INT_BOUNDS, JOB_CONFIG_KEYS

TRUE_STRINGS = {"1", "true", "yes", "on"}


class DbProtocol(Protocol):
    def _connect(self) -> sqlite3.Connection: ...
    def get_app_config(self) -> dict[str, Any]: ...


def normalize_config_value(key: str, value: Any) -> bool | int:
    """Validate one ledger setting and bring it into its allowed range.

    Switches accept booleans or the usual truthy strings. Tuning values must be
    whole numbers and are clamped to `CONFIG_INT_BOUNDS`.
    """
    if key not in APP_CONFIG_DEFAULTS:
        raise ValueError(f"unknown config key: {key}")
    if isinstance(APP_CONFIG_DEFAULTS[key], bool):
        if isinstance(value, str):
            return value.strip().lower() in TRUE_STRINGS
        return bool(value)
    if isinstance(value, bool):
        raise ValueError(f"{key} expects a whole number, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} expects a whole number, got {value!r}") from exc
    low, high = CONFIG_INT_BOUNDS[key]
    return min(high, max(low, number))


def _write_audit(
    conn: sqlite3.Connection,
    actor: str | None,
    action: str,
    target: str,
    payload: dict[str, Any] | None,
    created_at: str,
) -> None:
    conn.execute(
        """
        INSERT INTO admin_audit_log(actor, action, target, payload_json, created_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (actor, action, target, json.dumps(payload) if payload is not None else None, created_at),
    )


class SystemMixin:
    def get_app_config(self: DbProtocol) -> dict[str, Any]:
        """Switches and tuning with defaults filled in. Unreadable stored values fall back."""
        config = dict(APP_CONFIG_DEFAULTS)
        with self._connect() as conn:
            rows = conn.execute("SELECT key, value_json FROM app_config").fetchall()
        for row in rows:
            key = str(row["key"])
            try:
                config[key] = normalize_config_value(key, json.loads(str(row["value_json"])))
            except ValueError:
                continue
        return config

    def set_app_config(self: DbProtocol, updates: dict[str, Any], actor: str = "system", note: str | None = None) -> dict[str, Any]:
        """Store validated settings, one audit row per key. Nothing is written if any key is invalid."""
        cleaned = {key: normalize_config_value(key, value) for key, value in updates.items()}
        now = datetime.now().isoformat()
        with self._connect() as conn:
            for key, value in cleaned.items():
                conn.execute(
                    """
                    INSERT INTO app_config(key, value_json, updated_at, updated_by) VALUES (?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value_json=excluded.value_json, updated_at=excluded.updated_at, updated_by=excluded.updated_by
                    """,
                    (key, json.dumps(value), now, actor),
                )
                _write_audit(conn, actor, "config.update", key, {"value": value, "note": note}, now)
        return self.get_app_config()

    def is_feature_enabled(self: DbProtocol, feature_name: str) -> bool:
        return bool(self.get_app_config().get(f"feature.{feature_name}_enabled", True))

    def is_job_enabled(self: DbProtocol, job_name: str) -> bool:
        key = JOB_CONFIG_KEYS.get(job_name)
        if not key:
            return True
        return bool(self.get_app_config()[key])

    def get_ledger_tuning(self: DbProtocol) -> dict[str, int]:
        config = self.get_app_config()
        return {
            "near_limit_percent": config["blocking.near_limit_percent"],
            "max_catchup_days": config["ledger.max_catchup_days"],
        }

    def list_admin_audit(self: DbProtocol, limit: int = 100) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, actor, action, target, payload_json, created_at
                FROM admin_audit_log
                ORDER BY id DESC
                LIMIT ?
                """,
                (max(1, limit),),
            ).fetchall()
        return [dict(r) for r in rows]

    def add_admin_audit(
        self: DbProtocol,
        *,
        actor: str,
        action: str,
        target: str,
        payload: dict[str, Any] | None,
        created_at: datetime,
    ) -> None:
        with self._connect() as conn:
            _write_audit(conn, actor, action, target, payload, created_at.isoformat())
