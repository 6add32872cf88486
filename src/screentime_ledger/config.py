from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from screentime_ledger.reconciler_config import ReconcilerConfig, load_reconciler_config


@dataclass(frozen=True)
class Settings:
    database_path: Path
    shared_store_path: Path
    tz: str
    reconciler_config_path: Path
    reconciler: ReconcilerConfig
    admin_panel_token: str | None
    admin_host: str
    admin_port: int


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text().splitlines():
        raw = line.strip()
        if not raw or raw.startswith("#") or "=" not in raw:
            continue
        key, value = raw.split("=", maxsplit=1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def load_settings() -> Settings:
    _load_env_file(Path(".env"))

    db_path = Path(os.getenv("DATABASE_PATH", "./data/screentime.db"))
    store_path = Path(os.getenv("SHARED_STORE_PATH", "./data/screen_time_data.json"))
    tz = os.getenv("TZ", "Europe/Oslo")
    reconciler_path = Path(os.getenv("RECONCILER_CONFIG", "./reconciler.yaml"))
    admin_port_raw = os.getenv("ADMIN_PORT", "8080")
    try:
        admin_port = int(admin_port_raw)
    except ValueError:
        admin_port = 8080

    return Settings(
        database_path=db_path,
        shared_store_path=store_path,
        tz=tz,
        reconciler_config_path=reconciler_path,
        reconciler=load_reconciler_config(reconciler_path),
        admin_panel_token=os.getenv("ADMIN_PANEL_TOKEN") or None,
        admin_host=os.getenv("ADMIN_HOST", "127.0.0.1"),
        admin_port=admin_port,
    )
