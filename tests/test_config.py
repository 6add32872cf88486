from __future__ import annotations

from pathlib import Path

from screentime_ledger.config import load_settings
from screentime_ledger.reconciler_config import DEFAULT_POLL_OFFSETS, ReconcilerConfig, load_reconciler_config


def test_missing_yaml_uses_defaults(tmp_path) -> None:
    assert load_reconciler_config(tmp_path / "missing.yaml") == ReconcilerConfig()


def test_yaml_overrides_and_fallbacks(tmp_path) -> None:
    path = tmp_path / "reconciler.yaml"
    path.write_text(
        "\n".join(
            [
                "poll_offsets: [5, 0, nope, -2]",
                "top_apps_limit: abc",
                "placeholders:",
                "  literals: [Unknown, N/A]",
                "  substrings: []",
            ]
        )
    )
    cfg = load_reconciler_config(path)
    assert cfg.poll_offsets == (0.0, 0.0, 5.0)
    assert cfg.top_apps_limit == 10
    assert cfg.placeholder_literals == ("unknown", "n/a")
    assert cfg.placeholder_substrings == ("familycontrols", "authentication")


def test_non_mapping_yaml_is_ignored(tmp_path) -> None:
    path = tmp_path / "reconciler.yaml"
    path.write_text("- just\n- a list\n")
    assert load_reconciler_config(path).poll_offsets == DEFAULT_POLL_OFFSETS


def test_load_settings_reads_env_and_dotenv(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "reconciler.yaml").write_text("top_apps_limit: 3\n")
    (tmp_path / ".env").write_text('SHARED_STORE_PATH="/srv/usage/screen_time_data.json"\n# comment\n')
    # register the key with monkeypatch so the value loaded from .env is removed afterwards
    monkeypatch.setenv("SHARED_STORE_PATH", "unused")
    monkeypatch.delenv("SHARED_STORE_PATH")
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "ledger.db"))
    monkeypatch.setenv("TZ", "Europe/Oslo")
    monkeypatch.setenv("ADMIN_PORT", "not-a-port")
    monkeypatch.delenv("RECONCILER_CONFIG", raising=False)
    monkeypatch.delenv("ADMIN_PANEL_TOKEN", raising=False)

    settings = load_settings()
    assert settings.database_path == tmp_path / "ledger.db"
    assert settings.shared_store_path == Path("/srv/usage/screen_time_data.json")
    assert settings.admin_port == 8080
    assert settings.admin_panel_token is None
    assert settings.reconciler.top_apps_limit == 3
