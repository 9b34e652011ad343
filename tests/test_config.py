"""Tests for settings loading."""

from pathlib import Path

from pos_offline.config import load_settings

KEYS = ("POS_SERVER_URL", "POS_API_TOKEN", "POS_DATA_DIR", "POS_CACHE_GENERATION", "POS_LOW_STOCK_THRESHOLD")


def clear_env(monkeypatch):
    # setenv first so monkeypatch removes whatever load_env_file sets
    for key in KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)


def test_env_file_values(tmp_path, monkeypatch):
    clear_env(monkeypatch)
    env_file = tmp_path / "pos.env"
    env_file.write_text(
        "# POS client\n"
        "POS_SERVER_URL=https://pos.example.com/api/v1\n"
        "POS_API_TOKEN=abc=123\n"
        f"POS_DATA_DIR={tmp_path / 'data'}\n"
        "POS_CACHE_GENERATION=4\n"
    )

    settings = load_settings(env_file)

    assert settings.server_url == "https://pos.example.com/api/v1"
    assert settings.api_token == "abc=123"
    assert settings.cache_generation == 4
    assert settings.db_path == tmp_path / "data" / "local.db"
    assert settings.low_stock_threshold == 5


def test_environment_wins_over_env_file(tmp_path, monkeypatch):
    clear_env(monkeypatch)
    monkeypatch.setenv("POS_LOW_STOCK_THRESHOLD", "2")
    env_file = tmp_path / "pos.env"
    env_file.write_text("POS_LOW_STOCK_THRESHOLD=9\n")

    assert load_settings(env_file).low_stock_threshold == 2


def test_missing_env_file_uses_defaults(tmp_path, monkeypatch):
    clear_env(monkeypatch)

    settings = load_settings(tmp_path / "absent.env")

    assert settings.kiosk_port == 8001
    assert settings.bridge_port == 8002
    assert isinstance(settings.data_dir, Path)
