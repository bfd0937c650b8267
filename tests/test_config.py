from datetime import timedelta

import config
from config import (
    DEVELOPMENT_SETTINGS,
    PRODUCTION_SETTINGS,
    load_refresh_settings,
)


def test_development_profile_defaults():
    settings = load_refresh_settings({}, profile="development")
    assert settings == DEVELOPMENT_SETTINGS
    assert settings.workers == 3
    assert settings.schema_ttl == timedelta(minutes=5)
    assert settings.throttle_window == timedelta(0)


def test_production_profile_from_app_env():
    settings = load_refresh_settings({"APP_ENV": "prod"})
    assert settings == PRODUCTION_SETTINGS
    assert settings.throttle_window == timedelta(seconds=60)
    assert settings.schema_ttl == timedelta(hours=1)


def test_unknown_profile_uses_production():
    assert load_refresh_settings({"APP_ENV": "staging"}) == PRODUCTION_SETTINGS


def test_environment_overrides():
    settings = load_refresh_settings(
        {
            "APP_ENV": "production",
            "REFRESH_WORKERS": "8",
            "SCHEMA_TTL_SECONDS": "120",
            "THROTTLE_WINDOW_SECONDS": "0",
            "REFRESH_TIMEOUT_SECONDS": "30",
        }
    )
    assert settings.workers == 8
    assert settings.schema_ttl == timedelta(seconds=120)
    assert settings.throttle_window == timedelta(0)
    assert settings.refresh_timeout == timedelta(seconds=30)


def test_invalid_overrides_keep_preset_values():
    settings = load_refresh_settings(
        {"REFRESH_WORKERS": "zero", "SCHEMA_TTL_SECONDS": "-5", "REFRESH_TIMEOUT_SECONDS": "soon"},
        profile="dev",
    )
    assert settings.workers == DEVELOPMENT_SETTINGS.workers
    assert settings.schema_ttl == DEVELOPMENT_SETTINGS.schema_ttl
    assert settings.refresh_timeout is None


def test_database_url_takes_precedence(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:////tmp/explicit.db")
    monkeypatch.setenv("DB_HOST", "db.internal")
    assert config._build_db_dsn() == "sqlite:////tmp/explicit.db"


def test_default_dsn_is_sqlite(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    for key in ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD"):
        monkeypatch.delenv(key, raising=False)
    dsn = config._build_db_dsn()
    assert dsn.startswith("sqlite:///")
    assert dsn.endswith("/app.db")
