"""Application-wide configuration helpers and constants."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from datetime import timedelta
from pathlib import Path
from typing import Final, Mapping
from urllib.parse import quote_plus

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent

load_dotenv(BASE_DIR / ".env")


logger = logging.getLogger(__name__)


def _clean_text(value: str | None) -> str:
    """Return ``value`` stripped of surrounding whitespace."""

    if value is None:
        return ""
    return value.strip()


def _path_from(env_value: str | None, default: str | Path) -> Path:
    """Resolve a filesystem path using an environment override when provided."""

    text = _clean_text(env_value)
    candidate = Path(text) if text else Path(default)
    candidate = candidate.expanduser()
    if candidate.is_absolute():
        try:
            return candidate.resolve()
        except (OSError, RuntimeError):  # pragma: no cover - fallback for exotic paths
            return candidate
    return candidate


def _coerce_positive_float(value: str | None, default: float) -> float:
    """Return ``value`` coerced to a positive float or ``default`` when invalid."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = float(text)
    except (TypeError, ValueError):
        return default
    return numeric if numeric > 0 else default


def _coerce_positive_int(value: str | None, default: int) -> int:
    """Return ``value`` coerced to a positive integer or ``default`` when invalid."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = int(float(text))
    except (TypeError, ValueError):
        return default
    return numeric if numeric > 0 else default


def _coerce_seconds(value: str | None, default: timedelta) -> timedelta:
    """Return ``value`` as a non-negative :class:`timedelta` of whole seconds."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = int(text)
    except (TypeError, ValueError):
        return default
    if numeric < 0:
        return default
    return timedelta(seconds=numeric)


def _coerce_truthy_env(value: str | None) -> bool:
    """Return ``True`` when ``value`` represents an affirmative flag."""

    if value is None:
        return False
    text = value.strip().lower()
    return text in {"1", "true", "yes", "on"}


APP_ENV: Final[str] = _clean_text(os.environ.get("APP_ENV")).lower() or "production"

LOG_DIR_PATH: Final[Path] = _path_from(os.environ.get("LOG_DIR"), BASE_DIR / "logs")
LOG_DIR: Final[str] = os.fspath(LOG_DIR_PATH)
LOG_FILE_PATH: Final[Path] = _path_from(
    os.environ.get("LOG_FILE"), LOG_DIR_PATH / "app.log"
)
LOG_FILE: Final[str] = os.fspath(LOG_FILE_PATH)

DATA_DIR_PATH: Final[Path] = _path_from(os.environ.get("DATA_DIR"), BASE_DIR / "data")

DB_HOST: Final[str] = _clean_text(os.environ.get("DB_HOST")) or "localhost"
DB_PORT: Final[int] = _coerce_positive_int(os.environ.get("DB_PORT"), 3306)
DB_NAME: Final[str] = _clean_text(os.environ.get("DB_NAME")) or "achievement_tracker"
DB_USER: Final[str] = _clean_text(os.environ.get("DB_USER"))
DB_PASSWORD: Final[str] = _clean_text(os.environ.get("DB_PASSWORD"))


def _build_db_dsn() -> str:
    """Return a database DSN constructed from environment configuration."""

    explicit = _clean_text(os.environ.get("DATABASE_URL"))
    if explicit:
        return explicit

    maria_overrides = {
        key: _clean_text(os.environ.get(key))
        for key in ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD")
    }
    if any(value for value in maria_overrides.values()):
        auth = ""
        if DB_USER:
            password = quote_plus(DB_PASSWORD) if DB_PASSWORD else ""
            auth = DB_USER
            if password:
                auth = f"{auth}:{password}"
            auth = f"{auth}@"
        return f"mariadb://{auth}{DB_HOST}:{DB_PORT}/{DB_NAME}"

    sqlite_path = (DATA_DIR_PATH / "app.db").resolve()
    return f"sqlite:///{sqlite_path.as_posix()}"


DB_DSN: Final[str] = _build_db_dsn()

DB_CONNECT_TIMEOUT_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("DB_CONNECT_TIMEOUT"), 10.0
)

DEFAULT_STEAM_USER_AGENT: Final[str] = "steam-achievement-tracker/1.0"
STEAM_USER_AGENT: Final[str] = (
    _clean_text(os.environ.get("STEAM_USER_AGENT")) or DEFAULT_STEAM_USER_AGENT
)
STEAM_API_KEY: Final[str] = _clean_text(os.environ.get("STEAM_API_KEY"))
STEAM_HTTP_TIMEOUT_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("STEAM_HTTP_TIMEOUT"), 20.0
)

APP_SECRET_KEY: Final[str] = _clean_text(os.environ.get("APP_SECRET_KEY")) or "dev-secret"
FLASK_DEBUG: Final[bool] = _coerce_truthy_env(os.environ.get("FLASK_DEBUG"))


@dataclass(frozen=True)
class RefreshSettings:
    """Tunables consumed by the refresh orchestrator and its HTTP trigger."""

    workers: int
    schema_ttl: timedelta
    throttle_window: timedelta
    refresh_timeout: timedelta | None = None


DEVELOPMENT_SETTINGS: Final[RefreshSettings] = RefreshSettings(
    workers=3,
    schema_ttl=timedelta(minutes=5),
    throttle_window=timedelta(0),
)
PRODUCTION_SETTINGS: Final[RefreshSettings] = RefreshSettings(
    workers=3,
    schema_ttl=timedelta(hours=1),
    throttle_window=timedelta(seconds=60),
)

REFRESH_PROFILES: Final[dict[str, RefreshSettings]] = {
    "development": DEVELOPMENT_SETTINGS,
    "dev": DEVELOPMENT_SETTINGS,
    "production": PRODUCTION_SETTINGS,
    "prod": PRODUCTION_SETTINGS,
}


def load_refresh_settings(
    env: Mapping[str, str] | None = None,
    *,
    profile: str | None = None,
) -> RefreshSettings:
    """Return the refresh settings for ``profile`` with environment overrides.

    The profile defaults to ``APP_ENV`` from ``env``; unknown names resolve
    to the production preset. ``REFRESH_WORKERS``, ``SCHEMA_TTL_SECONDS``,
    ``THROTTLE_WINDOW_SECONDS`` and ``REFRESH_TIMEOUT_SECONDS`` override the
    preset values when they hold valid numbers.
    """

    source = os.environ if env is None else env
    profile_name = _clean_text(profile or source.get("APP_ENV")).lower() or "production"
    base = REFRESH_PROFILES.get(profile_name)
    if base is None:
        logger.warning("Unknown refresh profile %r; using production defaults", profile_name)
        base = PRODUCTION_SETTINGS

    timeout = base.refresh_timeout
    timeout_text = _clean_text(source.get("REFRESH_TIMEOUT_SECONDS"))
    if timeout_text:
        seconds = _coerce_positive_float(timeout_text, 0.0)
        if seconds > 0:
            timeout = timedelta(seconds=seconds)

    return replace(
        base,
        workers=_coerce_positive_int(source.get("REFRESH_WORKERS"), base.workers),
        schema_ttl=_coerce_seconds(source.get("SCHEMA_TTL_SECONDS"), base.schema_ttl),
        throttle_window=_coerce_seconds(
            source.get("THROTTLE_WINDOW_SECONDS"), base.throttle_window
        ),
        refresh_timeout=timeout,
    )


__all__ = [
    "APP_ENV",
    "DB_DSN",
    "DEVELOPMENT_SETTINGS",
    "LOG_FILE",
    "PRODUCTION_SETTINGS",
    "REFRESH_PROFILES",
    "RefreshSettings",
    "STEAM_API_KEY",
    "STEAM_USER_AGENT",
    "load_refresh_settings",
]
