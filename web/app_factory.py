"""Flask application factory, logging setup and Steam client wiring."""
from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path
from typing import Any, Callable

from flask import Flask

import config as app_config
from config import RefreshSettings
from routes import refresh as routes_refresh
from steamapi.client import SteamClient

logger = logging.getLogger(__name__)


def _determine_log_level(flask_app: Flask) -> int:
    if flask_app.debug:
        return logging.DEBUG
    if app_config.APP_ENV in {'dev', 'development'}:
        return logging.DEBUG
    if app_config.FLASK_DEBUG:
        return logging.DEBUG
    return logging.INFO


def _configure_logging(flask_app: Flask, log_file: str | None = None) -> None:
    log_level = _determine_log_level(flask_app)
    log_path = Path(log_file or app_config.LOG_FILE)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        pass

    for handler in list(flask_app.logger.handlers):
        flask_app.logger.removeHandler(handler)

    logging.config.dictConfig(
        {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'standard': {
                    'format': '%(asctime)s %(levelname)s [%(name)s] %(message)s',
                    'datefmt': '%Y-%m-%d %H:%M:%S',
                }
            },
            'handlers': {
                'console': {
                    'class': 'logging.StreamHandler',
                    'formatter': 'standard',
                    'level': log_level,
                    'stream': 'ext://sys.stdout',
                },
                'file': {
                    'class': 'logging.handlers.RotatingFileHandler',
                    'formatter': 'standard',
                    'level': logging.DEBUG,
                    'filename': os.fspath(log_path),
                    'maxBytes': 5 * 1024 * 1024,
                    'backupCount': 5,
                    'encoding': 'utf-8',
                },
            },
            'root': {
                'level': log_level,
                'handlers': ['console', 'file'],
            },
        }
    )

    flask_app.logger = logging.getLogger(flask_app.import_name)
    flask_app.logger.setLevel(log_level)


def default_client_factory() -> SteamClient:
    """Build a Steam client from configuration; fails fast without an API key."""
    client = SteamClient(
        api_key=app_config.STEAM_API_KEY,
        user_agent=app_config.STEAM_USER_AGENT,
        timeout=app_config.STEAM_HTTP_TIMEOUT_SECONDS,
    )
    client.validate_credentials()
    return client


def create_app(
    settings: RefreshSettings | None = None,
    repository: Any | None = None,
    client_factory: Callable[[], Any] | None = None,
    *,
    configure_logging: bool = True,
    log_file: str | None = None,
) -> Flask:
    """Return a configured Flask application instance.

    Without an explicit ``repository`` the configured database is opened and
    its schema created.
    """
    flask_app = Flask(__name__)
    flask_app.secret_key = app_config.APP_SECRET_KEY
    flask_app.debug = app_config.FLASK_DEBUG

    if configure_logging:
        _configure_logging(flask_app, log_file)

    if settings is None:
        settings = app_config.load_refresh_settings()
    if repository is None:
        from init import initialize_app

        repository = initialize_app()

    routes_refresh.configure({
        'repository': repository,
        'settings': settings,
        'client_factory': client_factory or default_client_factory,
    })
    if 'refresh' not in flask_app.blueprints:
        flask_app.register_blueprint(routes_refresh.refresh_blueprint)

    flask_app.extensions['refresh_settings'] = settings
    flask_app.extensions['snapshot_repository'] = repository
    logger.info(
        "Application ready: workers=%s schema_ttl=%s throttle_window=%s",
        settings.workers,
        settings.schema_ttl,
        settings.throttle_window,
    )
    return flask_app


__all__ = ["create_app", "default_client_factory"]
