"""Application startup orchestration helpers."""

from __future__ import annotations

import logging

from config import DB_CONNECT_TIMEOUT_SECONDS, DB_DSN
from db import utils as db_utils
from db.repository import SnapshotRepository
from db.schema import ensure_schema

logger = logging.getLogger(__name__)


def initialize_app(
    dsn: str = DB_DSN,
    *,
    timeout: float = DB_CONNECT_TIMEOUT_SECONDS,
) -> SnapshotRepository:
    """Open the database at ``dsn``, create missing tables and return the repository.

    SQLite targets get their data directory created on the way. The caller
    owns the returned repository and disposes its engine on shutdown.
    """

    database = db_utils.build_engine_from_dsn(dsn, timeout=timeout)
    try:
        ensure_schema(database)
    except Exception:
        logger.exception("Failed to prepare the database schema")
        database.dispose()
        raise
    logger.info("Database ready (%s)", database.dialect_name)
    return SnapshotRepository(database)


__all__ = ["initialize_app"]
