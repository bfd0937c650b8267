"""Table definitions for games, achievement catalogs and snapshots."""

from __future__ import annotations

import logging
from contextlib import suppress

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from db.utils import DatabaseEngine

logger = logging.getLogger(__name__)

GAMES_TABLE = "games"
ACHIEVEMENT_CATALOG_TABLE = "achievement_catalog"
SNAPSHOTS_TABLE = "snapshots"
SNAPSHOT_ACHIEVEMENTS_TABLE = "snapshot_achievements"
THROTTLE_TABLE = "throttle_gate"


def _is_mariadb(dialect: str | None) -> bool:
    return dialect in {"mysql", "mariadb"}


def _table_definitions(dialect: str | None) -> list[tuple[str, str]]:
    if _is_mariadb(dialect):
        text_type = "VARCHAR(255)"
        long_text = "LONGTEXT"
        id_column = "id BIGINT AUTO_INCREMENT PRIMARY KEY"
        steamid_type = "VARCHAR(32)"
        hash_type = "CHAR(64)"
        timestamp_type = "VARCHAR(64)"
    elif dialect == "postgresql":
        text_type = "TEXT"
        long_text = "TEXT"
        id_column = "id BIGSERIAL PRIMARY KEY"
        steamid_type = "TEXT"
        hash_type = "TEXT"
        timestamp_type = "TEXT"
    else:
        text_type = "TEXT"
        long_text = "TEXT"
        id_column = "id INTEGER PRIMARY KEY AUTOINCREMENT"
        steamid_type = "TEXT"
        hash_type = "TEXT"
        timestamp_type = "TEXT"

    return [
        (
            GAMES_TABLE,
            f"""
            appid BIGINT PRIMARY KEY,
            name {text_type} NOT NULL DEFAULT '',
            achievements_count INTEGER,
            schema_checked_at {timestamp_type}
            """,
        ),
        (
            ACHIEVEMENT_CATALOG_TABLE,
            f"""
            appid BIGINT NOT NULL,
            apiname {text_type} NOT NULL,
            name {text_type} NOT NULL DEFAULT '',
            descr {long_text},
            PRIMARY KEY (appid, apiname),
            FOREIGN KEY (appid) REFERENCES {GAMES_TABLE}(appid) ON DELETE CASCADE
            """,
        ),
        (
            SNAPSHOTS_TABLE,
            f"""
            {id_column},
            steamid {steamid_type} NOT NULL,
            appid BIGINT NOT NULL,
            total_done INTEGER NOT NULL,
            total_available INTEGER NOT NULL,
            catalog_hash {hash_type} NOT NULL,
            state_hash {hash_type} NOT NULL,
            taken_at {timestamp_type} NOT NULL,
            UNIQUE (steamid, appid, catalog_hash, state_hash),
            FOREIGN KEY (appid) REFERENCES {GAMES_TABLE}(appid) ON DELETE CASCADE
            """,
        ),
        (
            SNAPSHOT_ACHIEVEMENTS_TABLE,
            f"""
            snapshot_id BIGINT NOT NULL,
            appid BIGINT NOT NULL,
            apiname {text_type} NOT NULL,
            achieved INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (snapshot_id, apiname),
            FOREIGN KEY (snapshot_id) REFERENCES {SNAPSHOTS_TABLE}(id) ON DELETE CASCADE
            """,
        ),
        (
            THROTTLE_TABLE,
            f"""
            steamid {steamid_type} PRIMARY KEY,
            last_refresh_at {timestamp_type} NOT NULL
            """,
        ),
    ]


_INDEXES: tuple[tuple[str, str, str], ...] = (
    ("idx_games_checked", GAMES_TABLE, "schema_checked_at"),
    ("idx_snap_user_game_time", SNAPSHOTS_TABLE, "steamid, appid, taken_at"),
    ("idx_snapach_app", SNAPSHOT_ACHIEVEMENTS_TABLE, "appid, apiname"),
)


def ensure_schema(database: DatabaseEngine) -> None:
    """Create the tracker tables and indexes when they do not exist yet."""

    dialect = database.dialect_name
    with database.begin() as conn:
        for table, definition in _table_definitions(dialect):
            conn.execute(
                text(f"CREATE TABLE IF NOT EXISTS {database.quote(table)} ({definition})")
            )

    for name, table, columns in _INDEXES:
        if _is_mariadb(dialect):
            # MariaDB lacks CREATE INDEX IF NOT EXISTS on older releases.
            statement = text(f"CREATE INDEX {name} ON {database.quote(table)} ({columns})")
            with suppress(SQLAlchemyError), database.begin() as conn:
                conn.execute(statement)
            continue
        statement = text(
            f"CREATE INDEX IF NOT EXISTS {name} ON {database.quote(table)} ({columns})"
        )
        with database.begin() as conn:
            conn.execute(statement)

    logger.debug("Database schema ensured for dialect %s", dialect)


__all__ = [
    "ACHIEVEMENT_CATALOG_TABLE",
    "GAMES_TABLE",
    "SNAPSHOTS_TABLE",
    "SNAPSHOT_ACHIEVEMENTS_TABLE",
    "THROTTLE_TABLE",
    "ensure_schema",
]
