"""Transactional repository over games, catalogs, snapshots and caches."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator, Sequence

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from achievements.fingerprint import AchievementState
from db.schema import (
    ACHIEVEMENT_CATALOG_TABLE,
    GAMES_TABLE,
    SNAPSHOTS_TABLE,
    SNAPSHOT_ACHIEVEMENTS_TABLE,
    THROTTLE_TABLE,
)
from db.utils import DatabaseEngine
from helpers import format_timestamp, now_utc, parse_timestamp

logger = logging.getLogger(__name__)


class RepositoryError(RuntimeError):
    """Raised when a repository operation fails."""


class NoRowsError(RepositoryError):
    """Raised when a lookup that expects a row finds none."""


@dataclass(frozen=True)
class Game:
    appid: int
    name: str


@dataclass(frozen=True)
class AchievementDef:
    appid: int
    apiname: str
    name: str
    descr: str = ""


@dataclass(frozen=True)
class Snapshot:
    id: int
    steamid: str
    appid: int
    total_done: int
    total_available: int
    catalog_hash: str
    state_hash: str
    taken_at: datetime | None


@dataclass(frozen=True)
class SnapshotInsert:
    steamid: str
    appid: int
    total_done: int
    total_available: int
    catalog_hash: str
    state_hash: str
    achievements: Sequence[AchievementState] = field(default_factory=tuple)


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise RepositoryError(f"{operation} failed: {exc}") from exc


class SnapshotRepository:
    """SQL-backed implementation of the snapshot repository contract.

    Every public method runs in its own transaction, so the repository can be
    shared by worker threads. Duplicate snapshots are resolved by the unique
    key on ``(steamid, appid, catalog_hash, state_hash)``.
    """

    def __init__(self, database: DatabaseEngine):
        self._db = database

    @property
    def database(self) -> DatabaseEngine:
        return self._db

    def _q(self, name: str) -> str:
        return self._db.quote(name)

    @property
    def _mariadb(self) -> bool:
        return self._db.dialect_name in {"mysql", "mariadb"}

    # -- catalog & metadata -------------------------------------------------

    def upsert_game(self, game: Game) -> None:
        games = self._q(GAMES_TABLE)
        if self._mariadb:
            statement = text(
                f"""
                INSERT INTO {games} (appid, name) VALUES (:appid, :name)
                ON DUPLICATE KEY UPDATE name = VALUES(name)
                """
            )
        else:
            statement = text(
                f"""
                INSERT INTO {games} (appid, name) VALUES (:appid, :name)
                ON CONFLICT (appid) DO UPDATE SET name = excluded.name
                """
            )
        with _translate_errors("upsert game"), self._db.begin() as conn:
            conn.execute(statement, {"appid": int(game.appid), "name": game.name or ""})

    def upsert_achievement_defs(self, defs: Sequence[AchievementDef]) -> None:
        if not defs:
            return
        catalog = self._q(ACHIEVEMENT_CATALOG_TABLE)
        if self._mariadb:
            statement = text(
                f"""
                INSERT INTO {catalog} (appid, apiname, name, descr)
                VALUES (:appid, :apiname, :name, :descr)
                ON DUPLICATE KEY UPDATE name = VALUES(name), descr = VALUES(descr)
                """
            )
        else:
            statement = text(
                f"""
                INSERT INTO {catalog} (appid, apiname, name, descr)
                VALUES (:appid, :apiname, :name, :descr)
                ON CONFLICT (appid, apiname) DO UPDATE SET
                    name = excluded.name,
                    descr = excluded.descr
                """
            )
        params = [
            {
                "appid": int(item.appid),
                "apiname": item.apiname,
                "name": item.name or "",
                "descr": item.descr or "",
            }
            for item in defs
        ]
        with _translate_errors("upsert achievement catalog"), self._db.begin() as conn:
            conn.execute(statement, params)

    # -- snapshots ----------------------------------------------------------

    def insert_snapshot(self, snapshot: SnapshotInsert) -> int:
        """Insert a snapshot with its achievement rows and return its id.

        When a snapshot with the same fingerprints already exists for the
        player and game, no new header is written and the existing id is
        returned. Header and rows commit together.
        """

        snapshot_id, _inserted = self.insert_snapshot_with_status(snapshot)
        return snapshot_id

    def insert_snapshot_with_status(self, snapshot: SnapshotInsert) -> tuple[int, bool]:
        """Like :meth:`insert_snapshot`; also report whether a new header was written."""

        snapshots = self._q(SNAPSHOTS_TABLE)
        rows_table = self._q(SNAPSHOT_ACHIEVEMENTS_TABLE)
        columns = "steamid, appid, total_done, total_available, catalog_hash, state_hash, taken_at"
        values = ":steamid, :appid, :total_done, :total_available, :catalog_hash, :state_hash, :taken_at"
        if self._mariadb:
            insert_header = text(f"INSERT IGNORE INTO {snapshots} ({columns}) VALUES ({values})")
            upsert_row = text(
                f"""
                INSERT INTO {rows_table} (snapshot_id, appid, apiname, achieved)
                VALUES (:snapshot_id, :appid, :apiname, :achieved)
                ON DUPLICATE KEY UPDATE achieved = VALUES(achieved)
                """
            )
        else:
            insert_header = text(
                f"""
                INSERT INTO {snapshots} ({columns}) VALUES ({values})
                ON CONFLICT (steamid, appid, catalog_hash, state_hash) DO NOTHING
                """
            )
            upsert_row = text(
                f"""
                INSERT INTO {rows_table} (snapshot_id, appid, apiname, achieved)
                VALUES (:snapshot_id, :appid, :apiname, :achieved)
                ON CONFLICT (snapshot_id, apiname) DO UPDATE SET achieved = excluded.achieved
                """
            )
        select_id = text(
            f"""
            SELECT id FROM {snapshots}
             WHERE steamid = :steamid AND appid = :appid
               AND catalog_hash = :catalog_hash AND state_hash = :state_hash
             ORDER BY taken_at DESC
             LIMIT 1
            """
        )

        header = {
            "steamid": snapshot.steamid,
            "appid": int(snapshot.appid),
            "total_done": int(snapshot.total_done),
            "total_available": int(snapshot.total_available),
            "catalog_hash": snapshot.catalog_hash,
            "state_hash": snapshot.state_hash,
            "taken_at": format_timestamp(now_utc()),
        }
        with _translate_errors("insert snapshot"), self._db.begin() as conn:
            inserted = conn.execute(insert_header, header).rowcount == 1
            snapshot_id = conn.execute(select_id, header).scalar_one()
            if snapshot.achievements:
                conn.execute(
                    upsert_row,
                    [
                        {
                            "snapshot_id": snapshot_id,
                            "appid": int(snapshot.appid),
                            "apiname": item.apiname,
                            "achieved": 1 if item.achieved else 0,
                        }
                        for item in snapshot.achievements
                    ],
                )
        return int(snapshot_id), inserted

    def get_latest_snapshots(self, steamid: str, appid: int, limit: int = 2) -> list[Snapshot]:
        if limit <= 0:
            limit = 2
        statement = text(
            f"""
            SELECT id, steamid, appid, total_done, total_available,
                   catalog_hash, state_hash, taken_at
              FROM {self._q(SNAPSHOTS_TABLE)}
             WHERE steamid = :steamid AND appid = :appid
             ORDER BY taken_at DESC, id DESC
             LIMIT :limit
            """
        )
        with _translate_errors("load latest snapshots"), self._db.connect() as conn:
            rows = conn.execute(
                statement, {"steamid": steamid, "appid": int(appid), "limit": int(limit)}
            ).mappings().all()
        return [
            Snapshot(
                id=int(row["id"]),
                steamid=str(row["steamid"]),
                appid=int(row["appid"]),
                total_done=int(row["total_done"]),
                total_available=int(row["total_available"]),
                catalog_hash=str(row["catalog_hash"]),
                state_hash=str(row["state_hash"]),
                taken_at=parse_timestamp(row["taken_at"]),
            )
            for row in rows
        ]

    def get_snapshot_achievements(self, snapshot_id: int) -> list[AchievementState]:
        statement = text(
            f"""
            SELECT apiname, achieved
              FROM {self._q(SNAPSHOT_ACHIEVEMENTS_TABLE)}
             WHERE snapshot_id = :snapshot_id
             ORDER BY apiname ASC
            """
        )
        with _translate_errors("load snapshot achievements"), self._db.connect() as conn:
            rows = conn.execute(statement, {"snapshot_id": int(snapshot_id)}).all()
        return [AchievementState(apiname=str(row[0]), achieved=int(row[1]) == 1) for row in rows]

    def get_latest_snapshot_achievements_pair(
        self, steamid: str, appid: int
    ) -> tuple[list[AchievementState], list[AchievementState]]:
        """Return ``(previous, current)`` achievement rows of the two newest snapshots.

        ``previous`` is empty when only one snapshot exists; both are empty
        when there is none.
        """

        statement = text(
            f"""
            SELECT id FROM {self._q(SNAPSHOTS_TABLE)}
             WHERE steamid = :steamid AND appid = :appid
             ORDER BY taken_at DESC, id DESC
             LIMIT 2
            """
        )
        with _translate_errors("load snapshot pair"), self._db.connect() as conn:
            ids = [int(value) for value in conn.execute(
                statement, {"steamid": steamid, "appid": int(appid)}
            ).scalars()]

        if not ids:
            return [], []
        current = self.get_snapshot_achievements(ids[0])
        if len(ids) == 1:
            return [], current
        return self.get_snapshot_achievements(ids[1]), current

    def list_appids_with_snapshots(self, steamid: str) -> list[int]:
        statement = text(
            f"""
            SELECT DISTINCT appid FROM {self._q(SNAPSHOTS_TABLE)}
             WHERE steamid = :steamid
             ORDER BY appid ASC
            """
        )
        with _translate_errors("list snapshot games"), self._db.connect() as conn:
            return [int(value) for value in conn.execute(statement, {"steamid": steamid}).scalars()]

    # -- throttle gate ------------------------------------------------------

    def get_last_refresh_at(self, steamid: str) -> datetime:
        """Return the last refresh time for ``steamid``; raise :class:`NoRowsError` if unset."""

        statement = text(
            f"SELECT last_refresh_at FROM {self._q(THROTTLE_TABLE)} WHERE steamid = :steamid"
        )
        with _translate_errors("load throttle mark"), self._db.connect() as conn:
            value = conn.execute(statement, {"steamid": steamid}).scalar_one_or_none()
        parsed = parse_timestamp(value)
        if parsed is None:
            raise NoRowsError(f"no refresh recorded for {steamid}")
        return parsed

    def set_last_refresh_now(self, steamid: str, now: datetime | None = None) -> None:
        throttle = self._q(THROTTLE_TABLE)
        if self._mariadb:
            statement = text(
                f"""
                INSERT INTO {throttle} (steamid, last_refresh_at) VALUES (:steamid, :at)
                ON DUPLICATE KEY UPDATE last_refresh_at = VALUES(last_refresh_at)
                """
            )
        else:
            statement = text(
                f"""
                INSERT INTO {throttle} (steamid, last_refresh_at) VALUES (:steamid, :at)
                ON CONFLICT (steamid) DO UPDATE SET last_refresh_at = excluded.last_refresh_at
                """
            )
        with _translate_errors("store throttle mark"), self._db.begin() as conn:
            conn.execute(statement, {"steamid": steamid, "at": format_timestamp(now or now_utc())})

    # -- schema cache -------------------------------------------------------

    def get_game_schema_cache(self, appid: int) -> tuple[int | None, datetime | None]:
        """Return ``(achievements_count, checked_at)`` for ``appid``.

        Either value is ``None`` when unknown. Raises :class:`NoRowsError`
        when the game has never been recorded.
        """

        statement = text(
            f"""
            SELECT achievements_count, schema_checked_at
              FROM {self._q(GAMES_TABLE)}
             WHERE appid = :appid
            """
        )
        with _translate_errors("load schema cache"), self._db.connect() as conn:
            row = conn.execute(statement, {"appid": int(appid)}).first()
        if row is None:
            raise NoRowsError(f"game {appid} not found")
        count = int(row[0]) if row[0] is not None else None
        return count, parse_timestamp(row[1])

    def update_game_schema_cache(
        self, appid: int, achievements_count: int | None, checked_at: datetime
    ) -> None:
        """Record a schema check for ``appid``.

        A ``None`` count keeps whatever count is already stored and only
        advances ``schema_checked_at``. Unknown games are created with an
        empty name.
        """

        games = self._q(GAMES_TABLE)
        if self._mariadb:
            statement = text(
                f"""
                INSERT INTO {games} (appid, name, achievements_count, schema_checked_at)
                VALUES (:appid, '', :count, :checked_at)
                ON DUPLICATE KEY UPDATE
                    achievements_count = COALESCE(VALUES(achievements_count), achievements_count),
                    schema_checked_at = VALUES(schema_checked_at)
                """
            )
        else:
            statement = text(
                f"""
                INSERT INTO {games} (appid, name, achievements_count, schema_checked_at)
                VALUES (:appid, '', :count, :checked_at)
                ON CONFLICT (appid) DO UPDATE SET
                    achievements_count = COALESCE(excluded.achievements_count, {games}.achievements_count),
                    schema_checked_at = excluded.schema_checked_at
                """
            )
        params = {
            "appid": int(appid),
            "count": int(achievements_count) if achievements_count is not None else None,
            "checked_at": format_timestamp(checked_at),
        }
        with _translate_errors("update schema cache"), self._db.begin() as conn:
            conn.execute(statement, params)


__all__ = [
    "AchievementDef",
    "Game",
    "NoRowsError",
    "RepositoryError",
    "Snapshot",
    "SnapshotInsert",
    "SnapshotRepository",
]
