"""Concurrent refresh of a player's Steam achievements into snapshots."""

from __future__ import annotations

import logging
import queue
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from threading import Event, Lock
from typing import Any

from db.repository import AchievementDef, Game, NoRowsError
from helpers import first_non_empty, now_utc
from steamapi.client import OwnedGame, SteamAPIError
from updates.ingest import ingest_one_game_with_status, summarize_game

logger = logging.getLogger(__name__)

_JOIN_POLL_SECONDS = 0.05


class RefreshError(RuntimeError):
    """Raised when a refresh run aborts; ``stats`` holds the partial counters."""

    def __init__(
        self,
        message: str,
        *,
        stats: "RefreshStats",
        suppressed: list[BaseException] | None = None,
    ) -> None:
        super().__init__(message)
        self.stats = stats
        self.suppressed = list(suppressed or [])


class RefreshCancelled(RefreshError):
    """Raised when the cancel signal or the timeout fires before workers finish."""


@dataclass
class RefreshStats:
    """Counters describing what a refresh run did."""

    owned: int = 0
    queued: int = 0
    checked: int = 0
    updated: int = 0
    skipped: int = 0
    skipped_cached: int = 0
    snapshots: int = 0
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + amount)

    def to_dict(self) -> dict[str, int]:
        with self._lock:
            return {
                "owned": self.owned,
                "queued": self.queued,
                "checked": self.checked,
                "updated": self.updated,
                "skipped": self.skipped,
                "skippedCached": self.skipped_cached,
                "snapshots": self.snapshots,
            }


class _RunControl:
    """Shared stop/cancel state for one refresh run."""

    def __init__(self, cancel_event: Event | None, timeout: float | None) -> None:
        self._cancel_event = cancel_event
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._stop = Event()
        self._lock = Lock()
        self.first_error: BaseException | None = None
        self.suppressed: list[BaseException] = []

    def cancelled(self) -> bool:
        if self._cancel_event is not None and self._cancel_event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def stopped(self) -> bool:
        return self._stop.is_set() or self.cancelled()

    def stop(self) -> None:
        self._stop.set()

    def report(self, error: BaseException) -> None:
        with self._lock:
            if self.first_error is None:
                self.first_error = error
            else:
                self.suppressed.append(error)
        self._stop.set()


def _coerce_workers(value: Any) -> int:
    try:
        worker_count = int(value)
    except (TypeError, ValueError):
        worker_count = 1
    return worker_count if worker_count > 0 else 1


def _coerce_seconds(value: timedelta | float | int | None) -> float | None:
    if value is None:
        return None
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _is_cached_empty(
    repo: Any, appid: int, now: datetime, ttl: timedelta
) -> bool:
    """Return ``True`` when ``appid`` is known to have no achievements within ``ttl``."""

    try:
        count, checked_at = repo.get_game_schema_cache(appid)
    except NoRowsError:
        return False
    return count == 0 and checked_at is not None and now - checked_at < ttl


def _process_game(
    repo: Any,
    client: Any,
    steamid: str,
    game: OwnedGame,
    *,
    now: datetime,
    stats: RefreshStats,
    control: _RunControl,
) -> None:
    appid = game.appid

    try:
        definitions, game_name = client.get_schema_for_game(appid)
    except SteamAPIError as exc:
        logger.warning("Schema fetch failed for app %s: %s", appid, exc)
        # Advance the check time but keep the previously known count.
        repo.update_game_schema_cache(appid, None, now)
        return

    if control.stopped():
        return
    repo.update_game_schema_cache(appid, len(definitions), now)
    if not definitions:
        return

    repo.upsert_game(Game(appid=appid, name=first_non_empty(game_name, game.name)))
    repo.upsert_achievement_defs(
        [
            AchievementDef(
                appid=appid,
                apiname=definition.apiname,
                name=definition.name,
                descr=definition.description,
            )
            for definition in definitions
        ]
    )

    try:
        states = client.get_player_achievements(steamid, appid)
    except SteamAPIError as exc:
        logger.debug("No player achievements for %s/%s: %s", steamid, appid, exc)
        states = []
    if control.stopped():
        return

    achieved = {definition.apiname: False for definition in definitions}
    for state in states or []:
        achieved[state.apiname] = bool(state.achieved)

    apinames = [definition.apiname for definition in definitions]
    summary = summarize_game(appid, apinames, achieved)
    stats.increment("checked")

    latest = repo.get_latest_snapshots(steamid, appid, 1)
    if latest and summary.matches(latest[0]):
        stats.increment("skipped")
        return

    if control.stopped():
        return
    _snapshot_id, inserted = ingest_one_game_with_status(
        repo, steamid, appid, apinames, achieved, summary=summary
    )
    if not inserted:
        # State matches an older snapshot; nothing new was written.
        stats.increment("skipped")
        return
    stats.increment("updated")
    stats.increment("snapshots")


def _drain_queue(
    jobs: "queue.Queue[OwnedGame]",
    repo: Any,
    client: Any,
    steamid: str,
    *,
    now: datetime,
    stats: RefreshStats,
    control: _RunControl,
) -> None:
    while not control.stopped():
        try:
            game = jobs.get_nowait()
        except queue.Empty:
            return
        try:
            _process_game(
                repo, client, steamid, game, now=now, stats=stats, control=control
            )
        except Exception as exc:
            control.report(exc)
            return
        finally:
            jobs.task_done()


def refresh_user_concurrent(
    repo: Any,
    client: Any,
    steamid: str,
    *,
    workers: int = 3,
    schema_ttl: timedelta | float = timedelta(hours=1),
    cancel_event: Event | None = None,
    timeout: timedelta | float | None = None,
    now: datetime | None = None,
) -> RefreshStats:
    """Refresh ``steamid``'s achievements with a bounded pool of workers.

    Owned games are first filtered through the schema cache: a game whose
    cached achievement count is zero and was checked less than
    ``schema_ttl`` ago is skipped without any Steam call. The remaining games
    are queued and drained by ``workers`` threads, each fetching the schema
    and the player's progress and writing a new snapshot only when the
    fingerprints differ from the latest one. A state that matches an older
    snapshot reuses it and counts as skipped rather than updated.

    Per-game Steam failures are absorbed. The first persistence failure stops
    the run and is raised as :class:`RefreshError`; ``cancel_event`` or
    ``timeout`` raise :class:`RefreshCancelled`. Both carry the partial
    :class:`RefreshStats`.
    """

    worker_count = _coerce_workers(workers)
    ttl = schema_ttl if isinstance(schema_ttl, timedelta) else timedelta(seconds=schema_ttl)
    control = _RunControl(cancel_event, _coerce_seconds(timeout))
    stats = RefreshStats()

    try:
        owned = client.get_owned_games(steamid)
    except SteamAPIError as exc:
        raise RefreshError(f"failed to list owned games for {steamid}: {exc}", stats=stats) from exc
    stats.owned = len(owned)
    if not owned:
        return stats

    current_time = now or now_utc()
    jobs: queue.Queue[OwnedGame] = queue.Queue(maxsize=len(owned))
    for game in owned:
        if control.cancelled():
            logger.info("Refresh for %s cancelled while queueing", steamid)
            break
        try:
            if _is_cached_empty(repo, game.appid, current_time, ttl):
                stats.skipped_cached += 1
                continue
        except Exception as exc:
            raise RefreshError(
                f"schema cache lookup failed for app {game.appid}: {exc}", stats=stats
            ) from exc
        jobs.put_nowait(game)
        stats.queued += 1

    logger.info(
        "Refreshing %s: %d owned, %d queued, %d skipped via cache, %d workers",
        steamid,
        stats.owned,
        stats.queued,
        stats.skipped_cached,
        worker_count,
    )

    executor = ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix="refresh")
    futures = [
        executor.submit(
            _drain_queue,
            jobs,
            repo,
            client,
            steamid,
            now=current_time,
            stats=stats,
            control=control,
        )
        for _ in range(worker_count)
    ]
    try:
        while True:
            _done, pending = wait(futures, timeout=_JOIN_POLL_SECONDS)
            if control.first_error is not None:
                error = control.first_error
                logger.error(
                    "Refresh for %s aborted: %s", steamid, error, exc_info=error
                )
                raise RefreshError(
                    f"refresh failed for {steamid}: {error}",
                    stats=stats,
                    suppressed=control.suppressed,
                ) from error
            if control.cancelled():
                logger.warning("Refresh for %s cancelled: %s", steamid, stats.to_dict())
                raise RefreshCancelled(f"refresh cancelled for {steamid}", stats=stats)
            if not pending:
                break
    finally:
        control.stop()
        executor.shutdown(wait=False, cancel_futures=True)

    logger.info("Refresh for %s finished: %s", steamid, stats.to_dict())
    return stats


__all__ = [
    "RefreshCancelled",
    "RefreshError",
    "RefreshStats",
    "refresh_user_concurrent",
]
