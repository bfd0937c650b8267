"""Snapshot ingestion for a single (player, game) pair."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from achievements.fingerprint import (
    AchievementState,
    build_snapshot_achievements,
    catalog_hash,
    count_achieved,
    state_hash,
)
from db.repository import Snapshot, SnapshotInsert

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotSummary:
    """Totals and fingerprints computed for one game before persisting."""

    appid: int
    total_done: int
    total_available: int
    catalog_hash: str
    state_hash: str
    achievements: tuple[AchievementState, ...]

    def matches(self, snapshot: Snapshot) -> bool:
        return (
            snapshot.total_done == self.total_done
            and snapshot.total_available == self.total_available
            and snapshot.catalog_hash == self.catalog_hash
            and snapshot.state_hash == self.state_hash
        )


def summarize_game(
    appid: int,
    apinames: Sequence[str],
    achieved: Mapping[str, bool],
) -> SnapshotSummary:
    """Compute totals and fingerprints for ``appid``.

    ``total_available`` counts the catalog, ``total_done`` counts the truthy
    entries of ``achieved``; callers keep the two consistent.
    """

    items = build_snapshot_achievements(achieved)
    return SnapshotSummary(
        appid=int(appid),
        total_done=count_achieved(achieved),
        total_available=len(apinames),
        catalog_hash=catalog_hash(appid, apinames),
        state_hash=state_hash(appid, items),
        achievements=tuple(items),
    )


def ingest_one_game(
    repo: Any,
    steamid: str,
    appid: int,
    apinames: Sequence[str],
    achieved: Mapping[str, bool],
    *,
    summary: SnapshotSummary | None = None,
) -> int:
    """Persist a snapshot for ``(steamid, appid)`` and return its id.

    The snapshot header and its per-achievement rows are written in one
    transaction. Re-ingesting identical state returns the existing id.
    """

    snapshot_id, _inserted = ingest_one_game_with_status(
        repo, steamid, appid, apinames, achieved, summary=summary
    )
    return snapshot_id


def ingest_one_game_with_status(
    repo: Any,
    steamid: str,
    appid: int,
    apinames: Sequence[str],
    achieved: Mapping[str, bool],
    *,
    summary: SnapshotSummary | None = None,
) -> tuple[int, bool]:
    """Like :func:`ingest_one_game`; the flag is ``False`` when an existing
    snapshot with the same fingerprints was reused.
    """

    if summary is None:
        summary = summarize_game(appid, apinames, achieved)
    snapshot_id, inserted = repo.insert_snapshot_with_status(
        SnapshotInsert(
            steamid=steamid,
            appid=summary.appid,
            total_done=summary.total_done,
            total_available=summary.total_available,
            catalog_hash=summary.catalog_hash,
            state_hash=summary.state_hash,
            achievements=summary.achievements,
        )
    )
    logger.debug(
        "%s snapshot %s for %s/%s (%s/%s)",
        "Stored" if inserted else "Reused",
        snapshot_id,
        steamid,
        appid,
        summary.total_done,
        summary.total_available,
    )
    return snapshot_id, inserted


__all__ = [
    "SnapshotSummary",
    "ingest_one_game",
    "ingest_one_game_with_status",
    "summarize_game",
]
