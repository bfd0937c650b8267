"""Comparison assembly and CSV export over stored snapshots."""

from __future__ import annotations

import logging
from typing import Any, Iterable, TextIO

import pandas as pd

from achievements.compare import CSV_HEADER, ComparisonRow, build_row
from achievements.fingerprint import diff_snapshot_achievements

logger = logging.getLogger(__name__)


def build_comparison_for_game(
    repo: Any, steamid: str, appid: int
) -> tuple[ComparisonRow | None, bool]:
    """Return the comparison row for ``(steamid, appid)``.

    The second element is ``False`` when the game has no snapshot yet.
    """

    snapshots = repo.get_latest_snapshots(steamid, appid, 2)
    if not snapshots:
        return None, False

    current = snapshots[0]
    previous = snapshots[1] if len(snapshots) > 1 else None

    prev_rows, curr_rows = repo.get_latest_snapshot_achievements_pair(steamid, appid)
    diff = diff_snapshot_achievements(prev_rows, curr_rows)
    return build_row(previous, current, diff), True


def build_all_comparisons_for_user(repo: Any, steamid: str) -> list[ComparisonRow]:
    """Build a comparison row for every game ``steamid`` has snapshots for."""

    rows: list[ComparisonRow] = []
    for appid in repo.list_appids_with_snapshots(steamid):
        row, found = build_comparison_for_game(repo, steamid, appid)
        if found and row is not None:
            rows.append(row)
    logger.debug("Built %d comparison rows for %s", len(rows), steamid)
    return rows


def comparison_dataframe(rows: Iterable[ComparisonRow]) -> pd.DataFrame:
    """Return the export table for ``rows`` with :data:`CSV_HEADER` columns."""

    return pd.DataFrame([row.to_csv() for row in rows], columns=list(CSV_HEADER), dtype=str)


def write_csv(stream: TextIO, rows: Iterable[ComparisonRow]) -> None:
    """Write ``rows`` as CSV to ``stream``; zero rows produce the header only."""

    comparison_dataframe(rows).to_csv(stream, index=False, lineterminator="\n")


__all__ = [
    "build_all_comparisons_for_user",
    "build_comparison_for_game",
    "comparison_dataframe",
    "write_csv",
]
