"""Comparison rows between the two most recent snapshots of a game."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from achievements.fingerprint import AchievementDiff
from db.repository import Snapshot
from helpers import format_timestamp

CSV_HEADER: tuple[str, ...] = (
    "steamid",
    "appid",
    "prev_done",
    "prev_total",
    "prev_pct",
    "prev_taken_at",
    "curr_done",
    "curr_total",
    "curr_pct",
    "curr_taken_at",
    "delta_done",
    "delta_total",
    "delta_pct",
    "completed_now",
    "was_completed",
    "regression",
    "new_content",
    "added",
    "removed",
    "newly_earned",
    "lost",
)

__all__ = ["CSV_HEADER", "ComparisonRow", "build_row", "completion_pct"]


@dataclass
class ComparisonRow:
    steamid: str
    appid: int
    curr_taken_at: datetime | None
    prev_taken_at: datetime | None = None

    prev_done: int = 0
    prev_total: int = 0
    curr_done: int = 0
    curr_total: int = 0
    delta_done: int = 0
    delta_total: int = 0

    prev_pct: float = 0.0
    curr_pct: float = 0.0
    delta_pct: float = 0.0

    was_completed: bool = False
    completed_now: bool = False
    new_content: bool = False
    regression: bool = False

    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    newly_earned: list[str] = field(default_factory=list)
    lost: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "steamid": self.steamid,
            "appid": self.appid,
            "prev_taken_at": _format_optional(self.prev_taken_at),
            "curr_taken_at": _format_optional(self.curr_taken_at),
            "prev_done": self.prev_done,
            "prev_total": self.prev_total,
            "curr_done": self.curr_done,
            "curr_total": self.curr_total,
            "delta_done": self.delta_done,
            "delta_total": self.delta_total,
            "prev_pct": self.prev_pct,
            "curr_pct": self.curr_pct,
            "delta_pct": self.delta_pct,
            "was_completed": self.was_completed,
            "completed_now": self.completed_now,
            "new_content": self.new_content,
            "regression": self.regression,
            "added": list(self.added),
            "removed": list(self.removed),
            "newly_earned": list(self.newly_earned),
            "lost": list(self.lost),
        }

    def to_csv(self) -> list[str]:
        """Flatten the row in :data:`CSV_HEADER` order; lists are comma-joined."""

        return [
            self.steamid,
            str(self.appid),
            str(self.prev_done),
            str(self.prev_total),
            f"{self.prev_pct:.4f}",
            _format_optional(self.prev_taken_at),
            str(self.curr_done),
            str(self.curr_total),
            f"{self.curr_pct:.4f}",
            _format_optional(self.curr_taken_at),
            str(self.delta_done),
            str(self.delta_total),
            f"{self.delta_pct:.4f}",
            _bool_text(self.completed_now),
            _bool_text(self.was_completed),
            _bool_text(self.regression),
            _bool_text(self.new_content),
            ",".join(self.added),
            ",".join(self.removed),
            ",".join(self.newly_earned),
            ",".join(self.lost),
        ]


def _format_optional(value: datetime | None) -> str:
    return format_timestamp(value) if value is not None else ""


def _bool_text(value: bool) -> str:
    return "true" if value else "false"


def completion_pct(done: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return done / total * 100.0


def build_row(
    prev: Snapshot | None,
    curr: Snapshot,
    diff: AchievementDiff,
) -> ComparisonRow:
    """Assemble the comparison between ``prev`` (optional) and ``curr``.

    A missing previous snapshot counts as ``0/0``. ``regression`` marks a
    game that was fully completed before and now has locked achievements.
    """

    prev_done = prev.total_done if prev is not None else 0
    prev_total = prev.total_available if prev is not None else 0
    row = ComparisonRow(
        steamid=curr.steamid,
        appid=curr.appid,
        curr_taken_at=curr.taken_at,
        prev_taken_at=prev.taken_at if prev is not None else None,
        prev_done=prev_done,
        prev_total=prev_total,
        curr_done=curr.total_done,
        curr_total=curr.total_available,
        prev_pct=completion_pct(prev_done, prev_total),
        curr_pct=completion_pct(curr.total_done, curr.total_available),
        added=list(diff.added),
        removed=list(diff.removed),
        newly_earned=list(diff.newly_earned),
        lost=list(diff.lost),
    )
    row.delta_done = row.curr_done - row.prev_done
    row.delta_total = row.curr_total - row.prev_total
    row.delta_pct = row.curr_pct - row.prev_pct

    row.was_completed = prev_total > 0 and prev_done == prev_total
    row.completed_now = row.curr_total > 0 and row.curr_done == row.curr_total
    row.new_content = row.curr_total > row.prev_total
    row.regression = row.was_completed and row.curr_total > row.curr_done
    return row
