"""Deterministic fingerprints and diffs over achievement catalogs and states."""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

__all__ = [
    "AchievementDiff",
    "AchievementState",
    "build_snapshot_achievements",
    "catalog_hash",
    "count_achieved",
    "diff_snapshot_achievements",
    "state_hash",
]


@dataclass(frozen=True)
class AchievementState:
    """One ``(apiname, achieved)`` pair of a player's state vector."""

    apiname: str
    achieved: bool


@dataclass(frozen=True)
class AchievementDiff:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    newly_earned: list[str] = field(default_factory=list)
    lost: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.newly_earned or self.lost)


def _sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def catalog_hash(appid: int, apinames: Iterable[str]) -> str:
    """Return the fingerprint of the achievement catalog for ``appid``.

    Each apiname becomes an ``"<appid>|<apiname>"`` line; the lines are
    sorted and newline-joined before hashing so the result does not depend on
    the order the catalog was listed in. An empty catalog hashes the empty
    string.
    """

    prefix = f"{int(appid)}|"
    lines = sorted(prefix + str(name).strip() for name in apinames)
    return _sha256_hex("\n".join(lines))


def state_hash(appid: int, items: Iterable[AchievementState]) -> str:
    """Return the fingerprint of a player's per-achievement state for ``appid``.

    Lines are ``"<appid>|<apiname>|<0 or 1>"``, sorted before hashing.
    """

    prefix = f"{int(appid)}|"
    lines = sorted(
        f"{prefix}{item.apiname.strip()}|{1 if item.achieved else 0}" for item in items
    )
    return _sha256_hex("\n".join(lines))


def build_snapshot_achievements(achieved: Mapping[str, bool]) -> list[AchievementState]:
    """Convert an apiname → achieved mapping into rows ordered by apiname."""

    return [
        AchievementState(apiname=apiname, achieved=bool(achieved[apiname]))
        for apiname in sorted(achieved)
    ]


def count_achieved(achieved: Mapping[str, bool]) -> int:
    return sum(1 for value in achieved.values() if value)


def diff_snapshot_achievements(
    prev: Iterable[AchievementState],
    curr: Iterable[AchievementState],
) -> AchievementDiff:
    """Compare two per-snapshot achievement lists.

    ``added`` holds apinames only present in ``curr`` (catalog grew),
    ``removed`` those only present in ``prev`` (catalog shrank),
    ``newly_earned`` those that flipped from locked to unlocked and ``lost``
    those that flipped back. Every list is sorted ascending.
    """

    prev_map = {item.apiname: item.achieved for item in prev}
    curr_map = {item.apiname: item.achieved for item in curr}

    added = sorted(set(curr_map) - set(prev_map))
    removed = sorted(set(prev_map) - set(curr_map))
    newly_earned: list[str] = []
    lost: list[str] = []
    for apiname in sorted(set(prev_map) & set(curr_map)):
        was, now = prev_map[apiname], curr_map[apiname]
        if not was and now:
            newly_earned.append(apiname)
        elif was and not now:
            lost.append(apiname)

    return AchievementDiff(
        added=added,
        removed=removed,
        newly_earned=newly_earned,
        lost=lost,
    )
