import io
from datetime import datetime, timezone

import pandas as pd

from achievements.compare import CSV_HEADER, build_row
from achievements.fingerprint import AchievementDiff
from achievements.service import (
    build_all_comparisons_for_user,
    build_comparison_for_game,
    comparison_dataframe,
    write_csv,
)
from db.repository import Snapshot

from tests.app_helpers import store_snapshot

STEAMID = "76561198000000003"
TAKEN = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _snapshot(done, total, snapshot_id=1):
    return Snapshot(
        id=snapshot_id,
        steamid=STEAMID,
        appid=10,
        total_done=done,
        total_available=total,
        catalog_hash="c",
        state_hash=f"s{snapshot_id}",
        taken_at=TAKEN,
    )


def test_row_without_previous_snapshot():
    row = build_row(None, _snapshot(1, 4), AchievementDiff())

    assert (row.prev_done, row.prev_total, row.prev_pct) == (0, 0, 0.0)
    assert row.curr_pct == 25.0
    assert row.delta_done == 1
    assert row.delta_total == 4
    assert row.new_content is True
    assert row.was_completed is False
    assert row.regression is False
    assert row.prev_taken_at is None


def test_regression_when_new_content_breaks_completion():
    row = build_row(_snapshot(10, 10, 1), _snapshot(10, 12, 2), AchievementDiff(added=["X", "Y"]))

    assert row.was_completed is True
    assert row.completed_now is False
    assert row.new_content is True
    assert row.regression is True
    assert row.added == ["X", "Y"]
    assert round(row.delta_pct, 4) == round(10 / 12 * 100 - 100, 4)


def test_completed_now_and_zero_totals():
    row = build_row(_snapshot(2, 3, 1), _snapshot(3, 3, 2), AchievementDiff(newly_earned=["C"]))
    assert row.completed_now is True
    assert row.regression is False
    assert row.new_content is False

    empty = build_row(None, _snapshot(0, 0), AchievementDiff())
    assert empty.curr_pct == 0.0
    assert empty.completed_now is False


def test_to_csv_formatting():
    row = build_row(
        _snapshot(1, 3, 1),
        _snapshot(2, 3, 2),
        AchievementDiff(newly_earned=["B", "C"], lost=[]),
    )
    values = dict(zip(CSV_HEADER, row.to_csv()))

    assert values["prev_pct"] == "33.3333"
    assert values["curr_pct"] == "66.6667"
    assert values["completed_now"] == "false"
    assert values["newly_earned"] == "B,C"
    assert values["lost"] == ""
    assert values["curr_taken_at"].startswith("2024-06-01T12:00:00")


def test_write_csv_with_no_rows_writes_header_only():
    buffer = io.StringIO()
    write_csv(buffer, [])
    assert buffer.getvalue() == ",".join(CSV_HEADER) + "\n"


def test_write_csv_one_row_quotes_joined_lists():
    row = build_row(None, _snapshot(2, 2), AchievementDiff(added=["A", "B"]))
    buffer = io.StringIO()
    write_csv(buffer, [row])

    frame = pd.read_csv(io.StringIO(buffer.getvalue()), dtype=str, keep_default_na=False)
    assert list(frame.columns) == list(CSV_HEADER)
    assert len(frame) == 1
    assert frame.loc[0, "added"] == "A,B"
    assert frame.loc[0, "completed_now"] == "true"
    assert frame.loc[0, "steamid"] == STEAMID


def test_comparison_dataframe_columns():
    frame = comparison_dataframe([])
    assert list(frame.columns) == list(CSV_HEADER)
    assert frame.empty


def test_build_comparison_for_game_from_repository(repo):
    row, found = build_comparison_for_game(repo, STEAMID, 10)
    assert (row, found) == (None, False)

    store_snapshot(repo, STEAMID, 10, ["A", "B", "OLD"], ["A"])
    store_snapshot(repo, STEAMID, 10, ["A", "B", "NEW"], ["A", "B"])

    row, found = build_comparison_for_game(repo, STEAMID, 10)
    assert found is True
    assert row.prev_done == 1
    assert row.curr_done == 2
    assert row.added == ["NEW"]
    assert row.removed == ["OLD"]
    assert row.newly_earned == ["B"]
    assert row.lost == []


def test_build_all_comparisons_for_user(repo):
    assert build_all_comparisons_for_user(repo, STEAMID) == []

    store_snapshot(repo, STEAMID, 20, ["A"], [])
    store_snapshot(repo, STEAMID, 10, ["A"], ["A"])

    rows = build_all_comparisons_for_user(repo, STEAMID)
    assert [row.appid for row in rows] == [10, 20]
    assert rows[0].to_dict()["completed_now"] is True
