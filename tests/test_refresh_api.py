from __future__ import annotations

import csv
import io
from datetime import timedelta
from unittest.mock import patch

import pytest

from config import RefreshSettings
from db.repository import NoRowsError
from helpers import now_utc
from routes import refresh as routes_refresh
from steamapi.client import SteamAPIError
from updates.service import RefreshCancelled, RefreshStats
from web.app_factory import create_app

from tests.app_helpers import FakeSteamClient, store_snapshot

STEAMID = "76561198000000004"


def _settings(throttle_seconds=0):
    return RefreshSettings(
        workers=2,
        schema_ttl=timedelta(minutes=5),
        throttle_window=timedelta(seconds=throttle_seconds),
    )


@pytest.fixture
def fake_client():
    return FakeSteamClient(
        owned=[10, 20],
        schemas={10: ["A", "B"], 20: []},
        player={10: ["A"]},
    )


def _make_app(repo, settings, client_factory):
    flask_app = create_app(
        settings=settings,
        repository=repo,
        client_factory=client_factory,
        configure_logging=False,
    )
    flask_app.testing = True
    return flask_app


def test_refresh_returns_stats_and_sets_throttle_mark(repo, fake_client):
    client = _make_app(repo, _settings(), lambda: fake_client).test_client()

    response = client.post(f"/api/refresh/{STEAMID}")

    assert response.status_code == 200
    data = response.get_json()
    assert data["ok"] is True
    assert data["workers"] == 2
    assert data["owned"] == 2
    assert data["updated"] == 1
    assert data["snapshots"] == 1
    assert "skippedCached" in data
    assert repo.get_last_refresh_at(STEAMID) <= now_utc()


def test_refresh_throttled_returns_retry_after(repo, fake_client):
    repo.set_last_refresh_now(STEAMID, now_utc() - timedelta(seconds=10))
    client = _make_app(repo, _settings(throttle_seconds=60), lambda: fake_client).test_client()

    response = client.post(f"/api/refresh/{STEAMID}")

    assert response.status_code == 429
    retry_after = int(response.headers["Retry-After"])
    assert 49 <= retry_after <= 50
    data = response.get_json()
    assert data["error"] == "throttled"
    assert data["retry_after_seconds"] == retry_after
    assert fake_client.schema_calls == []


def test_refresh_not_throttled_after_window(repo, fake_client):
    repo.set_last_refresh_now(STEAMID, now_utc() - timedelta(seconds=120))
    client = _make_app(repo, _settings(throttle_seconds=60), lambda: fake_client).test_client()

    assert client.post(f"/api/refresh/{STEAMID}").status_code == 200


def test_refresh_client_error_maps_to_bad_gateway(repo):
    def failing_factory():
        raise SteamAPIError("STEAM_API_KEY not set")

    client = _make_app(repo, _settings(), failing_factory).test_client()

    response = client.post(f"/api/refresh/{STEAMID}")
    assert response.status_code == 502
    assert "STEAM_API_KEY" in response.get_json()["error"]


def test_refresh_owned_games_failure_maps_to_server_error(repo):
    broken = FakeSteamClient(owned_error=SteamAPIError("steam down", status=503))
    client = _make_app(repo, _settings(), lambda: broken).test_client()

    response = client.post(f"/api/refresh/{STEAMID}")
    assert response.status_code == 500
    with pytest.raises(NoRowsError):
        repo.get_last_refresh_at(STEAMID)


def test_refresh_cancelled_maps_to_gateway_timeout(repo, fake_client):
    client = _make_app(repo, _settings(), lambda: fake_client).test_client()
    error = RefreshCancelled("refresh cancelled", stats=RefreshStats(owned=2))

    with patch.object(routes_refresh, "refresh_user_concurrent", side_effect=error):
        response = client.post(f"/api/refresh/{STEAMID}")

    assert response.status_code == 504
    assert response.get_json()["owned"] == 2


def test_results_returns_comparison_rows(repo):
    store_snapshot(repo, STEAMID, 10, ["A", "B"], [])
    store_snapshot(repo, STEAMID, 10, ["A", "B"], ["A", "B"])
    client = _make_app(repo, _settings(), FakeSteamClient).test_client()

    response = client.get(f"/api/results/{STEAMID}")

    assert response.status_code == 200
    rows = response.get_json()
    assert len(rows) == 1
    assert rows[0]["appid"] == 10
    assert rows[0]["newly_earned"] == ["A", "B"]
    assert rows[0]["completed_now"] is True


def test_results_empty_for_unknown_player(repo):
    client = _make_app(repo, _settings(), FakeSteamClient).test_client()
    response = client.get("/api/results/unknown")
    assert response.status_code == 200
    assert response.get_json() == []


def test_export_csv_attachment(repo):
    store_snapshot(repo, STEAMID, 10, ["A"], ["A"])
    client = _make_app(repo, _settings(), FakeSteamClient).test_client()

    response = client.get(f"/export/{STEAMID}.csv")

    assert response.status_code == 200
    assert response.mimetype == "text/csv"
    assert f'filename="{STEAMID}_comparison.csv"' in response.headers["Content-Disposition"]
    reader = list(csv.reader(io.StringIO(response.get_data(as_text=True))))
    assert reader[0][0] == "steamid"
    assert reader[1][0] == STEAMID
    assert len(reader) == 2


def test_export_csv_header_only_without_snapshots(repo):
    client = _make_app(repo, _settings(), FakeSteamClient).test_client()
    response = client.get(f"/export/{STEAMID}.csv")
    assert response.status_code == 200
    assert response.get_data(as_text=True).count("\n") == 1


def test_blank_steamid_is_rejected(repo):
    client = _make_app(repo, _settings(), FakeSteamClient).test_client()
    response = client.get("/api/results/%20")
    assert response.status_code == 400
    assert response.get_json()["error"] == "missing steamid"


def test_api_error_exports_only_used_error_types():
    from routes import api_utils

    exported = {name for name in api_utils.__all__ if name.endswith("Error")}
    assert exported == {
        "APIError",
        "BadRequestError",
        "GatewayTimeoutError",
        "TooManyRequestsError",
        "UpstreamServiceError",
    }
    assert api_utils.TooManyRequestsError(retry_after=3).headers == {"Retry-After": "3"}
