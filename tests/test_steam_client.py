import io
import json
from email.message import Message
from urllib.error import HTTPError
from urllib.parse import parse_qs, urlparse

import pytest

from steamapi.client import SteamAPIError, SteamClient


class FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def _json_response(payload):
    return FakeResponse(json.dumps(payload).encode("utf-8"))


def _http_error(url, code, headers=None):
    message = Message()
    for key, value in (headers or {}).items():
        message[key] = value
    return HTTPError(url, code, "error", message, io.BytesIO(b""))


def _client(responses, *, sleeps=None, env=None):
    calls = []

    def opener(request, timeout=None):
        calls.append(request)
        result = responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    client = SteamClient(
        api_key="secret",
        user_agent="tests/1.0",
        opener=opener,
        sleep=(sleeps.append if sleeps is not None else lambda _delay: None),
        env=env or {},
    )
    return client, calls


def test_get_owned_games_parses_payload():
    client, calls = _client([
        _json_response({
            "response": {
                "game_count": 3,
                "games": [
                    {"appid": 10, "name": "Counter-Strike", "playtime_forever": 5},
                    {"appid": "20", "name": " Team Fortress ", "has_community_visible_stats": True},
                    {"appid": "bogus"},
                ],
            }
        })
    ])

    games = client.get_owned_games("7656")

    assert [(game.appid, game.name) for game in games] == [(10, "Counter-Strike"), (20, "Team Fortress")]
    assert games[1].has_community_visible_stats is True
    query = parse_qs(urlparse(calls[0].full_url).query)
    assert query["key"] == ["secret"]
    assert query["steamid"] == ["7656"]
    assert query["include_appinfo"] == ["1"]
    assert calls[0].get_header("User-agent") == "tests/1.0"


def test_get_schema_for_game_falls_back_to_apiname():
    client, _ = _client([
        _json_response({
            "game": {
                "gameName": "Portal",
                "availableGameStats": {
                    "achievements": [
                        {"name": "ACH_A", "displayName": "First", "description": "Do it"},
                        {"name": "ACH_B"},
                        {"displayName": "missing apiname"},
                    ]
                },
            }
        })
    ])

    definitions, name = client.get_schema_for_game(400)

    assert name == "Portal"
    assert [(d.apiname, d.name) for d in definitions] == [("ACH_A", "First"), ("ACH_B", "ACH_B")]


def test_get_schema_for_game_without_stats_is_empty():
    client, _ = _client([_json_response({"game": {}})])
    assert client.get_schema_for_game(400) == ([], "")


def test_get_player_achievements_parses_flags():
    client, _ = _client([
        _json_response({
            "playerstats": {
                "success": True,
                "achievements": [
                    {"apiname": "A", "achieved": 1, "unlocktime": 1700000000},
                    {"apiname": "B", "achieved": 0, "unlocktime": 0},
                ],
            }
        })
    ])

    states = client.get_player_achievements("7656", 400)

    assert [(s.apiname, s.achieved) for s in states] == [("A", True), ("B", False)]
    assert states[0].unlock_time == 1700000000


def test_rate_limit_retries_with_retry_after():
    sleeps = []
    url = "https://api.steampowered.com/x"
    client, calls = _client(
        [_http_error(url, 429, {"Retry-After": "2"}), _json_response({"response": {"games": []}})],
        sleeps=sleeps,
    )

    assert client.get_owned_games("7656") == []
    assert len(calls) == 2
    assert sleeps == [2.0]


def test_rate_limit_exhaustion_raises():
    url = "https://api.steampowered.com/x"
    client, _ = _client([_http_error(url, 429) for _ in range(3)])

    with pytest.raises(SteamAPIError) as excinfo:
        client.get_owned_games("7656")
    assert excinfo.value.status == 429


def test_http_error_is_wrapped_with_status():
    client, _ = _client([_http_error("https://api.steampowered.com/x", 403)])

    with pytest.raises(SteamAPIError) as excinfo:
        client.get_player_achievements("7656", 400)
    assert excinfo.value.status == 403


def test_invalid_json_raises():
    client, _ = _client([FakeResponse(b"<html>")])
    with pytest.raises(SteamAPIError):
        client.get_schema_for_game(400)


def test_missing_api_key_raises():
    client = SteamClient(env={})
    with pytest.raises(SteamAPIError):
        client.validate_credentials()


def test_api_key_from_env():
    client = SteamClient(env={"STEAM_API_KEY": " env-key "})
    assert client.api_key == "env-key"


def test_validate_credentials_accepts_configured_key():
    SteamClient(api_key="configured", env={}).validate_credentials()
