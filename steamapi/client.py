"""Steam Web API client for owned games, achievement schemas and player progress."""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from urllib.error import HTTPError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from helpers import coerce_appid

logger = logging.getLogger(__name__)


__all__ = [
    "OwnedGame",
    "PlayerAchievement",
    "SchemaAchievement",
    "SteamAPIError",
    "SteamClient",
]


class SteamAPIError(RuntimeError):
    """Raised when a Steam Web API call fails or returns an unusable payload."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


@dataclass(frozen=True)
class OwnedGame:
    appid: int
    name: str = ""
    has_community_visible_stats: bool = False
    playtime_forever: int = 0


@dataclass(frozen=True)
class SchemaAchievement:
    apiname: str
    name: str
    description: str = ""


@dataclass(frozen=True)
class PlayerAchievement:
    apiname: str
    achieved: bool
    unlock_time: int = 0


class SteamClient:
    """Thin JSON client around the three Steam endpoints the tracker needs."""

    BASE_URL = "https://api.steampowered.com"
    OWNED_GAMES_PATH = "/IPlayerService/GetOwnedGames/v1/"
    SCHEMA_PATH = "/ISteamUserStats/GetSchemaForGame/v2/"
    PLAYER_ACHIEVEMENTS_PATH = "/ISteamUserStats/GetPlayerAchievements/v1/"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        user_agent: str | None = None,
        timeout: float | None = None,
        max_retries: int = 3,
        rate_limit_wait: float = 1.0,
        request_factory: Callable[..., Any] | None = None,
        opener: Callable[..., Any] | None = None,
        sleep: Callable[[float], None] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._env = env if env is not None else os.environ
        self._api_key = (api_key or "").strip()
        self._user_agent = (user_agent or "").strip()
        self._timeout = timeout if timeout and timeout > 0 else 20.0
        self._max_retries = max(1, int(max_retries)) if max_retries else 3
        self._rate_limit_wait = rate_limit_wait if rate_limit_wait and rate_limit_wait > 0 else 1.0
        self._request_factory = request_factory or Request
        self._opener = opener or urlopen
        self._sleep = sleep or time.sleep

    @property
    def api_key(self) -> str:
        key = self._api_key or (self._env.get("STEAM_API_KEY") or "").strip()
        if not key:
            raise SteamAPIError("STEAM_API_KEY not set")
        return key

    def validate_credentials(self) -> None:
        """Raise :class:`SteamAPIError` when no API key is configured."""

        self.api_key

    @property
    def user_agent(self) -> str:
        if self._user_agent:
            return self._user_agent
        env_agent = self._env.get("STEAM_USER_AGENT")
        if env_agent and env_agent.strip():
            return env_agent.strip()
        return "steam-achievement-tracker/1.0"

    def get_owned_games(self, steamid: str) -> list[OwnedGame]:
        """Return the games owned by ``steamid``, including their names."""

        data = self._get_json(
            self.OWNED_GAMES_PATH,
            {
                "steamid": steamid,
                "include_appinfo": "1",
                "include_played_free_games": "1",
            },
            error_prefix="failed to list owned games",
        )
        response = data.get("response") if isinstance(data, Mapping) else None
        games = response.get("games") if isinstance(response, Mapping) else None
        owned: list[OwnedGame] = []
        for item in games or []:
            if not isinstance(item, Mapping):
                continue
            appid = coerce_appid(item.get("appid"))
            if appid is None:
                logger.warning("Skipping owned game with invalid appid %r", item.get("appid"))
                continue
            owned.append(
                OwnedGame(
                    appid=appid,
                    name=str(item.get("name") or "").strip(),
                    has_community_visible_stats=bool(item.get("has_community_visible_stats")),
                    playtime_forever=int(item.get("playtime_forever") or 0),
                )
            )
        return owned

    def get_schema_for_game(self, appid: int) -> tuple[list[SchemaAchievement], str]:
        """Return the achievement definitions and display name for ``appid``.

        Games without achievements yield an empty list.
        """

        data = self._get_json(
            self.SCHEMA_PATH,
            {"appid": str(int(appid))},
            error_prefix=f"failed to load schema for app {appid}",
        )
        game = data.get("game") if isinstance(data, Mapping) else None
        if not isinstance(game, Mapping):
            return [], ""
        game_name = str(game.get("gameName") or "").strip()
        stats = game.get("availableGameStats")
        raw_achievements = stats.get("achievements") if isinstance(stats, Mapping) else None
        definitions: list[SchemaAchievement] = []
        for item in raw_achievements or []:
            if not isinstance(item, Mapping):
                continue
            apiname = str(item.get("name") or "").strip()
            if not apiname:
                continue
            display = str(item.get("displayName") or "").strip()
            definitions.append(
                SchemaAchievement(
                    apiname=apiname,
                    name=display or apiname,
                    description=str(item.get("description") or "").strip(),
                )
            )
        return definitions, game_name

    def get_player_achievements(self, steamid: str, appid: int) -> list[PlayerAchievement]:
        """Return the player's achievement states for ``appid``.

        Steam answers ``success=false`` for private profiles or games without
        stats; that case yields an empty list.
        """

        data = self._get_json(
            self.PLAYER_ACHIEVEMENTS_PATH,
            {"steamid": steamid, "appid": str(int(appid))},
            error_prefix=f"failed to load player achievements for app {appid}",
        )
        stats = data.get("playerstats") if isinstance(data, Mapping) else None
        if not isinstance(stats, Mapping):
            return []
        states: list[PlayerAchievement] = []
        for item in stats.get("achievements") or []:
            if not isinstance(item, Mapping):
                continue
            apiname = str(item.get("apiname") or "").strip()
            if not apiname:
                continue
            try:
                achieved = int(item.get("achieved") or 0) == 1
            except (TypeError, ValueError):
                achieved = False
            try:
                unlock_time = int(item.get("unlocktime") or 0)
            except (TypeError, ValueError):
                unlock_time = 0
            states.append(
                PlayerAchievement(apiname=apiname, achieved=achieved, unlock_time=unlock_time)
            )
        return states

    def _build_url(self, path: str, params: Mapping[str, str]) -> str:
        query = urlencode({"key": self.api_key, **params})
        return f"{self.BASE_URL}{path}?{query}"

    def _get_json(self, path: str, params: Mapping[str, str], *, error_prefix: str) -> Any:
        request = self._request_factory(self._build_url(path, params), method="GET")
        request.add_header("Accept", "application/json")
        request.add_header("User-Agent", self.user_agent)

        for attempt in range(self._max_retries):
            try:
                with self._opener(request, timeout=self._timeout) as response:
                    body = response.read()
            except HTTPError as exc:
                if exc.code == 429 and attempt + 1 < self._max_retries:
                    delay = self._retry_delay(exc)
                    logger.debug("Steam rate limited %s; retrying in %.1fs", path, delay)
                    if delay > 0:
                        self._sleep(delay)
                    continue
                raise SteamAPIError(f"{error_prefix}: HTTP {exc.code}", status=exc.code) from exc
            except OSError as exc:
                raise SteamAPIError(f"{error_prefix}: {exc}") from exc
            try:
                text = body.decode("utf-8") if body else ""
                return json.loads(text) if text else {}
            except (UnicodeDecodeError, json.JSONDecodeError) as exc:
                raise SteamAPIError(f"{error_prefix}: invalid JSON response") from exc
        raise SteamAPIError(f"{error_prefix}: rate limit retries exhausted", status=429)

    def _retry_delay(self, error: HTTPError) -> float:
        headers = getattr(error, "headers", None)
        if headers is not None:
            value = headers.get("Retry-After")
            if value:
                try:
                    delay = float(value)
                    if delay > 0:
                        return delay
                except (TypeError, ValueError):
                    pass
        return self._rate_limit_wait
