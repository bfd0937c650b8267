"""Refresh, results and CSV export routes."""

from __future__ import annotations

import io
import math
from datetime import timedelta
from typing import Any, Callable, Mapping

from flask import Blueprint, Response, current_app, jsonify

from achievements.service import build_all_comparisons_for_user, write_csv
from db.repository import NoRowsError, RepositoryError
from helpers import now_utc
from routes.api_utils import (
    APIError,
    BadRequestError,
    GatewayTimeoutError,
    TooManyRequestsError,
    UpstreamServiceError,
    handle_api_errors,
)
from steamapi.client import SteamAPIError
from updates.service import RefreshCancelled, RefreshError, refresh_user_concurrent

refresh_blueprint = Blueprint("refresh", __name__)

_context: dict[str, Any] = {}


def configure(context: Mapping[str, Any]) -> None:
    """Provide the repository, Steam client factory and refresh settings."""
    _context.update(context)


def _ctx(key: str) -> Any:
    if key not in _context:
        raise RuntimeError(f"refresh routes missing context value: {key}")
    return _context[key]


def _clean_steamid(steamid: str) -> str:
    value = (steamid or "").strip()
    if not value:
        raise BadRequestError("missing steamid")
    return value


def _check_throttle(repo: Any, steamid: str, window: timedelta) -> None:
    if window <= timedelta(0):
        return
    try:
        last = repo.get_last_refresh_at(steamid)
    except NoRowsError:
        return
    remaining = window - (now_utc() - last)
    if remaining > timedelta(0):
        seconds = max(1, math.ceil(remaining.total_seconds()))
        raise TooManyRequestsError(
            "throttled",
            retry_after=seconds,
            payload={"retry_after_seconds": seconds},
        )


@refresh_blueprint.route("/api/refresh/<steamid>", methods=["POST"])
@handle_api_errors
def api_refresh(steamid: str):
    steamid = _clean_steamid(steamid)
    repo = _ctx("repository")
    settings = _ctx("settings")
    client_factory: Callable[[], Any] = _ctx("client_factory")

    try:
        client = client_factory()
    except SteamAPIError as exc:
        raise UpstreamServiceError(str(exc)) from exc

    try:
        _check_throttle(repo, steamid, settings.throttle_window)
        stats = refresh_user_concurrent(
            repo,
            client,
            steamid,
            workers=settings.workers,
            schema_ttl=settings.schema_ttl,
            timeout=settings.refresh_timeout,
        )
        repo.set_last_refresh_now(steamid)
    except RefreshCancelled as exc:
        raise GatewayTimeoutError(str(exc), payload=exc.stats.to_dict()) from exc
    except RefreshError as exc:
        raise APIError(str(exc), status_code=500, payload=exc.stats.to_dict()) from exc
    except RepositoryError as exc:
        raise APIError(str(exc), status_code=500) from exc

    payload: dict[str, Any] = {"ok": True, "workers": settings.workers}
    payload.update(stats.to_dict())
    return jsonify(payload)


@refresh_blueprint.route("/api/results/<steamid>", methods=["GET"])
@handle_api_errors
def api_results(steamid: str):
    steamid = _clean_steamid(steamid)
    try:
        rows = build_all_comparisons_for_user(_ctx("repository"), steamid)
    except RepositoryError as exc:
        raise APIError(str(exc), status_code=500) from exc
    return jsonify([row.to_dict() for row in rows])


@refresh_blueprint.route("/export/<steamid>.csv", methods=["GET"])
@handle_api_errors
def export_csv(steamid: str):
    steamid = _clean_steamid(steamid)
    try:
        rows = build_all_comparisons_for_user(_ctx("repository"), steamid)
    except RepositoryError as exc:
        raise APIError(str(exc), status_code=500) from exc

    buffer = io.StringIO()
    write_csv(buffer, rows)
    current_app.logger.debug("Exported %d comparison rows for %s", len(rows), steamid)
    return Response(
        buffer.getvalue(),
        mimetype="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="{steamid}_comparison.csv"',
        },
    )


__all__ = ["configure", "refresh_blueprint"]
