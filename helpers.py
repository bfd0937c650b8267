"""General-purpose helper utilities shared across the application."""

from __future__ import annotations

import numbers
from datetime import datetime, timezone
from typing import Any

__all__ = [
    "coerce_appid",
    "first_non_empty",
    "format_timestamp",
    "now_utc",
    "parse_timestamp",
]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Return ``value`` as a fixed-width ISO-8601 UTC string.

    Naive datetimes are assumed to already be UTC. The fixed width keeps
    stored timestamps sortable as plain text.
    """

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a stored timestamp back into an aware UTC :class:`datetime`."""

    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def first_non_empty(*values: Any) -> str:
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def coerce_appid(value: Any) -> int | None:
    """Return ``value`` as an integer app id, or ``None`` when it is not one."""

    if value in (None, "") or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Integral):
        return int(value)
    if isinstance(value, numbers.Real):
        return int(value) if float(value).is_integer() else None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None
