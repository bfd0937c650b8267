#!/usr/bin/env python3
"""Refresh a player's achievement snapshots from the command line."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from achievements.service import build_all_comparisons_for_user, write_csv
from config import DB_DSN, load_refresh_settings
from init import initialize_app
from steamapi.client import SteamAPIError
from updates.service import RefreshError, refresh_user_concurrent
from web.app_factory import default_client_factory

logger = logging.getLogger("refresh_user")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("steamid", help="64-bit Steam id of the player")
    parser.add_argument("--workers", type=int, default=None, help="worker threads")
    parser.add_argument("--csv", dest="csv_path", default=None, help="write comparisons to this CSV file")
    parser.add_argument("--dsn", default=DB_DSN, help="database URL")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    settings = load_refresh_settings()
    workers = args.workers if args.workers is not None else settings.workers

    try:
        client = default_client_factory()
    except SteamAPIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    repo = initialize_app(args.dsn)
    try:
        try:
            stats = refresh_user_concurrent(
                repo,
                client,
                args.steamid,
                workers=workers,
                schema_ttl=settings.schema_ttl,
                timeout=settings.refresh_timeout,
            )
        except RefreshError as exc:
            logger.error("Refresh failed: %s", exc)
            print(json.dumps({"ok": False, "error": str(exc), **exc.stats.to_dict()}))
            return 1
        repo.set_last_refresh_now(args.steamid)
        print(json.dumps({"ok": True, "workers": workers, **stats.to_dict()}))

        if args.csv_path:
            rows = build_all_comparisons_for_user(repo, args.steamid)
            with open(args.csv_path, "w", encoding="utf-8", newline="") as handle:
                write_csv(handle, rows)
            print(f"Wrote {len(rows)} rows to {args.csv_path}")
    finally:
        repo.database.dispose()
    return 0


if __name__ == "__main__":  # pragma: no cover - manual execution path
    sys.exit(main())
