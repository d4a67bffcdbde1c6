"""Maintenance commands.

Usage:
    python -m spacehook.cli sweep
    python -m spacehook.cli purge --before 2025-03-18
    python -m spacehook.cli import-active-users path/to/export.csv
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

import structlog

from spacehook.config import get_settings
from spacehook.database import close_db, get_session_factory, init_db
from spacehook.maintenance.active_users import (
    count_active_user_rows,
    parse_active_users_csv,
    upsert_active_users,
)
from spacehook.maintenance.sweep import ReconciliationSweep, purge_before
from spacehook.middleware.logging import setup_logging
from spacehook.webhooks.fingerprint import FingerprintSpec

logger = structlog.get_logger()


def _cutoff(value: str) -> datetime:
    try:
        day = datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        msg = f"expected YYYY-MM-DD, got {value!r}"
        raise argparse.ArgumentTypeError(msg) from exc
    return day.replace(tzinfo=timezone.utc)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="spacehook", description="Spacehook maintenance commands")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("sweep", help="Delete duplicate events, keeping the newest per fingerprint")

    purge = sub.add_parser("purge", help="Delete every event created before a date")
    purge.add_argument("--before", type=_cutoff, required=True, help="Cutoff date (YYYY-MM-DD, UTC)")

    imp = sub.add_parser("import-active-users", help="Upsert daily active installs from a store CSV export")
    imp.add_argument("path", type=Path)

    return parser


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    fingerprint = FingerprintSpec.from_names(settings.fingerprint_fields)
    await init_db(settings.database_url)
    try:
        factory = get_session_factory()
        if args.command == "sweep":
            deleted = await ReconciliationSweep(factory, fingerprint).run_once()
            print(f"Deleted {deleted} duplicate events")  # noqa: T201
        elif args.command == "purge":
            counts = await purge_before(factory, fingerprint, args.before)
            print(  # noqa: T201
                f"Records before: {counts['before']}, deleted: {counts['deleted']}, after: {counts['after']}"
            )
        elif args.command == "import-active-users":
            records = parse_active_users_csv(args.path.read_text(encoding="utf-8"))
            async with factory() as session:
                written = await upsert_active_users(session, records)
            async with factory() as session:
                total = await count_active_user_rows(session)
            print(f"Imported {written} rows; {total} active-user records stored")  # noqa: T201
    finally:
        await close_db()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(get_settings())
    try:
        return asyncio.run(_run(args))
    except Exception:
        logger.exception("maintenance_command_failed", command=args.command)
        return 1


if __name__ == "__main__":
    sys.exit(main())
