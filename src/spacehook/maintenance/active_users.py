"""Import of daily active-install counts from the extension store CSV export.

Expected layout::

    Weekly users over time
    Date,Weekly users
    12/28/24,2332
    12/29/24,2339

Dates are M/D/YY (two-digit years are 20YY). Rows with zero users are
skipped. Rows are upserted by date, so importing the same file twice leaves
the table unchanged.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from spacehook.db.models import ActiveUserSnapshot

logger = structlog.get_logger()

EXPECTED_TITLE = "Weekly users over time"
BATCH_SIZE = 100


@dataclass(frozen=True)
class ActiveUserRecord:
    date: date
    user_count: int


def parse_store_date(value: str) -> date:
    """Parse ``M/D/YY`` (or ``M/D/YYYY``)."""
    parts = value.strip().split("/")
    if len(parts) != 3:
        msg = f"Invalid date format: {value!r}"
        raise ValueError(msg)
    try:
        month, day, year = (int(p) for p in parts)
    except ValueError as exc:
        msg = f"Invalid date format: {value!r}"
        raise ValueError(msg) from exc
    if year < 100:
        year += 2000
    return date(year, month, day)


def parse_active_users_csv(content: str) -> list[ActiveUserRecord]:
    """Parse the export into records, dropping zero-user rows.

    Raises:
        ValueError: a data row has a malformed date or count.
    """
    lines = [line.strip() for line in content.splitlines() if line.strip()]
    if not lines:
        return []
    if EXPECTED_TITLE.lower() not in lines[0].lower():
        logger.warning("active_users_unexpected_header", first_line=lines[0][:80])

    records: list[ActiveUserRecord] = []
    for row in lines[2:]:
        date_str, _, count_str = row.partition(",")
        try:
            count = int(count_str.split(",")[0].strip())
        except ValueError as exc:
            msg = f"Invalid user count: {count_str!r}"
            raise ValueError(msg) from exc
        if count <= 0:
            continue
        records.append(ActiveUserRecord(date=parse_store_date(date_str), user_count=count))
    return records


def _insert_for(session: AsyncSession):  # type: ignore[no-untyped-def]
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    msg = f"Upsert not supported for dialect {dialect}"
    raise RuntimeError(msg)


async def upsert_active_users(
    session: AsyncSession,
    records: Sequence[ActiveUserRecord],
    batch_size: int = BATCH_SIZE,
) -> int:
    """Insert-or-update counts by date in one transaction. Returns rows written."""
    if not records:
        return 0
    insert = _insert_for(session)
    now = datetime.now(timezone.utc)

    async with session.begin():
        for offset in range(0, len(records), batch_size):
            batch = records[offset : offset + batch_size]
            stmt = insert(ActiveUserSnapshot).values(
                [{"date": r.date, "user_count": r.user_count, "created_at": now, "updated_at": now} for r in batch]
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[ActiveUserSnapshot.date],
                set_={"user_count": stmt.excluded.user_count, "updated_at": now},
            )
            await session.execute(stmt)
            logger.info(
                "active_users_batch_written",
                batch=offset // batch_size + 1,
                batches=(len(records) + batch_size - 1) // batch_size,
            )
    return len(records)


async def count_active_user_rows(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(ActiveUserSnapshot))
    return int(result.scalar_one())
