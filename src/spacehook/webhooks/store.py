"""Event store: the only writer of the ``webhooks`` table.

Uniqueness of the fingerprint is enforced by the ``uq_webhooks_fingerprint``
constraint. Callers learn about collisions through ``ConstraintViolation``;
every other database failure surfaces as ``StorageError``.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy import ColumnElement, delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from spacehook.db.models import WebhookEvent
from spacehook.webhooks.errors import StorageError
from spacehook.webhooks.fingerprint import FingerprintSpec

_UNIQUE_MARKERS = ("uq_webhooks_fingerprint", "webhooks.fingerprint")


class ConstraintViolation(Exception):
    """Insert rejected because the fingerprint is already stored."""

    def __init__(self, fingerprint: str) -> None:
        self.fingerprint = fingerprint
        super().__init__(f"Fingerprint already stored: {fingerprint}")


class MonotonicClock:
    """UTC clock whose readings strictly increase within the process.

    Two inserts never share a ``created_at``, so newest-first listings have
    a stable order.
    """

    def __init__(self) -> None:
        self._last = datetime.min.replace(tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            current = datetime.now(timezone.utc)
            if current <= self._last:
                current = self._last + timedelta(microseconds=1)
            self._last = current
            return current


clock = MonotonicClock()


def _is_fingerprint_violation(exc: IntegrityError) -> bool:
    text = str(exc.orig)
    return any(marker in text for marker in _UNIQUE_MARKERS)


class EventStore:
    """Persistence for webhook events over one async session."""

    def __init__(
        self,
        session: AsyncSession,
        fingerprint: FingerprintSpec,
        logger: structlog.stdlib.BoundLogger | None = None,
        now: MonotonicClock = clock,
    ) -> None:
        self.session = session
        self.fingerprint = fingerprint
        self.log = logger or structlog.get_logger()
        self._clock = now

    async def insert(self, candidate: Mapping[str, Any]) -> WebhookEvent:
        """Persist a candidate and commit.

        Raises:
            ConstraintViolation: the fingerprint already exists.
            StorageError: any other database failure.
        """
        digest = self.fingerprint.digest(candidate)
        row = WebhookEvent(
            **candidate,
            fingerprint=digest,
            created_at=self._clock.now(),
        )
        self.session.add(row)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            if _is_fingerprint_violation(exc):
                raise ConstraintViolation(digest) from exc
            raise StorageError("Insert failed") from exc
        except (SQLAlchemyError, OSError) as exc:
            await self._safe_rollback()
            raise StorageError("Insert failed") from exc
        return row

    async def get_by_fingerprint(self, digest: str) -> WebhookEvent | None:
        try:
            result = await self.session.execute(select(WebhookEvent).where(WebhookEvent.fingerprint == digest))
            return result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as exc:
            await self._safe_rollback()
            raise StorageError("Lookup failed") from exc

    async def query(
        self,
        user_id: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[WebhookEvent]:
        """Newest-first listing, optionally filtered by submitter and creation time."""
        stmt = select(WebhookEvent).order_by(WebhookEvent.created_at.desc(), WebhookEvent.id.desc())
        if user_id is not None:
            stmt = stmt.where(WebhookEvent.user_id == user_id)
        if since is not None:
            stmt = stmt.where(WebhookEvent.created_at >= since)
        stmt = stmt.limit(limit)
        try:
            result = await self.session.execute(stmt)
        except (SQLAlchemyError, OSError) as exc:
            await self._safe_rollback()
            raise StorageError("Query failed") from exc
        return list(result.scalars().all())

    async def feed(self, user_id: str | None = None, limit: int = 200) -> list[WebhookEvent]:
        """Dashboard feed: newest first, one row per fingerprint (most recent wins).

        Rows that collide only under a changed fingerprint definition are
        collapsed here until the reconciliation sweep removes them.
        """
        rows = await self.query(user_id=user_id, limit=limit)
        seen: set[tuple[str, ...]] = set()
        unique: list[WebhookEvent] = []
        for row in rows:
            key = self.fingerprint.values(row)
            if key in seen:
                continue
            seen.add(key)
            unique.append(row)
        return unique

    async def count(self, *where: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(WebhookEvent)
        if where:
            stmt = stmt.where(*where)
        try:
            result = await self.session.execute(stmt)
        except (SQLAlchemyError, OSError) as exc:
            await self._safe_rollback()
            raise StorageError("Count failed") from exc
        return int(result.scalar_one())

    async def count_distinct(self) -> int:
        """Number of distinct fingerprints under the configured definition."""
        inner = select(*self.fingerprint.columns()).distinct().subquery()
        try:
            result = await self.session.execute(select(func.count()).select_from(inner))
        except (SQLAlchemyError, OSError) as exc:
            await self._safe_rollback()
            raise StorageError("Count failed") from exc
        return int(result.scalar_one())

    async def delete_where(self, *where: ColumnElement[bool]) -> int:
        """Delete matching rows and commit. Returns the number of rows removed."""
        if not where:
            msg = "delete_where requires at least one predicate"
            raise ValueError(msg)
        stmt = delete(WebhookEvent).where(*where).execution_options(synchronize_session=False)
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except (SQLAlchemyError, OSError) as exc:
            await self._safe_rollback()
            raise StorageError("Delete failed") from exc
        deleted = result.rowcount or 0  # type: ignore[attr-defined]
        self.log.info("webhooks_deleted", count=deleted)
        return deleted

    async def _safe_rollback(self) -> None:
        try:
            await self.session.rollback()
        except (SQLAlchemyError, OSError):
            self.log.warning("rollback_failed", exc_info=True)
