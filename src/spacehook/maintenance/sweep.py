"""Reconciliation sweep and administrative purge.

The sweep deletes every event that has a newer sibling sharing its
fingerprint columns, keeping only the most recent row per group. It is a
single DELETE inside one transaction: the "newer sibling exists" test is
evaluated against the statement snapshot, so a row inserted while the sweep
runs is always the newest of its group and is never removed. Running it
again without new writes deletes nothing.

In the same transaction the survivors are re-keyed: any row whose stored
digest was computed under an earlier fingerprint definition gets the digest
of the current one, so the uniqueness constraint and the duplicate guard see
it again. Survivors are unique per current tuple, so re-keying cannot collide.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime

import structlog
from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from spacehook.db.models import WebhookEvent
from spacehook.webhooks.fingerprint import FingerprintSpec
from spacehook.webhooks.store import EventStore


class ReconciliationSweep:
    """Removes stale duplicate rows under the configured fingerprint."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fingerprint: FingerprintSpec,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.fingerprint = fingerprint
        self.log = logger or structlog.get_logger()

    def _stale_rows_statement(self):  # type: ignore[no-untyped-def]
        newer = aliased(WebhookEvent)
        same_group = [getattr(newer, name) == getattr(WebhookEvent, name) for name in self.fingerprint.fields]
        is_newer = or_(
            newer.created_at > WebhookEvent.created_at,
            and_(newer.created_at == WebhookEvent.created_at, newer.id > WebhookEvent.id),
        )
        return (
            delete(WebhookEvent)
            .where(select(newer.id).where(*same_group, is_newer).correlate(WebhookEvent.__table__).exists())
            .execution_options(synchronize_session=False)
        )

    async def _rekey_survivors(self, session: AsyncSession) -> int:
        """Rewrite stale digests to the current definition. Returns the number of rows changed."""
        names = self.fingerprint.fields
        result = await session.execute(
            select(WebhookEvent.id, WebhookEvent.fingerprint, *self.fingerprint.columns())
        )
        changes = []
        for row in result:
            digest = self.fingerprint.digest({name: getattr(row, name) for name in names})
            if digest != row.fingerprint:
                changes.append({"id": row.id, "fingerprint": digest})
        for change in changes:
            await session.execute(
                update(WebhookEvent)
                .where(WebhookEvent.id == change["id"])
                .values(fingerprint=change["fingerprint"])
                .execution_options(synchronize_session=False)
            )
        return len(changes)

    async def run_once(self) -> int:
        """Run one sweep in its own transaction. Returns the number of rows deleted."""
        started = time.monotonic()
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(self._stale_rows_statement())
                deleted = result.rowcount or 0  # type: ignore[attr-defined]
                rekeyed = await self._rekey_survivors(session)
        self.log.info(
            "sweep_completed",
            deleted=deleted,
            rekeyed=rekeyed,
            fingerprint=str(self.fingerprint),
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )
        return deleted


class SweepScheduler:
    """Runs the sweep once at start, then every ``interval_seconds``.

    A failed run is logged and retried on the next tick; it never stops the
    loop or the process.
    """

    def __init__(
        self,
        sweep: ReconciliationSweep,
        interval_seconds: float,
        run_on_start: bool = True,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.sweep = sweep
        self.interval_seconds = interval_seconds
        self.run_on_start = run_on_start
        self.log = logger or structlog.get_logger()
        self._task: asyncio.Task[None] | None = None
        self.runs = 0
        self.failures = 0

    async def run_cycle(self) -> int | None:
        self.runs += 1
        try:
            return await self.sweep.run_once()
        except Exception:
            self.failures += 1
            self.log.error("sweep_failed", run=self.runs, exc_info=True)
            return None

    async def _loop(self) -> None:
        if self.run_on_start:
            await self.run_cycle()
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.run_cycle()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop(), name="reconciliation-sweep")
            self.log.info("sweep_scheduler_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.log.info("sweep_scheduler_stopped", runs=self.runs, failures=self.failures)


async def purge_before(
    session_factory: async_sessionmaker[AsyncSession],
    fingerprint: FingerprintSpec,
    cutoff: datetime,
) -> dict[str, int]:
    """One-off maintenance: delete every event created before ``cutoff``."""
    log = structlog.get_logger()
    async with session_factory() as session:
        store = EventStore(session, fingerprint)
        before = await store.count()
        to_delete = await store.count(WebhookEvent.created_at < cutoff)
        log.info("purge_started", cutoff=cutoff.isoformat(), total=before, to_delete=to_delete)
        deleted = await store.delete_where(WebhookEvent.created_at < cutoff)
        after = await store.count()
    log.info("purge_completed", deleted=deleted, remaining=after)
    return {"before": before, "deleted": deleted, "after": after}
