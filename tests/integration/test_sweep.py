"""Integration tests for the reconciliation sweep, its scheduler and the purge command."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import add_event, count_rows
from sqlalchemy import select

from spacehook.db.models import WebhookEvent
from spacehook.maintenance.sweep import ReconciliationSweep, SweepScheduler, purge_before
from spacehook.webhooks.fingerprint import DEFAULT_FINGERPRINT, FingerprintSpec

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


async def _users(database) -> list[str]:  # noqa: ANN001
    async with database() as session:
        result = await session.execute(select(WebhookEvent.user_id).order_by(WebhookEvent.user_id))
        return list(result.scalars().all())


class TestReconciliationSweep:
    @pytest.mark.asyncio
    async def test_keeps_newest_per_group(self, database) -> None:
        # Three copies of one download stored under different digests
        await add_event(database, T0, fingerprint="a" * 64, user_id="oldest")
        await add_event(database, T0 + timedelta(minutes=1), fingerprint="b" * 64, user_id="middle")
        await add_event(database, T0 + timedelta(minutes=2), fingerprint="c" * 64, user_id="newest")
        await add_event(database, T0, media_url="https://m/2", tweet_url="https://x/2", user_id="other")

        deleted = await ReconciliationSweep(database, DEFAULT_FINGERPRINT, logger=MagicMock()).run_once()

        assert deleted == 2
        assert await _users(database) == ["newest", "other"]

    @pytest.mark.asyncio
    async def test_second_run_deletes_nothing(self, database) -> None:
        await add_event(database, T0, fingerprint="a" * 64)
        await add_event(database, T0 + timedelta(seconds=1), fingerprint="b" * 64)
        sweep = ReconciliationSweep(database, DEFAULT_FINGERPRINT, logger=MagicMock())

        assert await sweep.run_once() == 1
        assert await sweep.run_once() == 0
        assert await count_rows(database) == 1

    @pytest.mark.asyncio
    async def test_equal_timestamps_keep_exactly_one(self, database) -> None:
        await add_event(database, T0, fingerprint="a" * 64)
        await add_event(database, T0, fingerprint="b" * 64)

        await ReconciliationSweep(database, DEFAULT_FINGERPRINT, logger=MagicMock()).run_once()

        assert await count_rows(database) == 1

    @pytest.mark.asyncio
    async def test_wider_fingerprint_keeps_distinct_origins(self, database) -> None:
        await add_event(database, T0, fingerprint="a" * 64, ip="1.1.1.1")
        await add_event(database, T0 + timedelta(minutes=1), fingerprint="b" * 64, ip="2.2.2.2")
        spec = FingerprintSpec(("media_url", "tweet_url", "ip"))

        deleted = await ReconciliationSweep(database, spec, logger=MagicMock()).run_once()

        assert deleted == 0
        assert await count_rows(database) == 2

    @pytest.mark.asyncio
    async def test_empty_store(self, database) -> None:
        assert await ReconciliationSweep(database, DEFAULT_FINGERPRINT, logger=MagicMock()).run_once() == 0

    @pytest.mark.asyncio
    async def test_completion_is_logged(self, database) -> None:
        logger = MagicMock()
        await add_event(database, T0, fingerprint="a" * 64)
        await add_event(database, T0 + timedelta(minutes=1), fingerprint="b" * 64)

        await ReconciliationSweep(database, DEFAULT_FINGERPRINT, logger=logger).run_once()

        event, = logger.info.call_args.args
        assert event == "sweep_completed"
        assert logger.info.call_args.kwargs["deleted"] == 1
        assert logger.info.call_args.kwargs["fingerprint"] == "media_url+tweet_url"


class TestSweepScheduler:
    @pytest.mark.asyncio
    async def test_failure_is_logged_and_swallowed(self) -> None:
        sweep = MagicMock()
        sweep.run_once = AsyncMock(side_effect=RuntimeError("database unavailable"))
        logger = MagicMock()
        scheduler = SweepScheduler(sweep, interval_seconds=3600, logger=logger)

        assert await scheduler.run_cycle() is None

        assert scheduler.failures == 1
        logger.error.assert_called_once()
        assert logger.error.call_args.args == ("sweep_failed",)

    @pytest.mark.asyncio
    async def test_next_cycle_runs_after_failure(self) -> None:
        sweep = MagicMock()
        sweep.run_once = AsyncMock(side_effect=[RuntimeError("boom"), 3])
        scheduler = SweepScheduler(sweep, interval_seconds=3600, logger=MagicMock())

        assert await scheduler.run_cycle() is None
        assert await scheduler.run_cycle() == 3
        assert scheduler.runs == 2

    @pytest.mark.asyncio
    async def test_runs_on_start_then_waits(self) -> None:
        sweep = MagicMock()
        sweep.run_once = AsyncMock(return_value=0)
        scheduler = SweepScheduler(sweep, interval_seconds=3600, run_on_start=True, logger=MagicMock())

        scheduler.start()
        for _ in range(5):
            await asyncio.sleep(0)
        await scheduler.stop()

        sweep.run_once.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_short_interval_repeats(self) -> None:
        sweep = MagicMock()
        sweep.run_once = AsyncMock(return_value=0)
        scheduler = SweepScheduler(sweep, interval_seconds=0.01, run_on_start=False, logger=MagicMock())

        scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert sweep.run_once.await_count >= 2

    @pytest.mark.asyncio
    async def test_stop_without_start(self) -> None:
        scheduler = SweepScheduler(MagicMock(), interval_seconds=1, logger=MagicMock())
        await scheduler.stop()


class TestPurge:
    @pytest.mark.asyncio
    async def test_purge_before_cutoff(self, database) -> None:
        cutoff = datetime(2025, 3, 18, tzinfo=timezone.utc)
        for n, created_at in enumerate(
            [cutoff - timedelta(days=30), cutoff - timedelta(seconds=1), cutoff, cutoff + timedelta(days=1)]
        ):
            await add_event(database, created_at, media_url=f"https://m/{n}", tweet_url=f"https://x/{n}")

        counts = await purge_before(database, DEFAULT_FINGERPRINT, cutoff)

        assert counts == {"before": 4, "deleted": 2, "after": 2}
        assert await count_rows(database) == 2


class TestRekeying:
    @pytest.mark.asyncio
    async def test_stale_digest_is_rewritten(self, database) -> None:
        wide = FingerprintSpec(("media_url", "tweet_url", "ip"))
        legacy = wide.digest({"media_url": "https://m/1", "tweet_url": "https://x/1", "ip": "203.0.113.7"})
        row = await add_event(database, T0, fingerprint=legacy)

        await ReconciliationSweep(database, DEFAULT_FINGERPRINT, logger=MagicMock()).run_once()

        async with database() as session:
            stored = await session.get(WebhookEvent, row.id)
        assert stored is not None
        assert stored.fingerprint == DEFAULT_FINGERPRINT.digest(stored)

    @pytest.mark.asyncio
    async def test_survivor_of_collapsed_group_is_rekeyed(self, database) -> None:
        await add_event(database, T0, fingerprint="a" * 64, user_id="older")
        newest = await add_event(database, T0 + timedelta(minutes=1), fingerprint="b" * 64, user_id="newer")
        logger = MagicMock()

        await ReconciliationSweep(database, DEFAULT_FINGERPRINT, logger=logger).run_once()

        async with database() as session:
            stored = await session.get(WebhookEvent, newest.id)
        assert stored is not None
        assert stored.fingerprint == DEFAULT_FINGERPRINT.digest(stored)
        assert logger.info.call_args.kwargs["deleted"] == 1
        assert logger.info.call_args.kwargs["rekeyed"] == 1

    @pytest.mark.asyncio
    async def test_current_digests_are_left_alone(self, database) -> None:
        await add_event(database, T0)
        await add_event(database, T0, media_url="https://m/2", tweet_url="https://x/2")
        logger = MagicMock()

        await ReconciliationSweep(database, DEFAULT_FINGERPRINT, logger=logger).run_once()

        assert logger.info.call_args.kwargs["rekeyed"] == 0
