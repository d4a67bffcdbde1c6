"""Stats aggregation over the event store.

Windows (all UTC):

- today:     midnight -> now, against the whole of yesterday
- week:      last 7 days, against the 7 days before
- month:     1st of this month -> now, against the whole previous month
- rolling7:  average per day over the last 7 days, against the 7 before
- rolling30: average per day over the last 30 days, against the 30 before

Percentage change is None whenever the previous value is zero.
Windowed stats are cached in Redis for a few seconds when Redis is configured.
"""

from __future__ import annotations

import json
from datetime import date, datetime, time, timedelta, timezone
from typing import Literal

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from spacehook.db.models import ActiveUserSnapshot, WebhookEvent
from spacehook.stats.schemas import (
    ActiveUserPoint,
    ActiveUserSeries,
    LocationBucket,
    WindowedStats,
    WindowStat,
)
from spacehook.webhooks.store import EventStore

logger = structlog.get_logger()

STATS_CACHE_KEY = "stats:windowed:{fingerprint}"

Timeframe = Literal["day", "week", "month"]

TIMEFRAME_DAYS: dict[str, int] = {"day": 1, "week": 7, "month": 30}


def percent_change(current: float, previous: float) -> float | None:
    """Period-over-period change in percent, or None when there is no baseline."""
    if previous == 0:
        return None
    return round((current - previous) / previous * 100, 2)


def start_of_day(now: datetime) -> datetime:
    return datetime.combine(now.date(), time.min, tzinfo=timezone.utc)


def start_of_month(day: date) -> datetime:
    return datetime(day.year, day.month, 1, tzinfo=timezone.utc)


def previous_month_start(day: date) -> datetime:
    if day.month == 1:
        return datetime(day.year - 1, 12, 1, tzinfo=timezone.utc)
    return datetime(day.year, day.month - 1, 1, tzinfo=timezone.utc)


class StatsAggregator:
    """Read-only queries for the dashboard."""

    def __init__(
        self,
        store: EventStore,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.store = store
        self.log = logger or structlog.get_logger()

    @property
    def session(self) -> AsyncSession:
        return self.store.session

    async def count_between(self, start: datetime, end: datetime) -> int:
        return await self.store.count(WebhookEvent.created_at >= start, WebhookEvent.created_at < end)

    async def count_distinct_fingerprints(self) -> int:
        return await self.store.count_distinct()

    async def _bucket(self, start: datetime, end: datetime, prev_start: datetime, prev_end: datetime) -> WindowStat:
        current = await self.count_between(start, end)
        previous = await self.count_between(prev_start, prev_end)
        return WindowStat(current=current, previous=previous, change=percent_change(current, previous))

    async def _rolling(self, now: datetime, days: int) -> WindowStat:
        span = timedelta(days=days)
        current = await self.count_between(now - span, now) / days
        previous = await self.count_between(now - 2 * span, now - span) / days
        return WindowStat(
            current=round(current, 2),
            previous=round(previous, 2),
            change=percent_change(current, previous),
        )

    async def windowed_stats(self, now: datetime | None = None) -> WindowedStats:
        if now is None:
            now = datetime.now(timezone.utc)
        # Upper bound is exclusive; nudge it so a row stamped exactly "now" counts
        upper = now + timedelta(microseconds=1)

        midnight = start_of_day(now)
        month_start = start_of_month(now.date())
        week = timedelta(days=7)

        return WindowedStats(
            today=await self._bucket(midnight, upper, midnight - timedelta(days=1), midnight),
            week=await self._bucket(now - week, upper, now - 2 * week, now - week),
            month=await self._bucket(month_start, upper, previous_month_start(now.date()), month_start),
            rolling7=await self._rolling(upper, 7),
            rolling30=await self._rolling(upper, 30),
            total=await self.count_distinct_fingerprints(),
            generated_at=now,
        )

    async def location_histogram(self, timeframe: Timeframe = "day", now: datetime | None = None) -> list[LocationBucket]:
        """Events per (city, region, country) over the lookback window, busiest first."""
        if now is None:
            now = datetime.now(timezone.utc)
        since = now - timedelta(days=TIMEFRAME_DAYS[timeframe])

        events = func.count().label("events")
        stmt = (
            select(WebhookEvent.city, WebhookEvent.region, WebhookEvent.country, events)
            .where(WebhookEvent.created_at >= since)
            .group_by(WebhookEvent.city, WebhookEvent.region, WebhookEvent.country)
            .order_by(events.desc(), WebhookEvent.city.asc())
        )
        result = await self.session.execute(stmt)
        return [
            LocationBucket(city=row.city, region=row.region, country=row.country, count=row.events)
            for row in result.all()
        ]

    async def active_users(self, days: int = 90, today: date | None = None) -> ActiveUserSeries:
        """Daily active-install series (oldest first) for the chart feed."""
        if today is None:
            today = datetime.now(timezone.utc).date()
        since = today - timedelta(days=days)
        result = await self.session.execute(
            select(ActiveUserSnapshot)
            .where(ActiveUserSnapshot.date >= since)
            .order_by(ActiveUserSnapshot.date.asc())
        )
        points = [ActiveUserPoint(date=row.date, users=row.user_count) for row in result.scalars().all()]
        return ActiveUserSeries(points=points, latest=points[-1].users if points else None)


async def get_windowed_stats_cached(
    aggregator: StatsAggregator,
    redis: aioredis.Redis | None,
    ttl_seconds: int,
) -> WindowedStats:
    """Windowed stats, served from Redis when a fresh copy exists."""
    if redis is None or ttl_seconds <= 0:
        return await aggregator.windowed_stats()

    cache_key = STATS_CACHE_KEY.format(fingerprint=aggregator.store.fingerprint)
    try:
        cached = await redis.get(cache_key)
    except RedisError:
        logger.warning("stats_cache_unavailable", exc_info=True)
        return await aggregator.windowed_stats()
    if cached:
        return WindowedStats.model_validate(json.loads(cached))

    stats = await aggregator.windowed_stats()
    try:
        await redis.setex(cache_key, ttl_seconds, stats.model_dump_json())
    except RedisError:
        logger.warning("stats_cache_write_failed", exc_info=True)
    return stats
