"""Stats endpoints: windowed counts, location histogram and active installs."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from spacehook.config import Settings
from spacehook.database import get_session
from spacehook.dependencies import get_app_settings, get_fingerprint
from spacehook.redis_client import get_optional_redis
from spacehook.stats.schemas import ActiveUserSeries, LocationBucket, WindowedStats
from spacehook.stats.service import StatsAggregator, Timeframe, get_windowed_stats_cached
from spacehook.webhooks.fingerprint import FingerprintSpec
from spacehook.webhooks.store import EventStore

router = APIRouter(prefix="/api", tags=["Stats"])


def _aggregator(db: AsyncSession, fingerprint: FingerprintSpec) -> StatsAggregator:
    return StatsAggregator(EventStore(db, fingerprint))


@router.get("/webhooks/stats", response_model=WindowedStats)
async def windowed_stats(
    db: AsyncSession = Depends(get_session),
    fingerprint: FingerprintSpec = Depends(get_fingerprint),
    settings: Settings = Depends(get_app_settings),
) -> WindowedStats:
    """Today / week / month counts plus rolling daily averages (cached briefly in Redis)."""
    return await get_windowed_stats_cached(
        _aggregator(db, fingerprint),
        get_optional_redis(),
        settings.stats_cache_ttl_seconds,
    )


@router.get("/webhooks/locations", response_model=list[LocationBucket])
async def location_histogram(
    timeframe: Timeframe = Query("day"),
    db: AsyncSession = Depends(get_session),
    fingerprint: FingerprintSpec = Depends(get_fingerprint),
) -> list[LocationBucket]:
    """Events grouped by (city, region, country) over the last day, week or month."""
    return await _aggregator(db, fingerprint).location_histogram(timeframe)


@router.get("/active-users", response_model=ActiveUserSeries)
async def active_users(
    days: int = Query(90, ge=1, le=3650),
    db: AsyncSession = Depends(get_session),
    fingerprint: FingerprintSpec = Depends(get_fingerprint),
) -> ActiveUserSeries:
    """Daily active installs for the growth chart."""
    return await _aggregator(db, fingerprint).active_users(days)
