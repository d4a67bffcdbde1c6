"""Health, readiness, and version endpoints."""

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from spacehook.config import Settings
from spacehook.database import get_session
from spacehook.dependencies import get_app_settings
from spacehook.redis_client import get_optional_redis

logger = structlog.get_logger()

router = APIRouter()


async def _check_database(db: AsyncSession) -> str:
    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
    except Exception:
        logger.warning("health_database_unreachable", exc_info=True)
        return "error"
    return "ok"


@router.get("/health")
async def health(
    db: AsyncSession = Depends(get_session),
) -> JSONResponse:
    """Liveness plus storage connectivity: 200 when the database answers, 500 otherwise."""
    database = await _check_database(db)
    healthy = database == "ok"
    return JSONResponse(
        status_code=200 if healthy else 500,
        content={"status": "healthy" if healthy else "unhealthy", "database": database},
    )


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),
) -> dict[str, object]:
    """Readiness probe: checks DB and, when configured, Redis connectivity."""
    checks: dict[str, object] = {"database": await _check_database(db)}

    redis = get_optional_redis()
    if redis is None:
        checks["redis"] = "disabled"
    else:
        try:
            await redis.ping()
            checks["redis"] = "ok"
        except Exception:
            logger.warning("health_redis_unreachable", exc_info=True)
            checks["redis"] = "error"

    all_ok = all(v in ("ok", "disabled") for v in checks.values())
    return {"status": "ready" if all_ok else "degraded", "checks": checks}


@router.get("/version")
async def version(settings: Settings = Depends(get_app_settings)) -> dict[str, str]:
    """Return API version and environment."""
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
