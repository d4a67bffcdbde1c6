"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from spacehook.config import Settings, get_settings
from spacehook.database import close_db, get_session_factory, init_db
from spacehook.health.router import router as health_router
from spacehook.live.hub import FanoutHub
from spacehook.live.router import router as live_router
from spacehook.maintenance.sweep import ReconciliationSweep, SweepScheduler
from spacehook.middleware import setup_middleware
from spacehook.redis_client import close_redis, init_redis
from spacehook.stats.router import router as stats_router
from spacehook.webhooks.fingerprint import FingerprintSpec
from spacehook.webhooks.router import router as webhooks_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings: Settings = app.state.settings
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    # Periodic reconciliation sweep (once now, then every interval)
    scheduler = SweepScheduler(
        ReconciliationSweep(get_session_factory(), app.state.fingerprint),
        interval_seconds=settings.sweep_interval_seconds,
        run_on_start=settings.sweep_on_startup,
    )
    scheduler.start()
    app.state.sweep_scheduler = scheduler
    logger.info("app_started", fingerprint=str(app.state.fingerprint), environment=settings.environment)

    yield

    await scheduler.stop()
    app.state.hub.close_all()
    await close_db()
    await close_redis()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Spacehook API",
        description="Webhook receiver and live activity feed for Space downloads",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.hub = FanoutHub(queue_size=settings.subscriber_queue_size)
    app.state.fingerprint = FingerprintSpec.from_names(settings.fingerprint_fields)

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(webhooks_router)
    app.include_router(stats_router)
    app.include_router(live_router)

    return app


def run() -> None:
    """Console entry point: serve with uvicorn."""
    import uvicorn

    uvicorn.run("spacehook.main:create_app", factory=True, host="0.0.0.0", port=5000)  # noqa: S104
