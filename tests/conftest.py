"""Shared test fixtures.

Tests run against a throwaway SQLite file (aiosqlite) per test; Redis is
left unconfigured so the stats cache and rate limiter stay disabled.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from datetime import datetime
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spacehook.config import get_settings
from spacehook.database import close_db, get_engine, get_session_factory, init_db
from spacehook.db.base import Base
from spacehook.db.models import WebhookEvent
from spacehook.main import create_app
from spacehook.webhooks.fingerprint import DEFAULT_FINGERPRINT


def make_payload(n: int = 1, **overrides: Any) -> dict[str, Any]:  # noqa: ANN401
    """A valid wire-format webhook body."""
    payload = {
        "userId": f"user-{n}",
        "mediaUrl": f"https://m/{n}",
        "mediaType": "audio",
        "spaceName": f"Space {n}",
        "tweetUrl": f"https://x/{n}",
        "ip": "203.0.113.7",
        "city": "Berlin",
        "region": "Berlin",
        "country": "DE",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def database_url(tmp_path, monkeypatch) -> Generator[str, None, None]:
    url = f"sqlite+aiosqlite:///{tmp_path / 'spacehook.db'}"
    monkeypatch.setenv("SPACEHOOK_DATABASE_URL", url)
    monkeypatch.delenv("SPACEHOOK_REDIS_URL", raising=False)
    monkeypatch.delenv("SPACEHOOK_FINGERPRINT_FIELDS", raising=False)
    monkeypatch.setenv("SPACEHOOK_LOG_FORMAT", "console")
    get_settings.cache_clear()
    yield url
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def database(database_url: str) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Initialized engine with the schema created; yields the session factory."""
    await init_db(database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield get_session_factory()
    await close_db()


@pytest_asyncio.fixture
async def app(database) -> FastAPI:
    return create_app()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the ASGI app (no lifespan: no background sweep)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def add_event(
    factory: async_sessionmaker[AsyncSession],
    created_at: datetime,
    fingerprint: str | None = None,
    **fields: Any,  # noqa: ANN401
) -> WebhookEvent:
    """Insert a row directly with an explicit timestamp (and optionally a raw fingerprint digest)."""
    values = {
        "user_id": "user-1",
        "media_url": "https://m/1",
        "media_type": "audio",
        "space_name": "Space 1",
        "tweet_url": "https://x/1",
        "ip": "203.0.113.7",
        "city": "Berlin",
        "region": "Berlin",
        "country": "DE",
    }
    values.update(fields)
    row = WebhookEvent(
        **values,
        fingerprint=fingerprint or DEFAULT_FINGERPRINT.digest(values),
        created_at=created_at,
    )
    async with factory() as session:
        session.add(row)
        await session.commit()
    return row


async def count_rows(factory: async_sessionmaker[AsyncSession]) -> int:
    from sqlalchemy import func, select

    async with factory() as session:
        result = await session.execute(select(func.count()).select_from(WebhookEvent))
        return int(result.scalar_one())
