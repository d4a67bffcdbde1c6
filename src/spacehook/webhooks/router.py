"""Webhook endpoints: ingestion, catch-up feed and total count."""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from spacehook.config import Settings
from spacehook.database import get_session
from spacehook.dependencies import get_app_settings, get_fingerprint, get_hub
from spacehook.live.hub import FanoutHub
from spacehook.webhooks import errors
from spacehook.webhooks.fingerprint import FingerprintSpec
from spacehook.webhooks.guard import DuplicateGuard
from spacehook.webhooks.schemas import WebhookOut, to_public
from spacehook.webhooks.service import IngestionService
from spacehook.webhooks.store import EventStore

logger = structlog.get_logger()

router = APIRouter(prefix="/api", tags=["Webhooks"])


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    db: AsyncSession = Depends(get_session),
    hub: FanoutHub = Depends(get_hub),
    fingerprint: FingerprintSpec = Depends(get_fingerprint),
    settings: Settings = Depends(get_app_settings),
) -> JSONResponse:
    """Receive one download event or an array of them.

    Single item: 201 created, 409 duplicate (with the original record),
    400 invalid, 500 failed. Batch: one result per item in input order,
    201 when every item was created and 207 otherwise.
    """
    request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())

    store = EventStore(db, fingerprint)
    service = IngestionService(DuplicateGuard(store), hub, request_id=request_id)

    body = await request.body()
    try:
        results, is_batch = await service.ingest(body, max_items=settings.max_batch_size)
    except errors.ParseError as exc:
        logger.info("webhook_unparseable", error=str(exc))
        return JSONResponse(
            status_code=exc.status_code,
            content={"status": "invalid", "statusCode": exc.status_code, "message": str(exc)},
        )

    payloads = [r.model_dump(mode="json", by_alias=True, exclude_none=True) for r in results]
    if not is_batch:
        return JSONResponse(status_code=results[0].status_code, content=payloads[0])

    all_created = all(r.status == "created" for r in results)
    return JSONResponse(status_code=201 if all_created else 207, content=payloads)


@router.get("/webhooks", response_model=list[WebhookOut])
async def list_webhooks(
    user_id: str | None = Query(None, alias="userId"),
    limit: int | None = Query(None, ge=1),
    db: AsyncSession = Depends(get_session),
    fingerprint: FingerprintSpec = Depends(get_fingerprint),
    settings: Settings = Depends(get_app_settings),
) -> list[dict]:
    """Most recent events, newest first, one per fingerprint (dashboard catch-up)."""
    cap = settings.feed_max_items
    rows = await EventStore(db, fingerprint).feed(user_id=user_id, limit=min(limit or cap, cap))
    return [to_public(row) for row in rows]


@router.get("/webhooks/count")
async def count_webhooks(
    db: AsyncSession = Depends(get_session),
    fingerprint: FingerprintSpec = Depends(get_fingerprint),
) -> int:
    """Total number of distinct downloads."""
    return await EventStore(db, fingerprint).count_distinct()
