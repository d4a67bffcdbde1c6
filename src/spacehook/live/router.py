"""Live push endpoints: Server-Sent Events and WebSocket.

Both carry one JSON object per message: the public fields of an accepted
webhook. There is no replay; clients call ``GET /api/webhooks`` on
(re)connect to catch up.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable

import structlog
from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from spacehook.config import Settings
from spacehook.dependencies import get_app_settings, get_hub
from spacehook.live.hub import FanoutHub, QueueSubscriber

logger = structlog.get_logger()

router = APIRouter(tags=["Live"])


def sse_frame(data: str) -> str:
    return f"data: {data}\n\n"


async def sse_stream(
    hub: FanoutHub,
    subscriber: QueueSubscriber,
    is_disconnected: Callable[[], Awaitable[bool]],
    keepalive_seconds: float,
) -> AsyncIterator[str]:
    """Drain a subscriber into SSE frames until the client goes away.

    A comment frame is sent every ``keepalive_seconds`` of silence so that a
    dead peer shows up as a failed write or a disconnect.
    """
    try:
        yield ": connected\n\n"
        while True:
            try:
                message = await asyncio.wait_for(subscriber.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                if await is_disconnected():
                    break
                yield ": keepalive\n\n"
                continue
            if message is None:
                # Dropped by the hub (stalled or closed)
                break
            yield sse_frame(message)
    finally:
        hub.unsubscribe(subscriber)


@router.get("/api/events")
async def event_stream(
    request: Request,
    hub: FanoutHub = Depends(get_hub),
    settings: Settings = Depends(get_app_settings),
) -> StreamingResponse:
    """Persistent SSE stream of accepted webhooks."""
    subscriber = hub.subscribe()
    return StreamingResponse(
        sse_stream(hub, subscriber, request.is_disconnected, settings.sse_keepalive_seconds),  # type: ignore[arg-type]
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/api/events/stats")
async def event_stream_stats(hub: FanoutHub = Depends(get_hub)) -> dict[str, int]:
    """Live subscriber statistics (for monitoring)."""
    return hub.get_stats()


async def forward_events(hub: FanoutHub, websocket: WebSocket, subscriber: QueueSubscriber) -> None:
    """Copy queued events onto the socket until the hub drops the subscriber.

    Writes happen here, off the publish path, so a slow socket only fills its
    own queue.
    """
    try:
        while True:
            message = await subscriber.get()
            if message is None:
                break
            await websocket.send_text(message)
    except Exception:
        logger.warning("ws_send_failed", subscriber_id=subscriber.id, exc_info=True)
        hub.unsubscribe(subscriber)
        return
    # Dropped by the hub; ask the client to reconnect and catch up
    try:
        await websocket.close(code=1013)
    except RuntimeError:
        pass


@router.websocket("/ws/events")
async def websocket_events(websocket: WebSocket) -> None:
    """WebSocket variant of the live stream.

    Protocol:
        Server -> Client:
            {...webhook...}            one per accepted event
            {"type": "pong"}
        Client -> Server:
            {"action": "ping"}
    """
    hub: FanoutHub = websocket.app.state.hub
    await websocket.accept()
    subscriber: QueueSubscriber = hub.subscribe()  # type: ignore[assignment]
    forwarder = asyncio.create_task(forward_events(hub, websocket, subscriber))

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue

            if isinstance(msg, dict) and msg.get("action") == "ping":
                await websocket.send_json({"type": "pong"})
            else:
                await websocket.send_json({"type": "error", "message": "Unknown action"})
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("ws_error", subscriber_id=subscriber.id)
    finally:
        forwarder.cancel()
        hub.unsubscribe(subscriber)
