"""Integration tests for the live endpoints (WebSocket and subscriber stats)."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient

from spacehook.live.hub import FanoutHub
from spacehook.live.router import forward_events
from spacehook.main import create_app


@pytest.fixture
def ws_client(database_url: str) -> TestClient:
    # No lifespan: the WebSocket path needs neither the database nor the sweep
    return TestClient(create_app())


def test_ping_pong(ws_client: TestClient) -> None:
    hub = ws_client.app.state.hub
    with ws_client.websocket_connect("/ws/events") as ws:
        ws.send_json({"action": "ping"})
        assert ws.receive_json() == {"type": "pong"}
        assert hub.subscriber_count == 1
    assert hub.subscriber_count == 0


def test_published_event_reaches_socket(ws_client: TestClient) -> None:
    hub = ws_client.app.state.hub
    with ws_client.websocket_connect("/ws/events") as ws:
        ws.send_json({"action": "ping"})
        assert ws.receive_json() == {"type": "pong"}

        assert ws.portal.call(hub.publish, {"id": "evt-1"}) == 1
        assert ws.receive_json() == {"id": "evt-1"}


def test_unknown_action(ws_client: TestClient) -> None:
    with ws_client.websocket_connect("/ws/events") as ws:
        ws.send_json({"action": "subscribe", "channel": "everything"})
        assert ws.receive_json() == {"type": "error", "message": "Unknown action"}


def test_invalid_json(ws_client: TestClient) -> None:
    with ws_client.websocket_connect("/ws/events") as ws:
        ws.send_text("{nope")
        assert ws.receive_json() == {"type": "error", "message": "Invalid JSON"}


@pytest.mark.asyncio
async def test_subscriber_stats(app, client: AsyncClient) -> None:  # noqa: ANN001
    app.state.hub.subscribe()

    response = await client.get("/api/events/stats")

    assert response.status_code == 200
    assert response.json() == {"subscribers": 1, "published": 0, "dropped": 0}


class TestForwardEvents:
    @pytest.mark.asyncio
    async def test_stalled_socket_does_not_hold_publish(self) -> None:
        hub = FanoutHub(logger=MagicMock())
        release = asyncio.Event()

        async def stall(message: str) -> None:
            await release.wait()

        websocket = AsyncMock()
        websocket.send_text = AsyncMock(side_effect=stall)
        subscriber = hub.subscribe()
        forwarder = asyncio.create_task(forward_events(hub, websocket, subscriber))

        # Both publishes return at once although the first write never completes
        assert await asyncio.wait_for(hub.publish({"id": "1"}), timeout=0.5) == 1
        assert await asyncio.wait_for(hub.publish({"id": "2"}), timeout=0.5) == 1
        assert websocket.send_text.await_count == 1

        release.set()
        hub.close_all()
        await asyncio.wait_for(forwarder, timeout=1)
        websocket.close.assert_awaited_once_with(code=1013)

    @pytest.mark.asyncio
    async def test_send_failure_unsubscribes(self) -> None:
        hub = FanoutHub(logger=MagicMock())
        websocket = AsyncMock()
        websocket.send_text = AsyncMock(side_effect=RuntimeError("socket gone"))
        subscriber = hub.subscribe()

        await hub.publish({"id": "1"})
        await asyncio.wait_for(forward_events(hub, websocket, subscriber), timeout=1)

        assert hub.subscriber_count == 0
        websocket.close.assert_not_awaited()
