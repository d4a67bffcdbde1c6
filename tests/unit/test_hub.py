"""Unit tests for the live fan-out hub."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from spacehook.live.hub import FanoutHub, QueueSubscriber, SubscriberTransportError


@pytest.fixture
def hub() -> FanoutHub:
    """Fresh hub for each test."""
    return FanoutHub(queue_size=3, logger=MagicMock())


def _failing_subscriber(sub_id: str) -> MagicMock:
    sub = MagicMock()
    sub.id = sub_id
    sub.send = AsyncMock(side_effect=SubscriberTransportError("connection reset"))
    return sub


class TestSubscribe:
    def test_subscribe_creates_queue_subscriber(self, hub: FanoutHub) -> None:
        sub = hub.subscribe()
        assert isinstance(sub, QueueSubscriber)
        assert sub.maxsize == 3
        assert hub.subscriber_count == 1

    def test_unsubscribe_removes_and_closes(self, hub: FanoutHub) -> None:
        sub = hub.subscribe()
        assert hub.unsubscribe(sub) is True
        assert hub.subscriber_count == 0
        assert sub.closed

    def test_unsubscribe_unknown_is_noop(self, hub: FanoutHub) -> None:
        assert hub.unsubscribe("missing") is False

    def test_unsubscribe_by_id(self, hub: FanoutHub) -> None:
        sub = hub.subscribe()
        assert hub.unsubscribe(sub.id) is True


class TestPublish:
    @pytest.mark.asyncio
    async def test_no_subscribers(self, hub: FanoutHub) -> None:
        assert await hub.publish({"id": "a"}) == 0

    @pytest.mark.asyncio
    async def test_every_subscriber_receives(self, hub: FanoutHub) -> None:
        first = hub.subscribe()
        second = hub.subscribe()
        sent = await hub.publish({"id": "a", "city": "Berlin"})
        assert sent == 2
        for sub in (first, second):
            assert json.loads(await sub.get()) == {"id": "a", "city": "Berlin"}

    @pytest.mark.asyncio
    async def test_messages_keep_publish_order(self, hub: FanoutHub) -> None:
        sub = hub.subscribe()
        for n in range(3):
            await hub.publish({"n": n})
        received = [json.loads(await sub.get())["n"] for _ in range(3)]
        assert received == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_failed_subscriber_is_dropped(self, hub: FanoutHub) -> None:
        healthy = hub.subscribe()
        broken = hub.subscribe(_failing_subscriber("broken"))

        sent = await hub.publish({"id": "a"})

        assert sent == 1
        assert hub.subscriber_count == 1
        broken.close.assert_called_once()
        assert json.loads(await healthy.get()) == {"id": "a"}
        assert hub.get_stats()["dropped"] == 1

    @pytest.mark.asyncio
    async def test_stalled_subscriber_is_dropped(self, hub: FanoutHub) -> None:
        stalled = hub.subscribe()
        for n in range(3):
            await hub.publish({"n": n})
        fresh = hub.subscribe()

        sent = await hub.publish({"n": 3})

        assert sent == 1
        assert stalled.closed
        assert hub.subscriber_count == 1
        assert json.loads(await fresh.get()) == {"n": 3}

    @pytest.mark.asyncio
    async def test_closed_subscriber_gets_none(self, hub: FanoutHub) -> None:
        sub = hub.subscribe()
        await hub.publish({"n": 1})
        hub.unsubscribe(sub)
        # Pending messages are discarded on close
        assert await sub.get() is None

    @pytest.mark.asyncio
    async def test_stats_count_publishes(self, hub: FanoutHub) -> None:
        hub.subscribe()
        await hub.publish({"n": 1})
        await hub.publish({"n": 2})
        assert hub.get_stats() == {"subscribers": 1, "published": 2, "dropped": 0}


class TestCloseAll:
    def test_close_all(self, hub: FanoutHub) -> None:
        subs = [hub.subscribe() for _ in range(3)]
        hub.close_all()
        assert hub.subscriber_count == 0
        assert all(s.closed for s in subs)


class TestQueueSubscriber:
    @pytest.mark.asyncio
    async def test_send_after_close_raises(self) -> None:
        sub = QueueSubscriber(maxsize=1)
        sub.close()
        with pytest.raises(SubscriberTransportError):
            await sub.send("x")

    @pytest.mark.asyncio
    async def test_full_queue_raises(self) -> None:
        sub = QueueSubscriber(maxsize=1)
        await sub.send("x")
        with pytest.raises(SubscriberTransportError, match="full"):
            await sub.send("y")
        assert sub.messages_sent == 1
