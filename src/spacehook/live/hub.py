"""Live fan-out hub.

Tracks every connected dashboard subscriber and pushes each accepted webhook
to all of them. The hub is owned by the application (``app.state.hub``), not
a module global, so tests build their own.

There is no replay and no backlog: a subscriber that falls behind or whose
transport fails is dropped on the spot and never affects the others.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog


class SubscriberTransportError(Exception):
    """A push to one subscriber failed; that subscriber gets dropped."""


class Subscriber(Protocol):
    id: str

    async def send(self, message: str) -> None: ...

    def close(self) -> None: ...


@dataclass(eq=False)
class QueueSubscriber:
    """Subscriber backed by a bounded queue, drained by the SSE or WebSocket endpoint."""

    maxsize: int = 100
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    connected_at: float = field(default_factory=time.time)
    messages_sent: int = 0

    def __post_init__(self) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=self.maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, message: str) -> None:
        if self._closed:
            raise SubscriberTransportError("subscriber closed")
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull as exc:
            raise SubscriberTransportError("subscriber queue full") from exc
        self.messages_sent += 1

    async def get(self) -> str | None:
        """Next message, or None once the subscriber has been closed."""
        return await self._queue.get()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Wake the reader: pending messages are discarded on close
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)


class FanoutHub:
    """Registry of live subscribers.

    Safe for asyncio: every mutation happens on the event loop thread and
    ``publish`` iterates over a snapshot.
    """

    def __init__(
        self,
        queue_size: int = 100,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._subscribers: dict[str, Subscriber] = {}
        self.queue_size = queue_size
        self.log = logger or structlog.get_logger()
        self.published = 0
        self.dropped = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, subscriber: Subscriber | None = None) -> Subscriber:
        """Register a subscriber (a fresh queue-backed one by default) and return its handle."""
        if subscriber is None:
            subscriber = QueueSubscriber(maxsize=self.queue_size)
        self._subscribers[subscriber.id] = subscriber
        self.log.info("subscriber_connected", subscriber_id=subscriber.id, subscribers=len(self._subscribers))
        return subscriber

    def unsubscribe(self, handle: Subscriber | str) -> bool:
        """Remove a subscriber. Unknown handles are a no-op."""
        sub_id = handle if isinstance(handle, str) else handle.id
        subscriber = self._subscribers.pop(sub_id, None)
        if subscriber is None:
            return False
        subscriber.close()
        self.log.info("subscriber_disconnected", subscriber_id=sub_id, subscribers=len(self._subscribers))
        return True

    async def publish(self, event: dict[str, Any]) -> int:
        """Push one event to every registered subscriber.

        Returns the number of subscribers that took the message. Never raises
        because of a subscriber failure.
        """
        subscribers = list(self._subscribers.values())
        if not subscribers:
            return 0

        message = json.dumps(event, separators=(",", ":"))
        results = await asyncio.gather(
            *(sub.send(message) for sub in subscribers),
            return_exceptions=True,
        )

        sent = 0
        for sub, outcome in zip(subscribers, results, strict=True):
            if isinstance(outcome, BaseException):
                self.dropped += 1
                self.log.warning("subscriber_dropped", subscriber_id=sub.id, reason=str(outcome))
                self.unsubscribe(sub)
            else:
                sent += 1

        self.published += 1
        return sent

    def close_all(self) -> None:
        for sub_id in list(self._subscribers):
            self.unsubscribe(sub_id)

    def get_stats(self) -> dict[str, int]:
        return {
            "subscribers": len(self._subscribers),
            "published": self.published,
            "dropped": self.dropped,
        }
