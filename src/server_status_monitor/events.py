"""Live-update stream for UI mirroring.

Events are fanned out to in-process subscriber queues and, when a Redis
client is configured, mirrored to a Redis pub/sub channel. Delivery is
best-effort: slow subscribers lose their oldest events and disconnected
consumers get no replay.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

TARGET_UPDATED = "target-updated"
INCIDENT_OPENED = "incident-opened"
INCIDENT_RESOLVED = "incident-resolved"

DEFAULT_QUEUE_SIZE = 100


@dataclass(frozen=True)
class LiveEvent:
    """One event on the live-update stream."""

    type: str
    payload: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_json(self) -> str:
        """Serialize for the Redis mirror."""
        return json.dumps(
            {"type": self.type, "payload": self.payload, "timestamp": self.timestamp.isoformat()},
            default=str,
        )


class LiveUpdateBus:
    """Best-effort publisher of target and incident state changes.

    Example:
        ```python
        bus = LiveUpdateBus()
        queue = bus.subscribe()

        await bus.publish(TARGET_UPDATED, {"target_id": 1, "healthy": True})
        event = await queue.get()
        ```
    """

    def __init__(
        self,
        *,
        redis: Redis | None = None,
        redis_channel: str = "server-status-monitor:updates",
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self._redis = redis
        self._redis_channel = redis_channel
        self._queue_size = queue_size
        self._subscribers: set[asyncio.Queue[LiveEvent]] = set()

    @property
    def subscriber_count(self) -> int:
        """Number of attached in-process subscribers."""
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[LiveEvent]:
        """Attach a new subscriber and return its queue."""
        queue: asyncio.Queue[LiveEvent] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[LiveEvent]) -> None:
        """Detach a subscriber. Unknown queues are ignored."""
        self._subscribers.discard(queue)

    async def publish(self, event_type: str, payload: dict[str, Any]) -> LiveEvent:
        """Publish an event to every subscriber and the Redis mirror."""
        event = LiveEvent(type=event_type, payload=payload)

        for queue in list(self._subscribers):
            if queue.full():
                with contextlib.suppress(asyncio.QueueEmpty):
                    queue.get_nowait()
            queue.put_nowait(event)

        if self._redis is not None:
            try:
                await self._redis.publish(self._redis_channel, event.to_json())
            except RedisError as e:
                logger.warning("Failed to mirror %s event to Redis: %s", event_type, e)

        return event

    async def close(self) -> None:
        """Drop all subscribers and close the Redis connection."""
        self._subscribers.clear()
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except RedisError as e:
                logger.warning("Error closing Redis connection: %s", e)
            self._redis = None
