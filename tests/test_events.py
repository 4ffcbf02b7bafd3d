"""Tests for the live-update bus."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

from redis.exceptions import ConnectionError as RedisConnectionError

from server_status_monitor.events import (
    INCIDENT_OPENED,
    TARGET_UPDATED,
    LiveEvent,
    LiveUpdateBus,
)


class TestLiveEvent:
    """Tests for LiveEvent."""

    def test_to_json(self) -> None:
        event = LiveEvent(type=TARGET_UPDATED, payload={"target_id": 1})
        data = json.loads(event.to_json())

        assert data["type"] == "target-updated"
        assert data["payload"] == {"target_id": 1}
        assert "timestamp" in data


class TestLiveUpdateBus:
    """Tests for LiveUpdateBus."""

    async def test_publish_reaches_every_subscriber(self) -> None:
        bus = LiveUpdateBus()
        first = bus.subscribe()
        second = bus.subscribe()

        await bus.publish(INCIDENT_OPENED, {"incident_id": 3})

        assert (await first.get()).payload == {"incident_id": 3}
        assert (await second.get()).type == INCIDENT_OPENED

    async def test_publish_without_subscribers(self) -> None:
        event = await LiveUpdateBus().publish(TARGET_UPDATED, {})
        assert event.type == TARGET_UPDATED

    async def test_full_queue_drops_oldest(self) -> None:
        bus = LiveUpdateBus(queue_size=2)
        queue = bus.subscribe()

        for index in range(3):
            await bus.publish(TARGET_UPDATED, {"n": index})

        assert queue.qsize() == 2
        assert (await queue.get()).payload == {"n": 1}
        assert (await queue.get()).payload == {"n": 2}

    async def test_unsubscribe(self) -> None:
        bus = LiveUpdateBus()
        queue = bus.subscribe()
        bus.unsubscribe(queue)
        bus.unsubscribe(queue)

        await bus.publish(TARGET_UPDATED, {})

        assert bus.subscriber_count == 0
        assert queue.empty()

    async def test_redis_mirror(self) -> None:
        redis = AsyncMock()
        bus = LiveUpdateBus(redis=redis, redis_channel="updates")

        await bus.publish(TARGET_UPDATED, {"target_id": 1})

        channel, body = redis.publish.call_args.args
        assert channel == "updates"
        assert json.loads(body)["payload"] == {"target_id": 1}

    async def test_redis_failure_is_not_fatal(self) -> None:
        redis = AsyncMock()
        redis.publish.side_effect = RedisConnectionError("down")
        bus = LiveUpdateBus(redis=redis)
        queue = bus.subscribe()

        await bus.publish(TARGET_UPDATED, {"target_id": 1})

        assert queue.qsize() == 1

    async def test_close(self) -> None:
        redis = AsyncMock()
        bus = LiveUpdateBus(redis=redis)
        bus.subscribe()

        await bus.close()
        await bus.close()

        assert bus.subscriber_count == 0
        redis.aclose.assert_awaited_once()
