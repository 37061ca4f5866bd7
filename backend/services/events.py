"""
Report lifecycle events.

Events are pushed onto a Redis list so downstream consumers (notifications,
dashboards) can react to:
- report.queued
- report.completed
- report.failed

Publishing never fails the calling operation; errors are logged.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import uuid4

import redis.asyncio as redis

from config import get_redis_connection_kwargs

logger = logging.getLogger(__name__)

# Redis key prefixes
EVENT_QUEUE_KEY = "prism:events:queue"
EVENT_HISTORY_KEY = "prism:events:history:{owner_id}"
EVENT_HISTORY_TTL_SECONDS = 60 * 60 * 24 * 7  # 7 days


class EventPublisher(Protocol):
    async def publish(self, event_type: str, owner_id: str, data: dict[str, Any]) -> str: ...


def _build_event(event_type: str, owner_id: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": str(uuid4()),
        "type": event_type,
        "owner_id": owner_id,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class RedisEventPublisher:
    """Publishes events through an injected Redis client."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisEventPublisher":
        return cls(redis.from_url(url, **get_redis_connection_kwargs(decode_responses=True)))

    async def publish(self, event_type: str, owner_id: str, data: dict[str, Any]) -> str:
        event = _build_event(event_type, owner_id, data)
        payload = json.dumps(event)
        try:
            await self._client.rpush(EVENT_QUEUE_KEY, payload)
            history_key = EVENT_HISTORY_KEY.format(owner_id=owner_id)
            await self._client.rpush(history_key, payload)
            await self._client.expire(history_key, EVENT_HISTORY_TTL_SECONDS)
            logger.info("Emitted event %s for owner %s: %s", event_type, owner_id, event["id"])
        except Exception as e:
            logger.error("Failed to emit event %s: %s", event_type, e)
        return event["id"]

    async def aclose(self) -> None:
        await self._client.aclose()


class InMemoryEventPublisher:
    """Keeps events in a list. Used when Redis is not configured, and in tests."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def publish(self, event_type: str, owner_id: str, data: dict[str, Any]) -> str:
        event = _build_event(event_type, owner_id, data)
        self.events.append(event)
        logger.debug("Recorded event %s for owner %s", event_type, owner_id)
        return event["id"]

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [event for event in self.events if event["type"] == event_type]


def create_event_publisher(redis_url: str | None) -> EventPublisher:
    if redis_url:
        return RedisEventPublisher.from_url(redis_url)
    logger.info("REDIS_URL not set; report events kept in memory")
    return InMemoryEventPublisher()
