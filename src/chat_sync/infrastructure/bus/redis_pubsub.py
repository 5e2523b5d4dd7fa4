"""Redis Pub/Sub: publish side plus a per-channel listener."""
from __future__ import annotations

import logging
from typing import Any, AsyncIterator

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from chat_sync.application.exceptions import NetworkError
from chat_sync.infrastructure.bus.serializer import deserialize_event, serialize_event

logger = logging.getLogger(__name__)


class RedisPubSubPublisher:
    """Implements application.ports.bus.EventPublisher."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    async def publish(self, channel: str, payload: dict[str, Any]) -> None:
        raw = serialize_event(payload.get("event_type", "unknown"), payload)
        try:
            await self._redis.publish(channel, raw)
        except RedisError as exc:
            raise NetworkError(f"Publish to {channel} failed: {exc}") from exc


class RedisChannelListener:
    """Decoded events from one channel. ``open`` must be awaited before iterating."""

    def __init__(self, redis: aioredis.Redis, channel: str) -> None:
        self._redis = redis
        self._channel = channel
        self._pubsub: Any = None

    async def open(self) -> None:
        self._pubsub = self._redis.pubsub()
        try:
            await self._pubsub.subscribe(self._channel)
        except RedisError as exc:
            await self._pubsub.aclose()
            self._pubsub = None
            raise NetworkError(f"Subscribe to {self._channel} failed: {exc}") from exc
        logger.debug("Listening on channel=%s", self._channel)

    async def events(self) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        if self._pubsub is None:
            raise RuntimeError("listener is not open")
        try:
            async for message in self._pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    yield deserialize_event(message["data"])
                except (ValueError, KeyError):
                    logger.warning("Malformed event on channel=%s", self._channel)
        except RedisError as exc:
            raise NetworkError(f"Channel {self._channel} failed: {exc}") from exc

    async def close(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await pubsub.unsubscribe(self._channel)
        finally:
            await pubsub.aclose()
        logger.debug("Stopped listening on channel=%s", self._channel)
