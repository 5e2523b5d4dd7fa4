"""ConversationStore backed by PostgreSQL, with change fan-out over Redis.

Every write publishes a notice on ``{prefix}.{conversation_id}``. A live
subscription listens on that channel and re-queries its window for each
notice, so subscribers always receive a complete snapshot.
"""
from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Sequence

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chat_sync.application.dto.message import MessageFilter
from chat_sync.application.exceptions import NetworkError
from chat_sync.application.ports.bus import EventPublisher
from chat_sync.domain.entities.message import Message
from chat_sync.infrastructure.bus.redis_pubsub import (
    RedisChannelListener,
    RedisPubSubPublisher,
)
from chat_sync.infrastructure.db.repositories.message import (
    MessageReaderRepo,
    MessageWriterRepo,
)

logger = logging.getLogger(__name__)


class SqlConversationStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: aioredis.Redis,
        channel_prefix: str,
    ) -> None:
        self._session_factory = session_factory
        self._redis = redis
        self._publisher: EventPublisher = RedisPubSubPublisher(redis)
        self._channel_prefix = channel_prefix

    def channel_for(self, conversation_id: str) -> str:
        return f"{self._channel_prefix}.{conversation_id}"

    # -- reads ------------------------------------------------------------

    async def fetch_page(
        self,
        conversation_id: str,
        page_size: int,
        before: int | None = None,
        *,
        message_filter: MessageFilter,
        before_id: str | None = None,
    ) -> list[Message]:
        try:
            async with self._session_factory() as session:
                return await MessageReaderRepo(session).list_page(
                    conversation_id, message_filter, limit=page_size, before=before,
                    before_id=before_id,
                )
        except SQLAlchemyError as exc:
            raise NetworkError(f"Fetching messages failed: {exc}") from exc

    async def subscribe(
        self, conversation_id: str, message_filter: MessageFilter
    ) -> RedisLiveSubscription:
        listener = RedisChannelListener(self._redis, self.channel_for(conversation_id))
        await listener.open()
        return RedisLiveSubscription(self, listener, conversation_id, message_filter)

    # -- writes -----------------------------------------------------------

    async def commit_message(self, message: Message) -> Message:
        try:
            async with self._session_factory() as session:
                committed = await MessageWriterRepo(session).create(message)
                await session.commit()
        except SQLAlchemyError as exc:
            raise NetworkError(f"Committing message failed: {exc}") from exc
        await self._notify(committed.conversation_id, "message.created", committed.id)
        return committed

    async def update_message(self, message_id: str, fields: dict[str, Any]) -> None:
        try:
            async with self._session_factory() as session:
                conversation_id = await MessageWriterRepo(session).update_fields(
                    message_id, fields,
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise NetworkError(f"Updating message failed: {exc}") from exc
        await self._notify(conversation_id, "message.updated", message_id)

    async def delete_message(self, message_id: str) -> None:
        try:
            async with self._session_factory() as session:
                conversation_id = await MessageWriterRepo(session).delete(message_id)
                await session.commit()
        except SQLAlchemyError as exc:
            raise NetworkError(f"Deleting message failed: {exc}") from exc
        await self._notify(conversation_id, "message.deleted", message_id)

    async def batch_mark_read(self, message_ids: Sequence[str], reader_id: str) -> None:
        try:
            async with self._session_factory() as session:
                changed = await MessageWriterRepo(session).add_reader(message_ids, reader_id)
                await session.commit()
        except SQLAlchemyError as exc:
            raise NetworkError(f"Marking messages read failed: {exc}") from exc
        for conversation_id in sorted(changed):
            await self._notify(conversation_id, "message.read", None)

    async def _notify(self, conversation_id: str, event_type: str, message_id: str | None) -> None:
        # The write is already durable; a lost notice only delays live views.
        try:
            await self._publisher.publish(
                self.channel_for(conversation_id),
                {
                    "event_type": event_type,
                    "conversation_id": conversation_id,
                    "message_id": message_id,
                },
            )
        except NetworkError as exc:
            logger.warning("Change notice for %s not published: %s", conversation_id, exc.detail)


class RedisLiveSubscription:
    """Yields the live window once on start and again after every change notice."""

    def __init__(
        self,
        store: SqlConversationStore,
        listener: RedisChannelListener,
        conversation_id: str,
        message_filter: MessageFilter,
    ) -> None:
        self._store = store
        self._listener = listener
        self._conversation_id = conversation_id
        self._filter = message_filter
        self._closed = False

    def __aiter__(self) -> AsyncIterator[list[Message]]:
        return self._snapshots()

    async def _snapshots(self) -> AsyncIterator[list[Message]]:
        yield await self._window()
        async for event_type, _data in self._listener.events():
            if self._closed:
                return
            logger.debug("%s on %s", event_type, self._conversation_id)
            yield await self._window()

    async def _window(self) -> list[Message]:
        return await self._store.fetch_page(
            self._conversation_id,
            self._filter.limit,
            None,
            message_filter=self._filter,
        )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._listener.close()
        except RedisError as exc:
            raise NetworkError(f"Closing subscription failed: {exc}") from exc
