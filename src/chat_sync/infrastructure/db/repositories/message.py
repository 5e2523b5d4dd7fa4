from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy import delete, func, select, tuple_, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from chat_sync.application.dto.message import MessageFilter
from chat_sync.application.exceptions import NotFoundError, ValidationError
from chat_sync.domain.entities.message import Message
from chat_sync.infrastructure.db.mappers import message as mapper
from chat_sync.infrastructure.db.models.message import MessageModel

EDITABLE_FIELDS = frozenset({"body", "edited", "edited_at"})


class MessageReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_page(
        self,
        conversation_id: str,
        message_filter: MessageFilter,
        *,
        limit: int,
        before: int | None = None,
        before_id: str | None = None,
    ) -> list[Message]:
        """Newest first, at most ``limit`` rows below the ``(before, before_id)`` key."""
        # Byte order on ids matches the in-memory tie-break.
        message_id = MessageModel.id.collate("C")
        stmt = (
            select(MessageModel)
            .where(
                MessageModel.conversation_id == conversation_id,
                MessageModel.is_group.is_(message_filter.is_group),
            )
            .order_by(MessageModel.created_at.desc(), message_id.desc())
            .limit(limit)
        )
        if message_filter.group_id is not None:
            stmt = stmt.where(MessageModel.group_id == message_filter.group_id)
        if before is not None and before_id is not None:
            stmt = stmt.where(
                tuple_(MessageModel.created_at, message_id) < tuple_(before, before_id)
            )
        elif before is not None:
            stmt = stmt.where(MessageModel.created_at < before)
        result = await self._session.execute(stmt)
        return [mapper.model_to_entity(m) for m in result.scalars().all()]

    async def get_by_id(self, message_id: str) -> Message | None:
        model = await self._session.get(MessageModel, message_id)
        return mapper.model_to_entity(model) if model else None


class MessageWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, message: Message) -> Message:
        stmt = (
            pg_insert(MessageModel)
            .values(**mapper.entity_to_values(message))
            .returning(MessageModel)
        )
        result = await self._session.execute(stmt)
        return mapper.model_to_entity(result.scalar_one())

    async def update_fields(self, message_id: str, fields: dict[str, Any]) -> str:
        """Apply an edit; returns the message's conversation id."""
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        stmt = (
            update(MessageModel)
            .where(MessageModel.id == message_id)
            .values(**fields)
            .returning(MessageModel.conversation_id)
        )
        result = await self._session.execute(stmt)
        conversation_id = result.scalar_one_or_none()
        if conversation_id is None:
            raise NotFoundError(f"Message {message_id} not found")
        return conversation_id

    async def delete(self, message_id: str) -> str:
        stmt = (
            delete(MessageModel)
            .where(MessageModel.id == message_id)
            .returning(MessageModel.conversation_id)
        )
        result = await self._session.execute(stmt)
        conversation_id = result.scalar_one_or_none()
        if conversation_id is None:
            raise NotFoundError(f"Message {message_id} not found")
        return conversation_id

    async def add_reader(self, message_ids: Sequence[str], reader_id: str) -> set[str]:
        """Append ``reader_id`` to every listed message that lacks it.

        One UPDATE statement; returns the conversation ids that changed.
        """
        if not message_ids:
            return set()
        stmt = (
            update(MessageModel)
            .where(
                MessageModel.id.in_(list(message_ids)),
                ~MessageModel.readers.contains([reader_id]),
            )
            .values(readers=MessageModel.readers.op("||")(func.jsonb_build_array(reader_id)))
            .returning(MessageModel.conversation_id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return set(result.scalars().all())
