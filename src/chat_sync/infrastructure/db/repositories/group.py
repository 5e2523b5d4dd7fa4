from __future__ import annotations

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chat_sync.application.exceptions import NetworkError, NotFoundError
from chat_sync.domain.entities.group import Group
from chat_sync.infrastructure.db.mappers import group as mapper
from chat_sync.infrastructure.db.models.group import GroupMemberModel, GroupModel


class GroupReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, group_id: str) -> Group | None:
        stmt = (
            select(GroupModel)
            .where(GroupModel.id == group_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    async def list_for_member(self, user_id: str) -> list[Group]:
        stmt = (
            select(GroupModel)
            .join(GroupMemberModel, GroupMemberModel.group_id == GroupModel.id)
            .where(GroupMemberModel.user_id == user_id)
            .order_by(GroupModel.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return [mapper.model_to_entity(m) for m in result.scalars().all()]


class GroupWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, group: Group) -> Group:
        model = mapper.entity_to_model(group)
        self._session.add(model)
        await self._session.flush()
        return group

    async def rename(self, group_id: str, name: str) -> None:
        stmt = (
            update(GroupModel)
            .where(GroupModel.id == group_id)
            .values(name=name)
            .returning(GroupModel.id)
        )
        result = await self._session.execute(stmt)
        if result.scalar_one_or_none() is None:
            raise NotFoundError("Group not found")

    async def add_member(self, group_id: str, user_id: str) -> None:
        stmt = (
            pg_insert(GroupMemberModel)
            .values(group_id=group_id, user_id=user_id)
            .on_conflict_do_nothing(constraint="uq_group_member")
        )
        await self._session.execute(stmt)

    async def remove_member(self, group_id: str, user_id: str) -> None:
        stmt = delete(GroupMemberModel).where(
            GroupMemberModel.group_id == group_id,
            GroupMemberModel.user_id == user_id,
        )
        await self._session.execute(stmt)


class ScopedGroupReader:
    """GroupReader that opens a short-lived session per call.

    Used by long-lived consumers (a WebSocket session) that must not hold a
    database session open.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, group_id: str) -> Group | None:
        try:
            async with self._session_factory() as session:
                return await GroupReaderRepo(session).get_by_id(group_id)
        except SQLAlchemyError as exc:
            raise NetworkError(f"Loading group failed: {exc}") from exc

    async def list_for_member(self, user_id: str) -> list[Group]:
        try:
            async with self._session_factory() as session:
                return await GroupReaderRepo(session).list_for_member(user_id)
        except SQLAlchemyError as exc:
            raise NetworkError(f"Listing groups failed: {exc}") from exc
