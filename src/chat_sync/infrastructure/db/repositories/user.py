from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from chat_sync.application.exceptions import NotFoundError
from chat_sync.domain.entities.user import UserProfile
from chat_sync.infrastructure.db.mappers import user as mapper
from chat_sync.infrastructure.db.models.user import UserModel


class UserReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_email(self, email: str) -> UserProfile | None:
        model = await self._session.get(UserModel, email, populate_existing=True)
        return mapper.model_to_entity(model) if model else None

    async def list_all(self) -> list[UserProfile]:
        result = await self._session.execute(select(UserModel).order_by(UserModel.email))
        return [mapper.model_to_entity(m) for m in result.scalars().all()]

    async def get_password_hash(self, email: str) -> str | None:
        stmt = select(UserModel.password_hash).where(UserModel.email == email)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()


class UserWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, profile: UserProfile) -> UserProfile:
        stmt = (
            pg_insert(UserModel)
            .values(
                email=profile.email,
                username=profile.username,
                photo_url=profile.photo_url,
                created_at=profile.created_at,
            )
            .on_conflict_do_nothing(index_elements=[UserModel.email])
        )
        await self._session.execute(stmt)
        model = await self._session.get(UserModel, profile.email)
        if model is None:
            raise NotFoundError(f"User {profile.email} was not stored")
        return mapper.model_to_entity(model)

    async def create_with_password(self, email: str, password_hash: str, created_at: int) -> bool:
        """Insert a new account row. Returns False if the email is already taken."""
        stmt = (
            pg_insert(UserModel)
            .values(email=email, password_hash=password_hash, created_at=created_at)
            .on_conflict_do_nothing(index_elements=[UserModel.email])
            .returning(UserModel.email)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def update_details(
        self, email: str, *, username: str, photo_url: str | None = None
    ) -> None:
        values: dict[str, str] = {"username": username}
        if photo_url is not None:
            values["photo_url"] = photo_url
        stmt = (
            update(UserModel)
            .where(UserModel.email == email)
            .values(**values)
            .returning(UserModel.email)
        )
        result = await self._session.execute(stmt)
        if result.scalar_one_or_none() is None:
            raise NotFoundError("User not found")
