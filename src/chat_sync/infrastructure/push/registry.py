from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chat_sync.application.dto.identity import Identity
from chat_sync.application.exceptions import NetworkError
from chat_sync.infrastructure.db.repositories.push_token import PushTokenWriterRepo


class SqlPushTokenRegistry:
    """Keeps the latest push token per user; delivery happens elsewhere."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def register_token(self, identity: Identity, token: str) -> None:
        try:
            async with self._session_factory() as session:
                await PushTokenWriterRepo(session).upsert(identity.email, token)
                await session.commit()
        except SQLAlchemyError as exc:
            raise NetworkError(f"Registering push token failed: {exc}") from exc
