from __future__ import annotations

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from chat_sync.infrastructure.db.models.push_token import PushTokenModel


class PushTokenWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert(self, email: str, token: str) -> None:
        stmt = (
            pg_insert(PushTokenModel)
            .values(email=email, token=token)
            .on_conflict_do_update(
                constraint="uq_push_token_email",
                set_={"token": token},
            )
        )
        await self._session.execute(stmt)
