from __future__ import annotations

from typing import Protocol

from chat_sync.application.repositories.group import GroupReader, GroupWriter
from chat_sync.application.repositories.push_token import PushTokenWriter
from chat_sync.application.repositories.user import UserReader, UserWriter


class UnitOfWork(Protocol):
    groups: GroupReader
    groups_w: GroupWriter
    users: UserReader
    users_w: UserWriter
    push_tokens_w: PushTokenWriter

    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...
    async def flush(self) -> None: ...
