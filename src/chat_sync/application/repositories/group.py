from __future__ import annotations

from typing import Protocol

from chat_sync.domain.entities.group import Group


class GroupReader(Protocol):
    async def get_by_id(self, group_id: str) -> Group | None: ...

    async def list_for_member(self, user_id: str) -> list[Group]: ...


class GroupWriter(Protocol):
    async def create(self, group: Group) -> Group: ...

    async def rename(self, group_id: str, name: str) -> None: ...

    async def add_member(self, group_id: str, user_id: str) -> None:
        """Idempotent: adding an existing member is a no-op."""
        ...

    async def remove_member(self, group_id: str, user_id: str) -> None: ...
