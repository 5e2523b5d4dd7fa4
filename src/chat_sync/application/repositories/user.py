from __future__ import annotations

from typing import Protocol

from chat_sync.domain.entities.user import UserProfile


class UserReader(Protocol):
    async def get_by_email(self, email: str) -> UserProfile | None: ...

    async def list_all(self) -> list[UserProfile]: ...


class UserWriter(Protocol):
    async def create(self, profile: UserProfile) -> UserProfile:
        """Insert the profile; an existing row for the email is returned unchanged."""
        ...

    async def update_details(
        self, email: str, *, username: str, photo_url: str | None = None
    ) -> None: ...
