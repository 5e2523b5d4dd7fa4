from __future__ import annotations

from typing import Protocol

from chat_sync.application.dto.identity import Credentials


class LocalPreferences(Protocol):
    async def get_credentials(self) -> Credentials | None: ...

    async def set_credentials(self, credentials: Credentials) -> None: ...

    async def clear_credentials(self) -> None: ...
