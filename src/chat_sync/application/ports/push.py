from __future__ import annotations

from typing import Protocol

from chat_sync.application.dto.identity import Identity


class PushTokenRegistry(Protocol):
    async def register_token(self, identity: Identity, token: str) -> None: ...
