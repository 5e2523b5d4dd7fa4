from __future__ import annotations

from typing import Protocol


class PushTokenWriter(Protocol):
    async def upsert(self, email: str, token: str) -> None: ...
