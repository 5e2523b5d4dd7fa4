from __future__ import annotations

from typing import Protocol


class BlobStore(Protocol):
    async def upload(self, data: bytes, path: str) -> str:
        """Store ``data`` under ``path`` and return its public URL."""
        ...
