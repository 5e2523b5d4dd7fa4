from __future__ import annotations

import asyncio
import logging
from pathlib import Path, PurePosixPath

from chat_sync.application.exceptions import NetworkError, ValidationError

logger = logging.getLogger(__name__)


class LocalBlobStore:
    """Files under ``root``; URLs are ``base_url/<path>``."""

    def __init__(self, root: Path, base_url: str) -> None:
        self._root = root.expanduser().resolve()
        self._base_url = base_url.rstrip("/")

    def _target(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise ValidationError(f"Invalid blob path: {path!r}")
        return self._root.joinpath(*relative.parts)

    async def upload(self, data: bytes, path: str) -> str:
        target = self._target(path)
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as exc:
            raise NetworkError(f"Storing {path} failed: {exc}") from exc
        logger.debug("Stored %d bytes at %s", len(data), target)
        return f"{self._base_url}/{path}"

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
