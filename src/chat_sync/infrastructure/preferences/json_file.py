from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from chat_sync.application.dto.identity import Credentials

logger = logging.getLogger(__name__)


class JsonFilePreferences:
    """Credentials persisted as a small JSON document."""

    def __init__(self, path: Path) -> None:
        self._path = path.expanduser()

    async def get_credentials(self) -> Credentials | None:
        return await asyncio.to_thread(self._read)

    async def set_credentials(self, credentials: Credentials) -> None:
        payload = {"email": credentials.email, "token": credentials.token}
        await asyncio.to_thread(self._write, payload)

    async def clear_credentials(self) -> None:
        await asyncio.to_thread(self._path.unlink, missing_ok=True)

    def _read(self) -> Credentials | None:
        try:
            data = json.loads(self._path.read_text())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable preferences at %s: %s", self._path, exc)
            return None
        if not isinstance(data, dict) or not data.get("email") or not data.get("token"):
            return None
        return Credentials(email=data["email"], token=data["token"])

    def _write(self, payload: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps(payload))
        tmp.replace(self._path)
