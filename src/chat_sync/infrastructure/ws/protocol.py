"""WebSocket message envelope models."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class WsInbound(BaseModel):
    """Client → Server."""

    # open | open_group | load_more | refresh | send | edit | delete
    # | attach | detach | visibility | ping
    type: str
    data: dict[str, Any] = {}
    request_id: str | None = None


class WsOutbound(BaseModel):
    """Server → Client."""

    type: str  # view | state | error | ack | pong
    data: dict[str, Any] = {}
    request_id: str | None = None
