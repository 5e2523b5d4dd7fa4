from __future__ import annotations

from dataclasses import dataclass, field

from chat_sync.application.exceptions import AppError
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import SessionState


@dataclass(frozen=True, slots=True)
class ViewChanged:
    conversation_id: str
    messages: tuple[Message, ...]
    unread_ids: frozenset[str] = field(default_factory=frozenset)
    exhausted: bool = False


@dataclass(frozen=True, slots=True)
class StateChanged:
    conversation_id: str | None
    state: SessionState


@dataclass(frozen=True, slots=True)
class ErrorRaised:
    conversation_id: str | None
    operation: str
    error: AppError


SessionEvent = ViewChanged | StateChanged | ErrorRaised
