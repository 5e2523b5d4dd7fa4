from __future__ import annotations

from typing import Any, AsyncIterator, Protocol, Sequence

from chat_sync.application.dto.message import MessageFilter
from chat_sync.domain.entities.message import Message


class LiveSubscription(Protocol):
    """Cancelable stream of full snapshots of a conversation's live window.

    Every change inside the window redelivers the entire matched result set,
    newest first. Iteration raises ``NetworkError`` if the subscription fails.
    """

    def __aiter__(self) -> AsyncIterator[list[Message]]: ...

    async def close(self) -> None: ...


class ConversationStore(Protocol):
    async def fetch_page(
        self,
        conversation_id: str,
        page_size: int,
        before: int | None = None,
        *,
        message_filter: MessageFilter,
        before_id: str | None = None,
    ) -> list[Message]:
        """Return at most ``page_size`` messages older than the cursor, newest first.

        With ``before_id`` the cursor is the ``(created_at, id)`` key of the
        last message held, so rows sharing its timestamp with a lower id are
        still returned.
        """
        ...

    async def subscribe(
        self, conversation_id: str, message_filter: MessageFilter
    ) -> LiveSubscription: ...

    async def commit_message(self, message: Message) -> Message:
        """Durably store ``message``; returns it with its assigned id."""
        ...

    async def update_message(self, message_id: str, fields: dict[str, Any]) -> None: ...

    async def delete_message(self, message_id: str) -> None: ...

    async def batch_mark_read(self, message_ids: Sequence[str], reader_id: str) -> None:
        """Append ``reader_id`` to every message in one atomic write."""
        ...
