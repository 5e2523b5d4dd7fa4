from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from chat_sync.application.ports.conversation_store import ConversationStore
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import DeliveryStatus

logger = logging.getLogger(__name__)


def compute_unread(view: Iterable[Message], viewer_id: str) -> set[str]:
    """Ids of messages from others that ``viewer_id`` has not acknowledged."""
    return {
        m.id
        for m in view
        if m.id is not None and m.sender_id != viewer_id and not m.is_read_by(viewer_id)
    }


def delivery_status(message: Message, viewer_id: str) -> DeliveryStatus:
    """Indicator for a message as seen by ``viewer_id``.

    A 1:1 sender is counted as the first reader at send time, so the
    message is read once the readers set grows past one.
    """
    if message.sender_id != viewer_id:
        return DeliveryStatus.RECEIVED
    if message.is_group:
        others = [r for r in message.readers if r != message.sender_id]
        return DeliveryStatus.READ if others else DeliveryStatus.SENT
    return DeliveryStatus.READ if len(message.readers) > 1 else DeliveryStatus.SENT


class ReadReceiptTracker:
    """Acknowledges incoming messages for one viewer while the conversation is visible."""

    def __init__(
        self, store: ConversationStore, viewer_id: str, *, visible: bool = False,
    ) -> None:
        self._store = store
        self._viewer_id = viewer_id
        self._visible = visible
        self._acknowledged: set[str] = set()
        self._lock = asyncio.Lock()

    @property
    def visible(self) -> bool:
        return self._visible

    @property
    def viewer_id(self) -> str:
        return self._viewer_id

    def compute_unread(self, view: Iterable[Message]) -> set[str]:
        return compute_unread(view, self._viewer_id)

    async def set_visible(self, visible: bool, view: Iterable[Message]) -> int:
        self._visible = visible
        if not visible:
            return 0
        return await self.mark_read(view)

    async def on_view_changed(self, view: Iterable[Message]) -> int:
        """New page or live update arrived; unread state accumulates while hidden."""
        if not self._visible:
            return 0
        return await self.mark_read(view)

    async def mark_read(self, view: Iterable[Message]) -> int:
        """Acknowledge every unread message in one batched write.

        Returns the number of messages written. Ids are remembered only after
        the store confirms the write, so a failed batch is retried on the next
        trigger.
        """
        async with self._lock:
            pending = sorted(self.compute_unread(view) - self._acknowledged)
            if not pending:
                return 0
            await self._store.batch_mark_read(pending, self._viewer_id)
            self._acknowledged.update(pending)
            logger.debug("Marked %d messages read for %s", len(pending), self._viewer_id)
            return len(pending)
