from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Sequence

from chat_sync.application.dto.message import PendingAttachment
from chat_sync.application.exceptions import (
    AppError,
    ConflictError,
    NetworkError,
    NotFoundError,
    ValidationError,
)
from chat_sync.application.ports.blob_store import BlobStore
from chat_sync.application.ports.clock import Clock
from chat_sync.application.ports.conversation_store import ConversationStore
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import MissingMessagePolicy, SendState

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConversationTarget:
    """Where outgoing messages go: a peer for 1:1, a group id otherwise."""

    conversation_id: str
    sender_id: str
    recipient_id: str | None = None
    group_id: str | None = None

    @property
    def is_group(self) -> bool:
        return self.group_id is not None


class SendCoordinator:
    """Serializes outgoing sends so at most one is in flight per conversation.

    There is no queue: a send attempted while another is in flight is
    rejected with ``ConflictError`` and the caller retries after completion.
    Edits and deletes don't take the send lock.
    """

    def __init__(
        self,
        target: ConversationTarget,
        store: ConversationStore,
        blobs: BlobStore,
        clock: Clock,
        *,
        upload_concurrency: int = 1,
        missing_policy: MissingMessagePolicy = MissingMessagePolicy.IGNORE,
    ) -> None:
        self._target = target
        self._store = store
        self._blobs = blobs
        self._clock = clock
        self._upload_concurrency = max(1, upload_concurrency)
        self._missing_policy = missing_policy
        self._state = SendState.IDLE
        self._pending: list[PendingAttachment] = []

    @property
    def state(self) -> SendState:
        return self._state

    @property
    def is_sending(self) -> bool:
        return self._state is SendState.SENDING

    # -- pending attachments ----------------------------------------------

    @property
    def pending_attachments(self) -> tuple[PendingAttachment, ...]:
        return tuple(self._pending)

    def add_attachment(self, attachment: PendingAttachment) -> None:
        self._pending.append(attachment)

    def remove_attachment(self, filename: str) -> None:
        self._pending = [a for a in self._pending if a.filename != filename]

    def clear_attachments(self) -> None:
        self._pending = []

    # -- operations -------------------------------------------------------

    async def send(
        self,
        text: str,
        attachments: Sequence[PendingAttachment] | None = None,
    ) -> Message:
        """Upload attachments, then commit one message. Returns the committed message."""
        if self._state is SendState.SENDING:
            raise ConflictError("A message is already being sent")

        files = list(self._pending if attachments is None else attachments)
        if not text.strip() and not files:
            raise ValidationError("Message must have text or attachments")

        self._state = SendState.SENDING
        try:
            urls = await self._upload_all(files)
            message = Message(
                conversation_id=self._target.conversation_id,
                sender_id=self._target.sender_id,
                recipient_id=self._target.recipient_id,
                body=text,
                attachments=tuple(urls),
                created_at=self._clock.now_ms(),
                readers=() if self._target.is_group else (self._target.sender_id,),
                is_group=self._target.is_group,
                group_id=self._target.group_id,
            )
            committed = await self._store.commit_message(message)
            if attachments is None:
                self.clear_attachments()
            logger.info(
                "Committed message %s to %s (%d attachments)",
                committed.id, self._target.conversation_id, len(urls),
            )
            return committed
        finally:
            self._state = SendState.IDLE

    async def edit(self, message_id: str, new_text: str) -> None:
        if not message_id:
            raise ValidationError("message_id is required")
        if not new_text.strip():
            raise ValidationError("Edited text must not be empty")
        await self._store.update_message(
            message_id,
            {"body": new_text, "edited": True, "edited_at": self._clock.now_ms()},
        )

    async def delete(self, message_id: str) -> None:
        if not message_id:
            raise ValidationError("message_id is required")
        try:
            await self._store.delete_message(message_id)
        except NotFoundError:
            if self._missing_policy is MissingMessagePolicy.RAISE:
                raise
            logger.debug("Message %s already deleted", message_id)

    # -- internals --------------------------------------------------------

    def _upload_path(self, attachment: PendingAttachment) -> str:
        # Unique per upload; the same filename may appear twice in one send.
        return (
            f"chat_images/{self._target.sender_id}_{self._clock.now_ms()}_"
            f"{uuid.uuid4().hex[:12]}_{attachment.filename}"
        )

    async def _upload_one(self, attachment: PendingAttachment) -> str:
        try:
            return await self._blobs.upload(attachment.content, self._upload_path(attachment))
        except AppError:
            raise
        except Exception as exc:
            raise NetworkError(f"Upload of {attachment.filename} failed: {exc}") from exc

    async def _upload_all(self, files: list[PendingAttachment]) -> list[str]:
        if not files:
            return []
        if self._upload_concurrency == 1:
            return [await self._upload_one(a) for a in files]

        semaphore = asyncio.Semaphore(self._upload_concurrency)

        async def _bounded(attachment: PendingAttachment) -> str:
            async with semaphore:
                return await self._upload_one(attachment)

        # gather keeps input order, so URLs line up with the selection order.
        return list(await asyncio.gather(*(_bounded(a) for a in files)))
