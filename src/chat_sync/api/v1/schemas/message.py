from __future__ import annotations

from pydantic import BaseModel

from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import DeliveryStatus
from chat_sync.services.read_receipts import delivery_status


class MessageResponse(BaseModel):
    id: str | None
    conversation_id: str
    sender_id: str
    recipient_id: str | None
    body: str
    attachments: list[str]
    created_at: int
    edited: bool
    edited_at: int | None
    readers: list[str]
    is_group: bool
    group_id: str | None
    status: DeliveryStatus | None = None

    model_config = {"from_attributes": True}

    @classmethod
    def for_viewer(cls, message: Message, viewer_id: str) -> MessageResponse:
        response = cls.model_validate(message, from_attributes=True)
        response.status = delivery_status(message, viewer_id)
        return response
