from __future__ import annotations

from typing import Any

from chat_sync.domain.entities.message import Message
from chat_sync.infrastructure.db.models.message import MessageModel


def model_to_entity(model: MessageModel) -> Message:
    return Message(
        id=model.id,
        conversation_id=model.conversation_id,
        sender_id=model.sender_id,
        recipient_id=model.recipient_id,
        body=model.body or "",
        attachments=tuple(model.attachments or ()),
        created_at=model.created_at,
        edited=model.edited,
        edited_at=model.edited_at,
        readers=tuple(dict.fromkeys(model.readers or ())),
        is_group=model.is_group,
        group_id=model.group_id,
    )


def entity_to_values(entity: Message) -> dict[str, Any]:
    values: dict[str, Any] = {
        "conversation_id": entity.conversation_id,
        "sender_id": entity.sender_id,
        "recipient_id": entity.recipient_id,
        "body": entity.body,
        "attachments": list(entity.attachments),
        "created_at": entity.created_at,
        "edited": entity.edited,
        "edited_at": entity.edited_at,
        "readers": list(dict.fromkeys(entity.readers)),
        "is_group": entity.is_group,
        "group_id": entity.group_id,
    }
    if entity.id is not None:
        values["id"] = entity.id
    return values
