from __future__ import annotations

from typing import NewType

ConversationId = NewType("ConversationId", str)
MessageId = NewType("MessageId", str)
UserId = NewType("UserId", str)
GroupId = NewType("GroupId", str)


def direct_conversation_id(user_a: str, user_b: str) -> ConversationId:
    """Canonical 1:1 conversation id: both participants compute the same key.

    The format ``"<lower>-<higher>"`` is a lookup key in the durable store and
    must not change.
    """
    first, second = sorted((user_a, user_b))
    return ConversationId(f"{first}-{second}")


def group_conversation_id(group_id: str) -> ConversationId:
    return ConversationId(group_id)
