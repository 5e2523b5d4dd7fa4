from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class MessageFilter:
    """Discriminator applied to page fetches and live subscriptions.

    1:1 conversations exclude group messages; group conversations select
    only messages of ``group_id``.
    """

    is_group: bool = False
    group_id: str | None = None
    limit: int = 20

    @classmethod
    def direct(cls, limit: int) -> MessageFilter:
        return cls(is_group=False, group_id=None, limit=limit)

    @classmethod
    def group(cls, group_id: str, limit: int) -> MessageFilter:
        return cls(is_group=True, group_id=group_id, limit=limit)


@dataclass(frozen=True, slots=True)
class PendingAttachment:
    """A locally selected file awaiting upload with the next send."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"
