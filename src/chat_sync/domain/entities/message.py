from __future__ import annotations

from dataclasses import dataclass, field, replace


@dataclass(frozen=True, slots=True)
class Message:
    conversation_id: str
    sender_id: str
    created_at: int  # ms since epoch, per-sender monotonic
    body: str = ""
    recipient_id: str | None = None
    attachments: tuple[str, ...] = ()
    id: str | None = None  # assigned by the durable store on commit
    edited: bool = False
    edited_at: int | None = None
    readers: tuple[str, ...] = field(default_factory=tuple)
    is_group: bool = False
    group_id: str | None = None

    @property
    def is_committed(self) -> bool:
        return self.id is not None

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.created_at, self.id or "")

    def is_read_by(self, reader_id: str) -> bool:
        return reader_id in self.readers

    def with_reader(self, reader_id: str) -> Message:
        """Return a copy with ``reader_id`` appended; readers never shrink."""
        if reader_id in self.readers:
            return self
        return replace(self, readers=self.readers + (reader_id,))
