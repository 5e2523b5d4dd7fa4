from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Group:
    id: str
    name: str
    created_by: str
    created_at: int
    members: frozenset[str] = field(default_factory=frozenset)
    photo_url: str | None = None

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members
