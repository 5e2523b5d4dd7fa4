from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class UserProfile:
    email: str
    created_at: int
    username: str | None = None
    photo_url: str | None = None
