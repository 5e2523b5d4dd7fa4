from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Identity:
    """Authenticated user. ``email`` is the id used in conversations and readers."""

    email: str

    @property
    def principal_key(self) -> str:
        return self.email


@dataclass(frozen=True, slots=True)
class Credentials:
    """What local preferences persist to restore a session."""

    email: str
    token: str
