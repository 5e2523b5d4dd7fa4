from __future__ import annotations

from enum import StrEnum


class SessionState(StrEnum):
    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"


class SendState(StrEnum):
    IDLE = "idle"
    SENDING = "sending"


class DeliveryStatus(StrEnum):
    SENT = "sent"
    READ = "read"
    RECEIVED = "received"


class MissingMessagePolicy(StrEnum):
    """What ``delete`` does when the store reports the message as gone."""

    IGNORE = "ignore"
    RAISE = "raise"
