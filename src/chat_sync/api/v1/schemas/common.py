from __future__ import annotations

import base64
import binascii

from pydantic import BaseModel, Field

from chat_sync.application.dto.message import PendingAttachment
from chat_sync.application.exceptions import ValidationError


class Base64File(BaseModel):
    """File content inlined in a JSON payload."""

    filename: str = Field(min_length=1, max_length=255)
    content_type: str = "application/octet-stream"
    content_b64: str

    def to_attachment(self) -> PendingAttachment:
        try:
            content = base64.b64decode(self.content_b64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError(f"{self.filename}: content is not valid base64") from exc
        return PendingAttachment(
            filename=self.filename,
            content=content,
            content_type=self.content_type,
        )
