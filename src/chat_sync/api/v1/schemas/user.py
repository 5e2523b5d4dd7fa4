from __future__ import annotations

from pydantic import BaseModel, Field

from chat_sync.api.v1.schemas.common import Base64File


class UserResponse(BaseModel):
    email: str
    username: str | None
    photo_url: str | None
    created_at: int

    model_config = {"from_attributes": True}


class UpdateProfileRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    photo: Base64File | None = None
