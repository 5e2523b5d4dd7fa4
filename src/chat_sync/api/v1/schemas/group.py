from __future__ import annotations

from pydantic import BaseModel, Field

from chat_sync.api.v1.schemas.common import Base64File
from chat_sync.domain.entities.group import Group


class CreateGroupRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    members: list[str] = []
    photo: Base64File | None = None


class RenameGroupRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class AddMemberRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=255)


class GroupResponse(BaseModel):
    id: str
    name: str
    created_by: str
    created_at: int
    members: list[str]
    photo_url: str | None

    @classmethod
    def from_entity(cls, group: Group) -> GroupResponse:
        return cls(
            id=group.id,
            name=group.name,
            created_by=group.created_by,
            created_at=group.created_at,
            members=sorted(group.members),
            photo_url=group.photo_url,
        )
