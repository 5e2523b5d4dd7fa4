from __future__ import annotations

from chat_sync.domain.entities.user import UserProfile
from chat_sync.infrastructure.db.models.user import UserModel


def model_to_entity(model: UserModel) -> UserProfile:
    return UserProfile(
        email=model.email,
        username=model.username,
        photo_url=model.photo_url,
        created_at=model.created_at,
    )
