from __future__ import annotations

from chat_sync.domain.entities.group import Group
from chat_sync.infrastructure.db.models.group import GroupMemberModel, GroupModel


def model_to_entity(model: GroupModel) -> Group:
    return Group(
        id=model.id,
        name=model.name,
        created_by=model.created_by,
        created_at=model.created_at,
        members=frozenset(m.user_id for m in model.members),
        photo_url=model.photo_url,
    )


def entity_to_model(entity: Group) -> GroupModel:
    return GroupModel(
        id=entity.id,
        name=entity.name,
        created_by=entity.created_by,
        created_at=entity.created_at,
        photo_url=entity.photo_url,
        members=[GroupMemberModel(user_id=user_id) for user_id in sorted(entity.members)],
    )
