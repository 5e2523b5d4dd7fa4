from __future__ import annotations

import logging
import uuid
from typing import Iterable

from chat_sync.application.dto.message import PendingAttachment
from chat_sync.application.exceptions import ForbiddenError, ValidationError
from chat_sync.application.policies.permissions import assert_group_member
from chat_sync.application.ports.blob_store import BlobStore
from chat_sync.application.ports.clock import Clock
from chat_sync.application.uow import UnitOfWork
from chat_sync.domain.entities.group import Group

logger = logging.getLogger(__name__)


def _clean_name(name: str) -> str:
    name = name.strip()
    if not name:
        raise ValidationError("Group name must not be empty")
    return name


async def create_group(
    name: str,
    creator: str,
    members: Iterable[str],
    uow: UnitOfWork,
    clock: Clock,
    blobs: BlobStore | None = None,
    photo: PendingAttachment | None = None,
) -> Group:
    """Create a group; the creator is always added to the member set."""
    name = _clean_name(name)
    photo_url = None
    if photo is not None:
        if blobs is None:
            raise ValidationError("Photo upload is not available")
        photo_url = await blobs.upload(photo.content, f"group_images/{clock.now_ms()}")

    member_ids = {m.strip() for m in members if m and m.strip()}
    member_ids.add(creator)
    group = Group(
        id=uuid.uuid4().hex,
        name=name,
        created_by=creator,
        created_at=clock.now_ms(),
        members=frozenset(member_ids),
        photo_url=photo_url,
    )
    group = await uow.groups_w.create(group)
    await uow.commit()
    logger.info("Group %s created by %s with %d members", group.id, creator, len(group.members))
    return group


async def get_group(group_id: str, viewer: str, uow: UnitOfWork) -> Group:
    group = await uow.groups.get_by_id(group_id)
    return assert_group_member(group, viewer)


async def list_user_groups(user_id: str, uow: UnitOfWork) -> list[Group]:
    return await uow.groups.list_for_member(user_id)


async def rename_group(group_id: str, actor: str, name: str, uow: UnitOfWork) -> Group:
    name = _clean_name(name)
    group = assert_group_member(await uow.groups.get_by_id(group_id), actor)
    await uow.groups_w.rename(group_id, name)
    await uow.commit()
    return Group(
        id=group.id,
        name=name,
        created_by=group.created_by,
        created_at=group.created_at,
        members=group.members,
        photo_url=group.photo_url,
    )


async def add_member(group_id: str, actor: str, user_id: str, uow: UnitOfWork) -> None:
    if not user_id or not user_id.strip():
        raise ValidationError("user_id is required")
    user_id = user_id.strip()
    group = assert_group_member(await uow.groups.get_by_id(group_id), actor)
    if group.is_member(user_id):
        return
    await uow.groups_w.add_member(group_id, user_id)
    await uow.commit()


async def remove_member(group_id: str, actor: str, user_id: str, uow: UnitOfWork) -> None:
    group = assert_group_member(await uow.groups.get_by_id(group_id), actor)
    if user_id == group.created_by:
        raise ForbiddenError("The group creator cannot be removed")
    if not group.is_member(user_id):
        return
    await uow.groups_w.remove_member(group_id, user_id)
    await uow.commit()


async def leave_group(group_id: str, user_id: str, uow: UnitOfWork) -> None:
    group = assert_group_member(await uow.groups.get_by_id(group_id), user_id)
    if user_id == group.created_by:
        raise ForbiddenError("The group creator cannot leave the group")
    await uow.groups_w.remove_member(group_id, user_id)
    await uow.commit()
    logger.info("%s left group %s", user_id, group_id)
