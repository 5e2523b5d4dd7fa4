from __future__ import annotations

from fastapi import APIRouter, Response, status

from chat_sync.api.deps import BlobStoreDep, ClockDep, CurrentIdentity, UoWDep
from chat_sync.api.v1.schemas.group import (
    AddMemberRequest,
    CreateGroupRequest,
    GroupResponse,
    RenameGroupRequest,
)
from chat_sync.services import group_service

router = APIRouter(prefix="/api/v1/groups", tags=["groups"])


@router.post("", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
async def create_group(
    body: CreateGroupRequest,
    identity: CurrentIdentity,
    uow: UoWDep,
    clock: ClockDep,
    blobs: BlobStoreDep,
) -> GroupResponse:
    group = await group_service.create_group(
        body.name,
        identity.email,
        body.members,
        uow,
        clock,
        blobs=blobs,
        photo=body.photo.to_attachment() if body.photo else None,
    )
    return GroupResponse.from_entity(group)


@router.get("", response_model=list[GroupResponse])
async def list_groups(identity: CurrentIdentity, uow: UoWDep) -> list[GroupResponse]:
    groups = await group_service.list_user_groups(identity.email, uow)
    return [GroupResponse.from_entity(g) for g in groups]


@router.get("/{group_id}", response_model=GroupResponse)
async def get_group(group_id: str, identity: CurrentIdentity, uow: UoWDep) -> GroupResponse:
    group = await group_service.get_group(group_id, identity.email, uow)
    return GroupResponse.from_entity(group)


@router.patch("/{group_id}", response_model=GroupResponse)
async def rename_group(
    group_id: str,
    body: RenameGroupRequest,
    identity: CurrentIdentity,
    uow: UoWDep,
) -> GroupResponse:
    group = await group_service.rename_group(group_id, identity.email, body.name, uow)
    return GroupResponse.from_entity(group)


@router.post("/{group_id}/members", status_code=status.HTTP_204_NO_CONTENT)
async def add_member(
    group_id: str,
    body: AddMemberRequest,
    identity: CurrentIdentity,
    uow: UoWDep,
) -> Response:
    await group_service.add_member(group_id, identity.email, body.user_id, uow)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{group_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    group_id: str,
    user_id: str,
    identity: CurrentIdentity,
    uow: UoWDep,
) -> Response:
    await group_service.remove_member(group_id, identity.email, user_id, uow)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{group_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_group(group_id: str, identity: CurrentIdentity, uow: UoWDep) -> Response:
    await group_service.leave_group(group_id, identity.email, uow)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
