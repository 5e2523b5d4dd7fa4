from __future__ import annotations

from fastapi import APIRouter, Query

from chat_sync.api.deps import BlobStoreDep, ClockDep, CurrentIdentity, UoWDep
from chat_sync.api.v1.schemas.user import UpdateProfileRequest, UserResponse
from chat_sync.services import user_service

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.get("", response_model=list[UserResponse])
async def list_users(
    identity: CurrentIdentity,
    uow: UoWDep,
    q: str | None = Query(None, max_length=255),
) -> list[UserResponse]:
    if q:
        users = await user_service.search_users(identity.email, q, uow)
    else:
        users = await user_service.list_users(identity.email, uow)
    return [UserResponse.model_validate(u, from_attributes=True) for u in users]


@router.get("/me", response_model=UserResponse)
async def get_me(identity: CurrentIdentity, uow: UoWDep) -> UserResponse:
    profile = await user_service.get_profile(identity.email, uow)
    return UserResponse.model_validate(profile, from_attributes=True)


@router.patch("/me", response_model=UserResponse)
async def update_me(
    body: UpdateProfileRequest,
    identity: CurrentIdentity,
    uow: UoWDep,
    clock: ClockDep,
    blobs: BlobStoreDep,
) -> UserResponse:
    profile = await user_service.update_profile(
        identity.email,
        body.username,
        uow,
        clock,
        blobs=blobs,
        photo=body.photo.to_attachment() if body.photo else None,
    )
    return UserResponse.model_validate(profile, from_attributes=True)


@router.get("/{email}", response_model=UserResponse)
async def get_user(email: str, identity: CurrentIdentity, uow: UoWDep) -> UserResponse:
    profile = await user_service.get_profile(email, uow)
    return UserResponse.model_validate(profile, from_attributes=True)
