from __future__ import annotations

from chat_sync.application.dto.message import PendingAttachment
from chat_sync.application.exceptions import NotFoundError, ValidationError
from chat_sync.application.ports.blob_store import BlobStore
from chat_sync.application.ports.clock import Clock
from chat_sync.application.uow import UnitOfWork
from chat_sync.domain.entities.user import UserProfile


async def list_users(viewer: str, uow: UnitOfWork) -> list[UserProfile]:
    """Everyone except the viewer, ordered by email."""
    users = await uow.users.list_all()
    return sorted((u for u in users if u.email != viewer), key=lambda u: u.email)


async def search_users(viewer: str, query: str, uow: UnitOfWork) -> list[UserProfile]:
    """Case-insensitive substring match on email or username."""
    users = await list_users(viewer, uow)
    needle = query.strip().lower()
    if not needle:
        return users
    return [
        u
        for u in users
        if needle in u.email.lower() or (u.username and needle in u.username.lower())
    ]


async def get_profile(email: str, uow: UnitOfWork) -> UserProfile:
    profile = await uow.users.get_by_email(email)
    if profile is None:
        raise NotFoundError("User not found")
    return profile


async def update_profile(
    email: str,
    username: str,
    uow: UnitOfWork,
    clock: Clock,
    blobs: BlobStore | None = None,
    photo: PendingAttachment | None = None,
) -> UserProfile:
    username = username.strip()
    if not username:
        raise ValidationError("Username must not be empty")
    await get_profile(email, uow)

    photo_url = None
    if photo is not None:
        if blobs is None:
            raise ValidationError("Photo upload is not available")
        photo_url = await blobs.upload(
            photo.content, f"profile_images/{email}_{clock.now_ms()}",
        )

    await uow.users_w.update_details(email, username=username, photo_url=photo_url)
    await uow.commit()
    return await get_profile(email, uow)
