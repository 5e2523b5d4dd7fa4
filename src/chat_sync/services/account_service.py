"""Sign-up, sign-in and session restore.

Credentials persisted in local preferences are the email plus the issued
token; restoring a session re-verifies the token and drops stale ones.
"""
from __future__ import annotations

import logging
import re

from chat_sync.application.dto.identity import Credentials, Identity
from chat_sync.application.exceptions import AppError, UnauthorizedError, ValidationError
from chat_sync.application.ports.auth import AuthProvider, TokenIssuer, TokenVerifier
from chat_sync.application.ports.clock import Clock
from chat_sync.application.ports.preferences import LocalPreferences
from chat_sync.application.ports.push import PushTokenRegistry
from chat_sync.application.uow import UnitOfWork
from chat_sync.domain.entities.user import UserProfile

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_registration(email: str, password: str, confirm_password: str) -> str:
    email = email.strip()
    if not email or not password or not confirm_password:
        raise ValidationError("Please fill in all fields")
    if not _EMAIL_RE.match(email):
        raise ValidationError("Please enter a valid email address")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    if password != confirm_password:
        raise ValidationError("Passwords do not match")
    return email


async def register(
    email: str,
    password: str,
    confirm_password: str,
    auth: AuthProvider,
    uow: UnitOfWork,
    clock: Clock,
) -> Identity:
    email = validate_registration(email, password, confirm_password)
    identity = await auth.sign_up(email, password)
    await uow.users_w.create(UserProfile(email=identity.email, created_at=clock.now_ms()))
    await uow.commit()
    logger.info("Registered %s", identity.email)
    return identity


async def login(
    email: str,
    password: str,
    auth: AuthProvider,
    tokens: TokenIssuer,
    preferences: LocalPreferences | None = None,
    push: PushTokenRegistry | None = None,
    push_token: str | None = None,
) -> Credentials:
    email = email.strip()
    if not email or not password:
        raise ValidationError("Please fill in all fields")

    identity = await auth.sign_in(email, password)
    credentials = Credentials(email=identity.email, token=tokens.issue(identity))
    if preferences is not None:
        await preferences.set_credentials(credentials)

    if push is not None and push_token:
        try:
            await push.register_token(identity, push_token)
        except AppError as exc:
            # Login still succeeds without push delivery.
            logger.warning("Push token registration failed for %s: %s", identity.email, exc)
    return credentials


async def logout(auth: AuthProvider, preferences: LocalPreferences | None = None) -> None:
    await auth.sign_out()
    if preferences is not None:
        await preferences.clear_credentials()


async def restore_session(
    preferences: LocalPreferences,
    verifier: TokenVerifier,
) -> Identity | None:
    """Identity for the persisted credentials, or ``None`` if there are none or they went stale."""
    credentials = await preferences.get_credentials()
    if credentials is None:
        return None
    try:
        identity = await verifier.verify(credentials.token)
    except UnauthorizedError:
        logger.info("Stored credentials for %s are no longer valid", credentials.email)
        await preferences.clear_credentials()
        return None
    if identity.email != credentials.email:
        await preferences.clear_credentials()
        return None
    return identity


async def register_push_token(
    identity: Identity,
    token: str,
    push: PushTokenRegistry,
) -> None:
    if not token or not token.strip():
        raise ValidationError("Push token must not be empty")
    await push.register_token(identity, token.strip())
