"""Email/password accounts stored in the ``users`` table."""
from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import secrets

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chat_sync.application.dto.identity import Identity
from chat_sync.application.exceptions import ConflictError, NetworkError, UnauthorizedError
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.infrastructure.db.repositories.user import UserReaderRepo, UserWriterRepo

logger = logging.getLogger(__name__)

_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1


def hash_password(password: str, salt: bytes | None = None) -> str:
    salt = salt or secrets.token_bytes(16)
    digest = hashlib.scrypt(
        password.encode(), salt=salt, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P,
    )
    return f"{salt.hex()}${digest.hex()}"


def check_password(password: str, stored: str) -> bool:
    salt_hex, _, digest_hex = stored.partition("$")
    if not salt_hex or not digest_hex:
        return False
    try:
        salt = bytes.fromhex(salt_hex)
    except ValueError:
        return False
    candidate = hash_password(password, salt)
    return hmac.compare_digest(candidate, stored)


class SqlAuthProvider:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._current: Identity | None = None

    async def sign_up(self, email: str, password: str) -> Identity:
        password_hash = await asyncio.to_thread(hash_password, password)
        try:
            async with self._session_factory() as session:
                created = await UserWriterRepo(session).create_with_password(
                    email, password_hash, self._clock.now_ms(),
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise NetworkError(f"Sign-up failed: {exc}") from exc
        if not created:
            raise ConflictError("An account with this email already exists")
        self._current = Identity(email=email)
        return self._current

    async def sign_in(self, email: str, password: str) -> Identity:
        try:
            async with self._session_factory() as session:
                stored = await UserReaderRepo(session).get_password_hash(email)
        except SQLAlchemyError as exc:
            raise NetworkError(f"Sign-in failed: {exc}") from exc
        if stored is None or not await asyncio.to_thread(check_password, password, stored):
            logger.info("Rejected sign-in for %s", email)
            raise UnauthorizedError("Invalid email or password")
        self._current = Identity(email=email)
        return self._current

    async def sign_out(self) -> None:
        self._current = None

    def current_identity(self) -> Identity | None:
        return self._current
