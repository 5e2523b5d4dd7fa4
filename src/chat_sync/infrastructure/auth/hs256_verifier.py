from __future__ import annotations

import time

import jwt

from chat_sync.application.dto.identity import Identity
from chat_sync.application.exceptions import UnauthorizedError


class HS256TokenService:
    """Issue and verify JWTs signed with a shared HS256 secret."""

    def __init__(self, secret: str, algorithm: str = "HS256", ttl_seconds: int = 3600) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._ttl_seconds = ttl_seconds

    def issue(self, identity: Identity) -> str:
        now = int(time.time())
        payload = {"sub": identity.email, "iat": now, "exp": now + self._ttl_seconds}
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    async def verify(self, token: str) -> Identity:
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.PyJWTError as exc:
            raise UnauthorizedError(f"Invalid token: {exc}") from exc
        subject = payload.get("sub")
        if not subject:
            raise UnauthorizedError("Token has no subject")
        return Identity(email=subject)
