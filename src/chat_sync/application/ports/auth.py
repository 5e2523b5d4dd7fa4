from __future__ import annotations

from typing import Protocol

from chat_sync.application.dto.identity import Identity


class AuthProvider(Protocol):
    async def sign_in(self, email: str, password: str) -> Identity: ...

    async def sign_up(self, email: str, password: str) -> Identity: ...

    async def sign_out(self) -> None: ...

    def current_identity(self) -> Identity | None: ...


class TokenIssuer(Protocol):
    def issue(self, identity: Identity) -> str: ...


class TokenVerifier(Protocol):
    async def verify(self, token: str) -> Identity: ...
