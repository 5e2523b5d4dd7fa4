"""FastAPI dependency injection helpers.

Collaborators live on ``app.state`` (see ``chat_sync.app``); tests replace
them through ``app.dependency_overrides``.
"""
from __future__ import annotations

from typing import Annotated, AsyncIterator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.requests import HTTPConnection

from chat_sync.application.dto.identity import Identity
from chat_sync.application.exceptions import UnauthorizedError
from chat_sync.application.ports.auth import AuthProvider
from chat_sync.application.ports.blob_store import BlobStore
from chat_sync.application.ports.clock import Clock
from chat_sync.application.ports.conversation_store import ConversationStore
from chat_sync.application.ports.push import PushTokenRegistry
from chat_sync.application.repositories.group import GroupReader
from chat_sync.infrastructure.auth.hs256_verifier import HS256TokenService
from chat_sync.infrastructure.auth.sql_provider import SqlAuthProvider
from chat_sync.infrastructure.db.repositories.group import ScopedGroupReader
from chat_sync.infrastructure.db.uow import SqlAlchemyUoW
from chat_sync.infrastructure.push.registry import SqlPushTokenRegistry

_bearer_scheme = HTTPBearer()


async def get_uow(conn: HTTPConnection) -> AsyncIterator[SqlAlchemyUoW]:
    async with conn.app.state.session_factory() as session, SqlAlchemyUoW(session) as uow:
        yield uow


UoWDep = Annotated[SqlAlchemyUoW, Depends(get_uow)]


def get_clock(conn: HTTPConnection) -> Clock:
    return conn.app.state.clock


def get_token_service(conn: HTTPConnection) -> HS256TokenService:
    return conn.app.state.tokens


def get_blob_store(conn: HTTPConnection) -> BlobStore:
    return conn.app.state.blobs


def get_conversation_store(conn: HTTPConnection) -> ConversationStore:
    return conn.app.state.conversation_store


def get_group_reader(conn: HTTPConnection) -> GroupReader:
    return ScopedGroupReader(conn.app.state.session_factory)


def get_auth_provider(conn: HTTPConnection) -> AuthProvider:
    return SqlAuthProvider(conn.app.state.session_factory, conn.app.state.clock)


def get_push_registry(conn: HTTPConnection) -> PushTokenRegistry:
    return SqlPushTokenRegistry(conn.app.state.session_factory)


ClockDep = Annotated[Clock, Depends(get_clock)]
TokensDep = Annotated[HS256TokenService, Depends(get_token_service)]
BlobStoreDep = Annotated[BlobStore, Depends(get_blob_store)]
ConversationStoreDep = Annotated[ConversationStore, Depends(get_conversation_store)]
GroupReaderDep = Annotated[GroupReader, Depends(get_group_reader)]
AuthProviderDep = Annotated[AuthProvider, Depends(get_auth_provider)]
PushRegistryDep = Annotated[PushTokenRegistry, Depends(get_push_registry)]


async def get_current_identity(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_bearer_scheme)],
    tokens: TokensDep,
) -> Identity:
    try:
        return await tokens.verify(credentials.credentials)
    except UnauthorizedError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.detail,
        ) from exc


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
