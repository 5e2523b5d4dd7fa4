from __future__ import annotations

from fastapi import APIRouter, Response, status

from chat_sync.api.deps import (
    AuthProviderDep,
    ClockDep,
    CurrentIdentity,
    PushRegistryDep,
    TokensDep,
    UoWDep,
)
from chat_sync.api.v1.schemas.auth import (
    LoginRequest,
    PushTokenRequest,
    RegisterRequest,
    RegisterResponse,
    TokenResponse,
)
from chat_sync.services import account_service

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    auth: AuthProviderDep,
    uow: UoWDep,
    clock: ClockDep,
) -> RegisterResponse:
    identity = await account_service.register(
        body.email, body.password, body.confirm_password, auth, uow, clock,
    )
    return RegisterResponse(email=identity.email)


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    auth: AuthProviderDep,
    tokens: TokensDep,
    push: PushRegistryDep,
) -> TokenResponse:
    credentials = await account_service.login(
        body.email, body.password, auth, tokens, push=push, push_token=body.push_token,
    )
    return TokenResponse(email=credentials.email, access_token=credentials.token)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(identity: CurrentIdentity, auth: AuthProviderDep) -> Response:
    await account_service.logout(auth)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/push-token", status_code=status.HTTP_204_NO_CONTENT)
async def register_push_token(
    body: PushTokenRequest,
    identity: CurrentIdentity,
    push: PushRegistryDep,
) -> Response:
    await account_service.register_push_token(identity, body.token, push)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
