from __future__ import annotations

from pydantic import BaseModel


class RegisterRequest(BaseModel):
    email: str
    password: str
    confirm_password: str


class RegisterResponse(BaseModel):
    email: str


class LoginRequest(BaseModel):
    email: str
    password: str
    push_token: str | None = None


class TokenResponse(BaseModel):
    email: str
    access_token: str
    token_type: str = "bearer"


class PushTokenRequest(BaseModel):
    token: str
