"""Schemas for User and Auth resources."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class RegisterIn(BaseModel):
    email: EmailStr
    password: str
    username: str = Field(..., min_length=2, max_length=100)
    name: str | None = Field(default=None, max_length=255)


class LoginIn(BaseModel):
    email: EmailStr
    password: str
    # Required to sign in to an account that is scheduled for deletion
    confirm_restore: bool = False


class EmailOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    email: str
    provider: str


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider: str
    provider_account_id: str


class UserOut(BaseModel):
    """Session view of a user; linked methods are re-read on every request."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    name: str | None
    image: str | None
    last_login_at: datetime | None
    deletion_scheduled_at: datetime | None
    emails: list[EmailOut]
    accounts: list[AccountOut]
    created_at: datetime


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


class AuthorizationUrlOut(BaseModel):
    authorization_url: str


class MessageOut(BaseModel):
    message: str
