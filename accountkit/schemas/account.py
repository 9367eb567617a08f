"""Schemas for the authenticated account-management endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class LinkCredentialsIn(BaseModel):
    email: EmailStr
    password: str


class UnlinkIn(BaseModel):
    email: EmailStr
    provider: str = Field(..., min_length=1, max_length=30)


class ProfileUpdate(BaseModel):
    username: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    name: str | None = Field(default=None, max_length=255)
    # Required when the account has an Email/Password method
    current_password: str | None = None


class PasswordResetIn(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str | None = None


class DeletionScheduledOut(BaseModel):
    message: str = "Account deletion scheduled"
    deletion_scheduled_at: datetime
