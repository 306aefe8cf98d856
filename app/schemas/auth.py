"""Request/response schemas for auth endpoints."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from app.models import Account

# Request fields default to "" so missing values reach the service's own checks.
# Nulls, wrong types and over-long values fail here and are turned into the same
# 400 envelope by validation_error_handler.


class RegisterRequest(BaseModel):
    """Self-registration payload."""

    email: str = Field(default="", max_length=255, description="Email address")
    password: str = Field(default="", max_length=1024, description="Password (6-128 chars)")
    full_name: str | None = Field(default=None, max_length=255)
    business_name: str | None = Field(default=None, max_length=255)


class LoginRequest(BaseModel):
    """Credentials for login."""

    email: str = Field(default="", max_length=255, description="Email address")
    password: str = Field(default="", max_length=1024, description="Password")


class ConfirmEmailRequest(BaseModel):
    token: str = Field(default="", max_length=256)


class EmailRequest(BaseModel):
    """Body for forgot-password and resend-confirmation."""

    email: str = Field(default="", max_length=255)


class ResetPasswordRequest(BaseModel):
    token: str = Field(default="", max_length=256)
    new_password: str = Field(default="", max_length=1024, alias="newPassword")

    class Config:
        populate_by_name = True


class UserResponse(BaseModel):
    """Account joined with its profile; never carries the password hash or tokens."""

    id: UUID
    email: str
    full_name: str | None = None
    business_name: str | None = None
    role: str | None = None
    phone: str | None = None
    address: str | None = None
    avatar_url: str | None = None
    is_active: bool = False
    email_confirmed_at: datetime | None = None
    last_sign_in_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_account(cls, account: "Account") -> "UserResponse":
        profile = account.profile
        return cls(
            id=account.id,
            email=account.email,
            full_name=account.full_name,
            business_name=account.business_name,
            role=profile.role if profile else None,
            phone=profile.phone if profile else None,
            address=profile.address if profile else None,
            avatar_url=profile.avatar_url if profile else None,
            is_active=bool(profile.is_active) if profile else False,
            email_confirmed_at=account.email_confirmed_at,
            last_sign_in_at=account.last_sign_in_at,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class AuthData(BaseModel):
    user: UserResponse
    token: str = Field(..., description="JWT session token (Bearer)")


class AuthResponse(BaseModel):
    """Response for register and login."""

    success: bool = True
    data: AuthData
    message: str


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class ProfileResponse(BaseModel):
    success: bool = True
    data: UserResponse


class CurrentUser(BaseModel):
    """Authenticated account resolved from the Bearer token, for dependency injection."""

    id: UUID
    email: str
    full_name: str | None = None
    business_name: str | None = None
    role: str
    profile_id: UUID

    class Config:
        from_attributes = True


class VerifyTokenResponse(BaseModel):
    success: bool = True
    message: str = "Token is valid"
    user: CurrentUser


class ErrorResponse(BaseModel):
    """Error envelope returned by auth endpoints."""

    success: bool = False
    error: str
    code: str | None = None
