"""Pydantic request/response schemas."""

from app.schemas.auth import (
    AuthData,
    AuthResponse,
    ConfirmEmailRequest,
    CurrentUser,
    EmailRequest,
    ErrorResponse,
    LoginRequest,
    MessageResponse,
    ProfileResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
    VerifyTokenResponse,
)
from app.schemas.health import HealthResponse

__all__ = [
    "AuthData",
    "AuthResponse",
    "ConfirmEmailRequest",
    "CurrentUser",
    "EmailRequest",
    "ErrorResponse",
    "HealthResponse",
    "LoginRequest",
    "MessageResponse",
    "ProfileResponse",
    "RegisterRequest",
    "ResetPasswordRequest",
    "UserResponse",
    "VerifyTokenResponse",
]
