"""Auth routes (register, login, email confirmation, password reset) and the Bearer dependency."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.core.security import TokenFailure
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
from app.services import accounts
from app.services.accounts import (
    AccountConflictError,
    AccountError,
    AccountNotFoundError,
    AccountValidationError,
    AlreadyConfirmedError,
    EmailNotConfirmedError,
    InactiveAccountError,
    InvalidCredentialsError,
    InvalidTokenError,
    ServiceUnavailableError,
    SessionTokenError,
)
from app.services.mailer import Mailer, get_mailer

logger = logging.getLogger(__name__)
router = APIRouter()
security = HTTPBearer(auto_error=False)

# Most specific first; the first isinstance match wins.
ERROR_STATUS_CODES: tuple[tuple[type[AccountError], int], ...] = (
    (AccountValidationError, status.HTTP_400_BAD_REQUEST),
    (AccountConflictError, status.HTTP_409_CONFLICT),
    (InvalidCredentialsError, status.HTTP_401_UNAUTHORIZED),
    (InactiveAccountError, status.HTTP_401_UNAUTHORIZED),
    (SessionTokenError, status.HTTP_401_UNAUTHORIZED),
    (EmailNotConfirmedError, status.HTTP_403_FORBIDDEN),
    (InvalidTokenError, status.HTTP_400_BAD_REQUEST),
    (AccountNotFoundError, status.HTTP_400_BAD_REQUEST),
    (AlreadyConfirmedError, status.HTTP_400_BAD_REQUEST),
    (ServiceUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)

# Codes the frontend branches on; other errors carry only the message.
EXPOSED_ERROR_CODES = {EmailNotConfirmedError.code}


def status_for_error(exc: AccountError) -> int:
    for error_cls, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_cls):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def account_error_handler(request: Request, exc: AccountError) -> JSONResponse:
    """Render lifecycle errors as {success: false, error, code?} with the mapped status."""
    status_code = status_for_error(exc)
    logger.info(
        "Auth request rejected",
        extra={"path": request.url.path, "status_code": status_code, "code": exc.code},
    )
    body = ErrorResponse(
        error=exc.message,
        code=exc.code if exc.code in EXPOSED_ERROR_CODES else None,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render HTTPException (Bearer failures) in the same envelope."""
    body = ErrorResponse(error=str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(exclude_none=True),
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Malformed bodies (null, wrong type, over-long fields) get the same 400 envelope
    as service validation. Only the first error's field and message are returned;
    the rejected input is never echoed back.
    """
    errors = exc.errors()
    if errors:
        first = errors[0]
        loc = [str(part) for part in first.get("loc", ()) if part != "body"]
        message = first.get("msg", "Invalid request")
        error = f"{loc[-1]}: {message}" if loc else message
    else:
        error = "Invalid request"
    logger.info(
        "Request validation failed",
        extra={"path": request.url.path, "error_count": len(errors)},
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(error=error).model_dump(exclude_none=True),
    )


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CurrentUser:
    """
    Dependency: require a valid Bearer JWT for an existing, active account.

    The account is re-read on every request, so deactivation applies immediately.
    """
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Access token required")
    try:
        account = accounts.authenticate_session(db, settings, credentials.credentials)
    except SessionTokenError as e:
        if e.reason == TokenFailure.EXPIRED:
            raise _unauthorized("Token expired") from e
        raise _unauthorized("Invalid token") from e
    except AccountNotFoundError as e:
        raise _unauthorized("User not found") from e
    except InactiveAccountError as e:
        raise _unauthorized("Account is inactive") from e
    except ServiceUnavailableError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server configuration error",
        ) from e
    profile = account.profile
    return CurrentUser(
        id=account.id,
        email=account.email,
        full_name=account.full_name,
        business_name=account.business_name,
        role=profile.role,
        profile_id=profile.profile_id,
    )


def get_optional_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CurrentUser | None:
    """Like get_current_user, but a request without a Bearer token yields None."""
    if credentials is None or not credentials.credentials:
        return None
    return get_current_user(credentials, db, settings)


def require_role(*roles: str) -> Callable[..., CurrentUser]:
    """
    Dependency factory: allow only accounts whose profile role is one of roles.
    Raises 401 without a token and 403 for any other role.

    Usage: Depends(require_role("admin", "manager"))
    """

    def dependency(
        current_user: Annotated[CurrentUser | None, Depends(get_optional_user)],
    ) -> CurrentUser:
        if current_user is None:
            raise _unauthorized("Authentication required")
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return dependency


@router.get("/test")
def auth_test() -> dict[str, str | bool]:
    """Liveness check for the auth router."""
    return {
        "success": True,
        "message": "Auth service is working",
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def register(
    body: RegisterRequest,
    background_tasks: BackgroundTasks,
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
    mailer: Annotated[Mailer, Depends(get_mailer)],
) -> AuthResponse:
    """
    Create an account (unconfirmed) and return a session token.
    A confirmation email is sent after the response.
    """
    result = accounts.register(
        db,
        settings,
        mailer,
        body.email,
        body.password,
        full_name=body.full_name,
        business_name=body.business_name,
        background_tasks=background_tasks,
    )
    return AuthResponse(
        data=AuthData(user=UserResponse.from_account(result.account), token=result.token),
        message="Account created successfully. Please check your email to confirm your account.",
    )


@router.post(
    "/login",
    response_model=AuthResponse,
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
def login(
    body: LoginRequest,
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AuthResponse:
    """
    Authenticate with email and password; returns a JWT session token.
    Include the token in the Authorization header as: Bearer <token>
    """
    result = accounts.login(db, settings, body.email, body.password)
    return AuthResponse(
        data=AuthData(user=UserResponse.from_account(result.account), token=result.token),
        message="Login successful",
    )


@router.post("/confirm-email", response_model=MessageResponse)
def confirm_email(
    body: ConfirmEmailRequest,
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> MessageResponse:
    accounts.confirm_email(db, settings, body.token)
    return MessageResponse(message="Email confirmed successfully")


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(
    body: EmailRequest,
    background_tasks: BackgroundTasks,
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
    mailer: Annotated[Mailer, Depends(get_mailer)],
) -> MessageResponse:
    """Same response whether or not the email is registered."""
    accounts.initiate_password_reset(
        db, settings, mailer, body.email, background_tasks=background_tasks
    )
    return MessageResponse(
        message="If an account with that email exists, a password reset link has been sent"
    )


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    body: ResetPasswordRequest,
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> MessageResponse:
    accounts.reset_password(db, settings, body.token, body.new_password)
    return MessageResponse(message="Password reset successful")


@router.post("/resend-confirmation", response_model=MessageResponse)
def resend_confirmation(
    body: EmailRequest,
    background_tasks: BackgroundTasks,
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
    mailer: Annotated[Mailer, Depends(get_mailer)],
) -> MessageResponse:
    accounts.resend_confirmation_email(
        db, settings, mailer, body.email, background_tasks=background_tasks
    )
    return MessageResponse(message="Confirmation email sent successfully")


@router.get("/profile", response_model=ProfileResponse)
def profile(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> ProfileResponse:
    """Current account with profile fields (requires Bearer token)."""
    account = accounts.get_account_by_id(db, str(current_user.id))
    if account is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return ProfileResponse(data=UserResponse.from_account(account))


@router.post("/verify-token", response_model=VerifyTokenResponse)
def verify_token(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> VerifyTokenResponse:
    return VerifyTokenResponse(user=current_user)


@router.post("/logout", response_model=MessageResponse)
def logout(
    _user: Annotated[CurrentUser, Depends(get_current_user)],
) -> MessageResponse:
    """Tokens are stateless; the client discards its copy."""
    return MessageResponse(message="Logged out successfully")
