"""
Account lifecycle: register, login, email confirmation, password reset, session tokens.

Account states are derived, not stored: Unconfirmed (email_confirmed_at is null),
Confirmed+Active and Confirmed+Inactive (profile.is_active). Registration issues a
session token straight away, but login is refused until the email is confirmed.

Emails are best-effort: a failed or raising mailer is logged and never changes the
outcome of the operation that triggered it.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from fastapi import BackgroundTasks
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.security import (
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    SigningKeyMissingError,
    TokenClaims,
    TokenFailure,
    TokenVerificationError,
    create_access_token,
    generate_opaque_token,
    hash_password,
    verify_access_token,
    verify_password,
)
from app.models import Account, Profile
from app.services import account_store
from app.services.mailer import Mailer, send_confirmation_email, send_password_reset_email

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
EMAIL_MAX_LEN = 255
NAME_MAX_LEN = 255

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"
INVALID_CONFIRMATION_TOKEN_MESSAGE = "Invalid or expired confirmation token"
INVALID_RESET_TOKEN_MESSAGE = "Invalid or expired reset token"


class AccountError(Exception):
    """Base for lifecycle failures; message is safe to show to the caller."""

    code = "ACCOUNT_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


class AccountValidationError(AccountError):
    """Missing or malformed input; raised before the store is touched."""

    code = "VALIDATION_ERROR"


class AccountConflictError(AccountError):
    code = "CONFLICT"


class InvalidCredentialsError(AccountError):
    code = "INVALID_CREDENTIALS"


class InactiveAccountError(AccountError):
    code = "ACCOUNT_INACTIVE"


class EmailNotConfirmedError(AccountError):
    code = "EMAIL_NOT_CONFIRMED"


class InvalidTokenError(AccountError):
    """Unknown, consumed or expired confirmation/recovery token."""

    code = "INVALID_TOKEN"


class AccountNotFoundError(AccountError):
    code = "NOT_FOUND"


class AlreadyConfirmedError(AccountError):
    code = "ALREADY_CONFIRMED"


class SessionTokenError(AccountError):
    """Session token rejected; reason tells expired apart from malformed/bad signature."""

    code = "INVALID_SESSION_TOKEN"

    def __init__(self, message: str, reason: TokenFailure) -> None:
        self.reason = reason
        super().__init__(message)


class ServiceUnavailableError(AccountError):
    """Configuration or dependency problem (e.g. signing secret missing)."""

    code = "UNAVAILABLE"


@dataclass
class AuthResult:
    """Outcome of register/login."""

    account: Account
    profile: Profile | None
    token: str


def _as_utc(value: datetime) -> datetime:
    # Some backends (SQLite) hand back naive datetimes; stored values are always UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _token_expired(sent_at: datetime | None, ttl: timedelta | None) -> bool:
    if ttl is None:
        return False
    if sent_at is None:
        return True
    return datetime.now(UTC) - _as_utc(sent_at) > ttl


def _confirmation_ttl(settings: "Settings") -> timedelta | None:
    hours = settings.CONFIRMATION_TOKEN_TTL_HOURS
    return timedelta(hours=hours) if hours > 0 else None


def _recovery_ttl(settings: "Settings") -> timedelta | None:
    minutes = settings.RECOVERY_TOKEN_TTL_MINUTES
    return timedelta(minutes=minutes) if minutes > 0 else None


def _require_email(email: str | None) -> str:
    normalized = account_store.normalize_email(email or "")
    if not normalized:
        raise AccountValidationError("Email is required")
    return normalized


def _validate_email_format(email: str) -> None:
    if len(email) > EMAIL_MAX_LEN or not EMAIL_PATTERN.match(email):
        raise AccountValidationError("Please provide a valid email address")


def _validate_new_password(password: str | None) -> str:
    if not password:
        raise AccountValidationError("Password is required")
    if len(password) < PASSWORD_MIN_LEN:
        raise AccountValidationError(
            f"Password must be at least {PASSWORD_MIN_LEN} characters long"
        )
    if len(password) > PASSWORD_MAX_LEN:
        raise AccountValidationError(
            f"Password must be at most {PASSWORD_MAX_LEN} characters long"
        )
    return password


def _clean_name(value: str | None, field: str) -> str:
    cleaned = (value or "").strip()
    if len(cleaned) > NAME_MAX_LEN:
        raise AccountValidationError(f"{field} must be at most {NAME_MAX_LEN} characters long")
    return cleaned


def _issue_token(account: Account, settings: "Settings") -> str:
    try:
        return create_access_token(account.id, account.email, settings=settings)
    except SigningKeyMissingError as e:
        logger.error("Cannot issue session token: %s", e.message)
        raise ServiceUnavailableError("Server configuration error") from e


def _send_best_effort(
    send: Callable[[Mailer, str, str, str], bool],
    mailer: Mailer,
    email: str,
    token: str,
    frontend_url: str,
    purpose: str,
) -> None:
    try:
        sent = send(mailer, email, token, frontend_url)
    except Exception:
        logger.exception("Email service error", extra={"purpose": purpose, "to": email})
        return
    if sent:
        logger.info("Email dispatched", extra={"purpose": purpose, "to": email})
    else:
        logger.warning("Email dispatch failed", extra={"purpose": purpose, "to": email})


def _dispatch_email(
    background_tasks: BackgroundTasks | None,
    send: Callable[[Mailer, str, str, str], bool],
    mailer: Mailer,
    email: str,
    token: str,
    settings: "Settings",
    purpose: str,
) -> None:
    """Queue the email after the response when running under FastAPI, else send inline."""
    args = (send, mailer, email, token, settings.FRONTEND_URL, purpose)
    if background_tasks is not None:
        background_tasks.add_task(_send_best_effort, *args)
    else:
        _send_best_effort(*args)


def register(
    session: Session,
    settings: "Settings",
    mailer: Mailer,
    email: str,
    password: str,
    full_name: str | None = None,
    business_name: str | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> AuthResult:
    """
    Create an unconfirmed account plus its admin profile and return a session token.

    Raises AccountValidationError for bad input and AccountConflictError when the
    email (case-insensitive) is taken, whether caught by the pre-check or by the
    unique index at insert time.
    """
    normalized = _require_email(email)
    _validate_email_format(normalized)
    _validate_new_password(password)
    full_name = _clean_name(full_name, "Full name")
    business_name = _clean_name(business_name, "Business name")

    if account_store.find_by_email(session, normalized) is not None:
        raise AccountConflictError("User with this email already exists")

    confirmation_token = generate_opaque_token()
    try:
        account = account_store.insert_account_and_profile(
            session,
            email=normalized,
            password_hash=hash_password(password),
            confirmation_token=confirmation_token,
            full_name=full_name,
            business_name=business_name,
        )
    except IntegrityError as e:
        # Lost the race with a concurrent registration for the same email.
        if account_store.find_by_email(session, normalized) is not None:
            raise AccountConflictError("User with this email already exists") from e
        raise

    token = _issue_token(account, settings)
    _dispatch_email(
        background_tasks,
        send_confirmation_email,
        mailer,
        account.email,
        confirmation_token,
        settings,
        "email_confirmation",
    )
    return AuthResult(account=account, profile=account.profile, token=token)


def login(
    session: Session,
    settings: "Settings",
    email: str,
    password: str,
) -> AuthResult:
    """
    Check credentials, then confirmation, then the active flag; stamp last_sign_in_at.

    Unknown email and wrong password fail with the same message.
    """
    if not email or not password:
        raise AccountValidationError("Email and password are required")

    account = account_store.find_by_email(session, email)
    if account is None or not verify_password(password, account.password_hash):
        raise InvalidCredentialsError(INVALID_CREDENTIALS_MESSAGE)

    if not account.is_confirmed:
        raise EmailNotConfirmedError(
            "Please confirm your email address before logging in. "
            "Check your email for the confirmation link."
        )

    profile = account.profile
    if profile is None or not profile.is_active:
        raise InactiveAccountError("Account is inactive. Please contact support.")

    account = account_store.update_last_sign_in(session, account)
    token = _issue_token(account, settings)
    logger.info("Login succeeded", extra={"account_id": str(account.id)})
    return AuthResult(account=account, profile=account.profile, token=token)


def confirm_email(session: Session, settings: "Settings", token: str) -> Account:
    """Consume a confirmation token. A used, unknown or expired token fails the same way."""
    if not token:
        raise AccountValidationError("Confirmation token is required")

    account = account_store.find_by_confirmation_token(session, token)
    if account is None:
        raise InvalidTokenError(INVALID_CONFIRMATION_TOKEN_MESSAGE)
    if _token_expired(account.confirmation_sent_at, _confirmation_ttl(settings)):
        logger.info("Confirmation token expired", extra={"account_id": str(account.id)})
        raise InvalidTokenError(INVALID_CONFIRMATION_TOKEN_MESSAGE)

    return account_store.update_confirmation(session, account)


def initiate_password_reset(
    session: Session,
    settings: "Settings",
    mailer: Mailer,
    email: str,
    background_tasks: BackgroundTasks | None = None,
) -> bool:
    """
    Issue a recovery token and email it. Always returns True, so callers cannot
    tell whether the address is registered.
    """
    normalized = _require_email(email)

    account = account_store.find_by_email(session, normalized)
    if account is None:
        logger.info("Password reset requested for unknown email")
        return True

    reset_token = generate_opaque_token()
    account = account_store.update_recovery_token(session, account, reset_token)
    _dispatch_email(
        background_tasks,
        send_password_reset_email,
        mailer,
        account.email,
        reset_token,
        settings,
        "password_reset",
    )
    return True


def reset_password(
    session: Session,
    settings: "Settings",
    token: str,
    new_password: str,
) -> Account:
    """Replace the password using a recovery token; the token is consumed."""
    if not token or not new_password:
        raise AccountValidationError("Token and new password are required")
    _validate_new_password(new_password)

    account = account_store.find_by_recovery_token(session, token)
    if account is None:
        raise InvalidTokenError(INVALID_RESET_TOKEN_MESSAGE)
    if _token_expired(account.recovery_sent_at, _recovery_ttl(settings)):
        logger.info("Recovery token expired", extra={"account_id": str(account.id)})
        raise InvalidTokenError(INVALID_RESET_TOKEN_MESSAGE)

    account = account_store.update_password(session, account, hash_password(new_password))
    logger.info("Password reset", extra={"account_id": str(account.id)})
    return account


def resend_confirmation_email(
    session: Session,
    settings: "Settings",
    mailer: Mailer,
    email: str,
    background_tasks: BackgroundTasks | None = None,
) -> bool:
    """
    Replace the confirmation token and email it again.

    Unlike initiate_password_reset this reports unknown and already-confirmed
    addresses (AccountNotFoundError / AlreadyConfirmedError).
    """
    normalized = _require_email(email)

    account = account_store.find_by_email(session, normalized)
    if account is None:
        raise AccountNotFoundError("User not found")
    if account.is_confirmed:
        raise AlreadyConfirmedError("Email is already confirmed")

    confirmation_token = generate_opaque_token()
    account = account_store.set_confirmation_token(session, account, confirmation_token)
    _dispatch_email(
        background_tasks,
        send_confirmation_email,
        mailer,
        account.email,
        confirmation_token,
        settings,
        "email_confirmation",
    )
    return True


def verify_session_token(token: str, settings: "Settings") -> TokenClaims:
    """Signature/expiry check only; does not consult the store."""
    if not token:
        raise SessionTokenError("Access token required", TokenFailure.MALFORMED)
    try:
        return verify_access_token(token, settings=settings)
    except TokenVerificationError as e:
        raise SessionTokenError(e.message, e.reason) from e
    except SigningKeyMissingError as e:
        logger.error("Cannot verify session token: %s", e.message)
        raise ServiceUnavailableError("Server configuration error") from e


def get_account_by_id(session: Session, account_id: str) -> Account | None:
    return account_store.find_by_id(session, account_id)


def authenticate_session(session: Session, settings: "Settings", token: str) -> Account:
    """
    Resolve the account behind a session token, re-reading it from the store on
    every call so deactivation takes effect before the token expires.
    """
    claims = verify_session_token(token, settings)
    account = account_store.find_by_id(session, claims.account_id)
    if account is None:
        raise AccountNotFoundError("User not found")
    if account.profile is None or not account.profile.is_active:
        raise InactiveAccountError("Account is inactive")
    return account
