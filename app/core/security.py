"""Password hashing, JWT session tokens and opaque email tokens."""

import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

import bcrypt
import jwt

from app.core.config import get_settings

if TYPE_CHECKING:
    from app.core.config import Settings

# Bcrypt cost (rounds); 12 keeps a verify around a few hundred ms on commodity hardware.
BCRYPT_ROUNDS = 12

# Bytes of randomness in confirmation/recovery tokens (rendered as hex, so 64 chars).
OPAQUE_TOKEN_BYTES = 32

# Password length bounds shared by registration and reset (input validation).
PASSWORD_MIN_LEN = 6
PASSWORD_MAX_LEN = 128


class TokenFailure(str, Enum):
    """Why a session token was rejected."""

    EXPIRED = "expired"
    MALFORMED = "malformed"
    INVALID_SIGNATURE = "invalid_signature"


class TokenVerificationError(Exception):
    """Raised when a session token cannot be accepted."""

    def __init__(self, reason: TokenFailure, message: str | None = None) -> None:
        self.reason = reason
        self.message = message or f"Session token rejected: {reason.value}"
        super().__init__(self.message)


class SigningKeyMissingError(Exception):
    """Raised when JWT_SECRET is empty at sign/verify time."""

    def __init__(self, message: str = "JWT_SECRET is not configured.") -> None:
        self.message = message
        super().__init__(message)


@dataclass(frozen=True)
class TokenClaims:
    """Identity asserted by a verified session token."""

    account_id: str
    email: str


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password for storage. Do not store plain passwords."""
    # bcrypt has a 72-byte limit; truncate to avoid errors (validation already limits length).
    pw_bytes = plain_password.encode("utf-8")[:72]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain_password: str, hashed: str) -> bool:
    """Verify a plain password against a stored hash."""
    pw_bytes = plain_password.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
    except (ValueError, TypeError, AttributeError):
        return False


def generate_opaque_token() -> str:
    """Random single-use token for email confirmation and password reset links."""
    return secrets.token_hex(OPAQUE_TOKEN_BYTES)


def _signing_secret(settings: "Settings") -> str:
    secret = settings.JWT_SECRET.get_secret_value() if settings.JWT_SECRET else ""
    if not secret or not secret.strip():
        raise SigningKeyMissingError()
    return secret


def create_access_token(
    account_id: Any,
    email: str,
    expires_delta: timedelta | None = None,
    settings: "Settings | None" = None,
) -> str:
    """Create a JWT with sub (account id), email, iat and exp."""
    settings = settings or get_settings()
    now = datetime.now(UTC)
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.JWT_EXPIRE_MINUTES)
    payload: dict[str, Any] = {
        "sub": str(account_id),
        "email": email,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(
        payload,
        _signing_secret(settings),
        algorithm=settings.JWT_ALGORITHM,
    )


def verify_access_token(token: str, settings: "Settings | None" = None) -> TokenClaims:
    """
    Decode and validate a session token; return the account id and email it asserts.

    Raises TokenVerificationError with reason EXPIRED, INVALID_SIGNATURE or MALFORMED.
    """
    settings = settings or get_settings()
    secret = _signing_secret(settings)
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenVerificationError(TokenFailure.EXPIRED, "Token expired") from e
    except jwt.InvalidSignatureError as e:
        raise TokenVerificationError(TokenFailure.INVALID_SIGNATURE, "Invalid token") from e
    except jwt.PyJWTError as e:
        raise TokenVerificationError(TokenFailure.MALFORMED, "Invalid token") from e

    sub = payload.get("sub")
    email = payload.get("email")
    if not sub or not isinstance(email, str) or not email:
        raise TokenVerificationError(TokenFailure.MALFORMED, "Invalid token payload")
    return TokenClaims(account_id=str(sub), email=email)
