"""Persistence for Account/Profile rows. The only module that writes these tables."""

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from app.models import DEFAULT_SIGNUP_ROLE, Account, Profile

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _now() -> datetime:
    return datetime.now(UTC)


def find_by_email(session: Session, email: str) -> Account | None:
    return session.query(Account).filter(Account.email == normalize_email(email)).first()


def find_by_id(session: Session, account_id: uuid.UUID | str) -> Account | None:
    """Return the account (profile loaded) or None; ids that are not UUIDs match nothing."""
    if not isinstance(account_id, uuid.UUID):
        try:
            account_id = uuid.UUID(str(account_id))
        except (TypeError, ValueError):
            return None
    return session.query(Account).filter(Account.id == account_id).first()


def find_by_confirmation_token(session: Session, token: str) -> Account | None:
    if not token:
        return None
    return session.query(Account).filter(Account.confirmation_token == token).first()


def find_by_recovery_token(session: Session, token: str) -> Account | None:
    if not token:
        return None
    return session.query(Account).filter(Account.recovery_token == token).first()


def insert_account_and_profile(
    session: Session,
    *,
    email: str,
    password_hash: str,
    confirmation_token: str | None,
    full_name: str | None = None,
    business_name: str | None = None,
    role: str = DEFAULT_SIGNUP_ROLE,
    confirmed: bool = False,
) -> Account:
    """
    Insert an account and its profile in one transaction.

    On any failure the transaction is rolled back and the original exception
    (e.g. sqlalchemy.exc.IntegrityError for a duplicate email) is re-raised.
    """
    now = _now()
    account = Account(
        email=normalize_email(email),
        password_hash=password_hash,
        full_name=full_name or "",
        business_name=business_name or "",
        confirmation_token=confirmation_token,
        confirmation_sent_at=now if confirmation_token else None,
        email_confirmed_at=now if confirmed else None,
    )
    try:
        session.add(account)
        session.flush()
        profile = Profile(account_id=account.id, role=role, is_active=True)
        session.add(profile)
        session.flush()
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(account)
    logger.info("Account created", extra={"account_id": str(account.id), "role": role})
    return account


def _commit(session: Session, account: Account) -> Account:
    try:
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(account)
    return account


def update_confirmation(session: Session, account: Account) -> Account:
    """Mark the email confirmed (first time only) and consume the confirmation token."""
    now = _now()
    if account.email_confirmed_at is None:
        account.email_confirmed_at = now
    account.confirmation_token = None
    account.updated_at = now
    return _commit(session, account)


def set_confirmation_token(session: Session, account: Account, token: str) -> Account:
    """Replace any outstanding confirmation token and restamp confirmation_sent_at."""
    now = _now()
    account.confirmation_token = token
    account.confirmation_sent_at = now
    account.updated_at = now
    return _commit(session, account)


def update_recovery_token(session: Session, account: Account, token: str) -> Account:
    """Replace any outstanding recovery token and stamp recovery_sent_at."""
    now = _now()
    account.recovery_token = token
    account.recovery_sent_at = now
    account.updated_at = now
    return _commit(session, account)


def update_password(session: Session, account: Account, password_hash: str) -> Account:
    """Replace the password hash and clear the recovery token."""
    now = _now()
    account.password_hash = password_hash
    account.recovery_token = None
    account.recovery_sent_at = None
    account.updated_at = now
    return _commit(session, account)


def update_last_sign_in(session: Session, account: Account) -> Account:
    now = _now()
    account.last_sign_in_at = now
    account.updated_at = now
    return _commit(session, account)
