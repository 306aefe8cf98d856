"""SQLAlchemy ORM models."""

from app.models.account import DEFAULT_SIGNUP_ROLE, PROFILE_ROLES, Account, Profile
from app.models.base import Base

__all__ = ["Account", "Base", "DEFAULT_SIGNUP_ROLE", "PROFILE_ROLES", "Profile"]
