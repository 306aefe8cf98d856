"""ORM models for accounts (identity + credentials) and their profiles (role, contact)."""

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    String,
    Uuid,
    func,
)
from sqlalchemy.orm import relationship

from app.models.base import Base

# Roles a profile may carry; self-registration assigns DEFAULT_SIGNUP_ROLE.
PROFILE_ROLES = ("admin", "manager", "user", "viewer")
# There is no invite flow yet, so every self-registered account is an admin of its own business.
DEFAULT_SIGNUP_ROLE = "admin"


class Account(Base):
    """
    Identity record with credentials and confirmation/recovery state.

    email is stored lowercase; the unique index is the authoritative duplicate guard.
    email_confirmed_at is null until the confirmation link is used.
    confirmation_token / recovery_token hold at most one outstanding value each.
    """

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True, index=True)
    full_name = Column(String(255), nullable=False, default="")
    business_name = Column(String(255), nullable=False, default="")
    password_hash = Column(String(255), nullable=False)
    email_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    confirmation_token = Column(String(128), nullable=True, index=True)
    confirmation_sent_at = Column(DateTime(timezone=True), nullable=True)
    recovery_token = Column(String(128), nullable=True, index=True)
    recovery_sent_at = Column(DateTime(timezone=True), nullable=True)
    last_sign_in_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    profile = relationship(
        "Profile",
        back_populates="account",
        uselist=False,
        lazy="joined",
    )

    @property
    def is_confirmed(self) -> bool:
        return self.email_confirmed_at is not None


class Profile(Base):
    """Authorization/contact facet, one-to-one with Account. is_active gates authentication."""

    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint(
            "role IN ('admin', 'manager', 'user', 'viewer')", name="ck_profiles_role"
        ),
    )

    profile_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id = Column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    role = Column(String(32), nullable=False, default=DEFAULT_SIGNUP_ROLE)
    phone = Column(String(50), nullable=True)
    address = Column(String(1024), nullable=True)
    avatar_url = Column(String(2048), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    account = relationship("Account", back_populates="profile")
