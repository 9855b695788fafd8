"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Constraints and indexes are defined here and
mirrored by the Alembic revision under db/migrations.

Key concepts:
- UUID primary keys via the dialect-neutral Uuid type (native on Postgres)
- Closed enums (Role, MembershipStatus) stored as checked strings
- Company/User/Membership are never hard-deleted; they are soft-disabled
  through User.is_active and Membership.status
- RefreshSession is one row per logical session. Rotation mutates the row
  (new token_hash + expires_at), so its id is stable for the session's life.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
    true,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class Role(str, enum.Enum):
    """A user's role inside one company."""

    COMPANY_ADMIN = "company_admin"
    EMPLOYEE = "employee"


class MembershipStatus(str, enum.Enum):
    ACTIVE = "active"
    INVITED = "invited"
    DISABLED = "disabled"


def _enum_column(enum_cls: type[enum.Enum], name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


class Company(Base):
    """Tenant root. All authorization is scoped to exactly one company.

    Learn: slug is globally unique and already normalized (lower-case,
    hyphenated) by the time it reaches the database.
    """

    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(String(80), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=utcnow
    )

    memberships: Mapped[list["Membership"]] = relationship(back_populates="company")

    __table_args__ = (
        UniqueConstraint("slug", name="uq_companies_slug"),
    )


class User(Base):
    """A person. One identity across every company they belong to.

    Learn: email keeps the display form the user typed; email_normalized
    (trimmed, lower-cased) is the real uniqueness key.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    email: Mapped[str] = mapped_column(Text, nullable=False)
    email_normalized: Mapped[str] = mapped_column(String(320), nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    full_name: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=utcnow
    )

    memberships: Mapped[list["Membership"]] = relationship(back_populates="user")

    __table_args__ = (
        UniqueConstraint("email_normalized", name="uq_users_email_normalized"),
    )


class Membership(Base):
    """Binds one user to one company with a role and status."""

    __tablename__ = "memberships"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[Role] = mapped_column(
        _enum_column(Role, "membership_role"), nullable=False
    )
    status: Mapped[MembershipStatus] = mapped_column(
        _enum_column(MembershipStatus, "membership_status"),
        nullable=False,
        default=MembershipStatus.ACTIVE,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=utcnow
    )

    company: Mapped["Company"] = relationship(back_populates="memberships")
    user: Mapped["User"] = relationship(back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("company_id", "user_id", name="uq_memberships_company_user"),
        Index("ix_memberships_company_id", "company_id"),
        Index("ix_memberships_user_id", "user_id"),
        Index("ix_memberships_company_role", "company_id", "role"),
    )


class RefreshSession(Base):
    """One logical login session, identified by the sessionId in its tokens.

    Learn: Only sha256(refresh token) is stored, never the token itself.
    The session is active iff revoked_at IS NULL AND expires_at > now.
    token_hash and revoked_at are only ever changed through the
    conditional UPDATEs in CredentialStore (rotate / revoke).
    """

    __tablename__ = "refresh_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    user_agent: Mapped[Optional[str]] = mapped_column(Text)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("token_hash", name="uq_refresh_sessions_token_hash"),
        Index("ix_refresh_sessions_user_id", "user_id"),
        Index("ix_refresh_sessions_company_id", "company_id"),
        Index("ix_refresh_sessions_expires_at", "expires_at"),
        # Active sessions for a user in a company
        Index(
            "ix_refresh_sessions_active",
            "user_id",
            "company_id",
            postgresql_where=text("revoked_at IS NULL"),
        ),
    )
