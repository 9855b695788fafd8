"""Credential store — tenants, users, memberships, refresh sessions.

Learn: A thin repository over one AsyncSession. It never commits: the
caller decides the transaction boundary, so the same methods work
standalone or composed inside AuthService's atomic units (signup's three
inserts, refresh's lookup + rotate + re-fetch).

Lookups return None when nothing matches, never raise — policy
(401 vs 403 vs 404) is the service's call. The only exception that
escapes on purpose is IntegrityError from a unique index, which the
service turns into Conflict.

Refresh-session mutation goes exclusively through rotate_refresh_session
and revoke_refresh_session, both conditional UPDATEs. The database's
row-level compare-and-set is the sole arbiter when two requests race on
the same session; there is no in-process lock.

Every round-trip is bounded by `timeout` seconds so a hung database
can't pin a request forever.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy import and_, case, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tenantauth.db.models import (
    Company,
    Membership,
    MembershipStatus,
    RefreshSession,
    Role,
    User,
    utcnow,
)

T = TypeVar("T")


@dataclass(frozen=True)
class LoginProfile:
    """User joined with one of their memberships."""

    user_id: uuid.UUID
    full_name: str
    email: str
    password_hash: str
    is_active: bool
    company_id: uuid.UUID
    role: Role
    membership_status: MembershipStatus


@dataclass(frozen=True)
class CompanyMember:
    """A user as seen from inside one company."""

    user_id: uuid.UUID
    full_name: str
    email: str
    is_active: bool
    company_id: uuid.UUID
    role: Role
    membership_status: MembershipStatus

    @property
    def is_usable(self) -> bool:
        return self.is_active and self.membership_status == MembershipStatus.ACTIVE


@dataclass(frozen=True)
class ActiveSession:
    id: uuid.UUID
    user_id: uuid.UUID
    company_id: uuid.UUID


@dataclass(frozen=True)
class SignupContext:
    """Everything signup writes, as one unit."""

    company_id: uuid.UUID
    company_name: str
    company_slug: str
    user_id: uuid.UUID
    membership_id: uuid.UUID
    full_name: str
    email: str
    email_normalized: str
    password_hash: str
    role: Role


class CredentialStore:
    """Lookups and conditional mutations over the auth tables."""

    def __init__(
        self,
        db: AsyncSession,
        timeout: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.timeout = timeout
        self.clock = clock

    async def _bounded(self, op: Awaitable[T]) -> T:
        return await asyncio.wait_for(op, timeout=self.timeout)

    async def _first(self, stmt) -> Any:
        result = await self._bounded(self.db.execute(stmt))
        return result.first()

    # ─── Companies & users ──────────────────────────────

    async def find_company_by_slug(self, slug: str) -> Optional[Company]:
        row = await self._first(select(Company).where(Company.slug == slug).limit(1))
        return row[0] if row else None

    async def find_user_by_email(self, email_normalized: str) -> Optional[User]:
        row = await self._first(
            select(User).where(User.email_normalized == email_normalized).limit(1)
        )
        return row[0] if row else None

    async def add_company(self, company_id: uuid.UUID, name: str, slug: str) -> Company:
        company = Company(id=company_id, name=name, slug=slug)
        self.db.add(company)
        await self._bounded(self.db.flush())
        return company

    async def add_user(
        self,
        user_id: uuid.UUID,
        email: str,
        email_normalized: str,
        password_hash: str,
        full_name: str,
    ) -> User:
        user = User(
            id=user_id,
            email=email,
            email_normalized=email_normalized,
            password_hash=password_hash,
            full_name=full_name,
            is_active=True,
        )
        self.db.add(user)
        await self._bounded(self.db.flush())
        return user

    async def add_membership(
        self,
        membership_id: uuid.UUID,
        company_id: uuid.UUID,
        user_id: uuid.UUID,
        role: Role,
        status: MembershipStatus = MembershipStatus.ACTIVE,
    ) -> Membership:
        membership = Membership(
            id=membership_id,
            company_id=company_id,
            user_id=user_id,
            role=role,
            status=status,
        )
        self.db.add(membership)
        await self._bounded(self.db.flush())
        return membership

    async def find_membership(
        self, company_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[Membership]:
        row = await self._first(
            select(Membership)
            .where(Membership.company_id == company_id, Membership.user_id == user_id)
            .limit(1)
        )
        return row[0] if row else None

    async def create_signup_context(self, ctx: SignupContext) -> None:
        """Insert company, user and active membership.

        Learn: The three flushes share the caller's transaction; a unique
        violation on any of them (slug, email, company+user) raises
        IntegrityError and the caller rolls the whole unit back.
        """
        await self.add_company(ctx.company_id, ctx.company_name, ctx.company_slug)
        await self.add_user(
            ctx.user_id,
            ctx.email,
            ctx.email_normalized,
            ctx.password_hash,
            ctx.full_name,
        )
        await self.add_membership(ctx.membership_id, ctx.company_id, ctx.user_id, ctx.role)

    async def update_password_hash(self, user_id: uuid.UUID, password_hash: str) -> None:
        await self._bounded(
            self.db.execute(
                update(User)
                .where(User.id == user_id)
                .values(password_hash=password_hash, updated_at=self.clock())
                .execution_options(synchronize_session=False)
            )
        )

    # ─── Profiles ───────────────────────────────────────

    async def find_login_profile(
        self, email_normalized: str, include_inactive: bool = False
    ) -> Optional[LoginProfile]:
        """User ⋈ membership for a login attempt.

        By default only an active user with an active membership matches.
        With include_inactive=True the best membership is returned whatever
        its status (active first, then oldest), so the caller can tell a
        disabled account apart from bad credentials once the password checks out.
        """
        stmt = (
            select(
                User.id,
                User.full_name,
                User.email,
                User.password_hash,
                User.is_active,
                Membership.company_id,
                Membership.role,
                Membership.status,
            )
            .join(Membership, Membership.user_id == User.id)
            .where(User.email_normalized == email_normalized)
        )
        if not include_inactive:
            stmt = stmt.where(
                User.is_active.is_(True),
                Membership.status == MembershipStatus.ACTIVE,
            )
        stmt = stmt.order_by(
            case((Membership.status == MembershipStatus.ACTIVE, 0), else_=1),
            Membership.created_at,
            Membership.id,
        ).limit(1)

        row = await self._first(stmt)
        if not row:
            return None
        return LoginProfile(
            user_id=row[0],
            full_name=row[1],
            email=row[2],
            password_hash=row[3],
            is_active=row[4],
            company_id=row[5],
            role=Role(row[6]),
            membership_status=MembershipStatus(row[7]),
        )

    async def find_user_in_company(
        self,
        user_id: uuid.UUID,
        company_id: uuid.UUID,
        active_only: bool = True,
    ) -> Optional[CompanyMember]:
        """The user's membership in one company — tenant-scoped by construction."""
        stmt = (
            select(
                User.id,
                User.full_name,
                User.email,
                User.is_active,
                Membership.company_id,
                Membership.role,
                Membership.status,
            )
            .join(Membership, Membership.user_id == User.id)
            .where(User.id == user_id, Membership.company_id == company_id)
        )
        if active_only:
            stmt = stmt.where(
                User.is_active.is_(True),
                Membership.status == MembershipStatus.ACTIVE,
            )
        row = await self._first(stmt.limit(1))
        if not row:
            return None
        return CompanyMember(
            user_id=row[0],
            full_name=row[1],
            email=row[2],
            is_active=row[3],
            company_id=row[4],
            role=Role(row[5]),
            membership_status=MembershipStatus(row[6]),
        )

    # ─── Refresh sessions ───────────────────────────────

    async def create_refresh_session(
        self,
        session_id: uuid.UUID,
        user_id: uuid.UUID,
        company_id: uuid.UUID,
        token_hash: str,
        expires_at: datetime,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> RefreshSession:
        session = RefreshSession(
            id=session_id,
            user_id=user_id,
            company_id=company_id,
            token_hash=token_hash,
            expires_at=expires_at,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        self.db.add(session)
        await self._bounded(self.db.flush())
        return session

    async def find_active_refresh_session(
        self, session_id: uuid.UUID, token_hash: str
    ) -> Optional[ActiveSession]:
        """Match on id AND current hash — a rotated-away token never matches."""
        row = await self._first(
            select(RefreshSession.id, RefreshSession.user_id, RefreshSession.company_id)
            .where(
                RefreshSession.id == session_id,
                RefreshSession.token_hash == token_hash,
                RefreshSession.revoked_at.is_(None),
                RefreshSession.expires_at > self.clock(),
            )
            .limit(1)
        )
        if not row:
            return None
        return ActiveSession(id=row[0], user_id=row[1], company_id=row[2])

    async def rotate_refresh_session(
        self,
        session_id: uuid.UUID,
        current_token_hash: str,
        next_token_hash: str,
        expires_at: datetime,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> bool:
        """Swap the session's hash iff it still holds current_token_hash.

        Returns False when zero rows matched: another rotation got there
        first, or the session was revoked in between.
        """
        result = await self._bounded(
            self.db.execute(
                update(RefreshSession)
                .where(
                    RefreshSession.id == session_id,
                    RefreshSession.token_hash == current_token_hash,
                    RefreshSession.revoked_at.is_(None),
                )
                .values(
                    token_hash=next_token_hash,
                    expires_at=expires_at,
                    last_used_at=self.clock(),
                    user_agent=user_agent,
                    ip_address=ip_address,
                )
                .execution_options(synchronize_session=False)
            )
        )
        return result.rowcount == 1

    async def revoke_refresh_session(self, session_id: uuid.UUID, token_hash: str) -> bool:
        """Mark the session revoked iff it is currently active."""
        now = self.clock()
        result = await self._bounded(
            self.db.execute(
                update(RefreshSession)
                .where(
                    RefreshSession.id == session_id,
                    RefreshSession.token_hash == token_hash,
                    RefreshSession.revoked_at.is_(None),
                    RefreshSession.expires_at > now,
                )
                .values(revoked_at=now, last_used_at=now)
                .execution_options(synchronize_session=False)
            )
        )
        return result.rowcount == 1

    async def delete_stale_sessions(self, cutoff: datetime) -> int:
        """Garbage-collect sessions that expired or were revoked before cutoff."""
        result = await self._bounded(
            self.db.execute(
                delete(RefreshSession)
                .where(
                    or_(
                        RefreshSession.expires_at < cutoff,
                        and_(
                            RefreshSession.revoked_at.is_not(None),
                            RefreshSession.revoked_at < cutoff,
                        ),
                    )
                )
                .execution_options(synchronize_session=False)
            )
        )
        return result.rowcount
