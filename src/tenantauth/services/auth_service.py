"""Auth service — signup, login, refresh rotation, logout, profile.

Learn: Service layer separates business logic from HTTP routing.
API routes call the service, the service composes the credential store,
password hasher and token codec. It is the only code allowed to touch
refresh-session state.

Every operation that writes more than one row runs inside one
transaction (_atomic). Cross-request coordination is left to the
database: signup relies on unique indexes as the final word, refresh
relies on the conditional UPDATE in rotate_refresh_session. Nothing
here takes a lock.
"""

import asyncio
import re
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantauth.auth.jwt import AuthClaims, TokenCodec, hash_token
from tenantauth.auth.password import PasswordHasher
from tenantauth.config import Settings
from tenantauth.db.models import MembershipStatus, Role
from tenantauth.db.store import CompanyMember, CredentialStore, SignupContext
from tenantauth.errors import (
    AccountNotActive,
    Conflict,
    Forbidden,
    InvalidCredentials,
    InvalidInput,
    InvalidSession,
    NotFound,
    RotationFailed,
    TokenInvalid,
)

logger = structlog.get_logger()

SLUG_MAX_LENGTH = 80

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def slugify(value: str) -> str:
    """Lower-case, collapse non-alphanumeric runs to '-', trim, cap length."""
    slug = _NON_ALNUM.sub("-", value.strip().lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH].strip("-")


@dataclass(frozen=True)
class RequestMeta:
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass(frozen=True)
class UserView:
    id: uuid.UUID
    full_name: str
    email: str
    company_id: uuid.UUID
    role: Role

    @classmethod
    def from_member(cls, member: CompanyMember) -> "UserView":
        return cls(
            id=member.user_id,
            full_name=member.full_name,
            email=member.email,
            company_id=member.company_id,
            role=member.role,
        )


@dataclass(frozen=True)
class AuthResult:
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime
    user: UserView


class AuthService:
    """Business logic for the session lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        codec: TokenCodec,
        hasher: PasswordHasher,
    ):
        self.db = db
        self.codec = codec
        self.hasher = hasher
        self.store = CredentialStore(
            db, timeout=settings.store_timeout_seconds, clock=codec.clock
        )

    @asynccontextmanager
    async def _atomic(self):
        """Own transaction, or a savepoint if the caller already opened one."""
        if self.db.in_transaction():
            async with self.db.begin_nested():
                yield
        else:
            async with self.db.begin():
                yield

    # ─── Signup ─────────────────────────────────────────

    async def signup_company(
        self,
        company_name: str,
        full_name: str,
        email: str,
        password: str,
        company_slug: Optional[str] = None,
        meta: RequestMeta = RequestMeta(),
    ) -> AuthResult:
        """Create company + admin user + membership and open a session.

        Learn: The pre-checks give friendly messages for the common case.
        Two concurrent signups can both pass them; the unique indexes then
        let exactly one insert through and the loser's IntegrityError is
        reported as Conflict, never as a 500.
        """
        slug = slugify(company_slug if company_slug is not None else company_name)
        if not slug:
            raise InvalidInput("Company slug is invalid")

        email_normalized = normalize_email(email)

        try:
            async with self._atomic():
                if await self.store.find_company_by_slug(slug):
                    raise Conflict("Company slug already exists")
                if await self.store.find_user_by_email(email_normalized):
                    raise Conflict("Email already exists")

                password_hash = await asyncio.to_thread(self.hasher.hash, password)
                ctx = SignupContext(
                    company_id=uuid.uuid4(),
                    company_name=company_name.strip(),
                    company_slug=slug,
                    user_id=uuid.uuid4(),
                    membership_id=uuid.uuid4(),
                    full_name=full_name.strip(),
                    email=email.strip(),
                    email_normalized=email_normalized,
                    password_hash=password_hash,
                    role=Role.COMPANY_ADMIN,
                )
                await self.store.create_signup_context(ctx)
                result = await self._issue_session(
                    ctx.user_id, ctx.company_id, Role.COMPANY_ADMIN, meta
                )
        except IntegrityError:
            logger.warning("auth.signup_conflict", slug=slug)
            raise Conflict("Account data already exists")

        logger.info(
            "auth.signup_succeeded",
            user_id=str(result.user.id),
            company_id=str(result.user.company_id),
            slug=slug,
        )
        return result

    # ─── Login ──────────────────────────────────────────

    async def login(
        self, email: str, password: str, meta: RequestMeta = RequestMeta()
    ) -> AuthResult:
        """Email + password → new session.

        Learn: Unknown email and wrong password raise the same
        InvalidCredentials after the same amount of Argon2 work.
        A correct password on a disabled user or membership gets
        AccountNotActive instead — that reveals nothing guessable.
        """
        email_normalized = normalize_email(email)

        async with self._atomic():
            profile = await self.store.find_login_profile(
                email_normalized, include_inactive=True
            )
            if profile is None:
                await asyncio.to_thread(self.hasher.verify_dummy, password)
                logger.warning("auth.login_rejected", reason="invalid_credentials")
                raise InvalidCredentials()

            valid = await asyncio.to_thread(
                self.hasher.verify, profile.password_hash, password
            )
            if not valid:
                logger.warning("auth.login_rejected", reason="invalid_credentials")
                raise InvalidCredentials()

            if not profile.is_active or profile.membership_status != MembershipStatus.ACTIVE:
                logger.warning(
                    "auth.login_rejected",
                    reason="account_not_active",
                    user_id=str(profile.user_id),
                )
                raise AccountNotActive()

            # Upgrade hashes made with outdated Argon2 parameters on successful login
            if self.hasher.needs_rehash(profile.password_hash):
                new_hash = await asyncio.to_thread(self.hasher.hash, password)
                await self.store.update_password_hash(profile.user_id, new_hash)
                logger.info("auth.password_rehashed", user_id=str(profile.user_id))

            result = await self._issue_session(
                profile.user_id, profile.company_id, profile.role, meta
            )

        logger.info(
            "auth.login_succeeded",
            user_id=str(result.user.id),
            company_id=str(result.user.company_id),
        )
        return result

    # ─── Session issuance ───────────────────────────────

    async def _issue_session(
        self,
        user_id: uuid.UUID,
        company_id: uuid.UUID,
        role: Role,
        meta: RequestMeta,
    ) -> AuthResult:
        """Sign both tokens for a brand-new session and persist it.

        Must run inside the caller's transaction: the re-fetch at the end
        sees the same snapshot as the insert, so an account disabled
        concurrently can't come back looking valid.
        """
        claims = AuthClaims(
            user_id=user_id,
            company_id=company_id,
            role=role,
            session_id=uuid.uuid4(),
        )
        access_token = self.codec.issue_access(claims)
        refresh_token = self.codec.issue_refresh(claims)
        refresh_expires_at = self.codec.refresh_expiry(refresh_token)

        await self.store.create_refresh_session(
            session_id=claims.session_id,
            user_id=user_id,
            company_id=company_id,
            token_hash=hash_token(refresh_token),
            expires_at=refresh_expires_at,
            user_agent=meta.user_agent,
            ip_address=meta.ip_address,
        )

        member = await self.store.find_user_in_company(user_id, company_id)
        if member is None:
            raise InvalidSession("User not found in company context")

        return AuthResult(
            access_token=access_token,
            refresh_token=refresh_token,
            refresh_expires_at=refresh_expires_at,
            user=UserView.from_member(member),
        )

    # ─── Refresh ────────────────────────────────────────

    async def refresh_session(
        self, refresh_token: str, meta: RequestMeta = RequestMeta()
    ) -> AuthResult:
        """Exchange a refresh token for a new pair, invalidating the old one.

        Learn: Two guards, both on the stored hash:
        1. Lookup by (sessionId, sha256(token)) — a token that was already
           rotated away no longer matches, so replaying it fails.
        2. The UPDATE only applies if the row still holds that same hash.
           If two requests pass step 1 with the same token, the database
           lets exactly one UPDATE match; the other sees zero rows and
           gets RotationFailed. Nothing is partially applied.
        """
        try:
            payload = self.codec.verify_refresh(refresh_token)
        except TokenInvalid as e:
            raise InvalidSession(e.message)

        claims = payload.claims
        current_hash = hash_token(refresh_token)

        async with self._atomic():
            session = await self.store.find_active_refresh_session(
                claims.session_id, current_hash
            )
            if session is None:
                logger.warning(
                    "auth.refresh_rejected",
                    reason="invalid_session",
                    session_id=str(claims.session_id),
                )
                raise InvalidSession()

            next_refresh_token = self.codec.issue_refresh(claims)
            next_expires_at = self.codec.refresh_expiry(next_refresh_token)

            rotated = await self.store.rotate_refresh_session(
                session.id,
                current_hash,
                hash_token(next_refresh_token),
                next_expires_at,
                user_agent=meta.user_agent,
                ip_address=meta.ip_address,
            )
            if not rotated:
                logger.warning(
                    "auth.refresh_rejected",
                    reason="rotation_race",
                    session_id=str(session.id),
                )
                raise RotationFailed()

            access_token = self.codec.issue_access(claims)
            member = await self.store.find_user_in_company(
                session.user_id, session.company_id
            )
            if member is None:
                raise InvalidSession("User not found")

        logger.info("auth.refresh_succeeded", session_id=str(session.id))
        return AuthResult(
            access_token=access_token,
            refresh_token=next_refresh_token,
            refresh_expires_at=next_expires_at,
            user=UserView.from_member(member),
        )

    # ─── Logout ─────────────────────────────────────────

    async def logout(self, refresh_token: Optional[str]) -> None:
        """Revoke the session behind a refresh token. Never fails.

        Learn: Logout is idempotent. Missing, malformed, expired or already
        revoked tokens are a quiet no-op. A store failure (including a raw
        connection error the driver doesn't wrap) is logged and swallowed;
        the client drops its cookie either way.
        """
        if not refresh_token:
            return

        try:
            payload = self.codec.verify_refresh(refresh_token)
        except TokenInvalid:
            logger.info("auth.logout_noop", reason="invalid_token")
            return
        except Exception as e:
            logger.warning(
                "auth.logout_failed", error=str(e), error_type=type(e).__name__
            )
            return

        session_id = payload.claims.session_id
        try:
            async with self._atomic():
                revoked = await self.store.revoke_refresh_session(
                    session_id, hash_token(refresh_token)
                )
        except Exception as e:
            logger.warning(
                "auth.logout_failed",
                session_id=str(session_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        logger.info("auth.logout", session_id=str(session_id), revoked=revoked)

    # ─── Profile ────────────────────────────────────────

    async def get_profile(self, user_id: uuid.UUID, company_id: uuid.UUID) -> UserView:
        """Current user as seen from the company in their access token.

        Learn: By the time this runs the access token has already been
        verified, so a missing or disabled membership means it was
        removed after the token was issued. Access tokens outlive
        revocation, so this is reported as 404 / 403 rather than a 500.
        """
        member = await self.store.find_user_in_company(
            user_id, company_id, active_only=False
        )
        if member is None:
            logger.warning(
                "auth.profile_missing", user_id=str(user_id), company_id=str(company_id)
            )
            raise NotFound("User not found")
        if not member.is_usable:
            raise Forbidden("Membership is not active")
        return UserView.from_member(member)
