"""JWT token creation and verification.

Learn: JWT (JSON Web Token) provides stateless authentication.
- Access token: short-lived (minutes), used for API calls. Never checked
  against the database — signature + expiry are the whole story.
- Refresh token: long-lived (days), used only to rotate the session.
  Holding one is not enough: the refresh flow also requires the matching
  RefreshSession row to be active, which is what makes it revocable.

Both kinds carry the same claims {sub, companyId, role, sessionId, iat, exp}
and are signed with two independent secrets, so a leaked refresh key
cannot mint access tokens and vice versa. Each token also gets a random
jti, so two tokens minted for one session in the same second still differ.
"""

import hashlib
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

import jwt

from tenantauth.config import Settings
from tenantauth.db.models import Role, utcnow
from tenantauth.errors import TokenInvalid

REQUIRED_CLAIMS = ("sub", "companyId", "role", "sessionId", "iat", "exp")


@dataclass(frozen=True)
class AuthClaims:
    """Identity carried by both token kinds."""

    user_id: uuid.UUID
    company_id: uuid.UUID
    role: Role
    session_id: uuid.UUID

    def to_payload(self) -> dict:
        return {
            "sub": str(self.user_id),
            "companyId": str(self.company_id),
            "role": self.role.value,
            "sessionId": str(self.session_id),
        }


@dataclass(frozen=True)
class TokenPayload:
    """Verified claims plus the server-added timestamps."""

    claims: AuthClaims
    issued_at: datetime
    expires_at: datetime


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a raw refresh token — the only form we store."""
    return hashlib.sha256(token.encode("utf-8", "surrogatepass")).hexdigest()


class TokenCodec:
    """Signs and verifies access and refresh tokens."""

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = utcnow):
        self._access_secret = settings.jwt_access_secret
        self._refresh_secret = settings.jwt_refresh_secret
        self._algorithm = settings.jwt_algorithm
        self.access_ttl = timedelta(minutes=settings.access_token_expire_minutes)
        self.refresh_ttl = timedelta(days=settings.refresh_token_expire_days)
        self.clock = clock

    # ─── Signing ────────────────────────────────────────

    def issue_access(self, claims: AuthClaims) -> str:
        """Create a JWT access token."""
        return self._sign(claims, self._access_secret, self.access_ttl)

    def issue_refresh(self, claims: AuthClaims) -> str:
        """Create a JWT refresh token."""
        return self._sign(claims, self._refresh_secret, self.refresh_ttl)

    def _sign(self, claims: AuthClaims, secret: str, ttl: timedelta) -> str:
        now = self.clock()
        payload = {
            **claims.to_payload(),
            "iat": now,
            "exp": now + ttl,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, secret, algorithm=self._algorithm)

    # ─── Verification ───────────────────────────────────

    def verify_access(self, token: str) -> TokenPayload:
        """Verify an access token. Raises TokenInvalid on any failure."""
        return self._verify(token, self._access_secret)

    def verify_refresh(self, token: str) -> TokenPayload:
        """Verify a refresh token. Raises TokenInvalid on any failure."""
        return self._verify(token, self._refresh_secret)

    def refresh_expiry(self, token: str) -> datetime:
        """Read exp out of a refresh token we just signed.

        Learn: The stored session expiry is taken from the token itself
        rather than recomputed, so the row always agrees with what the
        token asserts. Signature is still checked; expiry is not, because
        the issuing clock may legitimately differ from wall time.
        """
        return self._verify(token, self._refresh_secret, verify_exp=False).expires_at

    def _verify(self, token: str, secret: str, verify_exp: bool = True) -> TokenPayload:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "iat"], "verify_exp": verify_exp},
            )
        except jwt.ExpiredSignatureError:
            raise TokenInvalid("Token has expired")
        except jwt.InvalidTokenError as e:
            raise TokenInvalid(f"Invalid token: {e}")
        except UnicodeError:
            # PyJWT encodes str tokens to UTF-8 before parsing; lone surrogates fail there
            raise TokenInvalid("Invalid token: not valid UTF-8")
        return _parse_payload(payload)


def _parse_payload(payload: dict) -> TokenPayload:
    """Reject payloads missing any required claim or carrying bad values."""
    missing = [name for name in REQUIRED_CLAIMS if payload.get(name) in (None, "")]
    if missing:
        raise TokenInvalid("Invalid token claims")
    try:
        claims = AuthClaims(
            user_id=uuid.UUID(str(payload["sub"])),
            company_id=uuid.UUID(str(payload["companyId"])),
            role=Role(payload["role"]),
            session_id=uuid.UUID(str(payload["sessionId"])),
        )
        issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
        expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
    except (ValueError, TypeError):
        raise TokenInvalid("Invalid token claims")
    return TokenPayload(claims=claims, issued_at=issued_at, expires_at=expires_at)
