"""FastAPI auth dependencies — the authorization gate.

Learn: These are used as Depends() in route handlers to extract and
validate the caller's identity from the request.

1. get_current_user: Bearer access token → AuthContext (401 otherwise)
2. require_roles(...): AuthContext.role must be in the allow-list (403)

Neither touches the database. Role checks trust the access token's
claims for its (short) lifetime; revocation takes effect at the next
refresh, which is store-checked.
"""

import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from fastapi import Depends, Header, Request

from tenantauth.auth.jwt import TokenCodec
from tenantauth.db.models import Role
from tenantauth.errors import Forbidden, TokenInvalid, Unauthorized


@dataclass(frozen=True)
class AuthContext:
    """The authenticated identity attached to a request.

    Learn: This is the unified auth context. All downstream code uses it
    to scope queries to company_id — a role means nothing outside the
    company it was granted in.
    """

    user_id: uuid.UUID
    company_id: uuid.UUID
    role: Role
    session_id: uuid.UUID


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from 'Bearer <token>', or None for anything else."""
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]


def authenticate(authorization: Optional[str], codec: TokenCodec) -> AuthContext:
    """Verify the Authorization header value and build the AuthContext."""
    token = extract_bearer_token(authorization)
    if token is None:
        raise Unauthorized("Missing or invalid authorization header")
    try:
        payload = codec.verify_access(token)
    except TokenInvalid as e:
        raise Unauthorized(e.message)
    claims = payload.claims
    return AuthContext(
        user_id=claims.user_id,
        company_id=claims.company_id,
        role=claims.role,
        session_id=claims.session_id,
    )


def require_role(ctx: Optional[AuthContext], allowed_roles: Iterable[Role]) -> AuthContext:
    """Pass if the context's role is allowed; Unauthorized/Forbidden otherwise."""
    if ctx is None:
        raise Unauthorized()
    if ctx.role not in set(allowed_roles):
        raise Forbidden()
    return ctx


def get_token_codec(request: Request) -> TokenCodec:
    return request.app.state.token_codec


async def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
    codec: TokenCodec = Depends(get_token_codec),
) -> AuthContext:
    """Extract current identity (required — 401 if no valid access token)."""
    ctx = authenticate(authorization, codec)
    request.state.auth = ctx
    return ctx


def require_roles(*roles: Role):
    """Dependency factory: Depends(require_roles(Role.COMPANY_ADMIN))."""
    allowed = frozenset(roles)

    async def _check(ctx: AuthContext = Depends(get_current_user)) -> AuthContext:
        return require_role(ctx, allowed)

    return _check
