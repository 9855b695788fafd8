"""Auth API — company signup, login, refresh, logout, current user.

Learn: Routes for the session lifecycle:
- POST /auth/signup/company → company + admin user → tokens
- POST /auth/login → email/password → tokens
- POST /auth/refresh → refresh cookie → rotated tokens
- POST /auth/logout → revoke session, clear cookie (always 200)
- GET /auth/me → current user in the token's company
- GET /auth/admin-check → company_admin only

The access token goes in the JSON body. The refresh token only travels
in an httpOnly cookie scoped to /api/v1/auth, so page scripts never
see it and it is only sent to these endpoints.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from tenantauth.auth.dependencies import (
    AuthContext,
    get_current_user,
    get_token_codec,
    require_roles,
)
from tenantauth.auth.jwt import TokenCodec
from tenantauth.config import Settings
from tenantauth.db.engine import get_db
from tenantauth.db.models import Role
from tenantauth.errors import Unauthorized
from tenantauth.schemas.auth import (
    AuthContextRead,
    AuthResponse,
    LoginRequest,
    LogoutResponse,
    RefreshRequest,
    SignupCompanyRequest,
    UserRead,
)
from tenantauth.services.auth_service import AuthResult, AuthService, RequestMeta

router = APIRouter(prefix="/auth")


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _svc(
    request: Request,
    db: AsyncSession = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
) -> AuthService:
    return AuthService(
        db,
        settings=request.app.state.settings,
        codec=codec,
        hasher=request.app.state.password_hasher,
    )


def _request_meta(request: Request) -> RequestMeta:
    return RequestMeta(
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )


def _set_refresh_cookie(
    response: Response, settings: Settings, token: str, expires_at: datetime
) -> None:
    response.set_cookie(
        settings.cookie_name,
        value=token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path=settings.cookie_path,
        domain=settings.cookie_domain,
        expires=expires_at,
    )


def _auth_response(response: Response, settings: Settings, result: AuthResult) -> AuthResponse:
    _set_refresh_cookie(response, settings, result.refresh_token, result.refresh_expires_at)
    return AuthResponse(
        access_token=result.access_token,
        refresh_expires_at=result.refresh_expires_at,
        user=UserRead.model_validate(result.user),
    )


# ─── Signup ─────────────────────────────────────────────


@router.post("/signup/company", response_model=AuthResponse, status_code=201)
async def signup_company(
    body: SignupCompanyRequest,
    request: Request,
    response: Response,
    svc: AuthService = Depends(_svc),
    settings: Settings = Depends(_settings),
):
    """Create a company with its first admin user and log them in."""
    result = await svc.signup_company(
        company_name=body.company_name,
        company_slug=body.company_slug,
        full_name=body.full_name,
        email=body.email,
        password=body.password,
        meta=_request_meta(request),
    )
    return _auth_response(response, settings, result)


# ─── Login ──────────────────────────────────────────────


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    svc: AuthService = Depends(_svc),
    settings: Settings = Depends(_settings),
):
    """Login with email and password → access token + refresh cookie."""
    result = await svc.login(body.email, body.password, meta=_request_meta(request))
    return _auth_response(response, settings, result)


# ─── Refresh ────────────────────────────────────────────


@router.post("/refresh", response_model=AuthResponse)
async def refresh(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = Body(None),
    svc: AuthService = Depends(_svc),
    settings: Settings = Depends(_settings),
):
    """Rotate the refresh session and return a new access token."""
    token = request.cookies.get(settings.cookie_name)
    if not token and body is not None:
        token = body.refresh_token
    if not token:
        raise Unauthorized("Refresh token missing")

    result = await svc.refresh_session(token, meta=_request_meta(request))
    return _auth_response(response, settings, result)


# ─── Logout ─────────────────────────────────────────────


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = Body(None),
    svc: AuthService = Depends(_svc),
    settings: Settings = Depends(_settings),
):
    """Revoke the current session and clear the cookie. Always succeeds."""
    token = request.cookies.get(settings.cookie_name)
    if not token and body is not None:
        token = body.refresh_token
    await svc.logout(token)

    response.delete_cookie(
        settings.cookie_name,
        path=settings.cookie_path,
        domain=settings.cookie_domain,
        secure=settings.cookie_secure,
        httponly=True,
        samesite="lax",
    )
    return LogoutResponse()


# ─── Current user ───────────────────────────────────────


@router.get("/me", response_model=UserRead)
async def get_me(
    identity: AuthContext = Depends(get_current_user),
    svc: AuthService = Depends(_svc),
):
    """Get the current authenticated user's profile."""
    user = await svc.get_profile(identity.user_id, identity.company_id)
    return UserRead.model_validate(user)


@router.get("/admin-check", response_model=AuthContextRead)
async def admin_check(identity: AuthContext = Depends(require_roles(Role.COMPANY_ADMIN))):
    """Verify company_admin access."""
    return AuthContextRead.model_validate(identity)
