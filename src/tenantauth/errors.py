"""Domain error taxonomy.

Learn: Every error the auth core raises on purpose is an AuthError with
an HTTP status and a caller-safe message. The API layer renders them
verbatim ({"detail": message}). Anything else is an infrastructure
failure: it is logged in full and surfaced as an opaque 500.
"""

from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger()


class AuthError(Exception):
    """Base class for errors that surface to the caller as-is."""

    status_code: int = 400
    message: str = "Bad request"

    def __init__(self, message: Optional[str] = None, *, headers: Optional[dict] = None):
        self.message = message or self.message
        self.headers = headers
        super().__init__(self.message)


class InvalidInput(AuthError):
    status_code = 400
    message = "Invalid input"


class Conflict(AuthError):
    status_code = 409
    message = "Account data already exists"


class InvalidCredentials(AuthError):
    """Unknown email or wrong password — deliberately indistinguishable."""

    status_code = 401
    message = "Invalid credentials"


class AccountNotActive(AuthError):
    status_code = 403
    message = "Account is not active"


class Unauthorized(AuthError):
    status_code = 401
    message = "Unauthorized"

    def __init__(self, message: Optional[str] = None, *, headers: Optional[dict] = None):
        super().__init__(message, headers=headers or {"WWW-Authenticate": "Bearer"})


class Forbidden(AuthError):
    status_code = 403
    message = "Forbidden"


class InvalidSession(AuthError):
    """Refresh token is stale, reused, expired, or its session is revoked."""

    status_code = 401
    message = "Refresh session is invalid"


class RotationFailed(InvalidSession):
    """Lost the compare-and-set race on the session's token hash."""

    message = "Refresh session rotation failed"


class NotFound(AuthError):
    status_code = 404
    message = "Not found"


class TokenInvalid(AuthError):
    """Bad signature, malformed claims, or expired token."""

    status_code = 401
    message = "Invalid token"


def register_exception_handlers(app: FastAPI) -> None:
    """Render AuthError verbatim; hide everything else behind a 500."""

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        logger.info(
            "request.rejected",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error=type(exc).__name__,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message},
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception(
            "request.failed",
            path=request.url.path,
            method=request.method,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal Server Error"},
        )
