"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Settings are built once and the long-lived collaborators
(engine, session factory, token codec, password hasher) are created
from them here and hung on app.state; request dependencies read them
from there. Lifespan manages startup/shutdown (Redis, engine disposal).
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tenantauth import __version__
from tenantauth.api import api_router
from tenantauth.auth.jwt import TokenCodec
from tenantauth.auth.password import PasswordHasher
from tenantauth.cache import close_redis, init_redis
from tenantauth.config import Settings, get_settings
from tenantauth.db.engine import build_engine, build_session_factory
from tenantauth.errors import register_exception_handlers
from tenantauth.logging import configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: FastAPI lifespan replaces on_event("startup") / on_event("shutdown").
    Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    settings: Settings = app.state.settings
    logger.info(
        "tenantauth.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    # Redis is optional; without it rate limiting is skipped
    app.state.redis = await init_redis(settings.redis_url)

    yield

    logger.info("tenantauth.shutdown")
    await close_redis(app.state.redis)
    app.state.redis = None
    await app.state.engine.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="tenantauth",
        description="Multi-tenant authentication and refresh-session service",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = build_engine(settings)
    app.state.session_factory = build_session_factory(app.state.engine)
    app.state.token_codec = TokenCodec(settings)
    app.state.password_hasher = PasswordHasher.from_settings(settings)
    app.state.redis = None

    register_exception_handlers(app)

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Security → RateLimit → CORS → handler

    from tenantauth.middleware.rate_limit import RateLimitMiddleware
    from tenantauth.middleware.request_id import RequestIdMiddleware
    from tenantauth.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(SecurityHeadersMiddleware, no_store_prefix=settings.cookie_path)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: tenantauth.main:app)
app = create_app()
