"""Test fixtures — a fresh database and app per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test builds its own Settings (low Argon2 cost, fixed secrets) and
   its own app via create_app(settings), so nothing is shared between tests.
2. By default the database is a throwaway SQLite file under tmp_path
   (aiosqlite). Set TENANTAUTH_TEST_DATABASE_URL to run the same suite
   against PostgreSQL; tables are created and dropped around every test.
3. Service-level tests open one session per operation (call_service),
   the same way each HTTP request gets its own session in production.
"""

import os
import uuid
from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from tenantauth.config import Settings
from tenantauth.db.models import Base, MembershipStatus, Role
from tenantauth.db.store import CredentialStore
from tenantauth.main import create_app
from tenantauth.services.auth_service import AuthService

TEST_ACCESS_SECRET = "test-access-secret-4f1c9e2a7b3d5e6f8a9b0c1d"
TEST_REFRESH_SECRET = "test-refresh-secret-9a8b7c6d5e4f3a2b1c0d9e8f"

PASSWORD = "StrongPass123!"


@pytest.fixture()
def settings(tmp_path) -> Settings:
    url = os.environ.get("TENANTAUTH_TEST_DATABASE_URL") or (
        f"sqlite+aiosqlite:///{tmp_path / 'tenantauth.db'}"
    )
    return Settings(
        database_url=url,
        jwt_access_secret=TEST_ACCESS_SECRET,
        jwt_refresh_secret=TEST_REFRESH_SECRET,
        argon2_time_cost=1,
        argon2_memory_cost=1024,
        argon2_parallelism=1,
        environment="test",
    )


@pytest_asyncio.fixture()
async def app(settings):
    """App with an empty schema. Lifespan is not run, so Redis stays off."""
    app = create_app(settings)
    async with app.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield app
    finally:
        async with app.state.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await app.state.engine.dispose()


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client talking to the app in-process."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def db_scope(app):
    """Short transactional session for arranging and inspecting rows.

    Usage: async with db_scope() as db: ...

    Committed and closed on exit, so SQLite never sees a reader holding
    a lock while the app writes.
    """

    @asynccontextmanager
    async def _scope():
        async with app.state.session_factory() as db:
            async with db.begin():
                yield db

    return _scope


@pytest.fixture()
def add_member(app, db_scope):
    """Attach a (new) user to an existing company with the given role and status."""

    async def _add(
        company_id,
        email,
        role=Role.EMPLOYEE,
        status=MembershipStatus.ACTIVE,
        password=PASSWORD,
        password_hash=None,
    ):
        async with db_scope() as db:
            store = CredentialStore(db)
            user = await store.find_user_by_email(email.lower())
            if user is None:
                user = await store.add_user(
                    uuid.uuid4(),
                    email,
                    email.lower(),
                    password_hash or app.state.password_hasher.hash(password),
                    "Member " + email.split("@")[0],
                )
            await store.add_membership(uuid.uuid4(), company_id, user.id, role, status)
            return user.id

    return _add


@pytest.fixture()
def call_service(app):
    """Run one AuthService method in its own session.

    Usage: await call_service("login", email, password, codec=past_codec)
    """

    async def _call(method: str, *args, codec=None, **kwargs):
        async with app.state.session_factory() as db:
            svc = AuthService(
                db,
                settings=app.state.settings,
                codec=codec or app.state.token_codec,
                hasher=app.state.password_hasher,
            )
            return await getattr(svc, method)(*args, **kwargs)

    return _call


@pytest.fixture()
def signup_payload():
    """Unique signup body per call, camelCase like a real client."""

    def _payload(**overrides):
        run_id = uuid.uuid4().hex[:8]
        body = {
            "companyName": f"Company {run_id}",
            "fullName": "Alice Admin",
            "email": f"admin-{run_id}@example.com",
            "password": PASSWORD,
        }
        body.update(overrides)
        return body

    return _payload


@pytest_asyncio.fixture()
async def signed_up(call_service):
    """A company with its admin, created through the service."""
    run_id = uuid.uuid4().hex[:8]
    result = await call_service(
        "signup_company",
        company_name=f"Fixture Co {run_id}",
        full_name="Fixture Admin",
        email=f"fixture-{run_id}@example.com",
        password=PASSWORD,
    )
    return result
