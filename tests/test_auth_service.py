"""AuthService tests — behaviour that is awkward to reach over HTTP.

Learn: Races are exercised two ways:
1. Deterministically everywhere, by forcing one side of the race
   (a pre-check that misses, a rotation that loses the compare-and-set,
   two refreshes whose lookups both ran before either write).
2. For real on PostgreSQL (TENANTAUTH_TEST_DATABASE_URL), with
   asyncio.gather over separate sessions. SQLite serializes writers,
   so those tests skip there.
"""

import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from tenantauth.auth.jwt import TokenCodec, hash_token
from tenantauth.auth.password import PasswordHasher
from tenantauth.db.models import Company, RefreshSession, User, utcnow
from tenantauth.db.store import CredentialStore
from tenantauth.errors import (
    Conflict,
    Forbidden,
    InvalidCredentials,
    InvalidInput,
    InvalidSession,
    NotFound,
    RotationFailed,
)
from tenantauth.services.auth_service import AuthResult, normalize_email, slugify

PASSWORD = "StrongPass123!"


def _needs_postgres(settings):
    if settings.database_url.startswith("sqlite"):
        pytest.skip("SQLite serializes writers; set TENANTAUTH_TEST_DATABASE_URL")


# ─── Helpers ────────────────────────────────────────────


@pytest.mark.parametrize(
    "value,expected",
    [
        ("Acme Corp", "acme-corp"),
        ("  Hello,   World!  ", "hello-world"),
        ("--Already-Slugged--", "already-slugged"),
        ("Ünïcode Ltd", "n-code-ltd"),
        ("!!!", ""),
    ],
)
def test_slugify(value, expected):
    assert slugify(value) == expected


def test_slugify_caps_length():
    slug = slugify("a" * 79 + " b" * 20)
    assert len(slug) <= 80
    assert not slug.endswith("-")


def test_normalize_email():
    assert normalize_email("  Alice@Example.COM ") == "alice@example.com"


# ─── Signup ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_signup_returns_admin_session(call_service):
    result = await call_service(
        "signup_company",
        company_name="  Acme Corp ",
        full_name=" Alice ",
        email="alice@acme.com",
        password=PASSWORD,
    )
    assert isinstance(result, AuthResult)
    assert result.user.full_name == "Alice"
    assert result.user.role.value == "company_admin"
    assert result.refresh_expires_at > utcnow() + timedelta(days=6)


@pytest.mark.asyncio
async def test_signup_empty_slug(call_service):
    with pytest.raises(InvalidInput):
        await call_service(
            "signup_company",
            company_name="Acme",
            company_slug="---",
            full_name="Alice",
            email="alice@acme.com",
            password=PASSWORD,
        )


@pytest.mark.asyncio
async def test_signup_unique_index_race_is_conflict(call_service, db_scope, monkeypatch):
    """Both signups pass the pre-check; the unique index decides → 409, not 500."""
    await call_service(
        "signup_company",
        company_name="Race Co",
        full_name="First",
        email="first@race.com",
        password=PASSWORD,
    )

    async def _miss(self, slug):
        return None

    monkeypatch.setattr(CredentialStore, "find_company_by_slug", _miss)

    with pytest.raises(Conflict) as exc:
        await call_service(
            "signup_company",
            company_name="Race Co",
            full_name="Second",
            email="second@race.com",
            password=PASSWORD,
        )
    assert exc.value.message == "Account data already exists"

    # Loser left nothing behind
    async with db_scope() as db:
        users = (await db.execute(select(User))).scalars().all()
        companies = (await db.execute(select(Company))).scalars().all()
    assert [u.email_normalized for u in users] == ["first@race.com"]
    assert len(companies) == 1


@pytest.mark.asyncio
async def test_concurrent_signups_one_winner(settings, call_service):
    _needs_postgres(settings)

    async def _attempt(i):
        return await call_service(
            "signup_company",
            company_name="Parallel Co",
            full_name=f"User {i}",
            email=f"user{i}@parallel.com",
            password=PASSWORD,
        )

    results = await asyncio.gather(*(_attempt(i) for i in range(4)), return_exceptions=True)
    winners = [r for r in results if isinstance(r, AuthResult)]
    losers = [r for r in results if isinstance(r, Conflict)]
    assert len(winners) == 1
    assert len(losers) == 3


# ─── Login ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_login_unknown_email_burns_dummy_hash(call_service, app, monkeypatch):
    """No such user still pays for one Argon2 verification."""
    calls = []
    hasher = app.state.password_hasher
    original = hasher.verify_dummy

    def _spy(password):
        calls.append(password)
        return original(password)

    monkeypatch.setattr(hasher, "verify_dummy", _spy)

    with pytest.raises(InvalidCredentials):
        await call_service("login", "ghost@example.com", PASSWORD)
    assert calls == [PASSWORD]


@pytest.mark.asyncio
async def test_login_rehashes_outdated_parameters(call_service, signed_up, add_member, db_scope):
    older = PasswordHasher(time_cost=2, memory_cost=1024, parallelism=1).hash(PASSWORD)
    user_id = await add_member(
        signed_up.user.company_id, "older@example.com", password_hash=older
    )

    result = await call_service("login", "older@example.com", PASSWORD)
    assert result.user.id == user_id

    async with db_scope() as db:
        user = await db.get(User, user_id)
    assert user.password_hash != older
    assert "m=1024,t=1,p=1" in user.password_hash

    # The upgraded hash still verifies
    again = await call_service("login", "older@example.com", PASSWORD)
    assert again.user.id == user_id


@pytest.mark.asyncio
async def test_login_wrong_password_keeps_outdated_hash(
    call_service, signed_up, add_member, db_scope
):
    older = PasswordHasher(time_cost=2, memory_cost=1024, parallelism=1).hash(PASSWORD)
    user_id = await add_member(
        signed_up.user.company_id, "older@example.com", password_hash=older
    )

    with pytest.raises(InvalidCredentials):
        await call_service("login", "older@example.com", "NotThePassword1")

    async with db_scope() as db:
        user = await db.get(User, user_id)
    assert user.password_hash == older


# ─── Refresh ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_refresh_rotates_and_stores_new_hash(call_service, signed_up, db_scope):
    result = await call_service("refresh_session", signed_up.refresh_token)
    assert result.refresh_token != signed_up.refresh_token
    assert result.user == signed_up.user

    async with db_scope() as db:
        session = (await db.execute(select(RefreshSession))).scalar_one()
    assert session.token_hash == hash_token(result.refresh_token)

    with pytest.raises(InvalidSession):
        await call_service("refresh_session", signed_up.refresh_token)


@pytest.mark.asyncio
async def test_refresh_lost_race_changes_nothing(call_service, signed_up, db_scope, monkeypatch):
    """Rotation that matches zero rows → RotationFailed, session untouched."""

    async def _lose(self, *args, **kwargs):
        return False

    monkeypatch.setattr(CredentialStore, "rotate_refresh_session", _lose)

    with pytest.raises(RotationFailed) as exc:
        await call_service("refresh_session", signed_up.refresh_token)
    assert exc.value.status_code == 401

    monkeypatch.undo()
    async with db_scope() as db:
        session = (await db.execute(select(RefreshSession))).scalar_one()
    assert session.token_hash == hash_token(signed_up.refresh_token)

    # The original token is still the live one
    result = await call_service("refresh_session", signed_up.refresh_token)
    assert result.user.id == signed_up.user.id


@pytest.mark.asyncio
async def test_refresh_interleaved_lookups_one_wins(call_service, signed_up, db_scope, monkeypatch):
    """Two refreshes that both pass the lookup before either writes.

    The lookup result is pinned to what both requests saw before the first
    rotation committed; only the compare-and-set UPDATE decides the winner.
    """
    old_hash = hash_token(signed_up.refresh_token)
    async with db_scope() as db:
        row = (await db.execute(select(RefreshSession))).scalar_one()
        seen = await CredentialStore(db).find_active_refresh_session(row.id, old_hash)
    assert seen is not None

    async def _seen_before_any_write(self, *args, **kwargs):
        return seen

    monkeypatch.setattr(CredentialStore, "find_active_refresh_session", _seen_before_any_write)

    winner = await call_service("refresh_session", signed_up.refresh_token)
    with pytest.raises(RotationFailed):
        await call_service("refresh_session", signed_up.refresh_token)

    monkeypatch.undo()
    async with db_scope() as db:
        session = (await db.execute(select(RefreshSession))).scalar_one()
    assert session.token_hash == hash_token(winner.refresh_token)
    assert session.revoked_at is None

    # The winner's token keeps working, the loser's copy does not
    result = await call_service("refresh_session", winner.refresh_token)
    assert result.user.id == signed_up.user.id
    with pytest.raises(InvalidSession):
        await call_service("refresh_session", signed_up.refresh_token)


@pytest.mark.asyncio
async def test_refresh_expired_session(call_service, app, signed_up):
    """A refresh token minted long ago is rejected even though its row exists."""
    long_ago = TokenCodec(app.state.settings, clock=lambda: utcnow() - timedelta(days=30))
    old = await call_service("login", signed_up.user.email, PASSWORD, codec=long_ago)

    with pytest.raises(InvalidSession) as exc:
        await call_service("refresh_session", old.refresh_token)
    assert exc.value.message == "Token has expired"


@pytest.mark.asyncio
async def test_concurrent_refresh_exactly_one_wins(settings, call_service, signed_up):
    _needs_postgres(settings)

    results = await asyncio.gather(
        *(call_service("refresh_session", signed_up.refresh_token) for _ in range(5)),
        return_exceptions=True,
    )
    winners = [r for r in results if isinstance(r, AuthResult)]
    losers = [r for r in results if isinstance(r, InvalidSession)]
    assert len(winners) == 1
    assert len(losers) == 4

    # The winner's token is the one that keeps working
    result = await call_service("refresh_session", winners[0].refresh_token)
    assert result.user.id == signed_up.user.id


# ─── Logout ─────────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "token",
    [None, "", "garbage", "\ud800"],
    ids=["none", "empty", "garbage", "lone-surrogate"],
)
async def test_logout_noop(call_service, token):
    assert await call_service("logout", token) is None


@pytest.mark.asyncio
async def test_logout_twice(call_service, signed_up, db_scope):
    await call_service("logout", signed_up.refresh_token)
    await call_service("logout", signed_up.refresh_token)

    async with db_scope() as db:
        session = (await db.execute(select(RefreshSession))).scalar_one()
    assert session.revoked_at is not None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        OperationalError("UPDATE refresh_sessions", {}, Exception("db down")),
        ConnectionRefusedError(111, "Connect call failed"),
        asyncio.TimeoutError(),
    ],
    ids=["sqlalchemy", "connection-refused", "timeout"],
)
async def test_logout_survives_store_failure(call_service, signed_up, monkeypatch, error):
    async def _boom(self, *args, **kwargs):
        raise error

    monkeypatch.setattr(CredentialStore, "revoke_refresh_session", _boom)
    assert await call_service("logout", signed_up.refresh_token) is None


@pytest.mark.asyncio
async def test_logout_survives_unexpected_decode_error(call_service, signed_up, monkeypatch):
    def _broken(self, token):
        raise RuntimeError("codec exploded")

    monkeypatch.setattr(TokenCodec, "verify_refresh", _broken)
    assert await call_service("logout", signed_up.refresh_token) is None


# ─── Profile ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_profile(call_service, signed_up):
    user = await call_service("get_profile", signed_up.user.id, signed_up.user.company_id)
    assert user == signed_up.user


@pytest.mark.asyncio
async def test_get_profile_other_company(call_service, signed_up):
    with pytest.raises(NotFound):
        await call_service("get_profile", signed_up.user.id, uuid.uuid4())


@pytest.mark.asyncio
async def test_get_profile_inactive_user(call_service, signed_up, db_scope):
    async with db_scope() as db:
        user = await db.get(User, signed_up.user.id)
        user.is_active = False

    with pytest.raises(Forbidden):
        await call_service("get_profile", signed_up.user.id, signed_up.user.company_id)
