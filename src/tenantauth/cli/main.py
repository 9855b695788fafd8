"""tenantauth CLI — out-of-band maintenance for the auth database.

Usage:
    tenantauth seed --company-name "Acme Corp" --email admin@acme.com --password ...
    tenantauth purge-sessions --grace-days 7

Both commands build Settings once from TENANTAUTH_* env vars and talk
to the configured database directly (no running server needed).
"""

from __future__ import annotations

import asyncio
import sys
import uuid
from datetime import timedelta

import click

from tenantauth import __version__
from tenantauth.auth.password import PasswordHasher
from tenantauth.config import Settings, get_settings
from tenantauth.db.engine import build_engine, build_session_factory
from tenantauth.db.models import MembershipStatus, Role, utcnow
from tenantauth.db.store import CredentialStore
from tenantauth.logging import configure_logging
from tenantauth.services.auth_service import normalize_email, slugify


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings() -> Settings:
    try:
        settings = get_settings()
    except ValueError as e:
        click.secho(f"Error: invalid configuration: {e}", fg="red", err=True)
        sys.exit(1)
    configure_logging(settings)
    return settings


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="tenantauth")
def main():
    """tenantauth — seed tenants and garbage-collect refresh sessions."""


# ---------------------------------------------------------------------------
# tenantauth seed
# ---------------------------------------------------------------------------


@main.command()
@click.option("--company-name", required=True, help="Company display name")
@click.option("--email", required=True, help="Admin user's email")
@click.option("--password", required=True, help="Admin user's password (min 8 chars)")
@click.option("--full-name", default="Seed Company Admin", show_default=True)
def seed(company_name: str, email: str, password: str, full_name: str):
    """Create a company with an active company_admin. Safe to re-run.

    Existing rows are reused: the company by slug, the user by
    normalized email, the membership by (company, user).
    """
    if len(password) < 8:
        click.secho("Error: --password must be at least 8 characters", fg="red", err=True)
        sys.exit(1)
    slug = slugify(company_name)
    if not slug:
        click.secho("Error: company name does not produce a usable slug", fg="red", err=True)
        sys.exit(1)

    settings = _load_settings()
    created = asyncio.run(_seed_impl(settings, company_name.strip(), slug, email, password, full_name))
    for line in created:
        click.echo(line)
    click.secho("Seed completed successfully.", fg="green")


async def _seed_impl(
    settings: Settings,
    company_name: str,
    slug: str,
    email: str,
    password: str,
    full_name: str,
) -> list[str]:
    engine = build_engine(settings)
    report: list[str] = []
    try:
        async with build_session_factory(engine)() as db:
            store = CredentialStore(db, timeout=settings.store_timeout_seconds)
            async with db.begin():
                company = await store.find_company_by_slug(slug)
                if company is None:
                    company = await store.add_company(uuid.uuid4(), company_name, slug)
                    report.append(f"Created company {slug} ({company.id})")
                else:
                    report.append(f"Company {slug} already exists ({company.id})")

                email_normalized = normalize_email(email)
                user = await store.find_user_by_email(email_normalized)
                if user is None:
                    hasher = PasswordHasher.from_settings(settings)
                    password_hash = await asyncio.to_thread(hasher.hash, password)
                    user = await store.add_user(
                        uuid.uuid4(), email.strip(), email_normalized, password_hash, full_name
                    )
                    report.append(f"Created user {email_normalized} ({user.id})")
                else:
                    report.append(f"User {email_normalized} already exists ({user.id})")

                if await store.find_membership(company.id, user.id) is None:
                    await store.add_membership(
                        uuid.uuid4(),
                        company.id,
                        user.id,
                        Role.COMPANY_ADMIN,
                        MembershipStatus.ACTIVE,
                    )
                    report.append("Created company_admin membership")
                else:
                    report.append("Membership already exists")
    finally:
        await engine.dispose()
    return report


# ---------------------------------------------------------------------------
# tenantauth purge-sessions
# ---------------------------------------------------------------------------


@main.command("purge-sessions")
@click.option(
    "--grace-days",
    default=7,
    show_default=True,
    type=click.IntRange(min=0),
    help="Keep sessions that expired or were revoked within this many days",
)
def purge_sessions(grace_days: int):
    """Delete refresh sessions that are long expired or revoked."""
    settings = _load_settings()
    deleted = asyncio.run(_purge_impl(settings, grace_days))
    click.echo(f"Deleted {deleted} refresh session(s)")


async def _purge_impl(settings: Settings, grace_days: int) -> int:
    engine = build_engine(settings)
    try:
        async with build_session_factory(engine)() as db:
            store = CredentialStore(db, timeout=settings.store_timeout_seconds)
            async with db.begin():
                return await store.delete_stale_sessions(utcnow() - timedelta(days=grace_days))
    finally:
        await engine.dispose()


if __name__ == "__main__":
    main()
