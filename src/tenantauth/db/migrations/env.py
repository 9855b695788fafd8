"""Alembic environment configuration.

Learn: Migrations connect with the same Settings and engine builder the
app uses, so TENANTAUTH_DATABASE_URL is the single source of the URL;
alembic.ini only carries logging config. Autogenerate compares column
types too, since role/status are length-limited strings guarded by
CHECK constraints. SQLite (local tinkering) needs batch mode for ALTERs.
"""

import asyncio
from logging.config import fileConfig

from alembic import context

from tenantauth.config import Settings, get_settings
from tenantauth.db.engine import build_engine
from tenantauth.db.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _configure(settings: Settings, **kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=settings.database_url.startswith("sqlite"),
        **kwargs,
    )


def run_migrations_offline(settings: Settings) -> None:
    """Emit SQL to stdout instead of connecting (alembic upgrade --sql)."""
    _configure(
        settings,
        url=settings.database_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_sync(connection, settings: Settings) -> None:
    _configure(settings, connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online(settings: Settings) -> None:
    engine = build_engine(settings)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_sync, settings)
    finally:
        await engine.dispose()


settings = get_settings()
if context.is_offline_mode():
    run_migrations_offline(settings)
else:
    asyncio.run(run_migrations_online(settings))
