"""
Alembic environment for the collector's telemetry store.

The target database comes from ``alembic -x database_url=...`` or, failing
that, ``DATABASE_URL`` (the variable the collector itself reads). Plain
``postgresql://`` and ``sqlite://`` URLs are upgraded to their async driver,
so one URL serves both the collector and its migrations.

Usage:
    DATABASE_URL=postgresql://collector@db/telemetry alembic upgrade head
    alembic -x database_url=sqlite:///./telemetry.db upgrade head

CHANGELOG:
- 2025-03-16: Take the URL from -x database_url or DATABASE_URL via the
  session module; compare column types on autogenerate
- 2025-03-02: Initial creation

TODO:
- None
"""

import asyncio
import logging
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.ext.asyncio import create_async_engine

from collector.src.db.models import Base
from collector.src.db.session import resolve_database_url

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata


def _database_url() -> str:
    return resolve_database_url(context.get_x_argument(as_dictionary=True).get("database_url"))


def _configure(**kwargs) -> None:
    context.configure(target_metadata=target_metadata, compare_type=True, **kwargs)


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting."""
    _configure(url=_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})

    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection) -> None:
    _configure(connection=connection)

    with context.begin_transaction():
        context.run_migrations()


async def _migrate_online(url: str) -> None:
    engine = create_async_engine(url, poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


def run_migrations_online() -> None:
    """Apply migrations over an async connection to the collector's store."""
    url = _database_url()
    logger.info("Migrating %s", make_url(url).render_as_string(hide_password=True))
    asyncio.run(_migrate_online(url))


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
