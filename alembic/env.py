"""
Alembic environment for the billing schema (profiles, api_keys,
ai_analysis_cache, ai_entitlements, ai_usage_logs).

The URL is taken from Settings, never from alembic.ini. Online runs go
through asyncpg; offline runs (`alembic upgrade --sql`) render SQL only.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from qbank_billing.core.config import settings
from qbank_billing.core.database import Base

# Registers every billing table on Base.metadata
from qbank_billing.models import (  # noqa: F401
    analysis_cache,
    api_key,
    entitlement,
    profile,
    usage_log,
)

config = context.config
config.set_main_option("sqlalchemy.url", settings.DATABASE_URL)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Autogenerate compares against the same naming convention the
# hand-written revisions use, so constraint names line up.
_CONTEXT_OPTS = {
    "target_metadata": Base.metadata,
    "compare_type": True,
    "compare_server_default": True,
}


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_CONTEXT_OPTS,
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_with_connection(connection: Connection) -> None:
    context.configure(connection=connection, **_CONTEXT_OPTS)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_with_connection)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
