# -*- coding: utf-8 -*-
"""Alembic environment of the leaderboard service (async SQLAlchemy).

Purpose:
    • DSN comes from config_core (DATABASE_URL, converted to the async driver).
    • target_metadata is Base.metadata with every model module imported.
    • Offline mode prints SQL (literal_binds); online mode uses an async engine.

Rules:
    • No create_all/drop_all here; DDL lives in versions/.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from backend.app.core.config_core import get_settings
from backend.app.core.database_core import Base
from backend.app.core.logging_core import get_logger
from backend.app.models import MODEL_REGISTRY

config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

logger = get_logger(__name__)
settings = get_settings()

db_url = settings.database_url_async()
config.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))

target_metadata = Base.metadata
logger.info("alembic: %d models loaded", len(MODEL_REGISTRY))


def run_migrations_offline() -> None:
    """Emit SQL without connecting."""

    context.configure(
        url=db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section) or {},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
