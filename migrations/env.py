"""Alembic environment for the lead pipeline tables (companies, leads, interactions).

Migrations always run through the async driver the service itself uses, so the
URL is coerced with the same helper as ``SQLModelPipelineStore``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import ssl
from logging.config import fileConfig
from typing import Any

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import async_engine_from_config
from sqlmodel import SQLModel

from leadflow.config import settings
from leadflow.models import records  # noqa: F401 - registers the pipeline tables
from leadflow.services.pipeline.sql_store import coerce_async_url

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("leadflow.alembic")
target_metadata = SQLModel.metadata


def _candidate_urls() -> list[tuple[str, str | None]]:
    return [
        ("DATABASE_URL", os.environ.get("DATABASE_URL")),
        ("alembic.ini", config.get_main_option("sqlalchemy.url")),
        ("settings", settings.database_url),
    ]


def _connect_args(url: str) -> dict[str, Any]:
    """asyncpg needs an SSLContext when the server requires TLS."""
    if not url.startswith("postgresql+asyncpg"):
        return {}
    if os.environ.get("PGSSLMODE", "").lower() != "require":
        return {}
    ctx = ssl.create_default_context()
    ca_file = os.environ.get("ALEMBIC_CA_FILE")
    if ca_file:
        ctx.load_verify_locations(cafile=ca_file)
    return {"ssl": ctx}


def resolve_database_url() -> tuple[str, dict[str, Any]]:
    for source, value in _candidate_urls():
        if not value:
            continue
        try:
            url = coerce_async_url(make_url(value))
        except ArgumentError as exc:
            raise RuntimeError(f"DATABASE_URL from {source} is not a valid URL.") from exc
        rendered = make_url(url).render_as_string(hide_password=True)
        logger.info("alembic.database_url", extra={"source": source, "url": rendered})
        config.print_stdout(f"[Alembic] using {source}: {rendered}")
        return url, _connect_args(url)
    raise RuntimeError("DATABASE_URL must be set to run migrations.")


def run_migrations_offline() -> None:
    """Emit SQL without a database connection."""
    url, _ = resolve_database_url()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_sync_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    url, connect_args = resolve_database_url()
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = url
    engine = async_engine_from_config(
        section, prefix="sqlalchemy.", poolclass=pool.NullPool, connect_args=connect_args
    )
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_sync_migrations)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
