"""Alembic environment for the billing tables (users, payments, collections)."""

from __future__ import annotations

import asyncio
import logging
import os
import ssl
from logging.config import fileConfig
from typing import Any

import certifi
from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_engine_from_config
from sqlmodel import SQLModel

from realtorpro.config import settings
from realtorpro.models import collection, payment, user  # noqa: F401 - register tables

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("realtorpro.alembic")
logger.setLevel(logging.INFO)
target_metadata = SQLModel.metadata


def _env_flag(name: str) -> bool:
    value = os.environ.get(name)
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _config_database_url() -> str | None:
    return config.get_main_option("sqlalchemy.url") or None


def _supabase_connect_args(url: URL) -> tuple[URL, dict[str, Any]]:
    """Hosted Postgres needs the pooled port and a verified TLS context."""
    if "supabase.co" not in (url.host or "").lower():
        return url, {}

    ca_file = os.environ.get("ALEMBIC_SUPABASE_CA_FILE") or certifi.where()
    ctx = ssl.create_default_context(cafile=ca_file)
    if _env_flag("ALEMBIC_SUPABASE_TLS_INSECURE"):
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        logger.warning("Supabase TLS verification DISABLED for Alembic.")

    query = {k: v for k, v in url.query.items() if k not in {"ssl", "sslmode"}}
    return url.set(port=6543, query=query), {"ssl": ctx}


def _resolve_database_config() -> tuple[str, dict[str, Any]]:
    candidates = [
        ("environment variable", os.environ.get("DATABASE_URL")),
        ("alembic.ini", _config_database_url()),
        ("app settings", settings.database_url),
    ]
    for source, value in candidates:
        if not value:
            continue
        url, connect_args = _supabase_connect_args(make_url(value))
        if "ssl" not in connect_args and os.environ.get("PGSSLMODE", "").lower() == "require":
            connect_args["ssl"] = ssl.create_default_context()
        rendered = url.render_as_string(hide_password=True)
        logger.info("Alembic resolved DATABASE_URL from %s: %s", source, rendered)
        return url.render_as_string(hide_password=False), connect_args
    raise RuntimeError("DATABASE_URL must be set to run migrations.")


def run_migrations_offline() -> None:
    url, _ = _resolve_database_config()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    configuration = config.get_section(config.config_ini_section) or {}
    url, connect_args = _resolve_database_config()
    configuration["sqlalchemy.url"] = url
    connectable: AsyncEngine = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        connect_args=connect_args,
    )

    try:
        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)
    finally:
        await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
