"""
Configuration de l'environnement Alembic pour les migrations de base de données.

Ce module configure Alembic pour les modes offline et online. L'URL vient de `DATABASE_URL`
(pilote asynchrone, ex. `sqlite+aiosqlite`); en mode online les migrations s'exécutent sur une
connexion asynchrone via `run_sync`.
"""

from __future__ import annotations

import asyncio
import os
import sys
from logging.config import fileConfig
from pathlib import Path

from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context  # type: ignore[attr-defined]

# Allow importing project modules when running via Alembic CLI
_this = Path(__file__).resolve()
for p in (_this.parent.parent, Path.cwd()):
    s = str(p)
    if s and s not in sys.path:
        sys.path.append(s)

from content_sync.infra.repo.models import Base  # noqa: E402

DEFAULT_URL = "sqlite+aiosqlite:///./content_sync.db"

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> str:
    return os.getenv("DATABASE_URL", DEFAULT_URL)


def run_migrations_offline() -> None:
    """Exécute les migrations sans connexion (SQL rendu avec bindings littéraux)."""
    context.configure(url=_database_url(), target_metadata=target_metadata, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def _run_with_connection(connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Exécute les migrations sur une connexion asynchrone active."""
    connectable = create_async_engine(_database_url(), poolclass=pool.NullPool)
    async with connectable.connect() as connection:
        await connection.run_sync(_run_with_connection)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
