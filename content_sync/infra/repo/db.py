"""DB utilities for async SQLAlchemy sessions/engine.

Uses `DATABASE_URL` env var or falls back to `sqlite+aiosqlite:///:memory:` for tests.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

MEMORY_SQLITE_URL = "sqlite+aiosqlite:///:memory:"


def get_engine(url: str | None = None) -> AsyncEngine:
    """Crée un moteur SQLAlchemy asynchrone à partir de l'URL de base de données."""
    db_url = url or os.getenv("DATABASE_URL") or MEMORY_SQLITE_URL
    if db_url == MEMORY_SQLITE_URL:
        # une seule connexion partagée, sinon chaque session voit une base vide
        return create_async_engine(db_url, echo=False, poolclass=StaticPool)
    return create_async_engine(db_url, echo=False)


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Crée une factory de sessions asynchrones."""
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def session_scope(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Contexte de session avec gestion automatique de la transaction.

    Commit en sortie normale, rollback puis propagation sur toute exception.
    """
    SessionLocal = get_session_factory(engine)
    session = SessionLocal()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def create_all(engine: AsyncEngine) -> None:
    """Crée les tables (dev/tests; Alembic en production)."""
    from .models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
