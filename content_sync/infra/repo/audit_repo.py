"""Accès SQL à la table d'audit `webhook_calls`."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import WebhookCallORM


class WebhookCallRepo:
    """Append-only: ajout, comptage par fenêtre, lecture des dernières entrées."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        operation: str,
        document_type: str,
        document_id: str,
        success: bool,
        error: str | None = None,
    ) -> WebhookCallORM:
        row = WebhookCallORM(
            operation=operation,
            document_type=document_type,
            document_id=document_id,
            success=success,
            error=error,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def count_since(self, since: datetime) -> int:
        stmt = select(func.count(WebhookCallORM.id)).where(WebhookCallORM.created_at >= since)
        return int((await self._session.execute(stmt)).scalar_one())

    async def recent(self, limit: int = 20) -> list[WebhookCallORM]:
        stmt = (
            select(WebhookCallORM)
            .order_by(WebhookCallORM.created_at.desc(), WebhookCallORM.id.desc())
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def stats_by_type(self, since: datetime) -> list[tuple[str, int, int]]:
        """Retourne `(document_type, total, succeeded)` par type depuis `since`."""
        succeeded = func.sum(case((WebhookCallORM.success.is_(True), 1), else_=0))
        stmt = (
            select(WebhookCallORM.document_type, func.count(WebhookCallORM.id), succeeded)
            .where(WebhookCallORM.created_at >= since)
            .group_by(WebhookCallORM.document_type)
            .order_by(WebhookCallORM.document_type)
        )
        rows = (await self._session.execute(stmt)).all()
        return [(doc_type, int(total), int(ok or 0)) for doc_type, total, ok in rows]
