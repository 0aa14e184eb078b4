# ============================================================
# Module : content_sync/services/audit.py
# Objet  : Journal d'audit des notifications + fenêtre de rate limit.
# ============================================================
"""Enregistreur d'audit des notifications webhook.

Chaque notification traitée laisse une entrée `webhook_calls` (succès ou échec). La même table
sert de fenêtre glissante pour la limitation de débit (entrées de la dernière heure).
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from ..core.http_constants import RATE_LIMIT_WINDOW_SECONDS
from ..infra.repo.audit_repo import WebhookCallRepo
from ..infra.repo.db import session_scope
from ..infra.repo.models import WebhookCallORM, utcnow


@dataclass
class AuditStats:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    by_type: dict[str, int] = field(default_factory=dict)


class AuditRecorder:
    """Puits d'audit append-only."""

    def __init__(self, engine: AsyncEngine, clock: Callable[[], datetime] = utcnow) -> None:
        self._engine = engine
        self._clock = clock
        self._log = structlog.get_logger(__name__).bind(component="audit")

    async def record(
        self,
        operation: str,
        document_type: str,
        document_id: str,
        success: bool,
        error: str | None = None,
    ) -> None:
        """Ajoute une entrée. Ne lève jamais: un échec d'écriture est journalisé."""
        try:
            async with session_scope(self._engine) as session:
                await WebhookCallRepo(session).add(
                    operation, document_type, document_id, success, error
                )
        except SQLAlchemyError as exc:
            self._log.error(
                "audit_record_failed",
                operation=operation,
                document_type=document_type,
                document_id=document_id,
                error=str(exc),
            )

    async def count_since(self, since: datetime) -> int:
        async with session_scope(self._engine) as session:
            return await WebhookCallRepo(session).count_since(since)

    async def within_rate_limit(self, limit: int) -> bool:
        """Vrai si moins de `limit` entrées sur la dernière heure.

        Échoue ouvert: une erreur de comptage laisse passer la requête.
        """
        since = self._clock() - timedelta(seconds=RATE_LIMIT_WINDOW_SECONDS)
        try:
            count = await self.count_since(since)
        except SQLAlchemyError as exc:
            self._log.error("rate_limit_check_failed", error=str(exc))
            return True
        return count < limit

    async def recent(self, limit: int = 20) -> list[WebhookCallORM]:
        async with session_scope(self._engine) as session:
            return await WebhookCallRepo(session).recent(limit)

    async def stats(self, since: datetime) -> AuditStats:
        """Compteurs agrégés depuis `since` (total, succès, échecs, par type)."""
        async with session_scope(self._engine) as session:
            rows = await WebhookCallRepo(session).stats_by_type(since)
        stats = AuditStats()
        for doc_type, total, ok in rows:
            stats.total += total
            stats.succeeded += ok
            stats.by_type[doc_type] = total
        stats.failed = stats.total - stats.succeeded
        return stats
