# ============================================================
# Module : content_sync/services/webhook_sync.py
# Objet  : Orchestration d'une livraison webhook (portes puis pipeline).
# ============================================================
"""Traitement d'une notification du CMS.

Portes (court-circuit, aucune entrée d'audit): secret configuré → signature → limite horaire →
décodage du corps. Puis, strictement dans l'ordre: résolution du groupe de traduction →
synchronisation → entrée d'audit → mise en file de l'invalidation.

Une erreur de synchronisation est auditée (`success=False`) et produit un 500 pour que le CMS
relivre; l'invalidation est tout de même mise en file, le CMS restant la source du contenu rendu.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import ValidationError

from ..app.metrics import WEBHOOK_REJECTIONS, WEBHOOK_REQUESTS
from ..apigw.signature import SanityWebhookVerifier
from ..core.http_constants import (
    HTTP_BAD_REQUEST,
    HTTP_INTERNAL_SERVER_ERROR,
    HTTP_OK,
    HTTP_TOO_MANY_REQUESTS,
    HTTP_UNAUTHORIZED,
)
from ..domain.documents import ChangeNotification, WebhookPayload
from ..domain.errors import InvalidDocument, UnsupportedDocumentType
from ..domain.invalidation import InvalidationTask
from .audit import AuditRecorder
from .content_sync import ContentSyncDispatcher
from .invalidation_scheduler import InvalidationScheduler
from .translation_resolver import TranslationGroupResolver


@dataclass
class WebhookResult:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


def _error(status_code: int, message: str) -> WebhookResult:
    return WebhookResult(status_code, {"error": message})


class WebhookSyncService:
    """Point d'entrée unique du webhook de synchronisation."""

    def __init__(
        self,
        verifier: SanityWebhookVerifier,
        audit: AuditRecorder,
        resolver: TranslationGroupResolver,
        dispatcher: ContentSyncDispatcher,
        scheduler: InvalidationScheduler,
        rate_limit_per_hour: int = 200,
    ) -> None:
        self._verifier = verifier
        self._audit = audit
        self._resolver = resolver
        self._dispatcher = dispatcher
        self._scheduler = scheduler
        self._rate_limit_per_hour = rate_limit_per_hour
        self._log = structlog.get_logger(__name__).bind(component="webhook_sync")

    def _reject(self, reason: str, status_code: int, message: str) -> WebhookResult:
        WEBHOOK_REJECTIONS.labels(reason).inc()
        self._log.warning("webhook_rejected", reason=reason, status_code=status_code)
        return _error(status_code, message)

    async def process(self, body: bytes, signature: str | None) -> WebhookResult:
        if not self._verifier.configured:
            self._log.error("webhook_secret_not_configured")
            WEBHOOK_REJECTIONS.labels("config").inc()
            return _error(HTTP_INTERNAL_SERVER_ERROR, "Server configuration error")
        if not self._verifier.verify(body, signature):
            return self._reject("signature", HTTP_UNAUTHORIZED, "Invalid signature")
        if not await self._audit.within_rate_limit(self._rate_limit_per_hour):
            return self._reject("rate_limit", HTTP_TOO_MANY_REQUESTS, "Rate limit exceeded")

        try:
            payload = WebhookPayload.model_validate(json.loads(body))
        except (ValueError, ValidationError):
            return self._reject("payload", HTTP_BAD_REQUEST, "Invalid webhook payload")

        raw = payload.document_state()
        if not isinstance(raw, dict):
            return self._reject("payload", HTTP_BAD_REQUEST, "Document data is missing in payload")

        try:
            notification = ChangeNotification.from_payload(payload)
        except UnsupportedDocumentType as exc:
            return await self._unsupported(payload, exc)
        except InvalidDocument as exc:
            self._log.warning(
                "webhook_invalid_document", error=str(exc), document_id=raw.get("_id")
            )
            return self._reject("document", HTTP_BAD_REQUEST, str(exc))

        return await self.handle(notification)

    async def _unsupported(
        self, payload: WebhookPayload, exc: UnsupportedDocumentType
    ) -> WebhookResult:
        # type hors union: audit en succès, ni mutation ni invalidation
        self._log.warning(
            "webhook_unhandled_document_type",
            document_type=exc.document_type,
            document_id=exc.document_id,
        )
        await self._audit.record(
            payload.operation.value, exc.document_type, exc.document_id, True
        )
        WEBHOOK_REQUESTS.labels(payload.operation.value, exc.document_type, "ignored").inc()
        return WebhookResult(
            HTTP_OK,
            {
                "success": True,
                "operation": payload.operation.value,
                "documentType": exc.document_type,
                "documentId": exc.document_id,
            },
        )

    async def handle(self, notification: ChangeNotification) -> WebhookResult:
        operation = notification.operation.value
        content_type = notification.content_type
        document_id = notification.document_id
        structlog.contextvars.bind_contextvars(
            operation=operation, document_type=content_type, document_id=document_id
        )
        self._log.info("webhook_received")

        resolution = await self._resolver.resolve(document_id)

        error: str | None = None
        try:
            await self._dispatcher.dispatch(
                notification.operation, notification.document, resolution
            )
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            self._log.error("webhook_sync_failed", error=error, exc_info=True)

        await self._audit.record(operation, content_type, document_id, error is None, error)
        self._scheduler.queue(InvalidationTask.from_notification(notification))

        result = "success" if error is None else "error"
        WEBHOOK_REQUESTS.labels(operation, content_type, result).inc()
        if error is not None:
            return _error(HTTP_INTERNAL_SERVER_ERROR, "Internal processing error")
        self._log.info("webhook_processed", group_id=resolution.group.group_id)
        return WebhookResult(
            HTTP_OK,
            {
                "success": True,
                "operation": operation,
                "documentType": content_type,
                "documentId": document_id,
            },
        )
