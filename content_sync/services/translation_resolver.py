"""Résolution du groupe de traduction d'un document CMS.

Une requête combinée récupère les métadonnées de traduction (id du groupe, ids des frères) et la
langue du document, bornée par `I18N_QUERY_TIMEOUT_S`. En cas d'échec, une requête réduite à la
langue est tentée (`I18N_LANGUAGE_TIMEOUT_S`), puis le groupe se réduit au document lui-même.
`resolve` ne lève jamais.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

import structlog

from ..app.metrics import I18N_RESOLUTION
from ..domain.translation import Degraded, ResolutionResult, Resolved, TranslationGroupInfo

GROUP_QUERY = (
    '{"i18n_metadata": *[_type == "translation.metadata" && $documentId in '
    'translations[].value._ref][0]{"i18n_id": _id, '
    '"related_document_ids": translations[].value._ref}, '
    '"i18n_lang": *[_id==$documentId][0].language}'
)
LANGUAGE_QUERY = "*[_id==$documentId][0].language"


def _failure_reason(exc: Exception) -> str:
    if isinstance(exc, TimeoutError):
        return "timeout"
    return str(exc) or exc.__class__.__name__


class CMSQuery(Protocol):
    async def query(
        self, groq: str, params: dict[str, Any] | None = None, timeout: float | None = None
    ) -> Any: ...


class TranslationGroupResolver:
    """Résout `document_id` vers un `TranslationGroupInfo` (résultat explicite)."""

    def __init__(
        self, cms: CMSQuery, query_timeout_s: float = 10.0, language_timeout_s: float = 5.0
    ) -> None:
        self._cms = cms
        self._query_timeout_s = query_timeout_s
        self._language_timeout_s = language_timeout_s
        self._log = structlog.get_logger(__name__).bind(component="i18n_resolver")

    async def _bounded_query(self, groq: str, document_id: str, timeout: float) -> Any:
        return await asyncio.wait_for(
            self._cms.query(groq, {"documentId": document_id}, timeout=timeout),
            timeout=timeout,
        )

    async def resolve(self, document_id: str) -> ResolutionResult:
        if not document_id:
            I18N_RESOLUTION.labels("degraded").inc()
            return Degraded(TranslationGroupInfo("", None, []), reason="empty document id")

        try:
            result = await self._bounded_query(GROUP_QUERY, document_id, self._query_timeout_s)
        except Exception as exc:
            # tout échec du client, même hors `CMSQueryError`, dégrade la résolution
            reason = _failure_reason(exc)
            language = await self._language_only(document_id)
            self._log.warning(
                "i18n_resolution_degraded",
                document_id=document_id,
                reason=reason,
                language=language,
            )
            I18N_RESOLUTION.labels("degraded").inc()
            return Degraded(TranslationGroupInfo.single(document_id, language), reason=reason)

        payload = result if isinstance(result, dict) else {}
        language = payload.get("i18n_lang")
        metadata = payload.get("i18n_metadata")
        if isinstance(metadata, dict) and metadata.get("i18n_id"):
            siblings = [sid for sid in metadata.get("related_document_ids") or [] if sid]
            if document_id not in siblings:
                siblings.append(document_id)
            group = TranslationGroupInfo(metadata["i18n_id"], language, siblings)
            I18N_RESOLUTION.labels("resolved").inc()
        else:
            group = TranslationGroupInfo.single(document_id, language)
            I18N_RESOLUTION.labels("no_metadata").inc()
        self._log.debug(
            "i18n_resolved",
            document_id=document_id,
            group_id=group.group_id,
            language=group.language,
            siblings=len(group.sibling_ids),
        )
        return Resolved(group)

    async def _language_only(self, document_id: str) -> str | None:
        try:
            language = await self._bounded_query(
                LANGUAGE_QUERY, document_id, self._language_timeout_s
            )
        except Exception as exc:
            self._log.warning(
                "i18n_language_lookup_failed",
                document_id=document_id,
                error=_failure_reason(exc),
            )
            return None
        return language if isinstance(language, str) and language else None
