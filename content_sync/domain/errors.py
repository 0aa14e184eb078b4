"""Exceptions métier du pipeline de synchronisation et d'invalidation."""

from __future__ import annotations


class ContentSyncError(Exception):
    """Erreur de base du service."""


class InvalidDocument(ContentSyncError):
    """Document CMS absent ou non conforme au schéma de son type."""


class UnsupportedDocumentType(ContentSyncError):
    """Type de document inconnu du pipeline (ignoré, non bloquant)."""

    def __init__(self, document_type: str | None, document_id: str | None = None) -> None:
        """Conserve le type et l'id pour la journalisation et l'audit."""
        self.document_type = document_type or "unknown"
        self.document_id = document_id or ""
        super().__init__(f"unsupported document type: {self.document_type}")


class CMSQueryError(ContentSyncError):
    """Échec d'une requête GROQ vers le CMS (réseau, HTTP ou payload)."""


class CDNPurgeError(ContentSyncError):
    """Réponse d'erreur de l'API de purge CDN."""

    def __init__(self, status_code: int, message: str | None = None) -> None:
        """Initialise l'erreur avec le code HTTP renvoyé par l'API."""
        self.status_code = status_code
        super().__init__(message or f"cdn purge error: {status_code}")


class CachePurgeFailed(ContentSyncError):
    """Au moins un niveau de purge a échoué pour une invalidation immédiate."""

    def __init__(self, document_id: str, failed_tiers: list[str]) -> None:
        """Conserve le document et les niveaux en échec."""
        self.document_id = document_id
        self.failed_tiers = list(failed_tiers)
        tiers = ", ".join(self.failed_tiers)
        super().__init__(f"cache purge failed for {document_id}: {tiers}")
