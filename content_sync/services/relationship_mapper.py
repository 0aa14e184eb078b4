# ============================================================
# Module : content_sync/services/relationship_mapper.py
# Objet  : Tags de cache et chemins rendus affectés par un changement.
# Notes  : effets directs (champs du document) + indirects (requêtes CMS).
# ============================================================
"""Graphe des relations entre types de contenu et ressources en cache.

Chaque type déclare:
  - des effets directs, calculés à partir des seuls champs du document (id, slug, langue);
  - des effets indirects, qui nécessitent une requête au CMS (collections parentes d'une photo,
    dev collections parentes d'un log, langues des logs d'une dev collection, logs d'un auteur).

Les requêtes indirectes sont bornées par un timeout, mémorisées le temps d'une résolution et
dégradées en liste vide en cas d'échec: le mapper ne lève jamais, il rend au pire les seuls
effets directs.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import structlog

from ..domain.documents import (
    AuthorDocument,
    CollectionDocument,
    ContentDocument,
    DevCollectionDocument,
    LogDocument,
    PhotoDocument,
    decode_document,
)
from ..domain.errors import ContentSyncError
from ..domain.invalidation import InvalidationTask
from .translation_resolver import CMSQuery

PARENT_COLLECTIONS_QUERY = '*[_type == "collection" && $photoId in photos[]._ref]{_id, slug}'
PARENT_DEV_COLLECTIONS_QUERY = '*[_type == "devCollection" && $logId in logs[]._ref]{_id, slug}'
LOGS_BY_IDS_QUERY = '*[_type == "log" && _id in $logIds]{_id, language, slug}'
LOGS_BY_AUTHOR_QUERY = '*[_type == "log" && author._ref == $authorId]{_id, language, slug}'

# Tags/chemins larges par type, pour les purges manuelles par type.
TYPE_TAGS: dict[str, list[str]] = {
    "collection": [
        "collections",
        "featured-collections",
        "homepage-collections",
        "gallery-collections",
    ],
    "log": ["logs", "log-list", "log-detail", "collection-logs"],
    "photo": ["photos", "gallery-collections"],
    "devCollection": ["dev-collections", "dev-collection-list"],
    "author": ["author-data"],
}
TYPE_PATHS: dict[str, list[str]] = {
    "collection": ["/zh/collections", "/en/collections"],
    "log": ["/zh/logs", "/en/logs"],
    "photo": ["/zh/collections", "/en/collections"],
    "devCollection": ["/zh/dev", "/en/dev"],
    "author": ["/zh/about", "/en/about"],
}
TYPE_ALIASES = {
    "collections": "collection",
    "logs": "log",
    "photos": "photo",
    "dev-collections": "devCollection",
    "authors": "author",
}


@dataclass
class AffectedResources:
    tags: list[str]
    paths: list[str]


def _slug_of(item: dict[str, Any]) -> str | None:
    slug = item.get("slug")
    if isinstance(slug, dict) and slug.get("current"):
        return slug["current"]
    return None


def canonical_type(content_type: str) -> str:
    """Nom du type CMS, en acceptant les alias pluriels de l'administration."""
    return TYPE_ALIASES.get(content_type, content_type)


class _Lookups:
    """Requêtes indirectes d'une résolution: bornées, mémorisées, tolérantes aux pannes."""

    def __init__(self, cms: CMSQuery, timeout_s: float, log: Any) -> None:
        self._cms = cms
        self._timeout_s = timeout_s
        self._log = log
        self._cache: dict[tuple[str, str], list[dict[str, Any]]] = {}

    async def fetch(self, groq: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        key = (groq, json.dumps(params, sort_keys=True))
        if key in self._cache:
            return self._cache[key]
        try:
            result = await asyncio.wait_for(
                self._cms.query(groq, params, timeout=self._timeout_s), timeout=self._timeout_s
            )
        except Exception as exc:
            reason = "timeout" if isinstance(exc, TimeoutError) else str(exc) or repr(exc)
            self._log.error("relationship_lookup_failed", params=params, error=reason)
            result = []
        if not isinstance(result, list):
            result = []
        rows = [row for row in result if isinstance(row, dict)]
        self._cache[key] = rows
        return rows


class RelationshipMapper:
    """Calcule les tags et chemins à invalider pour un document ou une tâche."""

    def __init__(
        self,
        cms: CMSQuery,
        languages: Iterable[str] = ("zh", "en"),
        query_timeout_s: float = 5.0,
    ) -> None:
        self._cms = cms
        self._languages = list(languages)
        self._query_timeout_s = query_timeout_s
        self._log = structlog.get_logger(__name__).bind(component="relationship_mapper")

    def _lookups(self) -> _Lookups:
        return _Lookups(self._cms, self._query_timeout_s, self._log)

    def type_tags(self, content_type: str) -> list[str]:
        return list(TYPE_TAGS.get(canonical_type(content_type), []))

    def type_paths(self, content_type: str) -> list[str]:
        return list(TYPE_PATHS.get(canonical_type(content_type), []))

    async def affected_tags(self, document: ContentDocument) -> list[str]:
        tags, _ = await self._map(document, self._lookups())
        return sorted(tags)

    async def affected_paths(self, document: ContentDocument) -> list[str]:
        _, paths = await self._map(document, self._lookups())
        return sorted(paths)

    async def resolve(self, task: InvalidationTask) -> AffectedResources:
        """Union des effets des instantanés avant/après et des `related_data`.

        L'instantané avant couvre l'ancien slug (renommage, suppression).
        """
        lookups = self._lookups()
        tags: set[str] = {f"document:{task.document_id}", f"type:{task.content_type}"}
        paths: set[str] = set()
        for snapshot in task.snapshots():
            snap_tags, snap_paths = await self._map(snapshot, lookups)
            tags |= snap_tags
            paths |= snap_paths
        for item in task.related_data:
            rel_tags, rel_paths = self._related(item)
            tags |= rel_tags
            paths |= rel_paths
        resources = AffectedResources(tags=sorted(tags), paths=sorted(paths))
        self._log.info(
            "relationships_resolved",
            content_type=task.content_type,
            document_id=task.document_id,
            tags=len(resources.tags),
            paths=len(resources.paths),
        )
        return resources

    def _related(self, item: dict[str, Any]) -> tuple[set[str], set[str]]:
        try:
            document = decode_document(item)
        except ContentSyncError:
            item_id = item.get("_id")
            return ({f"document:{item_id}"} if item_id else set()), set()
        return self._direct(document)

    async def _map(
        self, document: ContentDocument, lookups: _Lookups
    ) -> tuple[set[str], set[str]]:
        tags, paths = self._direct(document)
        more_tags, more_paths = await self._indirect(document, lookups)
        return tags | more_tags, paths | more_paths

    def _log_languages(self, document: LogDocument) -> list[str]:
        # langue inconnue: toutes les variantes rendues sont potentiellement touchées
        return [document.language] if document.language else list(self._languages)

    # --- effets directs --------------------------------------------------

    def _direct(self, document: ContentDocument) -> tuple[set[str], set[str]]:
        slug = document.slug_value
        tags: set[str] = set()
        paths: set[str] = set()

        if isinstance(document, CollectionDocument):
            tags |= {
                "collections",
                f"collection:{document.id}",
                "homepage-collections",
                "gallery-collections",
            }
            paths |= {"/", "/gallery"}
            paths |= {f"/{lang}" for lang in self._languages}
            paths |= {f"/{lang}/gallery" for lang in self._languages}
            if slug:
                tags.add(f"collection:{slug}")
                paths.add(f"/gallery/{slug}")
                paths |= {f"/{lang}/gallery/{slug}" for lang in self._languages}

        elif isinstance(document, PhotoDocument):
            tags |= {"photos", f"photo:{document.id}"}

        elif isinstance(document, LogDocument):
            tags |= {"logs", f"log:{document.id}", "log-list", "log-detail"}
            if document.language:
                tags.add(f"logs:{document.language}")
            if slug:
                tags.add(f"log:{slug}")
            for lang in self._log_languages(document):
                paths.add(f"/{lang}/log")
                if slug:
                    paths.add(f"/{lang}/log/{slug}")

        elif isinstance(document, DevCollectionDocument):
            tags |= {"dev-collections", f"dev-collection:{document.id}", "dev-collection-list"}
            if slug:
                tags.add(f"dev-collection:{slug}")

        elif isinstance(document, AuthorDocument):
            tags |= {"authors", f"author:{document.id}", "author-data"}
            if slug:
                tags.add(f"author:{slug}")
            paths.add("/about")
            paths |= {f"/{lang}/about" for lang in self._languages}

        return tags, paths

    # --- effets indirects ------------------------------------------------

    async def _indirect(
        self, document: ContentDocument, lookups: _Lookups
    ) -> tuple[set[str], set[str]]:
        tags: set[str] = set()
        paths: set[str] = set()

        if isinstance(document, CollectionDocument):
            if document.is_featured:
                tags.add("featured-collections")
            photo_ids = [ref.ref for ref in document.photos if ref.ref]
            if photo_ids:
                tags.add("photos")
                tags |= {f"photo:{pid}" for pid in photo_ids}
                if document.slug_value:
                    tags.add(f"collection-photos:{document.slug_value}")

        elif isinstance(document, PhotoDocument):
            parents = await lookups.fetch(PARENT_COLLECTIONS_QUERY, {"photoId": document.id})
            for parent in parents:
                if parent.get("_id"):
                    tags.add(f"collection:{parent['_id']}")
                parent_slug = _slug_of(parent)
                if parent_slug:
                    tags |= {f"collection:{parent_slug}", f"collection-photos:{parent_slug}"}
                    paths.add(f"/gallery/{parent_slug}")
                    paths |= {f"/{lang}/gallery/{parent_slug}" for lang in self._languages}

        elif isinstance(document, LogDocument):
            parents = await lookups.fetch(PARENT_DEV_COLLECTIONS_QUERY, {"logId": document.id})
            languages = self._log_languages(document)
            for parent in parents:
                if parent.get("_id"):
                    tags.add(f"dev-collection:{parent['_id']}")
                tags.add("log-collection-mapping")
                tags |= {f"dev-collections:{lang}" for lang in languages}
                parent_slug = _slug_of(parent)
                if parent_slug:
                    tags.add(f"dev-collection:{parent_slug}")
                    paths |= {f"/{lang}/dev/{parent_slug}" for lang in languages}

        elif isinstance(document, DevCollectionDocument):
            log_ids = [ref.ref for ref in document.logs if ref.ref]
            if log_ids:
                tags |= {f"log:{lid}" for lid in log_ids}
                tags |= {"log-collection-mapping", "collection-logs"}
                rows = await lookups.fetch(LOGS_BY_IDS_QUERY, {"logIds": log_ids})
                languages = sorted({row["language"] for row in rows if row.get("language")})
                for lang in languages:
                    tags.add(f"dev-collections:{lang}")
                    paths.add(f"/{lang}/dev")
                    if document.slug_value:
                        paths.add(f"/{lang}/dev/{document.slug_value}")

        elif isinstance(document, AuthorDocument):
            rows = await lookups.fetch(LOGS_BY_AUTHOR_QUERY, {"authorId": document.id})
            for row in rows:
                if row.get("_id"):
                    tags.add(f"log:{row['_id']}")
                lang = row.get("language")
                if lang:
                    tags.add(f"logs:{lang}")
                row_slug = _slug_of(row)
                if row_slug:
                    tags.add(f"log:{row_slug}")
                    if lang:
                        paths.add(f"/{lang}/log/{row_slug}")

        return tags, paths
