# ============================================================
# Module : content_sync/services/admin_cache.py
# Objet  : Purges manuelles (administration) + journal des opérations de cache.
# ============================================================
"""Opérations de purge déclenchées par un opérateur.

Ces opérations contournent la résolution par document et purgent par portée nommée
(`all`, `pages`, `images`, par type, par chemin). Chaque opération est tracée dans le journal des
opérations de cache (anneau mémoire borné) et dans les logs structurés.
"""

from __future__ import annotations

import uuid
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

import structlog

from ..domain.invalidation import InvalidationTask
from .cache_purger import CachePurger
from .invalidation_scheduler import InvalidationScheduler
from .relationship_mapper import TYPE_TAGS, RelationshipMapper, canonical_type

ALL_TAGS = [
    "collections",
    "featured-collections",
    "homepage-collections",
    "gallery-collections",
    "logs",
    "log-list",
    "log-detail",
    "dev-collections",
    "dev-collection-list",
    "photos",
    "translations",
    "author-data",
    "collection-logs",
]
KEY_PATHS = ["/", "/zh", "/en"]
PAGE_TAGS = [
    "collections",
    "featured-collections",
    "homepage-collections",
    "logs",
    "log-list",
    "dev-collections",
    "dev-collection-list",
]
PAGE_PATHS = [
    "/",
    "/zh",
    "/en",
    "/zh/collections",
    "/en/collections",
    "/zh/logs",
    "/en/logs",
    "/zh/dev",
    "/en/dev",
]
IMAGE_TAGS = ["photos", "gallery-collections"]
RECENT_WINDOW = 20
TOP_OPERATIONS = 5


@dataclass
class CacheLogEntry:
    operation: str
    target: str
    success: bool
    details: str | None = None
    user_id: str | None = None
    id: str = field(default_factory=lambda: f"cache_log_{uuid.uuid4().hex[:12]}")
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


class CacheLogRecorder:
    """Anneau mémoire des dernières opérations de cache (plus récentes en tête)."""

    def __init__(self, capacity: int = 100) -> None:
        self._entries: deque[CacheLogEntry] = deque(maxlen=capacity)
        self._log = structlog.get_logger(__name__).bind(component="cache_logs")

    def record(
        self,
        operation: str,
        target: str,
        success: bool,
        details: str | None = None,
        user_id: str | None = None,
    ) -> CacheLogEntry:
        entry = CacheLogEntry(operation, target, success, details, user_id)
        self._entries.appendleft(entry)
        self._log.info(
            "cache_operation",
            operation=operation,
            target=target,
            success=success,
            details=details,
            user_id=user_id,
        )
        return entry

    def entries(self, limit: int = 50) -> list[CacheLogEntry]:
        return list(self._entries)[:limit]

    def stats(self) -> dict:
        entries = list(self._entries)
        successful = sum(1 for e in entries if e.success)
        recent = Counter(e.operation for e in entries[:RECENT_WINDOW])
        return {
            "total": len(entries),
            "successful": successful,
            "failed": len(entries) - successful,
            "recent_operations": [
                {"operation": op, "count": count}
                for op, count in recent.most_common(TOP_OPERATIONS)
            ],
        }

    def clear(self) -> None:
        self._entries.clear()


@dataclass
class AdminResult:
    success: bool
    message: str
    cleared_count: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class AdminCacheService:
    """Point d'entrée des purges manuelles."""

    def __init__(
        self,
        purger: CachePurger,
        mapper: RelationshipMapper,
        scheduler: InvalidationScheduler,
        cache_logs: CacheLogRecorder,
    ) -> None:
        self._purger = purger
        self._mapper = mapper
        self._scheduler = scheduler
        self.cache_logs = cache_logs
        self._log = structlog.get_logger(__name__).bind(component="admin_cache")

    async def _revalidate_tags(self, tags: list[str]) -> int:
        cleared = 0
        for tag in tags:
            try:
                await self._purger.framework_cache.revalidate_tag(tag)
            except Exception as exc:
                self._log.error("admin_tag_clear_failed", tag=tag, error=str(exc))
                continue
            cleared += 1
        return cleared

    async def _revalidate_paths(self, paths: list[str]) -> None:
        for path in paths:
            try:
                await self._purger.framework_cache.revalidate_path(path)
            except Exception as exc:
                self._log.error("admin_path_clear_failed", path=path, error=str(exc))

    async def clear_all(self, user_id: str | None = None) -> AdminResult:
        """Tous les tags connus, chemins clés, puis purge complète du CDN si configuré."""
        cleared = await self._revalidate_tags(ALL_TAGS)
        await self._revalidate_paths(KEY_PATHS)
        details = f"Cleared {cleared} tags"
        if self._purger.cdn.configured:
            try:
                await self._purger.cdn.purge_everything()
            except Exception as exc:
                self._log.error("admin_cdn_purge_failed", error=str(exc))
                self.cache_logs.record(
                    "clear_all_cache", "all", False, f"{details}; {exc}", user_id
                )
                return AdminResult(False, "CDN purge failed", cleared)
            details += "; CDN purged"
        self.cache_logs.record("clear_all_cache", "all", True, details, user_id)
        return AdminResult(True, "All caches cleared", cleared)

    async def clear_pages(self, user_id: str | None = None) -> AdminResult:
        cleared = await self._revalidate_tags(PAGE_TAGS)
        await self._revalidate_paths(PAGE_PATHS)
        success = cleared == len(PAGE_TAGS)
        self.cache_logs.record(
            "clear_page_cache", "pages", success, f"Cleared {cleared} page tags", user_id
        )
        if not success:
            return AdminResult(False, "Some page tags failed to revalidate", cleared)
        return AdminResult(True, "Page caches cleared", cleared)

    async def clear_images(self, user_id: str | None = None) -> AdminResult:
        cleared = await self._revalidate_tags(IMAGE_TAGS)
        success = cleared == len(IMAGE_TAGS)
        self.cache_logs.record(
            "clear_image_cache", "images", success, f"Cleared {cleared} image tags", user_id
        )
        if not success:
            return AdminResult(False, "Some image tags failed to revalidate", cleared)
        return AdminResult(
            True, "Image caches cleared (image host invalidates by content hash)", cleared
        )

    async def clear_by_type(self, content_type: str, user_id: str | None = None) -> AdminResult:
        if canonical_type(content_type) not in TYPE_TAGS:
            return AdminResult(False, f"Unknown content type: {content_type}")
        cleared = await self._revalidate_tags(self._mapper.type_tags(content_type))
        await self._revalidate_paths(self._mapper.type_paths(content_type))
        self.cache_logs.record(
            "clear_cache_by_type", content_type, True, f"Cleared {cleared} tags", user_id
        )
        return AdminResult(True, f"{content_type} caches cleared", cleared)

    async def invalidate_path(self, path: str, user_id: str | None = None) -> AdminResult:
        if not path.startswith("/"):
            return AdminResult(False, "Path must start with /")
        try:
            await self._purger.framework_cache.revalidate_path(path)
            if self._purger.cdn.configured:
                await self._purger.cdn.purge_urls(self._purger.absolute_urls([path]))
        except Exception as exc:
            self._log.error("admin_path_invalidation_failed", path=path, error=str(exc))
            self.cache_logs.record("invalidate_specific_path", path, False, str(exc), user_id)
            return AdminResult(False, "Path invalidation failed")
        self.cache_logs.record("invalidate_specific_path", path, True, None, user_id)
        return AdminResult(True, f"Path {path} invalidated", 1)

    async def invalidate_document(
        self, task: InvalidationTask, user_id: str | None = None
    ) -> AdminResult:
        """Invalidation immédiate d'un document (hors batch); les erreurs remontent."""
        target = f"{task.content_type}:{task.document_id}"
        try:
            await self._scheduler.invalidate_immediately(task)
        except Exception as exc:
            self.cache_logs.record("invalidate_document", target, False, str(exc), user_id)
            raise
        self.cache_logs.record("invalidate_document", target, True, None, user_id)
        return AdminResult(True, f"{target} invalidated", 1)
