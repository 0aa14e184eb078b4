# ============================================================
# Module : content_sync/services/cache_purger.py
# Objet  : Purge multi-niveaux (cache applicatif, CDN, images).
# Notes  : niveaux exécutés en parallèle, chacun isolé des autres.
# ============================================================
"""Exécution des purges pour une tâche d'invalidation résolue.

Niveaux:
  1. cache applicatif: revalidation par tag puis par chemin;
  2. CDN de bord: purge des URLs absolues des chemins (ignorée si non configuré);
  3. images: variantes de taille des assets référencés par les instantanés, purgées au CDN.
     L'hébergeur d'images invalide son propre cache par hash de contenu.

Une erreur dans un niveau est journalisée et comptée; elle n'interrompt jamais les autres.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import quote

import structlog

from ..app.metrics import CACHE_PURGE
from ..domain.invalidation import InvalidationTask

TIER_FRAMEWORK = "framework"
TIER_CDN = "cdn"
TIER_IMAGES = "images"

STATUS_OK = "ok"
STATUS_SKIPPED = "skipped"
STATUS_ERROR = "error"


class FrameworkCache(Protocol):
    async def revalidate_tag(self, tag: str) -> int: ...

    async def revalidate_path(self, path: str) -> int: ...


class EdgeCDN(Protocol):
    @property
    def configured(self) -> bool: ...

    async def purge_urls(self, urls: list[str]) -> int: ...

    async def purge_everything(self) -> None: ...


@dataclass
class PurgeReport:
    framework: str = STATUS_SKIPPED
    cdn: str = STATUS_SKIPPED
    images: str = STATUS_SKIPPED

    @property
    def failed_tiers(self) -> list[str]:
        tiers = (
            (TIER_FRAMEWORK, self.framework),
            (TIER_CDN, self.cdn),
            (TIER_IMAGES, self.images),
        )
        return [tier for tier, status in tiers if status == STATUS_ERROR]


class CachePurger:
    """Purge les trois niveaux de cache pour un ensemble de tags/chemins."""

    def __init__(
        self,
        framework_cache: FrameworkCache,
        cdn: EdgeCDN,
        site_url: str,
        image_widths: Iterable[int] = (400, 800, 1200, 1600),
        image_quality: int = 75,
        image_url_template: str = "{site}/_next/image?url={ref}&w={width}&q={quality}",
    ) -> None:
        self.framework_cache = framework_cache
        self.cdn = cdn
        self.site_url = site_url.rstrip("/")
        self.image_widths = list(image_widths)
        self.image_quality = image_quality
        self.image_url_template = image_url_template
        self._log = structlog.get_logger(__name__).bind(component="cache_purger")

    async def execute(
        self, tags: list[str], paths: list[str], task: InvalidationTask | None = None
    ) -> PurgeReport:
        framework, cdn, images = await asyncio.gather(
            self._isolated(TIER_FRAMEWORK, self.revalidate(tags, paths)),
            self._isolated(TIER_CDN, self.purge_paths(paths)),
            self._isolated(TIER_IMAGES, self.purge_images(task)),
        )
        report = PurgeReport(framework=framework, cdn=cdn, images=images)
        self._log.info(
            "cache_purge_done",
            document_id=task.document_id if task else None,
            tags=len(tags),
            paths=len(paths),
            framework=report.framework,
            cdn=report.cdn,
            images=report.images,
        )
        return report

    async def _isolated(self, tier: str, work: Awaitable[str]) -> str:
        try:
            status = await work
        except Exception as exc:
            self._log.error("cache_tier_failed", tier=tier, error=str(exc), exc_info=True)
            status = STATUS_ERROR
        CACHE_PURGE.labels(tier, status).inc()
        return status

    # --- niveaux -------------------------------------------------------------

    async def revalidate(self, tags: Iterable[str], paths: Iterable[str]) -> str:
        """Niveau 1: revalidation du cache applicatif (lève en cas d'échec)."""
        for tag in tags:
            await self.framework_cache.revalidate_tag(tag)
        for path in paths:
            await self.framework_cache.revalidate_path(path)
        return STATUS_OK

    def absolute_urls(self, paths: Iterable[str]) -> list[str]:
        return [f"{self.site_url}{path}" for path in paths]

    async def purge_paths(self, paths: list[str]) -> str:
        """Niveau 2: purge CDN des URLs rendues."""
        if not self.cdn.configured:
            self._log.info("cdn_purge_skipped", reason="not_configured")
            return STATUS_SKIPPED
        if not paths:
            return STATUS_SKIPPED
        await self.cdn.purge_urls(self.absolute_urls(paths))
        return STATUS_OK

    def image_refs(self, task: InvalidationTask | None) -> list[str]:
        refs: list[str] = []
        if task is None:
            return refs
        for snapshot in task.snapshots():
            for ref in snapshot.asset_refs():
                if ref not in refs:
                    refs.append(ref)
        return refs

    def image_variant_urls(self, refs: Iterable[str]) -> list[str]:
        return [
            self.image_url_template.format(
                site=self.site_url,
                ref=quote(ref, safe=""),
                width=width,
                quality=self.image_quality,
            )
            for ref in refs
            for width in self.image_widths
        ]

    async def purge_images(self, task: InvalidationTask | None) -> str:
        """Niveau 3: variantes d'images au CDN."""
        refs = self.image_refs(task)
        if not refs:
            return STATUS_SKIPPED
        if not self.cdn.configured:
            self._log.info("image_purge_skipped", reason="cdn_not_configured", images=len(refs))
            return STATUS_SKIPPED
        urls = self.image_variant_urls(refs)
        await self.cdn.purge_urls(urls)
        self._log.info("image_purge_done", images=len(refs), urls=len(urls))
        return STATUS_OK
