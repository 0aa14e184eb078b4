"""
Conteneur d'injection de dépendances et configuration application.

Instancie les composants du pipeline (moteur SQL, clients CMS/CDN, cache applicatif, résolveur,
répartiteur, planificateur, purgeur) à partir des settings. Chaque composant d'infrastructure
peut être remplacé par argument (tests). Un singleton `container` est utilisé par l'application
par défaut.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from ..apigw.internal_auth import InternalAuthVerifier
from ..apigw.signature import SanityWebhookVerifier
from ..infra.cdn_client import CloudflareClient
from ..infra.cms_client import SanityClient
from ..infra.framework_cache import InMemoryFrameworkCache, RedisFrameworkCache
from ..infra.repo.db import get_engine
from ..services.admin_cache import AdminCacheService, CacheLogRecorder
from ..services.audit import AuditRecorder
from ..services.cache_purger import CachePurger
from ..services.content_sync import ContentSyncDispatcher
from ..services.invalidation_scheduler import CallLater, InvalidationScheduler
from ..services.relationship_mapper import RelationshipMapper
from ..services.translation_resolver import TranslationGroupResolver
from ..services.webhook_sync import WebhookSyncService
from .settings import Settings, get_settings

log = structlog.get_logger(__name__).bind(component="container")


class Container:
    def __init__(
        self,
        settings: Settings | None = None,
        engine: AsyncEngine | None = None,
        cms_client: Any | None = None,
        cdn_client: Any | None = None,
        framework_cache: Any | None = None,
        call_later: CallLater | None = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings
        self.engine = engine or get_engine(s.DATABASE_URL)
        self.cms_client = cms_client or SanityClient(s)
        self.cdn_client = cdn_client or CloudflareClient(s)

        # cache applicatif: Redis si configuré, sinon mémoire
        if framework_cache is not None:
            self.framework_cache = framework_cache
            self.storage_backend = "custom"
        elif s.REDIS_URL:
            try:
                self.framework_cache = RedisFrameworkCache(s.REDIS_URL)
                self.storage_backend = "redis"
            except Exception as err:
                if s.REQUIRE_REDIS:
                    raise RuntimeError("Redis required but unavailable") from err
                log.warning("redis_unavailable_memory_fallback", error=str(err))
                self.framework_cache = InMemoryFrameworkCache()
                self.storage_backend = "memory-fallback"
        else:
            if s.REQUIRE_REDIS:
                raise RuntimeError("Redis required but REDIS_URL not set")
            self.framework_cache = InMemoryFrameworkCache()
            self.storage_backend = "memory"

        self.webhook_verifier = SanityWebhookVerifier(
            s.SANITY_WEBHOOK_SECRET, max_skew_s=s.SANITY_WEBHOOK_MAX_SKEW_S
        )
        self.internal_auth = InternalAuthVerifier(s.INTERNAL_AUTH_KEY)
        self.audit = AuditRecorder(self.engine)
        self.resolver = TranslationGroupResolver(
            self.cms_client,
            query_timeout_s=s.I18N_QUERY_TIMEOUT_S,
            language_timeout_s=s.I18N_LANGUAGE_TIMEOUT_S,
        )
        self.dispatcher = ContentSyncDispatcher(
            self.engine,
            author_user_id=s.AUTHOR_USER_ID,
            default_language=s.DEFAULT_LANGUAGE,
        )
        self.mapper = RelationshipMapper(
            self.cms_client,
            languages=s.SUPPORTED_LANGUAGES,
            query_timeout_s=s.RELATIONSHIP_QUERY_TIMEOUT_S,
        )
        self.purger = CachePurger(
            self.framework_cache,
            self.cdn_client,
            site_url=s.SITE_URL,
            image_widths=s.IMAGE_VARIANT_WIDTHS,
            image_quality=s.IMAGE_VARIANT_QUALITY,
            image_url_template=s.IMAGE_VARIANT_URL_TEMPLATE,
        )
        self.scheduler = InvalidationScheduler(
            self.mapper,
            self.purger,
            batch_delay_ms=s.INVALIDATION_BATCH_DELAY_MS,
            call_later=call_later,
        )
        self.cache_logs = CacheLogRecorder(capacity=s.CACHE_LOG_CAPACITY)
        self.admin_cache = AdminCacheService(
            self.purger, self.mapper, self.scheduler, self.cache_logs
        )
        self.webhook = WebhookSyncService(
            self.webhook_verifier,
            self.audit,
            self.resolver,
            self.dispatcher,
            self.scheduler,
            rate_limit_per_hour=s.WEBHOOK_RATE_LIMIT_PER_HOUR,
        )

    async def aclose(self) -> None:
        """Vide la file d'invalidation puis ferme clients et moteur."""
        await self.scheduler.flush()
        for client in (self.cms_client, self.cdn_client, self.framework_cache):
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()
        await self.engine.dispose()


container = Container()
