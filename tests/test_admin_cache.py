"""
Tests des purges manuelles et du journal des opérations de cache.
"""

import pytest

from content_sync.domain.documents import Operation, decode_document
from content_sync.domain.errors import CachePurgeFailed
from content_sync.domain.invalidation import InvalidationTask
from content_sync.infra.framework_cache import InMemoryFrameworkCache
from content_sync.services.admin_cache import (
    ALL_TAGS,
    IMAGE_TAGS,
    KEY_PATHS,
    PAGE_PATHS,
    AdminCacheService,
    CacheLogRecorder,
)
from content_sync.services.cache_purger import CachePurger
from content_sync.services.invalidation_scheduler import InvalidationScheduler
from content_sync.services.relationship_mapper import TYPE_TAGS, RelationshipMapper
from tests.fakes import (
    SITE_URL,
    BrokenFrameworkCache,
    FakeCDNClient,
    FakeCMSClient,
    ManualTimer,
    log_state,
    photo_state,
)

OPERATOR = "ops-1"
LOG_CAPACITY = 3


def make_service(
    cdn: FakeCDNClient | None = None,
    capacity: int = 100,
    cache: InMemoryFrameworkCache | None = None,
):
    cache = cache or InMemoryFrameworkCache()
    cdn = cdn or FakeCDNClient()
    purger = CachePurger(cache, cdn, site_url=SITE_URL)
    mapper = RelationshipMapper(FakeCMSClient(), query_timeout_s=0.05)
    scheduler = InvalidationScheduler(mapper, purger, call_later=ManualTimer().call_later)
    service = AdminCacheService(purger, mapper, scheduler, CacheLogRecorder(capacity))
    return service, cache, cdn


class TestAdminClears:
    """Purges par portée nommée."""

    @pytest.mark.asyncio
    async def test_clear_all_revalidates_everything_and_purges_cdn(self):
        service, cache, cdn = make_service()

        result = await service.clear_all(OPERATOR)

        assert result.success is True
        assert result.cleared_count == len(ALL_TAGS)
        assert cache.revalidated_tags == ALL_TAGS
        assert cache.revalidated_paths == KEY_PATHS
        assert cdn.purge_everything_calls == 1
        (entry,) = service.cache_logs.entries()
        assert (entry.operation, entry.user_id, entry.success) == (
            "clear_all_cache",
            OPERATOR,
            True,
        )

    @pytest.mark.asyncio
    async def test_clear_all_reports_cdn_failure(self):
        service, cache, _ = make_service(FakeCDNClient(fail_when=lambda urls: True))

        result = await service.clear_all()

        assert result.success is False
        assert cache.revalidated_tags == ALL_TAGS
        assert service.cache_logs.entries()[0].success is False

    @pytest.mark.asyncio
    async def test_clear_all_without_cdn(self):
        service, _, cdn = make_service(FakeCDNClient(configured=False))

        result = await service.clear_all()

        assert result.success is True
        assert cdn.purge_everything_calls == 0

    @pytest.mark.asyncio
    async def test_clear_pages_and_images(self):
        service, cache, _ = make_service()

        await service.clear_pages()
        images = await service.clear_images()

        assert set(PAGE_PATHS) <= set(cache.revalidated_paths)
        assert images.cleared_count == len(IMAGE_TAGS)
        assert [e.operation for e in service.cache_logs.entries()] == [
            "clear_image_cache",
            "clear_page_cache",
        ]

    @pytest.mark.asyncio
    async def test_clear_pages_reports_tag_failures(self):
        service, _, _ = make_service(cache=BrokenFrameworkCache())

        pages = await service.clear_pages(OPERATOR)
        images = await service.clear_images(OPERATOR)

        assert (pages.success, pages.cleared_count) == (False, 0)
        assert (images.success, images.cleared_count) == (False, 0)
        assert [e.success for e in service.cache_logs.entries()] == [False, False]

    @pytest.mark.asyncio
    async def test_clear_by_type_accepts_plural_alias(self):
        service, cache, _ = make_service()

        result = await service.clear_by_type("dev-collections")

        assert result.success is True
        assert cache.revalidated_tags == TYPE_TAGS["devCollection"]
        assert cache.revalidated_paths == ["/zh/dev", "/en/dev"]

    @pytest.mark.asyncio
    async def test_clear_by_unknown_type_fails(self):
        service, cache, _ = make_service()

        result = await service.clear_by_type("podcast")

        assert result.success is False
        assert cache.revalidated_tags == []
        assert service.cache_logs.entries() == []

    @pytest.mark.asyncio
    async def test_invalidate_path(self):
        service, cache, cdn = make_service()

        result = await service.invalidate_path("/en/log/hello")

        assert result.success is True
        assert cache.revalidated_paths == ["/en/log/hello"]
        assert cdn.purged_urls == [f"{SITE_URL}/en/log/hello"]

    @pytest.mark.asyncio
    async def test_invalidate_relative_path_is_rejected(self):
        service, cache, _ = make_service()

        result = await service.invalidate_path("en/log")

        assert result.success is False
        assert cache.revalidated_paths == []

    @pytest.mark.asyncio
    async def test_invalidate_document_runs_immediately(self):
        service, cache, _ = make_service()
        doc = decode_document(log_state("log-1", "en", slug="hello"))
        task = InvalidationTask("log", Operation.UPDATE, "log-1", after_state=doc)

        result = await service.invalidate_document(task, OPERATOR)

        assert result.success is True
        assert "log:hello" in cache.revalidated_tags
        assert service.cache_logs.entries()[0].target == "log:log-1"

    @pytest.mark.asyncio
    async def test_invalidate_document_fails_when_cdn_purge_fails(self):
        """Un niveau de purge en échec fait échouer l'invalidation immédiate."""
        service, cache, cdn = make_service(FakeCDNClient(fail_when=lambda urls: True))
        doc = decode_document(log_state("log-1", "en", slug="hello"))
        task = InvalidationTask("log", Operation.UPDATE, "log-1", after_state=doc)

        with pytest.raises(CachePurgeFailed) as exc_info:
            await service.invalidate_document(task, OPERATOR)

        assert exc_info.value.failed_tiers == ["cdn"]
        assert "log:hello" in cache.revalidated_tags
        assert cdn.purged == []
        (entry,) = service.cache_logs.entries()
        assert (entry.operation, entry.success) == ("invalidate_document", False)

    @pytest.mark.asyncio
    async def test_invalidate_document_covers_related_documents(self):
        service, cache, _ = make_service()
        doc = decode_document(log_state("log-1", "en", slug="hello"))
        task = InvalidationTask(
            "log",
            Operation.UPDATE,
            "log-1",
            after_state=doc,
            related_data=[photo_state("photo-9")],
        )

        result = await service.invalidate_document(task)

        assert result.success is True
        assert {"log:hello", "photo:photo-9", "photos"} <= set(cache.revalidated_tags)


class TestCacheLogRecorder:
    """Anneau mémoire borné des opérations."""

    def test_ring_keeps_most_recent_first(self):
        recorder = CacheLogRecorder(capacity=LOG_CAPACITY)
        for i in range(LOG_CAPACITY + 2):
            recorder.record("clear_page_cache", f"target-{i}", success=i % 2 == 0)

        entries = recorder.entries()

        assert [e.target for e in entries] == ["target-4", "target-3", "target-2"]
        assert recorder.entries(limit=1)[0].target == "target-4"

    def test_stats(self):
        recorder = CacheLogRecorder()
        recorder.record("clear_all_cache", "all", True)
        recorder.record("clear_all_cache", "all", False, "cdn down")
        recorder.record("invalidate_specific_path", "/", True)

        stats = recorder.stats()

        assert (stats["total"], stats["successful"], stats["failed"]) == (3, 2, 1)
        assert stats["recent_operations"][0] == {"operation": "clear_all_cache", "count": 2}

    def test_clear(self):
        recorder = CacheLogRecorder()
        recorder.record("clear_all_cache", "all", True)
        recorder.clear()
        assert recorder.entries() == []
