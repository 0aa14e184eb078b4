"""
Tests du mapper de relations (tags et chemins affectés).

Effets directs par type, effets indirects via le CMS, dégradation en cas d'échec des requêtes.
"""

import pytest

from content_sync.domain.documents import Operation, decode_document
from content_sync.domain.invalidation import InvalidationTask
from content_sync.services.relationship_mapper import (
    LOGS_BY_AUTHOR_QUERY,
    LOGS_BY_IDS_QUERY,
    PARENT_COLLECTIONS_QUERY,
    PARENT_DEV_COLLECTIONS_QUERY,
    RelationshipMapper,
    canonical_type,
)
from tests.fakes import FakeCMSClient, collection_state, log_state, photo_state

LANGUAGES = ("zh", "en")
SHORT_TIMEOUT_S = 0.02
SLOW_QUERY_S = 0.5


@pytest.fixture
def cms() -> FakeCMSClient:
    return FakeCMSClient()


@pytest.fixture
def mapper(cms) -> RelationshipMapper:
    return RelationshipMapper(cms, languages=LANGUAGES, query_timeout_s=SHORT_TIMEOUT_S)


class TestDirectEffects:
    """Tags et chemins calculés depuis les seuls champs du document."""

    @pytest.mark.asyncio
    async def test_log_tags_and_paths(self, mapper):
        doc = decode_document(log_state("log-1", "en", slug="hello"))

        tags = await mapper.affected_tags(doc)
        paths = await mapper.affected_paths(doc)

        assert {"logs", "log:log-1", "log:hello", "logs:en", "log-list", "log-detail"} <= set(
            tags
        )
        assert paths == ["/en/log", "/en/log/hello"]

    @pytest.mark.asyncio
    async def test_log_without_language_touches_all_languages(self, mapper):
        doc = decode_document(log_state("log-1", None, slug="hello"))

        paths = await mapper.affected_paths(doc)

        assert paths == ["/en/log", "/en/log/hello", "/zh/log", "/zh/log/hello"]

    @pytest.mark.asyncio
    async def test_collection_covers_gallery_pages(self, mapper):
        doc = decode_document(collection_state("col-1", slug="travel", isFeatured=True))

        tags = await mapper.affected_tags(doc)
        paths = await mapper.affected_paths(doc)

        assert {"collections", "collection:col-1", "collection:travel"} <= set(tags)
        assert "featured-collections" in tags
        assert {"/", "/gallery", "/gallery/travel", "/en/gallery/travel", "/zh"} <= set(paths)

    @pytest.mark.asyncio
    async def test_missing_slug_never_produces_none_tags(self, mapper):
        """Un slug absent n'engendre jamais de tag `...:None`."""
        for state in (
            log_state("log-1", "en"),
            collection_state("col-1", slug=None),
            photo_state("photo-1"),
            {"_id": "dev-1", "_type": "devCollection"},
            {"_id": "author-1", "_type": "author"},
        ):
            doc = decode_document(state)
            tags = await mapper.affected_tags(doc)
            paths = await mapper.affected_paths(doc)
            assert not [t for t in tags if t.endswith(":None") or t.endswith(":")]
            assert not [p for p in paths if "None" in p]


class TestIndirectEffects:
    """Effets nécessitant une requête au CMS."""

    @pytest.mark.asyncio
    async def test_photo_invalidates_parent_collections(self, cms, mapper):
        cms.on(
            PARENT_COLLECTIONS_QUERY,
            [{"_id": "col-1", "slug": {"current": "travel"}}],
            photoId="photo-1",
        )
        doc = decode_document(photo_state("photo-1"))

        tags = await mapper.affected_tags(doc)
        paths = await mapper.affected_paths(doc)

        assert {"photo:photo-1", "collection:col-1", "collection-photos:travel"} <= set(tags)
        assert paths == ["/en/gallery/travel", "/gallery/travel", "/zh/gallery/travel"]

    @pytest.mark.asyncio
    async def test_log_invalidates_parent_dev_collections(self, cms, mapper):
        cms.on(
            PARENT_DEV_COLLECTIONS_QUERY,
            [{"_id": "dev-1", "slug": {"current": "build"}}],
            logId="log-1",
        )
        doc = decode_document(log_state("log-1", "zh"))

        tags = await mapper.affected_tags(doc)
        paths = await mapper.affected_paths(doc)

        assert {"dev-collection:dev-1", "dev-collection:build", "dev-collections:zh"} <= set(tags)
        assert "/zh/dev/build" in paths

    @pytest.mark.asyncio
    async def test_dev_collection_uses_languages_of_its_logs(self, cms, mapper):
        cms.on(LOGS_BY_IDS_QUERY, [{"_id": "log-1", "language": "en"}])
        doc = decode_document(
            {
                "_id": "dev-1",
                "_type": "devCollection",
                "slug": {"current": "build"},
                "logs": [{"_ref": "log-1"}],
            }
        )

        tags = await mapper.affected_tags(doc)
        paths = await mapper.affected_paths(doc)

        assert {"log:log-1", "dev-collections:en", "collection-logs"} <= set(tags)
        assert paths == ["/en/dev", "/en/dev/build"]
        assert cms.queries(LOGS_BY_IDS_QUERY)[0] == {"logIds": ["log-1"]}

    @pytest.mark.asyncio
    async def test_author_invalidates_authored_logs(self, cms, mapper):
        cms.on(
            LOGS_BY_AUTHOR_QUERY,
            [{"_id": "log-1", "language": "en", "slug": {"current": "hello"}}],
        )
        doc = decode_document({"_id": "author-1", "_type": "author"})

        tags = await mapper.affected_tags(doc)
        paths = await mapper.affected_paths(doc)

        assert {"author:author-1", "author-data", "log:log-1", "log:hello"} <= set(tags)
        assert "/en/log/hello" in paths
        assert "/zh/about" in paths

    @pytest.mark.asyncio
    async def test_failed_lookup_degrades_to_direct_effects(self, cms, mapper):
        """Requête en échec: seuls les effets directs sont rendus, sans exception."""
        cms.fail(PARENT_COLLECTIONS_QUERY)
        doc = decode_document(photo_state("photo-1"))

        tags = await mapper.affected_tags(doc)

        assert sorted(tags) == ["photo:photo-1", "photos"]

    @pytest.mark.asyncio
    async def test_unexpected_lookup_error_degrades(self, cms, mapper):
        cms.on(PARENT_COLLECTIONS_QUERY, error=ValueError("malformed response"))
        doc = decode_document(photo_state("photo-1"))

        tags = await mapper.affected_tags(doc)

        assert sorted(tags) == ["photo:photo-1", "photos"]

    @pytest.mark.asyncio
    async def test_slow_lookup_times_out(self, cms, mapper):
        cms.hang(PARENT_DEV_COLLECTIONS_QUERY, SLOW_QUERY_S)
        doc = decode_document(log_state("log-1", "en"))

        tags = await mapper.affected_tags(doc)

        assert not [t for t in tags if t.startswith("dev-collection")]


class TestResolveTask:
    """Résolution d'une tâche d'invalidation complète."""

    @pytest.mark.asyncio
    async def test_before_state_covers_the_old_slug(self, mapper):
        before = decode_document(log_state("log-1", "en", slug="old"))
        after = decode_document(log_state("log-1", "en", slug="new"))
        task = InvalidationTask("log", Operation.UPDATE, "log-1", before, after)

        resources = await mapper.resolve(task)

        assert {"document:log-1", "type:log", "log:old", "log:new"} <= set(resources.tags)
        assert {"/en/log/old", "/en/log/new"} <= set(resources.paths)
        assert resources.tags == sorted(resources.tags)

    @pytest.mark.asyncio
    async def test_lookups_are_memoised_within_one_resolution(self, cms, mapper):
        before = decode_document(photo_state("photo-1"))
        after = decode_document(photo_state("photo-1", asset="image-new-10x10-png"))
        task = InvalidationTask("photo", Operation.UPDATE, "photo-1", before, after)

        await mapper.resolve(task)

        assert len(cms.queries(PARENT_COLLECTIONS_QUERY)) == 1

    @pytest.mark.asyncio
    async def test_related_data_adds_direct_effects(self, mapper):
        task = InvalidationTask(
            "collection",
            Operation.UPDATE,
            "col-1",
            after_state=decode_document(collection_state("col-1")),
            related_data=[photo_state("photo-9"), {"_id": "mystery-1", "_type": "unknown"}],
        )

        resources = await mapper.resolve(task)

        assert {"photo:photo-9", "document:mystery-1"} <= set(resources.tags)


def test_admin_type_aliases():
    assert canonical_type("dev-collections") == "devCollection"
    assert canonical_type("log") == "log"
