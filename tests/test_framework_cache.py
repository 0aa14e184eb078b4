"""Tests du cache applicatif en mémoire et de la sélection du backend par le conteneur."""

import pytest
from redis.exceptions import NoScriptError

from content_sync.core.container import Container
from content_sync.infra.framework_cache import (
    REVALIDATE_INDEX_SCRIPT,
    InMemoryFrameworkCache,
    RedisFrameworkCache,
)
from tests.fakes import make_settings


@pytest.mark.asyncio
async def test_revalidate_tag_drops_tagged_entries():
    cache = InMemoryFrameworkCache()
    await cache.set("page:/en/log", {"html": "a"}, tags=["logs", "logs:en"], path="/en/log")
    await cache.set("page:/zh/log", {"html": "b"}, tags=["logs"], path="/zh/log")

    assert await cache.revalidate_tag("logs:en") == 1
    assert await cache.get("page:/en/log") is None
    assert await cache.get("page:/zh/log") == {"html": "b"}


@pytest.mark.asyncio
async def test_revalidate_path_and_unknown_keys():
    cache = InMemoryFrameworkCache()
    await cache.set("page:/", "home", path="/")

    assert await cache.revalidate_path("/") == 1
    assert await cache.revalidate_path("/missing") == 0
    assert await cache.revalidate_tag("missing") == 0
    assert cache.revalidated_paths == ["/", "/missing"]


class TestContainerStorage:
    """Choix du cache applicatif selon la configuration."""

    @pytest.mark.asyncio
    async def test_memory_when_redis_not_configured(self, engine):
        container = Container(settings=make_settings(), engine=engine)

        assert container.storage_backend == "memory"
        assert isinstance(container.framework_cache, InMemoryFrameworkCache)

    @pytest.mark.asyncio
    async def test_redis_when_configured(self, engine):
        container = Container(
            settings=make_settings(REDIS_URL="redis://localhost:6379/0"), engine=engine
        )

        assert container.storage_backend == "redis"
        assert isinstance(container.framework_cache, RedisFrameworkCache)

    @pytest.mark.asyncio
    async def test_invalid_redis_url_falls_back_to_memory(self, engine):
        container = Container(settings=make_settings(REDIS_URL="bogus://nowhere"), engine=engine)

        assert container.storage_backend == "memory-fallback"

    @pytest.mark.asyncio
    async def test_require_redis_without_url_fails(self, engine):
        with pytest.raises(RuntimeError):
            Container(settings=make_settings(REQUIRE_REDIS=True), engine=engine)

    @pytest.mark.asyncio
    async def test_require_redis_with_invalid_url_fails(self, engine):
        with pytest.raises(RuntimeError):
            Container(
                settings=make_settings(REDIS_URL="bogus://nowhere", REQUIRE_REDIS=True),
                engine=engine,
            )


class ScriptedRedis:
    """Client Redis factice: ensembles et chaînes en mémoire, script d'index exécuté d'un bloc."""

    def __init__(self):
        self.strings: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}
        self.loaded: list[str] = []
        self.calls: list[tuple] = []
        self.flush_next = False

    async def script_load(self, script: str) -> str:
        self.loaded.append(script)
        return f"sha-{len(self.loaded)}"

    async def evalsha(self, sha: str, numkeys: int, index_key: str, entry_prefix: str) -> int:
        self.calls.append((sha, numkeys, index_key, entry_prefix))
        if self.flush_next:
            self.flush_next = False
            raise NoScriptError("NOSCRIPT No matching script.")
        members = self.sets.pop(index_key, set())
        return sum(1 for m in members if self.strings.pop(entry_prefix + m, None) is not None)


class TestRedisRevalidation:
    """Revalidation d'un index Redis par script Lua."""

    def make_cache(self) -> tuple[RedisFrameworkCache, ScriptedRedis]:
        cache = RedisFrameworkCache("redis://localhost:6379/0")
        fake = ScriptedRedis()
        cache.client = fake
        fake.strings = {"fc:entry:page:/en/log": "{}", "fc:entry:page:/zh/log": "{}"}
        fake.sets = {"fc:tag:logs": {"page:/en/log", "page:/zh/log", "page:/gone"}}
        return cache, fake

    @pytest.mark.asyncio
    async def test_index_is_read_and_dropped_in_one_script_call(self):
        cache, fake = self.make_cache()

        assert await cache.revalidate_tag("logs") == 2
        assert await cache.revalidate_tag("logs") == 0

        assert fake.loaded == [REVALIDATE_INDEX_SCRIPT]
        assert fake.calls[0] == ("sha-1", 1, "fc:tag:logs", "fc:entry:")
        assert fake.strings == {}

    @pytest.mark.asyncio
    async def test_flushed_script_cache_is_reloaded(self):
        cache, fake = self.make_cache()
        await cache.revalidate_path("/")
        fake.flush_next = True

        assert await cache.revalidate_tag("logs") == 2
        assert len(fake.loaded) == 2
        assert fake.calls[-1][0] == "sha-2"
