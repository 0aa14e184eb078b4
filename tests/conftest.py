"""Configuration de test pour pytest: base en mémoire, fakes et application de test.

Ce module fournit un moteur SQLite en mémoire avec le schéma créé et assemble un conteneur
branché sur les fakes CMS/CDN et une minuterie manuelle.
"""

import httpx
import pytest
import pytest_asyncio

from content_sync.app.main import create_app
from content_sync.core.container import Container
from content_sync.infra.framework_cache import InMemoryFrameworkCache
from content_sync.infra.repo.db import MEMORY_SQLITE_URL, create_all, get_engine
from tests.fakes import FakeCDNClient, FakeCMSClient, ManualTimer, make_settings


@pytest_asyncio.fixture
async def engine():
    """Moteur SQLite en mémoire (connexion unique) avec le schéma créé."""
    eng = get_engine(MEMORY_SQLITE_URL)
    await create_all(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def cms() -> FakeCMSClient:
    return FakeCMSClient()


@pytest.fixture
def cdn() -> FakeCDNClient:
    return FakeCDNClient()


@pytest.fixture
def timer() -> ManualTimer:
    return ManualTimer()


@pytest.fixture
def framework_cache() -> InMemoryFrameworkCache:
    return InMemoryFrameworkCache()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def container(settings, engine, cms, cdn, framework_cache, timer) -> Container:
    return Container(
        settings=settings,
        engine=engine,
        cms_client=cms,
        cdn_client=cdn,
        framework_cache=framework_cache,
        call_later=timer.call_later,
    )


@pytest_asyncio.fixture
async def client(container):
    """Client HTTP asynchrone sur l'application montée sur le conteneur de test."""
    app = create_app(container)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
