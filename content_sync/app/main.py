"""
Application principale FastAPI.

Ce module assemble les composants du service de synchronisation : middlewares, routes du webhook,
routes internes d'administration du cache, santé et métriques.

Responsabilités du module:
- Initialiser le logging structuré
- Construire l'application FastAPI et y attacher le conteneur (`app.state.container`)
- Ajouter les middlewares (request id, métriques, timing)
- Gérer le cycle de vie: création des tables en dev, vidage de la file d'invalidation à l'arrêt
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from ..api.routes_admin_cache import router as admin_cache_router
from ..api.routes_health import router as health_router
from ..api.routes_webhooks import router as webhooks_router
from ..core.container import Container
from ..core.logging import setup_logging
from ..infra.repo.db import create_all
from ..middlewares.request_id import RequestIDMiddleware
from ..middlewares.timing import TimingMiddleware
from .metrics import PrometheusMiddleware, metrics_router

log = structlog.get_logger(__name__).bind(component="app")


def create_app(container: Container | None = None) -> FastAPI:
    """
    Construit et retourne l'application FastAPI prête à l'usage.

    Étapes:
    - Attache le conteneur fourni, ou le singleton de module
    - Configure le logging structuré (structlog) selon ses settings
    - Ajoute les middlewares utiles au debug/traçabilité
    - Publie les routes webhook, internes, santé et métriques
    """
    if container is None:
        from ..core.container import container as default_container

        container = default_container
    settings = container.settings
    setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if settings.DB_CREATE_ALL:
            await create_all(container.engine)
        log.info("app_started", env=settings.APP_ENV, storage=container.storage_backend)
        yield
        await container.aclose()
        log.info("app_stopped")

    app = FastAPI(title=settings.APP_NAME, debug=settings.APP_DEBUG, lifespan=lifespan)
    app.state.container = container
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(TimingMiddleware)
    app.include_router(health_router)
    app.include_router(webhooks_router)
    app.include_router(admin_cache_router)
    app.include_router(metrics_router)
    return app


app = create_app()
