"""
Métriques Prometheus pour l'application.

Ce module définit les métriques du pipeline webhook → synchronisation → invalidation, le
middleware de mesure HTTP et la route `/metrics`.
"""

import time

from fastapi import APIRouter, Request
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

metrics_router = APIRouter()

REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "route", "status"]
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Latency of HTTP requests", ["route"]
)

# Webhook
WEBHOOK_REQUESTS = Counter(
    "webhook_requests_total",
    "Webhook deliveries processed past the gates",
    ["operation", "document_type", "result"],
)
WEBHOOK_REJECTIONS = Counter(
    "webhook_rejections_total",
    "Webhook deliveries rejected before processing",
    ["reason"],
)

# Résolution des groupes de traduction
I18N_RESOLUTION = Counter(
    "i18n_resolution_total",
    "Translation group resolutions by outcome",
    ["outcome"],
)

# Invalidation
CACHE_PURGE = Counter(
    "cache_purge_total",
    "Cache purge executions per tier",
    ["tier", "result"],
)
INVALIDATION_BATCH_TASKS = Histogram(
    "invalidation_batch_tasks",
    "Merged invalidation tasks per drained batch",
    buckets=(1, 2, 5, 10, 25, 50, 100),
)
INVALIDATION_MERGES = Counter(
    "invalidation_merges_total",
    "Queued invalidation tasks collapsed into an already queued task",
)


@metrics_router.get("/metrics")
def metrics():
    """
    Expose les métriques Prometheus au format texte.

    Returns:
        Response: Réponse HTTP contenant les métriques au format Prometheus.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware Prometheus pour mesurer les métriques HTTP.

    Collecte les métriques de comptage des requêtes et de latence par route pour l'exposition
    Prometheus.
    """

    async def dispatch(self, request: Request, call_next):
        """Traite une requête HTTP et collecte les métriques."""
        start = time.perf_counter()
        response: Response = await call_next(request)
        route = request.scope.get("path", "unknown")
        REQUEST_COUNT.labels(request.method, route, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(route).observe(time.perf_counter() - start)
        return response
