"""
Endpoint de santé pour vérifier la disponibilité du service et de ses dépendances.

Expose `/health` pour signaler l'état général de l'application, du cache applicatif et des
intégrations externes (CMS, CDN).
"""

from fastapi import APIRouter, Depends

from ..core.container import Container
from .deps import get_container

router = APIRouter(tags=["health"])
container_dep = Depends(get_container)


@router.get("/health")
def health(container: Container = container_dep):
    """Vérifie la disponibilité de l'API et la configuration des intégrations."""
    return {
        "status": "ok",
        "storage": getattr(container, "storage_backend", "unknown"),
        "cms_configured": bool(getattr(container.cms_client, "configured", False)),
        "cdn_configured": bool(getattr(container.cdn_client, "configured", False)),
        "pending_invalidations": container.scheduler.pending,
    }
