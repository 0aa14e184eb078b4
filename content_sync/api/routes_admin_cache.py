"""
Routes internes d'administration du cache.

Toutes les routes `/internal/cache/*` exigent les en-têtes d'authentification interne (HMAC).
Elles exposent les purges manuelles par portée, l'invalidation immédiate d'un document et la
lecture du journal des opérations de cache.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ValidationError

from ..apigw.internal_auth import require_internal_auth
from ..core.container import Container
from ..core.http_constants import HTTP_BAD_REQUEST, HTTP_INTERNAL_SERVER_ERROR
from ..domain.documents import ChangeNotification, WebhookPayload
from ..domain.errors import ContentSyncError, InvalidDocument, UnsupportedDocumentType
from ..domain.invalidation import InvalidationTask
from .deps import get_container

router = APIRouter(
    prefix="/internal/cache",
    tags=["internal-cache"],
    dependencies=[Depends(require_internal_auth)],
)
container_dep = Depends(get_container)

DEFAULT_LOG_LIMIT = 50
MAX_LOG_LIMIT = 100


class PathRequest(BaseModel):
    path: str
    user_id: str | None = None


@router.post("/clear-all")
async def clear_all(user_id: str | None = None, container: Container = container_dep):
    """Purge tous les tags connus, les chemins clés et le CDN."""
    result = await container.admin_cache.clear_all(user_id)
    return result.to_dict()


@router.post("/pages")
async def clear_pages(user_id: str | None = None, container: Container = container_dep):
    result = await container.admin_cache.clear_pages(user_id)
    return result.to_dict()


@router.post("/images")
async def clear_images(user_id: str | None = None, container: Container = container_dep):
    result = await container.admin_cache.clear_images(user_id)
    return result.to_dict()


@router.post("/type/{content_type}")
async def clear_by_type(
    content_type: str, user_id: str | None = None, container: Container = container_dep
):
    """Purge les tags et chemins d'un type de contenu (400 si type inconnu)."""
    result = await container.admin_cache.clear_by_type(content_type, user_id)
    if not result.success:
        raise HTTPException(status_code=HTTP_BAD_REQUEST, detail=result.message)
    return result.to_dict()


@router.post("/path")
async def invalidate_path(payload: PathRequest, container: Container = container_dep):
    if not payload.path.startswith("/"):
        raise HTTPException(status_code=HTTP_BAD_REQUEST, detail="Path must start with /")
    result = await container.admin_cache.invalidate_path(payload.path, payload.user_id)
    return result.to_dict()


@router.post("/document")
async def invalidate_document(
    payload: dict, user_id: str | None = None, container: Container = container_dep
):
    """
    Invalidation immédiate d'un document, hors file d'attente.

    Le corps a la forme d'une notification du CMS (`operation`, `beforeState`, `afterState`),
    avec une liste optionnelle `relatedData` de documents liés à invalider aussi.
    """
    try:
        notification = ChangeNotification.from_payload(WebhookPayload.model_validate(payload))
    except ValidationError as err:
        raise HTTPException(status_code=HTTP_BAD_REQUEST, detail="Invalid payload") from err
    except (InvalidDocument, UnsupportedDocumentType) as err:
        raise HTTPException(status_code=HTTP_BAD_REQUEST, detail=str(err)) from err

    task = InvalidationTask.from_notification(notification)
    try:
        result = await container.admin_cache.invalidate_document(task, user_id)
    except ContentSyncError as err:
        raise HTTPException(status_code=HTTP_INTERNAL_SERVER_ERROR, detail=str(err)) from err
    return result.to_dict()


@router.get("/logs")
def cache_logs(
    limit: int = Query(DEFAULT_LOG_LIMIT, ge=1, le=MAX_LOG_LIMIT),
    container: Container = container_dep,
):
    """Dernières opérations de cache, plus récentes en tête."""
    return {"logs": [entry.__dict__ for entry in container.cache_logs.entries(limit)]}


@router.get("/stats")
def cache_log_stats(container: Container = container_dep):
    return container.cache_logs.stats()


@router.delete("/logs")
def clear_cache_logs(container: Container = container_dep):
    container.cache_logs.clear()
    return {"success": True}
