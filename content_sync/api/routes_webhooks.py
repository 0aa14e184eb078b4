"""
Route du webhook de synchronisation du CMS.

`POST /api/webhooks/sanity-sync` lit le corps brut (la signature porte sur les octets exacts) et
délègue l'ensemble des contrôles et du traitement à `WebhookSyncService`.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..core.container import Container
from ..core.http_constants import SIGNATURE_HEADER_NAME
from .deps import get_container

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
container_dep = Depends(get_container)


@router.post("/sanity-sync")
async def sanity_sync(request: Request, container: Container = container_dep):
    """Reçoit une notification de changement et renvoie le statut du traitement."""
    body = await request.body()
    result = await container.webhook.process(body, request.headers.get(SIGNATURE_HEADER_NAME))
    return JSONResponse(status_code=result.status_code, content=result.body)
