"""Client HTTP minimal de l'API de requêtes GROQ du CMS (Sanity).

Objectif du module
------------------
- Exécuter une requête GROQ paramétrée et retourner le champ `result`.
- Borner chaque appel: timeout httpx du client + timeout explicite par appel.
- Normaliser les erreurs réseau/HTTP/payload en `CMSQueryError`.
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import structlog

from ..core.settings import Settings
from ..domain.errors import CMSQueryError

HTTP_STATUS_CLIENT_ERROR_MIN = 400


class SanityClient:
    """Client de lecture de l'API `data/query` du CMS.

    Variables d'environnement utilisées:
      - `SANITY_PROJECT_ID` / `SANITY_DATASET` / `SANITY_API_VERSION`
      - `SANITY_API_TOKEN`: jeton de lecture (documents privés, brouillons)
      - `SANITY_USE_CDN`: passe par `apicdn.sanity.io` (lecture seule, cache)
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.project_id = settings.SANITY_PROJECT_ID or ""
        self.dataset = settings.SANITY_DATASET
        self.api_version = settings.SANITY_API_VERSION.lstrip("v")
        host = "apicdn.sanity.io" if settings.SANITY_USE_CDN else "api.sanity.io"
        self.base_url = f"https://{self.project_id}.{host}/v{self.api_version}"
        self._log = structlog.get_logger(__name__).bind(component="cms_client")
        headers: dict[str, str] = {"Accept": "application/json"}
        if settings.SANITY_API_TOKEN:
            headers["Authorization"] = f"Bearer {settings.SANITY_API_TOKEN}"
        timeout = httpx.Timeout(settings.CMS_HTTP_TIMEOUT_S, connect=5.0)
        limits = httpx.Limits(max_keepalive_connections=20, max_connections=50)
        self._client = httpx.AsyncClient(
            headers=headers, timeout=timeout, limits=limits, transport=transport
        )

    @property
    def configured(self) -> bool:
        return bool(self.project_id)

    async def query(
        self, groq: str, params: dict[str, Any] | None = None, timeout: float | None = None
    ) -> Any:
        """Exécute `groq` et retourne `result` (peut être None).

        Les paramètres sont encodés en JSON sous la forme `$nom=<json>`.
        """
        if not self.configured:
            raise CMSQueryError("CMS project is not configured")
        query_params = {"query": groq}
        for name, value in (params or {}).items():
            query_params[f"${name}"] = json.dumps(value)
        url = f"{self.base_url}/data/query/{self.dataset}"
        request_timeout = httpx.Timeout(timeout) if timeout else httpx.USE_CLIENT_DEFAULT
        try:
            resp = await self._client.get(url, params=query_params, timeout=request_timeout)
        except httpx.HTTPError as exc:
            raise CMSQueryError(f"cms query failed: {exc}") from exc
        if resp.status_code >= HTTP_STATUS_CLIENT_ERROR_MIN:
            raise CMSQueryError(f"cms query http error: {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise CMSQueryError("cms query returned invalid JSON") from exc
        if not isinstance(data, dict) or "result" not in data:
            raise CMSQueryError("cms query response has no result")
        self._log.debug("cms_query", ms=data.get("ms"), params=list(query_params)[1:])
        return data["result"]

    async def aclose(self) -> None:
        await self._client.aclose()
