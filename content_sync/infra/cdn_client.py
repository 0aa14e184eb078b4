"""Client de l'API de purge du CDN de bord (Cloudflare).

Purge par URLs (lots de `CDN_PURGE_BATCH_SIZE`) et purge complète pour l'administration.
Authentification par jeton Bearer; un client sans zone ni jeton est `configured == False`.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from ..core.settings import Settings
from ..domain.errors import CDNPurgeError

HTTP_STATUS_CLIENT_ERROR_MIN = 400


class CloudflareClient:
    """Client asynchrone de `POST /zones/{zone}/purge_cache`."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.zone_id = settings.CLOUDFLARE_ZONE_ID or ""
        self.api_token = settings.CLOUDFLARE_API_TOKEN or ""
        self.batch_size = max(1, settings.CDN_PURGE_BATCH_SIZE)
        self.purge_url = (
            f"{settings.CLOUDFLARE_API_BASE.rstrip('/')}/zones/{self.zone_id}/purge_cache"
        )
        self._log = structlog.get_logger(__name__).bind(component="cdn_client")
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        timeout = httpx.Timeout(settings.CDN_HTTP_TIMEOUT_S, connect=5.0)
        limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
        self._client = httpx.AsyncClient(
            headers=headers, timeout=timeout, limits=limits, transport=transport
        )

    @property
    def configured(self) -> bool:
        return bool(self.zone_id and self.api_token)

    async def _purge(self, body: dict[str, Any]) -> None:
        try:
            resp = await self._client.post(self.purge_url, json=body)
        except httpx.HTTPError as exc:
            raise CDNPurgeError(0, f"cdn purge request failed: {exc}") from exc
        if resp.status_code >= HTTP_STATUS_CLIENT_ERROR_MIN:
            raise CDNPurgeError(resp.status_code)
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if data.get("success") is False:
            errors = data.get("errors") or []
            raise CDNPurgeError(resp.status_code, f"cdn purge rejected: {errors}")

    async def purge_urls(self, urls: list[str]) -> int:
        """Purge les URLs données par lots; retourne le nombre d'appels API."""
        calls = 0
        for start in range(0, len(urls), self.batch_size):
            chunk = urls[start : start + self.batch_size]
            await self._purge({"files": chunk})
            calls += 1
        self._log.info("cdn_purge_urls", urls=len(urls), calls=calls)
        return calls

    async def purge_everything(self) -> None:
        await self._purge({"purge_everything": True})
        self._log.info("cdn_purge_everything")

    async def aclose(self) -> None:
        await self._client.aclose()
