"""
Signature HMAC pour les routes internes.

Ce module implémente la vérification cryptographique des en-têtes internes qui protègent les
opérations d'administration du cache (`/internal/cache/*`).
"""

import hashlib
import hmac
import logging
import time
from collections.abc import Callable

from fastapi import HTTPException, Request

from ..core.http_constants import HTTP_UNAUTHORIZED

# Constants
MAX_TIMESTAMP_SKEW_SECONDS = 300  # 5 minutes
AUTH_VERSION = "v1"

log = logging.getLogger(__name__)


def sign_internal_request(
    secret_key: str, method: str, path: str, timestamp: int, nonce: str
) -> str:
    """Signature HMAC-SHA256 (hex) de `"{version}:{timestamp}:{nonce}:{method}:{path}"`."""
    message = f"{AUTH_VERSION}:{timestamp}:{nonce}:{method}:{path}"
    return hmac.new(secret_key.encode(), message.encode(), hashlib.sha256).hexdigest()


class InternalAuthVerifier:
    """Vérificateur de signature HMAC pour les en-têtes internes."""

    def __init__(self, secret_key: str | None, clock: Callable[[], float] = time.time) -> None:
        """Initialise le vérificateur avec la clé partagée (INTERNAL_AUTH_KEY)."""
        self.secret_key = secret_key or ""
        self._clock = clock
        self._nonce_cache: dict[str, float] = {}
        self._nonce_ttl = 600  # 10 minutes

    def verify_internal_auth(self, request: Request) -> bool:
        """
        Verify internal authentication headers with HMAC signature.

        Headers expected:
        - X-Internal-Auth: HMAC signature
        - X-Auth-Version: Version of the auth scheme (v1)
        - X-Auth-Timestamp: Unix timestamp
        - X-Auth-Nonce: Unique nonce to prevent replay attacks
        """
        if not self.secret_key:
            log.warning("Internal auth key not configured")
            return False

        auth_header = request.headers.get("X-Internal-Auth")
        version = request.headers.get("X-Auth-Version")
        timestamp_str = request.headers.get("X-Auth-Timestamp")
        nonce = request.headers.get("X-Auth-Nonce")

        if not all([auth_header, version, timestamp_str, nonce]):
            return False
        if version != AUTH_VERSION:
            log.warning("Unsupported internal auth version", extra={"version": version})
            return False

        try:
            timestamp = int(timestamp_str)
        except ValueError:
            log.warning("Invalid timestamp in internal auth", extra={"timestamp": timestamp_str})
            return False

        skew = abs(int(self._clock()) - timestamp)
        if skew > MAX_TIMESTAMP_SKEW_SECONDS:
            log.warning("Timestamp skew too large", extra={"skew": skew})
            return False

        if nonce in self._nonce_cache:
            log.warning("Nonce replay detected", extra={"nonce": nonce})
            return False

        expected = sign_internal_request(
            self.secret_key, request.method, request.url.path, timestamp, nonce
        )
        if not hmac.compare_digest(auth_header, expected):
            log.warning("Invalid HMAC signature", extra={"path": request.url.path})
            return False

        self._cache_nonce(nonce)
        return True

    def _cache_nonce(self, nonce: str) -> None:
        """Cache nonce with current timestamp and drop expired ones."""
        now = self._clock()
        self._nonce_cache[nonce] = now
        expired = [n for n, t in self._nonce_cache.items() if now - t > self._nonce_ttl]
        for expired_nonce in expired:
            del self._nonce_cache[expired_nonce]


def require_internal_auth(request: Request) -> None:
    """Dépendance FastAPI: 401 si les en-têtes internes ne sont pas valides."""
    verifier: InternalAuthVerifier = request.app.state.container.internal_auth
    if not verifier.verify_internal_auth(request):
        raise HTTPException(status_code=HTTP_UNAUTHORIZED, detail="internal authentication failed")
