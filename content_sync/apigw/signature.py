"""
Vérification de la signature des webhooks du CMS.

En-tête `sanity-webhook-signature: t=<timestamp ms>,v1=<signature>` où la signature est le
HMAC-SHA256 (secret partagé) de `"{t}.{corps brut}"`, encodé en base64url sans padding.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import time
from collections.abc import Callable

import structlog

MS_PER_SECOND = 1000

log = structlog.get_logger(__name__).bind(component="webhook_signature")


def parse_signature_header(header: str | None) -> tuple[int, str] | None:
    """Extrait `(timestamp, signature)` de l'en-tête, ou None s'il est malformé."""
    if not header:
        return None
    parts: dict[str, str] = {}
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if sep and key and value:
            parts[key] = value
    if "t" not in parts or "v1" not in parts:
        return None
    try:
        timestamp = int(parts["t"])
    except ValueError:
        return None
    return timestamp, parts["v1"]


def compute_signature(body: bytes, timestamp: int, secret: str) -> str:
    payload = f"{timestamp}.".encode() + body
    digest = hmac.new(secret.encode(), payload, hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


def build_signature_header(body: bytes, secret: str, timestamp_ms: int | None = None) -> str:
    """Construit un en-tête valide (outils d'exploitation et tests)."""
    timestamp = timestamp_ms if timestamp_ms is not None else int(time.time() * MS_PER_SECOND)
    return f"t={timestamp},v1={compute_signature(body, timestamp, secret)}"


class SanityWebhookVerifier:
    """Vérificateur de signature HMAC des webhooks entrants."""

    def __init__(
        self,
        secret: str | None,
        max_skew_s: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.secret = secret or ""
        self.max_skew_s = max_skew_s
        self._clock = clock

    @property
    def configured(self) -> bool:
        return bool(self.secret)

    def verify(self, body: bytes, header: str | None) -> bool:
        """Vrai si l'en-tête signe exactement `body` avec le secret configuré.

        Avec `max_skew_s > 0`, un horodatage trop éloigné de l'horloge locale est refusé.
        """
        if not self.configured:
            return False
        parsed = parse_signature_header(header)
        if parsed is None:
            log.warning("signature_header_malformed")
            return False
        timestamp, provided = parsed
        if self.max_skew_s > 0:
            skew = abs(self._clock() - timestamp / MS_PER_SECOND)
            if skew > self.max_skew_s:
                log.warning("signature_timestamp_skew", skew_s=round(skew, 3))
                return False
        expected = compute_signature(body, timestamp, self.secret)
        return hmac.compare_digest(provided, expected)
