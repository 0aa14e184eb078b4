"""Constantes HTTP pour éviter les valeurs magiques dans le code.

Ce module définit les codes de statut HTTP et les en-têtes utilisés par le webhook et les routes
internes.
"""

# Codes de statut HTTP courants
HTTP_OK = 200
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_TOO_MANY_REQUESTS = 429
HTTP_INTERNAL_SERVER_ERROR = 500

# En-têtes
SIGNATURE_HEADER_NAME = "sanity-webhook-signature"
REQUEST_ID_HEADER = "X-Request-ID"

# Limites et seuils courants
RATE_LIMIT_WINDOW_SECONDS = 3600
MAX_CONSOLIDATION_ATTEMPTS = 2
