"""Définition et chargement des paramètres de configuration du service de synchronisation.

Objectif du module
------------------
- Centraliser les paramètres (env/.env) via Pydantic Settings
- Résoudre le fichier `.env` à utiliser selon la stratégie: ENV_FILE > .env.{APP_ENV} > .env
"""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Détermination du fichier .env à utiliser avec priorité:
# 1) ENV_FILE (chemin explicite)
# 2) .env.{APP_ENV} si présent
# 3) .env (défaut)
_cwd = Path.cwd()
_env_file_from_env = os.getenv("ENV_FILE")
if _env_file_from_env:
    _ENV_FILE_PATH = _env_file_from_env
else:
    _app_env = os.getenv("APP_ENV", "dev")
    _candidate_specific = _cwd / f".env.{_app_env}"
    _candidate_default = _cwd / ".env"
    if _candidate_specific.exists():
        _ENV_FILE_PATH = _candidate_specific
    else:
        _ENV_FILE_PATH = _candidate_default


class Settings(BaseSettings):
    """Modèle de configuration chargé depuis l'environnement et .env."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE_PATH,
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
    )
    APP_NAME: str = "content-sync"
    APP_ENV: str = "dev"
    APP_DEBUG: bool = False
    LOG_LEVEL: str = "DEBUG"
    LOG_JSON: bool = False

    DATABASE_URL: str = "sqlite+aiosqlite:///./content_sync.db"
    DB_CREATE_ALL: bool = False
    REDIS_URL: str | None = None
    REQUIRE_REDIS: bool = False

    # CMS (Sanity)
    SANITY_PROJECT_ID: str | None = None
    SANITY_DATASET: str = "production"
    SANITY_API_VERSION: str = "2023-05-03"
    SANITY_API_TOKEN: str | None = None
    SANITY_USE_CDN: bool = False
    SANITY_WEBHOOK_SECRET: str | None = None
    SANITY_WEBHOOK_MAX_SKEW_S: int = 0  # 0 = pas de contrôle de dérive
    CMS_HTTP_TIMEOUT_S: float = 15.0

    # Webhook
    WEBHOOK_RATE_LIMIT_PER_HOUR: int = 200
    I18N_QUERY_TIMEOUT_S: float = 10.0
    I18N_LANGUAGE_TIMEOUT_S: float = 5.0
    RELATIONSHIP_QUERY_TIMEOUT_S: float = 5.0
    AUTHOR_USER_ID: str = "default-author"
    SUPPORTED_LANGUAGES: list[str] = ["zh", "en"]
    DEFAULT_LANGUAGE: str = "en"

    # CDN (Cloudflare)
    CLOUDFLARE_API_TOKEN: str | None = None
    CLOUDFLARE_ZONE_ID: str | None = None
    CLOUDFLARE_API_BASE: str = "https://api.cloudflare.com/client/v4"
    CDN_HTTP_TIMEOUT_S: float = 10.0
    CDN_PURGE_BATCH_SIZE: int = 30
    SITE_URL: str = "http://localhost:3000"

    # Invalidation
    INVALIDATION_BATCH_DELAY_MS: int = 100
    IMAGE_VARIANT_WIDTHS: list[int] = [400, 800, 1200, 1600]
    IMAGE_VARIANT_QUALITY: int = 75
    IMAGE_VARIANT_URL_TEMPLATE: str = "{site}/_next/image?url={ref}&w={width}&q={quality}"
    CACHE_LOG_CAPACITY: int = 100

    # Routes internes (admin cache)
    INTERNAL_AUTH_KEY: str | None = None


def get_settings() -> Settings:
    """Construit et retourne la configuration de l'application."""
    return Settings()
