"""Configuration de logging basée sur structlog.

Objectif du module
------------------
- Logs lisibles en console en développement, une ligne JSON par événement ailleurs.
- Propager les variables de contexte (ex: `request_id`, `document_id`) liées par les
  middlewares et le traitement du webhook.
- Aligner le niveau du module `logging` standard (vérificateur interne, uvicorn) sur structlog.
"""

import logging
import sys

import structlog


def setup_logging(level: str = "DEBUG", json_logs: bool = False) -> None:
    """Configure structlog (et le logging standard) au niveau `level`."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    logging.basicConfig(level=numeric_level, stream=sys.stdout, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )
