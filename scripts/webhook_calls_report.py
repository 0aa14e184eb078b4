"""
Report recent webhook deliveries from the audit table.

Ce script lit la table `webhook_calls` et affiche les dernières livraisons ainsi que les compteurs
agrégés (succès, échecs, par type de document) sur une fenêtre glissante.

Usage:
  python -m scripts.webhook_calls_report --hours 24 --limit 20
  python -m scripts.webhook_calls_report --json
"""

from __future__ import annotations

import argparse
import asyncio
import json
from datetime import timedelta
from typing import Any

from content_sync.core.settings import get_settings
from content_sync.infra.repo.db import get_engine
from content_sync.infra.repo.models import utcnow
from content_sync.services.audit import AuditRecorder, AuditStats

DEFAULT_HOURS = 24
DEFAULT_LIMIT = 20


def build_report(stats: AuditStats, recent: list[Any], hours: int) -> dict[str, Any]:
    """Assemble le rapport sérialisable à partir des statistiques et des dernières entrées."""
    return {
        "window_hours": hours,
        "total": stats.total,
        "succeeded": stats.succeeded,
        "failed": stats.failed,
        "by_type": dict(sorted(stats.by_type.items())),
        "recent": [
            {
                "at": call.created_at.isoformat() if call.created_at else None,
                "operation": call.operation,
                "document_type": call.document_type,
                "document_id": call.document_id,
                "success": call.success,
                "error": call.error,
            }
            for call in recent
        ],
    }


def render_text(report: dict[str, Any]) -> str:
    lines = [
        f"Webhook calls (last {report['window_hours']}h): total={report['total']} "
        f"ok={report['succeeded']} failed={report['failed']}",
    ]
    for doc_type, count in report["by_type"].items():
        lines.append(f"  {doc_type}: {count}")
    lines.append("Recent:")
    for call in report["recent"]:
        status = "ok" if call["success"] else f"FAILED ({call['error']})"
        lines.append(
            f"  {call['at']} {call['operation']:<6} {call['document_type']:<14} "
            f"{call['document_id']} {status}"
        )
    return "\n".join(lines)


async def collect(database_url: str | None, hours: int, limit: int) -> dict[str, Any]:
    engine = get_engine(database_url)
    try:
        audit = AuditRecorder(engine)
        stats = await audit.stats(utcnow() - timedelta(hours=hours))
        recent = await audit.recent(limit)
    finally:
        await engine.dispose()
    return build_report(stats, recent, hours)


def main() -> None:
    """Point d'entrée: affiche le rapport en texte ou en JSON."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--hours", type=int, default=DEFAULT_HOURS)
    parser.add_argument("--limit", type=int, default=DEFAULT_LIMIT)
    parser.add_argument("--database-url", default=None)
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of text")
    args = parser.parse_args()

    url = args.database_url or get_settings().DATABASE_URL
    report = asyncio.run(collect(url, args.hours, args.limit))
    print(json.dumps(report, indent=2) if args.json else render_text(report))


if __name__ == "__main__":  # pragma: no cover - script entry
    main()
