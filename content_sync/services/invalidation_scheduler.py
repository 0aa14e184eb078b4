# ============================================================
# Module : content_sync/services/invalidation_scheduler.py
# Objet  : File d'invalidation temporisée (debounce) avec fusion par ressource.
# ============================================================
"""Planificateur d'invalidation.

États: Idle → Accumulating (minuterie armée, ré-armée à chaque `queue`) → Draining (fusion par
`(content_type, document_id)`) → Executing (résolution des relations puis purge multi-niveaux,
en parallèle sur les tâches fusionnées) → Idle. Une tâche reçue pendant Draining/Executing ouvre
une nouvelle fenêtre.

La minuterie est injectable (`call_later`) pour piloter le temps dans les tests.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Protocol

import structlog

from ..app.metrics import INVALIDATION_BATCH_TASKS, INVALIDATION_MERGES
from ..domain.errors import CachePurgeFailed
from ..domain.invalidation import InvalidationTask, merge_tasks
from .cache_purger import CachePurger, PurgeReport
from .relationship_mapper import RelationshipMapper


class TimerHandle(Protocol):
    def cancel(self) -> Any: ...


CallLater = Callable[[float, Callable[[], None]], TimerHandle]


def _loop_call_later(delay: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class InvalidationScheduler:
    """File process-locale; chaque instance batch indépendamment."""

    def __init__(
        self,
        mapper: RelationshipMapper,
        purger: CachePurger,
        batch_delay_ms: int = 100,
        call_later: CallLater | None = None,
    ) -> None:
        self._mapper = mapper
        self._purger = purger
        self._delay_s = batch_delay_ms / 1000
        self._call_later = call_later or _loop_call_later
        self._queue: list[InvalidationTask] = []
        self._timer: TimerHandle | None = None
        self._inflight: set[asyncio.Task[None]] = set()
        self._log = structlog.get_logger(__name__).bind(component="invalidation_scheduler")

    @property
    def pending(self) -> int:
        return len(self._queue)

    def queue(self, task: InvalidationTask) -> None:
        """Ajoute une tâche et ré-arme la minuterie de batch."""
        self._queue.append(task)
        self._log.debug(
            "invalidation_queued",
            content_type=task.content_type,
            operation=task.operation.value,
            document_id=task.document_id,
            queue_length=len(self._queue),
        )
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._call_later(self._delay_s, self._on_timer)

    async def invalidate_immediately(self, task: InvalidationTask) -> PurgeReport:
        """Exécute une tâche sans passer par la file; les erreurs remontent.

        Un niveau de purge en échec lève `CachePurgeFailed`.
        """
        try:
            report = await self._execute(task)
            if report.failed_tiers:
                raise CachePurgeFailed(task.document_id, report.failed_tiers)
        except Exception:
            self._log.error(
                "invalidation_immediate_failed",
                content_type=task.content_type,
                document_id=task.document_id,
                exc_info=True,
            )
            raise
        self._log.info(
            "invalidation_immediate_done",
            content_type=task.content_type,
            document_id=task.document_id,
        )
        return report

    def _on_timer(self) -> None:
        self._timer = None
        tasks, self._queue = self._queue, []
        if not tasks:
            return
        batch = asyncio.ensure_future(self._drain(tasks))
        self._inflight.add(batch)
        batch.add_done_callback(self._inflight.discard)

    async def flush(self) -> None:
        """Vide la file immédiatement (arrêt, tests) puis attend les batches en cours."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        tasks, self._queue = self._queue, []
        if tasks:
            await self._drain(tasks)
        await self.wait_idle()

    async def wait_idle(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight))

    async def _drain(self, tasks: list[InvalidationTask]) -> None:
        merged = merge_tasks(tasks)
        INVALIDATION_BATCH_TASKS.observe(len(merged))
        if len(tasks) > len(merged):
            INVALIDATION_MERGES.inc(len(tasks) - len(merged))
        self._log.info("invalidation_batch_start", queued=len(tasks), merged=len(merged))
        results = await asyncio.gather(*(self._run(task) for task in merged))
        self._log.info(
            "invalidation_batch_done",
            queued=len(tasks),
            merged=len(merged),
            failed=results.count(False),
        )

    async def _run(self, task: InvalidationTask) -> bool:
        # une tâche en échec n'affecte pas les autres tâches du batch
        try:
            report = await self._execute(task)
        except Exception:
            self._log.error(
                "invalidation_task_failed",
                content_type=task.content_type,
                document_id=task.document_id,
                exc_info=True,
            )
            return False
        if report.failed_tiers:
            self._log.warning(
                "invalidation_task_partial",
                content_type=task.content_type,
                document_id=task.document_id,
                failed_tiers=report.failed_tiers,
            )
            return False
        return True

    async def _execute(self, task: InvalidationTask) -> PurgeReport:
        resources = await self._mapper.resolve(task)
        return await self._purger.execute(resources.tags, resources.paths, task)
