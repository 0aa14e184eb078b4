"""
Tests du planificateur d'invalidation (minuterie virtuelle).

Fusion par `(content_type, document_id)`, ré-armement de la fenêtre de batch, isolation des
échecs par tâche et vidage explicite.
"""

import pytest

from content_sync.domain.documents import Operation, decode_document
from content_sync.domain.errors import CachePurgeFailed
from content_sync.domain.invalidation import InvalidationTask, merge_tasks
from content_sync.infra.framework_cache import InMemoryFrameworkCache
from content_sync.services.cache_purger import CachePurger
from content_sync.services.invalidation_scheduler import InvalidationScheduler
from content_sync.services.relationship_mapper import RelationshipMapper
from tests.fakes import SITE_URL, FakeCDNClient, FakeCMSClient, ManualTimer, log_state

BATCH_DELAY_MS = 100
BATCH_DELAY_S = BATCH_DELAY_MS / 1000
HALF_WINDOW_S = BATCH_DELAY_S / 2


def log_task(doc_id: str, slug: str, operation: Operation = Operation.UPDATE) -> InvalidationTask:
    doc = decode_document(log_state(doc_id, "en", slug=slug))
    return InvalidationTask("log", operation, doc_id, before_state=doc, after_state=doc)


class RecordingPurger(CachePurger):
    """Purgeur qui enregistre chaque exécution et peut échouer pour un document donné."""

    def __init__(self, fail_for: str | None = None, cdn: FakeCDNClient | None = None):
        super().__init__(InMemoryFrameworkCache(), cdn or FakeCDNClient(), site_url=SITE_URL)
        self.fail_for = fail_for
        self.executed: list[InvalidationTask] = []

    async def execute(self, tags, paths, task=None):
        if task is not None and task.document_id == self.fail_for:
            raise RuntimeError("purge exploded")
        self.executed.append(task)
        return await super().execute(tags, paths, task)


@pytest.fixture
def timer() -> ManualTimer:
    return ManualTimer()


def make_scheduler(timer: ManualTimer, purger: CachePurger) -> InvalidationScheduler:
    mapper = RelationshipMapper(FakeCMSClient(), query_timeout_s=0.05)
    return InvalidationScheduler(
        mapper, purger, batch_delay_ms=BATCH_DELAY_MS, call_later=timer.call_later
    )


class TestMerge:
    """Règle de fusion des tâches."""

    def test_later_after_state_and_earliest_before_state_win(self):
        first = log_task("log-1", "old")
        second = log_task("log-1", "new", Operation.DELETE)

        (merged,) = merge_tasks([first, second])

        assert merged.operation is Operation.DELETE
        assert merged.after_state.slug_value == "new"
        assert merged.before_state.slug_value == "old"

    def test_missing_after_state_keeps_previous(self):
        first = log_task("log-1", "old")
        second = InvalidationTask("log", Operation.DELETE, "log-1")

        (merged,) = merge_tasks([first, second])

        assert merged.after_state.slug_value == "old"

    def test_related_data_is_unioned_by_id(self):
        first = InvalidationTask("log", Operation.UPDATE, "log-1", related_data=[{"_id": "a"}])
        second = InvalidationTask(
            "log", Operation.UPDATE, "log-1", related_data=[{"_id": "a"}, {"_id": "b"}]
        )

        (merged,) = merge_tasks([first, second])

        assert [item["_id"] for item in merged.related_data] == ["a", "b"]

    def test_distinct_keys_keep_first_seen_order(self):
        tasks = [log_task("log-2", "b"), log_task("log-1", "a"), log_task("log-2", "c")]

        merged = merge_tasks(tasks)

        assert [t.document_id for t in merged] == ["log-2", "log-1"]


class TestScheduling:
    """Fenêtre de batch et exécution."""

    @pytest.mark.asyncio
    async def test_two_tasks_for_same_document_run_once(self, timer):
        """Deux tâches de même clé dans la fenêtre: une seule exécution, dernier état."""
        purger = RecordingPurger()
        scheduler = make_scheduler(timer, purger)

        scheduler.queue(log_task("log-1", "first"))
        scheduler.queue(log_task("log-1", "second"))
        assert scheduler.pending == 2

        timer.advance(BATCH_DELAY_S)
        await scheduler.wait_idle()

        assert scheduler.pending == 0
        assert len(purger.executed) == 1
        assert purger.executed[0].after_state.slug_value == "second"

    @pytest.mark.asyncio
    async def test_each_queue_rearms_the_window(self, timer):
        """Une nouvelle tâche repousse le déclenchement du batch."""
        purger = RecordingPurger()
        scheduler = make_scheduler(timer, purger)

        scheduler.queue(log_task("log-1", "a"))
        timer.advance(HALF_WINDOW_S)
        scheduler.queue(log_task("log-2", "b"))
        assert timer.advance(HALF_WINDOW_S) == 0
        assert len(timer.armed) == 1

        assert timer.advance(BATCH_DELAY_S) == 1
        await scheduler.wait_idle()
        assert sorted(t.document_id for t in purger.executed) == ["log-1", "log-2"]

    @pytest.mark.asyncio
    async def test_failing_task_does_not_block_the_batch(self, timer):
        purger = RecordingPurger(fail_for="log-1")
        scheduler = make_scheduler(timer, purger)

        scheduler.queue(log_task("log-1", "a"))
        scheduler.queue(log_task("log-2", "b"))
        timer.advance(BATCH_DELAY_S)
        await scheduler.wait_idle()

        assert [t.document_id for t in purger.executed] == ["log-2"]

    @pytest.mark.asyncio
    async def test_flush_drains_without_waiting_for_the_timer(self, timer):
        purger = RecordingPurger()
        scheduler = make_scheduler(timer, purger)

        scheduler.queue(log_task("log-1", "a"))
        await scheduler.flush()

        assert len(purger.executed) == 1
        assert timer.armed == []

    @pytest.mark.asyncio
    async def test_immediate_invalidation_propagates_errors(self, timer):
        purger = RecordingPurger(fail_for="log-1")
        scheduler = make_scheduler(timer, purger)

        with pytest.raises(RuntimeError):
            await scheduler.invalidate_immediately(log_task("log-1", "a"))
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_immediate_invalidation_raises_on_failed_tier(self, timer):
        purger = RecordingPurger(cdn=FakeCDNClient(fail_when=lambda urls: True))
        scheduler = make_scheduler(timer, purger)

        with pytest.raises(CachePurgeFailed) as exc_info:
            await scheduler.invalidate_immediately(log_task("log-1", "a"))

        assert exc_info.value.document_id == "log-1"
        assert exc_info.value.failed_tiers == ["cdn"]

    @pytest.mark.asyncio
    async def test_immediate_invalidation_returns_the_report(self, timer):
        scheduler = make_scheduler(timer, RecordingPurger())

        report = await scheduler.invalidate_immediately(log_task("log-1", "a"))

        assert report.failed_tiers == []
        assert (report.framework, report.cdn) == ("ok", "ok")

    @pytest.mark.asyncio
    async def test_failed_tier_does_not_block_the_batch(self, timer):
        cdn = FakeCDNClient(fail_when=lambda urls: any(url.endswith("/a") for url in urls))
        purger = RecordingPurger(cdn=cdn)
        scheduler = make_scheduler(timer, purger)

        scheduler.queue(log_task("log-1", "a"))
        scheduler.queue(log_task("log-2", "b"))
        timer.advance(BATCH_DELAY_S)
        await scheduler.wait_idle()

        assert sorted(t.document_id for t in purger.executed) == ["log-1", "log-2"]
        assert f"{SITE_URL}/en/log/b" in cdn.purged_urls
        assert f"{SITE_URL}/en/log/a" not in cdn.purged_urls

    @pytest.mark.asyncio
    async def test_batch_purges_framework_cache(self, timer):
        purger = RecordingPurger()
        scheduler = make_scheduler(timer, purger)

        scheduler.queue(log_task("log-1", "hello"))
        timer.advance(BATCH_DELAY_S)
        await scheduler.wait_idle()

        cache = purger.framework_cache
        assert {"document:log-1", "log:hello"} <= set(cache.revalidated_tags)
        assert "/en/log/hello" in cache.revalidated_paths
