"""
Tests for the run log and webhook journal storage.
"""

import pytest

from feedsync.db import (
    EventStatus,
    RunKind,
    RunStatus,
    SQLiteDatabase,
    TriggerType,
    WebhookEvent,
)


@pytest.fixture
async def db():
    database = SQLiteDatabase(":memory:")
    await database.initialize()
    yield database
    await database.close()


def make_event(key: str) -> WebhookEvent:
    return WebhookEvent(dedupe_key=key, event_type="price_change", sku="A", payload="{}")


class TestRunLogs:

    async def test_create_and_update(self, db):
        log = await db.create_log(RunKind.DELTA, TriggerType.SCHEDULER, dry_run=True)

        updated = await db.update_log(log.id, status=RunStatus.SUCCESS, items_updated=4)

        assert updated.kind == RunKind.DELTA
        assert updated.status == RunStatus.SUCCESS
        assert updated.items_updated == 4
        assert updated.dry_run is True

    async def test_unknown_field_rejected(self, db):
        log = await db.create_log(RunKind.RECONCILE, TriggerType.MANUAL)

        with pytest.raises(ValueError):
            await db.update_log(log.id, products="1; DROP TABLE run_logs")

    async def test_filters(self, db):
        first = await db.create_log(RunKind.RECONCILE, TriggerType.MANUAL)
        await db.create_log(RunKind.DELTA, TriggerType.MANUAL)
        await db.update_log(first.id, status=RunStatus.FAILED, error_message="boom")

        assert [log.id for log in await db.get_logs(kind=RunKind.RECONCILE)] == [first.id]
        failed = await db.get_logs(status=RunStatus.FAILED)
        assert len(failed) == 1
        assert failed[0].error_message == "boom"
        assert len(await db.get_logs(limit=1)) == 1

    async def test_missing_log(self, db):
        assert await db.get_log("nope") is None


class TestWebhookJournal:

    async def test_dedupe_key_is_unique(self, db):
        assert await db.record_event(make_event("k1")) is True
        assert await db.record_event(make_event("k1")) is False

    async def test_processing_counts_attempts(self, db):
        event = make_event("k1")
        await db.record_event(event)

        await db.mark_event(event.id, EventStatus.PROCESSING)
        await db.mark_event(event.id, EventStatus.FAILED, "store down")

        stored = await db.get_event(event.id)
        assert stored.attempts == 1
        assert stored.status == EventStatus.FAILED
        assert stored.error_message == "store down"
        assert stored.processed_at is not None

    async def test_pending_excludes_completed_and_exhausted(self, db):
        done, exhausted, waiting = make_event("a"), make_event("b"), make_event("c")
        for event in (done, exhausted, waiting):
            await db.record_event(event)
        await db.mark_event(done.id, EventStatus.COMPLETED)
        for _ in range(3):
            await db.mark_event(exhausted.id, EventStatus.PROCESSING)
        await db.mark_event(exhausted.id, EventStatus.FAILED, "x")

        pending = await db.get_pending_events(max_attempts=3)

        assert [e.id for e in pending] == [waiting.id]
