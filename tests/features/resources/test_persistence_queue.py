from datetime import datetime, timedelta

import pytest
from kombu.exceptions import OperationalError as BrokerError
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from asset_warmup.features.resources.models.resource import StoredResource
from asset_warmup.features.resources.models.resource_queue import (
    ResourceBatchStatus,
    ResourceQueueBatch,
    ResourceQueueItem,
)
from asset_warmup.features.resources.schemas.resource import Resource, ResourceBatch, ResourceType
from asset_warmup.features.resources.services.queue.persistence_queue import AsyncPersistenceQueue
from asset_warmup.features.resources.services.storage.resource_store import ResourceStore


def _batch(*pairs, page_url="https://example.org/"):
    resources = []
    for url, content in pairs:
        kind = ResourceType.css if url.endswith(".css") else ResourceType.js
        resources.append(Resource(url=url, content=content, type=kind))
    return ResourceBatch(page_url=page_url, resources=tuple(resources))


def _batches(session_factory):
    with session_factory() as db:
        return db.execute(select(ResourceQueueBatch).order_by(ResourceQueueBatch.queued_at)).scalars().all()


def _stored(session_factory):
    with session_factory() as db:
        rows = db.execute(select(StoredResource).order_by(StoredResource.url)).scalars().all()
        return {row.url: (row.type, row.content) for row in rows}


CSS = ("https://example.org/a.css", b"body{}")
JS = ("https://example.org/b.js", b"alert(1)")


class TestEnqueue:
    def test_empty_batch_queues_nothing(self, queue, session_factory):
        assert queue.enqueue(ResourceBatch()) is None
        assert queue.pending_count() == 0
        assert _batches(session_factory) == []

    def test_batch_is_stored_as_pending_items(self, queue, session_factory):
        batch_id = queue.enqueue(_batch(CSS, JS))

        assert batch_id
        assert queue.pending_count() == 2
        with session_factory() as db:
            batch = db.get(ResourceQueueBatch, batch_id)
            assert batch.status is ResourceBatchStatus.queued
            assert batch.resources_total == 2
            assert [(item.position, item.url, item.type) for item in batch.items] == [
                (0, CSS[0], "css"),
                (1, JS[0], "js"),
            ]

    def test_enqueue_does_not_write_the_store(self, queue, session_factory):
        queue.enqueue(_batch(CSS, JS))

        assert _stored(session_factory) == {}

    def test_database_error_is_logged_not_raised(self, tmp_path, caplog):
        from sqlalchemy.orm import sessionmaker
        from asset_warmup.platform.db.session import build_engine

        # No tables installed
        engine = build_engine(f"sqlite:///{tmp_path / 'empty.db'}")
        broken = AsyncPersistenceQueue(session_factory=sessionmaker(bind=engine))

        assert broken.enqueue(_batch(CSS)) is None
        assert "Could not queue resource batch" in caplog.text


class TestDispatch:
    def test_dispatch_marks_batches_and_returns_task_id(self, queue, dispatcher, session_factory):
        batch_id = queue.enqueue(_batch(CSS))

        task_id = queue.dispatch()

        assert task_id == "task-123"
        dispatcher.assert_called_once_with()
        with session_factory() as db:
            batch = db.get(ResourceQueueBatch, batch_id)
            assert batch.status is ResourceBatchStatus.dispatched
            assert batch.dispatched_at is not None
            assert batch.celery_task_id == "task-123"

    def test_dispatch_does_not_drain(self, queue, session_factory):
        queue.enqueue(_batch(CSS, JS))

        queue.dispatch()

        assert queue.pending_count() == 2
        assert _stored(session_factory) == {}

    def test_broker_failure_keeps_work_pending(self, queue, dispatcher, caplog):
        dispatcher.side_effect = BrokerError("broker unreachable")
        queue.enqueue(_batch(CSS))

        assert queue.dispatch() is None
        assert queue.pending_count() == 1
        assert "Failed to dispatch resource queue drain" in caplog.text

    def test_default_dispatcher_sends_drain_task(self, session_factory):
        from unittest.mock import MagicMock, patch
        from asset_warmup.features.resources.workers.tasks import drain_resource_queue

        default_queue = AsyncPersistenceQueue(session_factory=session_factory)
        with patch.object(drain_resource_queue, "delay", return_value=MagicMock(id="celery-1")) as delay:
            assert default_queue.dispatch() == "celery-1"

        delay.assert_called_once_with()


class TestDrain:
    def test_drain_writes_resources_and_empties_queue(self, queue, session_factory):
        batch_id = queue.enqueue(_batch(CSS, JS))

        summary = queue.drain()

        assert summary == {"batches": 1, "written": 2, "unchanged": 0, "failed": 0}
        assert queue.pending_count() == 0
        assert _stored(session_factory) == {
            CSS[0]: ("css", CSS[1]),
            JS[0]: ("js", JS[1]),
        }
        with session_factory() as db:
            batch = db.get(ResourceQueueBatch, batch_id)
            assert batch.status is ResourceBatchStatus.done
            assert batch.resources_written == 2
            assert batch.finished_at is not None

    def test_same_url_and_content_twice_is_a_no_op(self, queue, session_factory):
        queue.enqueue(_batch(CSS, JS))
        queue.drain()
        with session_factory() as db:
            first_hash = ResourceStore.get(db, CSS[0]).hash

        queue.enqueue(_batch(CSS, JS))
        summary = queue.drain()

        assert summary["written"] == 0
        assert summary["unchanged"] == 2
        with session_factory() as db:
            assert ResourceStore.count(db) == 2
            assert ResourceStore.get(db, CSS[0]).hash == first_hash

    def test_changed_body_overwrites_stored_content(self, queue, session_factory):
        queue.enqueue(_batch(CSS))
        queue.drain()

        queue.enqueue(_batch((CSS[0], b"body{color:blue}")))
        summary = queue.drain()

        assert summary["written"] == 1
        assert _stored(session_factory) == {CSS[0]: ("css", b"body{color:blue}")}

    def test_items_are_written_in_enqueue_order(self, queue, monkeypatch):
        calls = []
        original = ResourceStore.upsert

        def recording_upsert(db, url, type, content, content_hash):
            calls.append(url)
            return original(db, url, type, content, content_hash)

        monkeypatch.setattr(ResourceStore, "upsert", staticmethod(recording_upsert))
        urls = [f"https://example.org/js/{i}.js" for i in range(6)]
        queue.enqueue(_batch(*[(url, b"x" + url.encode()) for url in urls]))

        queue.drain()

        assert calls == urls

    def test_failed_item_does_not_block_siblings(self, queue, session_factory, monkeypatch, caplog):
        original = ResourceStore.upsert

        def flaky_upsert(db, url, type, content, content_hash):
            if url == CSS[0]:
                raise OperationalError("INSERT INTO rucss_resources", {}, Exception("database is locked"))
            return original(db, url, type, content, content_hash)

        monkeypatch.setattr(ResourceStore, "upsert", staticmethod(flaky_upsert))
        batch_id = queue.enqueue(_batch(CSS, JS))

        summary = queue.drain()

        assert summary == {"batches": 1, "written": 1, "unchanged": 0, "failed": 1}
        assert _stored(session_factory) == {JS[0]: ("js", JS[1])}
        assert "Could not store resource https://example.org/a.css" in caplog.text
        with session_factory() as db:
            batch = db.get(ResourceQueueBatch, batch_id)
            assert batch.status is ResourceBatchStatus.failed
            (item,) = batch.items
            assert item.url == CSS[0]
            assert item.attempts == 1
            assert "database is locked" in item.last_error

    def test_failed_items_are_retried_by_the_next_drain(self, queue, session_factory, monkeypatch):
        original = ResourceStore.upsert

        def failing_upsert(db, url, type, content, content_hash):
            raise OperationalError("INSERT", {}, Exception("store unavailable"))

        monkeypatch.setattr(ResourceStore, "upsert", staticmethod(failing_upsert))
        batch_id = queue.enqueue(_batch(CSS, JS))
        queue.drain()
        assert queue.pending_count() == 2

        monkeypatch.setattr(ResourceStore, "upsert", staticmethod(original))
        summary = queue.drain()

        assert summary["written"] == 2
        assert queue.pending_count() == 0
        with session_factory() as db:
            batch = db.get(ResourceQueueBatch, batch_id)
            assert batch.status is ResourceBatchStatus.done
            assert batch.attempts == 2

    def test_batches_drain_oldest_first(self, queue, session_factory):
        first = queue.enqueue(_batch(CSS))
        second = queue.enqueue(_batch(JS))
        with session_factory() as db:
            db.get(ResourceQueueBatch, first).queued_at = datetime.utcnow() - timedelta(minutes=5)
            db.commit()

        assert queue._claimable_batch_ids(session_factory()) == [first, second]

    def test_fresh_processing_batch_belongs_to_another_worker(self, queue, session_factory):
        batch_id = queue.enqueue(_batch(CSS))
        with session_factory() as db:
            batch = db.get(ResourceQueueBatch, batch_id)
            batch.status = ResourceBatchStatus.processing
            batch.started_at = datetime.utcnow()
            db.commit()

        summary = queue.drain()

        assert summary["batches"] == 0
        assert queue.pending_count() == 1

    def test_stale_processing_batch_is_reclaimed(self, session_factory, dispatcher):
        queue = AsyncPersistenceQueue(session_factory=session_factory, dispatcher=dispatcher, stale_after=60)
        batch_id = queue.enqueue(_batch(CSS))
        with session_factory() as db:
            batch = db.get(ResourceQueueBatch, batch_id)
            batch.status = ResourceBatchStatus.processing
            batch.started_at = datetime.utcnow() - timedelta(minutes=10)
            db.commit()

        summary = queue.drain()

        assert summary["batches"] == 1
        assert summary["written"] == 1

    def test_claim_is_exclusive(self, queue, session_factory):
        batch_id = queue.enqueue(_batch(CSS))
        db = session_factory()
        try:
            assert queue._claim(db, batch_id) is True
            assert queue._claim(db, batch_id) is False
        finally:
            db.close()

    def test_draining_an_empty_queue(self, queue):
        assert queue.drain() == {"batches": 0, "written": 0, "unchanged": 0, "failed": 0}

    def test_drained_items_leave_no_rows(self, queue, session_factory):
        queue.enqueue(_batch(CSS, JS))
        queue.drain()

        with session_factory() as db:
            assert db.execute(select(ResourceQueueItem)).scalars().all() == []


class TestResourceStore:
    def test_upsert_outcomes(self, session_factory):
        with session_factory() as db:
            assert ResourceStore.upsert(db, CSS[0], "css", CSS[1], "h1") == "created"
            db.commit()
            assert ResourceStore.upsert(db, CSS[0], "css", CSS[1], "h1") == "unchanged"
            assert ResourceStore.upsert(db, CSS[0], "css", b"new", "h2") == "updated"
            db.commit()

            stored = ResourceStore.get(db, CSS[0])
            assert stored.content == b"new"
            assert stored.hash == "h2"
            assert ResourceStore.count(db) == 1

    def test_get_unknown_url(self, session_factory):
        with session_factory() as db:
            assert ResourceStore.get(db, "https://example.org/none.css") is None


@pytest.mark.parametrize("status", [ResourceBatchStatus.queued, ResourceBatchStatus.dispatched, ResourceBatchStatus.failed])
def test_pending_statuses_are_claimable(queue, session_factory, status):
    batch_id = queue.enqueue(_batch(CSS))
    with session_factory() as db:
        db.get(ResourceQueueBatch, batch_id).status = status
        db.commit()

    assert queue.drain()["batches"] == 1
