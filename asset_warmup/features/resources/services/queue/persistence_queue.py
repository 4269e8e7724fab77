import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from celery.exceptions import CeleryError
from kombu.exceptions import OperationalError as BrokerError
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from uuid_extension import uuid7

from asset_warmup.features.resources.models.resource_queue import (
    ResourceBatchStatus,
    ResourceQueueBatch,
    ResourceQueueItem,
)
from asset_warmup.features.resources.schemas.resource import ResourceBatch
from asset_warmup.features.resources.services.storage.resource_store import (
    CREATED,
    UNCHANGED,
    UPDATED,
    ResourceStore,
)
from asset_warmup.platform.config import settings
from asset_warmup.platform.db.session import get_sync_db
from asset_warmup.platform.exceptions import PersistenceFailure

logger = logging.getLogger(__name__)

FAILED = "failed"

# Concurrent insert of the same url: one retry lets the loser see the winner's row
_INTEGRITY_RETRIES = 1


def _dispatch_drain_task():
    from asset_warmup.features.resources.workers.tasks import drain_resource_queue

    return drain_resource_queue.delay()


class AsyncPersistenceQueue:
    """
    Durable hand-off between page scans and the resource store.

    enqueue() and dispatch() run on the request path and only touch the
    queue tables; drain() runs in a Celery worker and performs the store
    writes. Delivery is at-least-once: an item leaves the queue in the same
    commit that writes its resource.
    """

    CLAIMABLE_STATUSES = (
        ResourceBatchStatus.queued,
        ResourceBatchStatus.dispatched,
        ResourceBatchStatus.failed,
    )

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        dispatcher: Optional[Callable[[], object]] = None,
        stale_after: Optional[int] = None,
        batch_limit: Optional[int] = None,
    ):
        self._session_factory = session_factory or get_sync_db
        self._dispatcher = dispatcher or _dispatch_drain_task
        self.stale_after = stale_after if stale_after is not None else settings.RESOURCE_QUEUE_STALE_AFTER
        self.batch_limit = batch_limit or settings.RESOURCE_DRAIN_BATCH_LIMIT

    # ── Request side ────────────────────────────

    def enqueue(self, batch: ResourceBatch) -> Optional[str]:
        """Store the batch as pending work. Returns the batch id, or None if nothing was queued."""
        if batch.is_empty:
            return None

        batch_id = str(uuid7())
        db = self._session_factory()
        try:
            row = ResourceQueueBatch(
                id=batch_id,
                page_url=batch.page_url,
                status=ResourceBatchStatus.queued,
                resources_total=len(batch.resources),
                queued_at=datetime.utcnow(),
            )
            row.items = [
                ResourceQueueItem(
                    position=position,
                    url=resource.url,
                    type=resource.type.value,
                    content=resource.content,
                    hash=resource.content_hash,
                )
                for position, resource in enumerate(batch.resources)
            ]
            db.add(row)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            failure = PersistenceFailure(f"Could not queue resource batch: {e}", batch_id=batch_id)
            logger.error(
                f"{failure} (page: {batch.page_url})",
                extra={"context": {"batch_id": batch_id, "page_url": batch.page_url}},
            )
            return None
        finally:
            db.close()

        logger.info(f"Queued {len(batch.resources)} resources in batch {batch_id}")
        return batch_id

    def dispatch(self) -> Optional[str]:
        """Signal a worker to drain. Returns the Celery task id without waiting for the drain."""
        batch_ids = self._mark_dispatched()

        try:
            result = self._dispatcher()
        except (BrokerError, CeleryError) as e:
            # Batches stay pending; the periodic drain picks them up
            logger.error(f"Failed to dispatch resource queue drain: {e}")
            return None

        task_id = getattr(result, "id", None)
        if task_id and batch_ids:
            self._record_task_id(batch_ids, task_id)
        return task_id

    def _mark_dispatched(self) -> List[str]:
        db = self._session_factory()
        try:
            batch_ids = list(db.execute(
                select(ResourceQueueBatch.id).where(ResourceQueueBatch.status == ResourceBatchStatus.queued)
            ).scalars().all())
            if batch_ids:
                db.execute(
                    update(ResourceQueueBatch)
                    .where(
                        ResourceQueueBatch.id.in_(batch_ids),
                        ResourceQueueBatch.status == ResourceBatchStatus.queued,
                    )
                    .values(status=ResourceBatchStatus.dispatched, dispatched_at=datetime.utcnow())
                )
                db.commit()
            return batch_ids
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Could not mark batches as dispatched: {e}")
            return []
        finally:
            db.close()

    def _record_task_id(self, batch_ids: List[str], task_id: str) -> None:
        db = self._session_factory()
        try:
            db.execute(
                update(ResourceQueueBatch)
                .where(ResourceQueueBatch.id.in_(batch_ids))
                .values(celery_task_id=task_id)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Could not record task {task_id} on dispatched batches: {e}")
        finally:
            db.close()

    # ── Worker side ─────────────────────────────

    def drain(self) -> Dict[str, int]:
        """
        Write every pending resource to the store.

        Batches are taken oldest first and their items in enqueue order.
        A failed item is logged, kept in the queue and skipped; the batch
        then ends as failed and is retried by the next drain.
        """
        summary = {"batches": 0, "written": 0, "unchanged": 0, "failed": 0}

        db = self._session_factory()
        try:
            for batch_id in self._claimable_batch_ids(db):
                if not self._claim(db, batch_id):
                    continue
                summary["batches"] += 1
                self._drain_batch(db, batch_id, summary)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Resource queue drain stopped, store unavailable: {e}")
        finally:
            db.close()

        logger.info(
            f"Resource queue drained: {summary['batches']} batches, "
            f"{summary['written']} written, {summary['unchanged']} unchanged, {summary['failed']} failed"
        )
        return summary

    def pending_count(self) -> int:
        db = self._session_factory()
        try:
            return db.execute(select(func.count(ResourceQueueItem.id))).scalar_one()
        finally:
            db.close()

    def _claimable_condition(self):
        stale_cutoff = datetime.utcnow() - timedelta(seconds=self.stale_after)
        return or_(
            ResourceQueueBatch.status.in_(self.CLAIMABLE_STATUSES),
            and_(
                ResourceQueueBatch.status == ResourceBatchStatus.processing,
                ResourceQueueBatch.started_at < stale_cutoff,
            ),
        )

    def _claimable_batch_ids(self, db: Session) -> List[str]:
        return list(db.execute(
            select(ResourceQueueBatch.id)
            .where(self._claimable_condition())
            .order_by(ResourceQueueBatch.queued_at, ResourceQueueBatch.id)
            .limit(self.batch_limit)
        ).scalars().all())

    def _claim(self, db: Session, batch_id: str) -> bool:
        """Move the batch to processing unless another worker got there first."""
        result = db.execute(
            update(ResourceQueueBatch)
            .where(ResourceQueueBatch.id == batch_id, self._claimable_condition())
            .values(
                status=ResourceBatchStatus.processing,
                started_at=datetime.utcnow(),
                attempts=ResourceQueueBatch.attempts + 1,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    def _drain_batch(self, db: Session, batch_id: str, summary: Dict[str, int]) -> None:
        item_ids = db.execute(
            select(ResourceQueueItem.id)
            .where(ResourceQueueItem.batch_id == batch_id)
            .order_by(ResourceQueueItem.position)
        ).scalars().all()

        written = unchanged = 0
        for item_id in item_ids:
            outcome = self._persist_item(db, batch_id, item_id)
            if outcome in (CREATED, UPDATED):
                written += 1
            elif outcome == UNCHANGED:
                unchanged += 1
            elif outcome == FAILED:
                summary["failed"] += 1

        summary["written"] += written
        summary["unchanged"] += unchanged

        try:
            remaining = db.execute(
                select(func.count(ResourceQueueItem.id)).where(ResourceQueueItem.batch_id == batch_id)
            ).scalar_one()
            batch = db.get(ResourceQueueBatch, batch_id)
            batch.resources_written += written
            batch.resources_unchanged += unchanged
            if remaining:
                batch.status = ResourceBatchStatus.failed
                batch.error_message = f"{remaining} resource(s) still pending"
            else:
                batch.status = ResourceBatchStatus.done
                batch.error_message = None
                batch.finished_at = datetime.utcnow()
            db.commit()
        except SQLAlchemyError as e:
            # Left in processing; reclaimed once stale
            db.rollback()
            logger.error(f"Could not close resource batch {batch_id}: {e}")

    def _persist_item(self, db: Session, batch_id: str, item_id: str) -> Optional[str]:
        url = None
        error = None
        for _ in range(_INTEGRITY_RETRIES + 1):
            try:
                item = db.get(ResourceQueueItem, item_id)
                if item is None:
                    # Already drained elsewhere
                    return None
                url = item.url
                outcome = ResourceStore.upsert(db, item.url, item.type, item.content, item.hash)
                db.delete(item)
                db.commit()
                return outcome
            except IntegrityError as e:
                db.rollback()
                error = e
            except SQLAlchemyError as e:
                db.rollback()
                error = e
                break

        failure = PersistenceFailure(f"Could not store resource {url}: {error}", url=url, batch_id=batch_id)
        logger.error(str(failure), extra={"context": {"url": url, "batch_id": batch_id}})
        self._record_item_failure(db, item_id, str(error))
        return FAILED

    def _record_item_failure(self, db: Session, item_id: str, message: str) -> None:
        try:
            db.execute(
                update(ResourceQueueItem)
                .where(ResourceQueueItem.id == item_id)
                .values(attempts=ResourceQueueItem.attempts + 1, last_error=message[:2000])
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Could not record failure for queue item {item_id}: {e}")
