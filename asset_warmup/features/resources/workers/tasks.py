import logging
from typing import Dict

from celery import shared_task

from asset_warmup.features.resources.services.queue.persistence_queue import AsyncPersistenceQueue
from asset_warmup.platform.celery_app import DRAIN_TASK_NAME, celery_app  # noqa: F401
from asset_warmup.platform.db.session import get_sync_db

logger = logging.getLogger(__name__)


@shared_task(bind=True, name=DRAIN_TASK_NAME)
def drain_resource_queue(self) -> Dict[str, int]:
    """
    Drain pending resource batches into the resources table.

    Triggered by AsyncPersistenceQueue.dispatch() after a page scan and by
    Celery Beat on an interval, which is how items left pending by an
    earlier failure get retried.
    """
    logger.info(f"Draining resource queue (task {self.request.id})")
    queue = AsyncPersistenceQueue(session_factory=get_sync_db)
    return queue.drain()
