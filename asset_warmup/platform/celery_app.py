from celery import Celery
from kombu import Queue

from asset_warmup.platform.config import settings

DRAIN_TASK_NAME = "asset_warmup.features.resources.workers.tasks.drain_resource_queue"


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Queue Structure:
    - default: anything not routed explicitly
    - <RESOURCE_QUEUE_NAME>: draining collected page resources into the store

    The drain task carries no payload; pending work lives in the
    resource queue tables, so a message only signals "drain now".
    """
    celery_app = Celery(
        "asset_warmup",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
    )

    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer=settings.CELERY_RESULT_SERIALIZER,
        accept_content=[settings.CELERY_ACCEPT_CONTENT],
        timezone="UTC",
        enable_utc=True,
        task_track_started=settings.CELERY_TASK_TRACK_STARTED,
        task_time_limit=settings.CELERY_TASK_TIME_LIMIT,
        task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,

        # Result settings
        result_expires=3600,  # Results expire after 1 hour

        task_routes={
            DRAIN_TASK_NAME: {"queue": settings.RESOURCE_QUEUE_NAME},
        },

        task_queues=(
            Queue("default"),
            Queue(settings.RESOURCE_QUEUE_NAME),
        ),

        task_default_queue="default",

        worker_prefetch_multiplier=1,  # Fair distribution

        # Retry settings
        task_acks_late=True,  # Acknowledge after task completes
        task_reject_on_worker_lost=True,  # Requeue if worker dies

        # Items left pending by a failed drain are picked up here
        beat_schedule={
            "drain-resource-queue": {
                "task": DRAIN_TASK_NAME,
                "schedule": settings.RESOURCE_DRAIN_INTERVAL,
            },
        },
    )

    celery_app.autodiscover_tasks(["asset_warmup.features.resources.workers"])

    return celery_app


# Global Celery app instance
celery_app = create_celery_app()
