from sqlalchemy import Column, String, Integer, LargeBinary, Text, DateTime, ForeignKey, Index, Enum
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from asset_warmup.platform.db.base import BaseModel


class ResourceBatchStatus(enum.Enum):
    """Batch state machine: queued -> dispatched -> processing -> done | failed"""
    queued = "queued"
    dispatched = "dispatched"
    processing = "processing"
    done = "done"
    failed = "failed"


class ResourceQueueBatch(BaseModel):
    """Pending work for one page scan."""

    __tablename__ = "rucss_resource_batches"

    page_url = Column(String(2048), nullable=True)

    status = Column(Enum(ResourceBatchStatus), default=ResourceBatchStatus.queued, nullable=False, index=True)

    # Counters
    resources_total = Column(Integer, default=0, nullable=False)
    resources_written = Column(Integer, default=0, nullable=False)
    resources_unchanged = Column(Integer, default=0, nullable=False)

    # Error tracking
    attempts = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)

    celery_task_id = Column(String(128), nullable=True, index=True)

    queued_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    dispatched_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    items = relationship(
        "ResourceQueueItem",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="ResourceQueueItem.position",
    )

    __table_args__ = (
        Index('idx_rucss_batches_status_queued', 'status', 'queued_at'),
    )


class ResourceQueueItem(BaseModel):
    """
    One resource waiting to be written.

    Deleted in the same commit as its store write, so whatever is still
    here has not been persisted yet.
    """

    __tablename__ = "rucss_resource_queue_items"

    batch_id = Column(String, ForeignKey("rucss_resource_batches.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)

    url = Column(String(2048), nullable=False)
    type = Column(String(8), nullable=False)
    content = Column(LargeBinary, nullable=False)
    hash = Column(String(64), nullable=False)

    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)

    batch = relationship("ResourceQueueBatch", back_populates="items")

    __table_args__ = (
        Index('idx_rucss_queue_items_batch_position', 'batch_id', 'position'),
    )
