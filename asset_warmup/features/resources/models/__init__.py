"""
Resource warmup models package.
"""
from asset_warmup.features.resources.models.resource import StoredResource
from asset_warmup.features.resources.models.used_css import UsedCSS
from asset_warmup.features.resources.models.resource_queue import (
    ResourceBatchStatus,
    ResourceQueueBatch,
    ResourceQueueItem,
)

__all__ = ["StoredResource", "UsedCSS", "ResourceBatchStatus", "ResourceQueueBatch", "ResourceQueueItem"]
