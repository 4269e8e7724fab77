from asset_warmup.features.resources.services.resolution.content_resolver import (
    ContentResolver,
    ResolutionFailure,
    ResolutionFailureReason,
)

__all__ = ["ContentResolver", "ResolutionFailure", "ResolutionFailureReason"]
