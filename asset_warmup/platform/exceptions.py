"""
Error taxonomy for the warmup pipeline.

Resolution failures are plain values (see ``ResolutionFailure`` in the
resolution service); only storage problems are raised, and they are caught
inside the queue and the table lifecycle helpers.
"""


class AssetWarmupError(Exception):
    """Base error for the asset warmup pipeline."""


class PersistenceFailure(AssetWarmupError):
    """Raised when a resource (or a batch) could not be written to the store."""

    def __init__(self, message: str, url: str = None, batch_id: str = None):
        super().__init__(message)
        self.url = url
        self.batch_id = batch_id


class StoreLifecycleFailure(AssetWarmupError):
    """Raised when a table exists/install/uninstall call fails."""

    def __init__(self, message: str, table_name: str = None):
        super().__init__(message)
        self.table_name = table_name
