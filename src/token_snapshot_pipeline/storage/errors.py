"""Store error kinds shared by the storage layer and its callers."""


class SnapshotStoreError(Exception):
    """A single store operation failed; the caller may skip the item."""


class StoreUnavailableError(SnapshotStoreError):
    """The store cannot be reached; the caller should stop and retry later."""
