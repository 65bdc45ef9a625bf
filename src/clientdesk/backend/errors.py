"""Exceptions raised by the backend capabilities."""


class BackendError(RuntimeError):
    """Base exception raised for backend capability failures."""


class DatabaseError(BackendError):
    """Raised when the database rejects a read or a write."""


class StorageError(BackendError):
    """Raised when an object storage operation fails."""


class BucketAlreadyExistsError(StorageError):
    """Raised by `create_bucket` when the bucket is already present."""


class RealtimeError(BackendError):
    """Raised or reported when a realtime channel cannot deliver events."""
