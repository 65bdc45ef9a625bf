"""Backend capabilities consumed by the chat core: database, realtime, storage."""

from .context import BackendContext
from .database import Database, in_
from .errors import (
    BackendError,
    BucketAlreadyExistsError,
    DatabaseError,
    RealtimeError,
    StorageError,
)
from .realtime import ChannelStatus, InsertEvent, RealtimeBroker, RealtimeChannel, RowFilter
from .storage import Bucket, LocalObjectStorage, ObjectStorage, S3ObjectStorage

__all__ = [
    "BackendContext",
    "BackendError",
    "Bucket",
    "BucketAlreadyExistsError",
    "ChannelStatus",
    "Database",
    "DatabaseError",
    "InsertEvent",
    "LocalObjectStorage",
    "ObjectStorage",
    "RealtimeBroker",
    "RealtimeChannel",
    "RealtimeError",
    "RowFilter",
    "S3ObjectStorage",
    "StorageError",
    "in_",
]
