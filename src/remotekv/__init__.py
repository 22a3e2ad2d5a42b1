"""remotekv: optimistic-concurrency documents and fair leased locks over a versioned store."""

__version__ = "0.1.0"

from remotekv.backends import AccessInfo, VersionedBlob, VersionedStore, open_backend
from remotekv.config import RemoteKVConfig
from remotekv.document import CacheEntry, DocumentReference
from remotekv.errors import (
    BackendError,
    ConflictExceededError,
    InvalidStoreURIError,
    LockTimeoutError,
    NotFoundError,
    RemoteKVError,
    StorePermissionError,
    VersionConflictError,
)
from remotekv.lock import AcquiredLock, LockDocument, ResourceLock, WaitingStatus
from remotekv.store import DocumentStore

__all__ = [
    "__version__",
    "AccessInfo",
    "AcquiredLock",
    "BackendError",
    "CacheEntry",
    "ConflictExceededError",
    "DocumentReference",
    "DocumentStore",
    "InvalidStoreURIError",
    "LockDocument",
    "LockTimeoutError",
    "NotFoundError",
    "RemoteKVConfig",
    "RemoteKVError",
    "ResourceLock",
    "StorePermissionError",
    "VersionConflictError",
    "VersionedBlob",
    "VersionedStore",
    "WaitingStatus",
    "open_backend",
]
