from .abstract import (
    BackendErrorKind,
    ObjectMetadata,
    ObjectStore,
    StorageBackendError,
    StoredObject,
)
from .factory import create_object_store

__all__ = [
    "BackendErrorKind",
    "ObjectMetadata",
    "ObjectStore",
    "StorageBackendError",
    "StoredObject",
    "create_object_store",
]
