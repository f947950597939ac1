#!/usr/bin/env python3
"""
Storage abstraction for the gateway.

Define an ObjectStore interface that the request handlers use.
Implementations (S3, MinIO) should implement this interface and raise
StorageBackendError with one of the BackendErrorKind values on failure.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from ..error_handling import StorageGatewayError


class BackendErrorKind(str, Enum):
    NO_SUCH_KEY = "no_such_key"
    NO_SUCH_BUCKET = "no_such_bucket"
    OTHER = "other"


class StorageBackendError(StorageGatewayError):
    def __init__(self, kind: BackendErrorKind, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = code


@dataclass
class ObjectMetadata:
    content_length: Optional[int] = None
    content_type: Optional[str] = None
    # backend response fields (S3 naming), transport metadata stripped
    raw: Dict[str, Any] = field(default_factory=dict)


class ObjectBody(Protocol):
    def read(self, amt: Optional[int] = None) -> bytes:
        ...

    def close(self) -> None:
        ...


@dataclass
class StoredObject:
    body: ObjectBody
    metadata: ObjectMetadata


class ObjectStore(Protocol):
    """
    Minimal read-only object store interface.

    - head_object(key) -> ObjectMetadata
    - get_object(key) -> StoredObject
    - presign_get(key, expires_in, content_disposition=None) -> str
    """
    bucket: str

    def head_object(self, key: str) -> ObjectMetadata:
        ...

    def get_object(self, key: str) -> StoredObject:
        ...

    def presign_get(self, key: str, expires_in: int = 60, content_disposition: Optional[str] = None) -> str:
        ...
