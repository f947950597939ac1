#!/usr/bin/env python3
"""
AWS S3 adapter using boto3.

This adapter uses standard boto3 configuration (env vars, shared credentials).
Pass endpoint_url for S3-compatible providers (MinIO, Ceph) if needed.
Every call is bounded by the configured connect/read timeouts.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .abstract import BackendErrorKind, ObjectMetadata, StorageBackendError, StoredObject

logger = logging.getLogger(__name__)

_NO_SUCH_KEY_CODES = {"NoSuchKey", "NotFound", "404"}
_NO_SUCH_BUCKET_CODES = {"NoSuchBucket"}


def classify_client_error(err: ClientError) -> StorageBackendError:
    error = err.response.get("Error", {}) if isinstance(err.response, dict) else {}
    code = str(error.get("Code", ""))
    message = error.get("Message") or str(err)
    if code in _NO_SUCH_BUCKET_CODES:
        kind = BackendErrorKind.NO_SUCH_BUCKET
    elif code in _NO_SUCH_KEY_CODES:
        kind = BackendErrorKind.NO_SUCH_KEY
    else:
        kind = BackendErrorKind.OTHER
    return StorageBackendError(kind, f"{code}: {message}" if code else message, code=code or None)


def _metadata_from_response(resp: Dict[str, Any]) -> ObjectMetadata:
    raw = {k: v for k, v in resp.items() if k not in ("ResponseMetadata", "Body")}
    return ObjectMetadata(
        content_length=resp.get("ContentLength"),
        content_type=resp.get("ContentType"),
        raw=raw,
    )


class S3StorageAdapter:
    def __init__(
        self,
        bucket: str,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        client: Any = None,
    ):
        self.bucket = bucket
        if client is None:
            session_kwargs = {}
            if access_key and secret_key:
                session_kwargs["aws_access_key_id"] = access_key
                session_kwargs["aws_secret_access_key"] = secret_key
            boto_config = BotoConfig(
                connect_timeout=connect_timeout,
                read_timeout=read_timeout,
                retries={"max_attempts": 1},
            )
            client = boto3.client("s3", region_name=region, endpoint_url=endpoint_url, config=boto_config, **session_kwargs)
        self.client = client

    def head_object(self, key: str) -> ObjectMetadata:
        try:
            resp = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            raise classify_client_error(e) from e
        except BotoCoreError as e:
            raise StorageBackendError(BackendErrorKind.OTHER, str(e)) from e
        return _metadata_from_response(resp)

    def get_object(self, key: str) -> StoredObject:
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            raise classify_client_error(e) from e
        except BotoCoreError as e:
            raise StorageBackendError(BackendErrorKind.OTHER, str(e)) from e
        return StoredObject(body=resp["Body"], metadata=_metadata_from_response(resp))

    def presign_get(self, key: str, expires_in: int = 60, content_disposition: Optional[str] = None) -> str:
        params = {"Bucket": self.bucket, "Key": key}
        if content_disposition:
            params["ResponseContentDisposition"] = content_disposition
        try:
            return self.client.generate_presigned_url("get_object", Params=params, ExpiresIn=expires_in)
        except (ClientError, BotoCoreError) as e:
            raise StorageBackendError(BackendErrorKind.OTHER, str(e)) from e
