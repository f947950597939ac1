#!/usr/bin/env python3
"""
Object store factory.

Creates an ObjectStore implementation based on configuration (cfg.OBJECT_STORE_TYPE).
Supported types: "s3", "minio".
"""
from __future__ import annotations
from typing import Optional

from .. import config
from .abstract import ObjectStore


def create_object_store(cfg: Optional[config.Config] = None) -> ObjectStore:
    cfg = cfg or config.cfg
    typ = (cfg.OBJECT_STORE_TYPE or "s3").lower()
    from .s3_adapter import S3StorageAdapter
    if typ == "minio":
        # MinIO speaks the S3 API; it only needs an explicit endpoint
        return S3StorageAdapter(
            bucket=cfg.OBJECT_STORE_BUCKET,
            region=cfg.OBJECT_STORE_REGION,
            endpoint_url=cfg.OBJECT_STORE_ENDPOINT or "http://localhost:9000",
            access_key=cfg.OBJECT_STORE_ACCESS_KEY or "minioadmin",
            secret_key=cfg.OBJECT_STORE_SECRET_KEY or "minioadmin",
            connect_timeout=cfg.BACKEND_CONNECT_TIMEOUT,
            read_timeout=cfg.BACKEND_READ_TIMEOUT,
        )
    if typ == "s3":
        return S3StorageAdapter(
            bucket=cfg.OBJECT_STORE_BUCKET,
            region=cfg.OBJECT_STORE_REGION,
            endpoint_url=cfg.OBJECT_STORE_ENDPOINT,
            access_key=cfg.OBJECT_STORE_ACCESS_KEY,
            secret_key=cfg.OBJECT_STORE_SECRET_KEY,
            connect_timeout=cfg.BACKEND_CONNECT_TIMEOUT,
            read_timeout=cfg.BACKEND_READ_TIMEOUT,
        )
    raise RuntimeError(f"Unsupported OBJECT_STORE_TYPE: {typ}")
