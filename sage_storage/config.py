#!/usr/bin/env python3
"""
Gateway config adapter: unify env + optional YAML config.

Usage:
  from sage_storage.config import cfg
  print(cfg.OBJECT_STORE_BUCKET, cfg.SERVE_MODE)
"""
from __future__ import annotations
import os
import yaml
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, List, Optional

from .error_handling import ConfigError

SERVE_MODES = ("stream", "redirect")


def _config_paths() -> List[Path]:
    paths = [
        Path(os.environ["SAGE_STORAGE_CONFIG"]) if os.environ.get("SAGE_STORAGE_CONFIG") else None,
        Path("config.yaml"),
        Path("config.yml"),
    ]
    # filter None
    return [p for p in paths if p is not None]


def _load_yaml(path: Path) -> dict:
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except Exception:
        return {}


def _env(name: str, default: Any = None, cast=str):
    def factory():
        raw = os.environ.get(name)
        if raw is None or raw == "":
            return default
        try:
            return cast(raw)
        except ValueError as e:
            raise ConfigError(f"invalid value for {name}: {raw!r}") from e
    return field(default_factory=factory)


@dataclass
class Config:
    # object store
    OBJECT_STORE_TYPE: str = _env("OBJECT_STORE_TYPE", "s3")  # 's3' or 'minio'
    OBJECT_STORE_ENDPOINT: Optional[str] = _env("OBJECT_STORE_ENDPOINT")
    OBJECT_STORE_REGION: Optional[str] = _env("OBJECT_STORE_REGION", "us-east-1")
    OBJECT_STORE_BUCKET: Optional[str] = _env("OBJECT_STORE_BUCKET", "sage-storage")
    OBJECT_STORE_ACCESS_KEY: Optional[str] = _env("OBJECT_STORE_ACCESS_KEY")
    OBJECT_STORE_SECRET_KEY: Optional[str] = _env("OBJECT_STORE_SECRET_KEY")
    S3_ROOT_FOLDER: str = _env("S3_ROOT_FOLDER", "")
    BACKEND_CONNECT_TIMEOUT: float = _env("BACKEND_CONNECT_TIMEOUT", 5.0, float)
    BACKEND_READ_TIMEOUT: float = _env("BACKEND_READ_TIMEOUT", 30.0, float)
    # serving
    SERVE_MODE: str = _env("SERVE_MODE", "stream")  # 'stream' or 'redirect'
    PRESIGN_TTL_SECONDS: int = _env("PRESIGN_TTL_SECONDS", 60, int)
    STREAM_CHUNK_SIZE: int = _env("STREAM_CHUNK_SIZE", 64 * 1024, int)
    AUTH_REALM: str = _env("AUTH_REALM", "storage.sagecontinuum.org")
    API_PREFIX: str = _env("API_PREFIX", "/api/v1/data")
    # authorization policy
    POLICY_CONFIG_PATH: Optional[str] = _env("POLICY_CONFIG_PATH")
    POLICY_RELOAD_INTERVAL: float = _env("POLICY_RELOAD_INTERVAL", 30.0, float)
    POLICY_USERNAME: Optional[str] = _env("POLICY_USERNAME")
    POLICY_PASSWORD: Optional[str] = _env("POLICY_PASSWORD")
    # general
    LOG_LEVEL: str = _env("LOG_LEVEL", "INFO")
    ENV: str = _env("ENV", "development")
    HOST: str = _env("HOST", "0.0.0.0")
    PORT: int = _env("PORT", 8080, int)
    # separate Prometheus listener; 0 serves metrics only on /metrics
    METRICS_PORT: int = _env("METRICS_PORT", 0, int)
    # raw loaded yaml (if any)
    _raw: Optional[dict] = None

    def validate(self) -> "Config":
        mode = (self.SERVE_MODE or "").lower()
        if mode not in SERVE_MODES:
            raise ConfigError(f"SERVE_MODE must be one of {SERVE_MODES}, got {self.SERVE_MODE!r}")
        self.SERVE_MODE = mode
        if int(self.PRESIGN_TTL_SECONDS) <= 0:
            raise ConfigError("PRESIGN_TTL_SECONDS must be positive")
        if int(self.STREAM_CHUNK_SIZE) <= 0:
            raise ConfigError("STREAM_CHUNK_SIZE must be positive")
        if not self.OBJECT_STORE_BUCKET:
            raise ConfigError("OBJECT_STORE_BUCKET is required")
        return self


def _merge_from_yaml(cfg: Config, paths: List[Path]) -> Config:
    known = {f.name for f in fields(cfg)}
    for p in paths:
        if p.exists():
            raw = _load_yaml(p)
            # map known keys
            for k, v in raw.items():
                if k in known and not k.startswith("_"):
                    setattr(cfg, k, v)
            cfg._raw = raw
            break
    return cfg


def load_config(path: Optional[Path] = None) -> Config:
    paths = [Path(path)] if path else _config_paths()
    return _merge_from_yaml(Config(), paths).validate()


# Single shared config object
cfg = load_config()
