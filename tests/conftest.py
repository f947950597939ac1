# tests/conftest.py
import io
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from sage_storage.api.app import create_app
from sage_storage.config import Config
from sage_storage.identity import datetime_to_ns
from sage_storage.policy.policy_engine import NodeRecord, PolicyConfig, PolicyEngine
from sage_storage.storage.abstract import (
    BackendErrorKind,
    ObjectMetadata,
    StorageBackendError,
    StoredObject,
)

FAKE_CONTENT = b"I am fake file content"

# fixed reference instant; the policy engine never looks at the wall clock
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

RESTRICTED_TASKS = [
    "imagesampler-bottom",
    "imagesampler-left",
    "imagesampler-right",
    "imagesampler-top",
    "audiosampler",
]


def ts(dt: datetime) -> str:
    """Nanosecond timestamp string as used in file names."""
    return str(datetime_to_ns(dt))


def years_ago(n: int) -> datetime:
    return NOW - timedelta(days=365 * n)


class FakeBody:
    def __init__(self, data: bytes):
        self._buf = io.BytesIO(data)
        self.closed = False

    def read(self, amt=None) -> bytes:
        return self._buf.read() if amt is None else self._buf.read(amt)

    def close(self) -> None:
        self.closed = True


class FakeObjectStore:
    """
    In-memory ObjectStore. With objects=None every key exists and holds
    FAKE_CONTENT; otherwise only the given keys exist. error, when set, is
    raised by every call.
    """
    bucket = "test-bucket"

    def __init__(self, objects=None, error=None):
        self.objects = objects
        self.error = error
        self.calls = []
        self.bodies = []

    def _lookup(self, key):
        if self.error is not None:
            raise self.error
        if self.objects is None:
            return FAKE_CONTENT
        if key not in self.objects:
            raise StorageBackendError(BackendErrorKind.NO_SUCH_KEY, f"NoSuchKey: {key}", code="NoSuchKey")
        return self.objects[key]

    def head_object(self, key):
        self.calls.append(("head_object", key))
        data = self._lookup(key)
        return ObjectMetadata(
            content_length=len(data),
            content_type="image/jpeg",
            raw={
                "ContentLength": len(data),
                "ContentLanguage": "klingon",
                "ContentType": "image/jpeg",
                "LastModified": datetime(2023, 1, 1, tzinfo=timezone.utc),
            },
        )

    def get_object(self, key):
        self.calls.append(("get_object", key))
        data = self._lookup(key)
        body = FakeBody(data)
        self.bodies.append(body)
        return StoredObject(body=body, metadata=ObjectMetadata(content_length=len(data), content_type="image/jpeg"))

    def presign_get(self, key, expires_in=60, content_disposition=None):
        self.calls.append(("presign_get", key, expires_in, content_disposition))
        if self.error is not None:
            raise self.error
        return f"https://s3.example.org/{self.bucket}/{key}?X-Amz-Expires={expires_in}"


def make_policy(**overrides) -> PolicyConfig:
    values = dict(
        username="user",
        password="secret",
        nodes={
            "uncommissioned": NodeRecord(restricted=False),
            "commissioned1Y": NodeRecord(restricted=False, commission_date=years_ago(1)),
            "commissioned3Y": NodeRecord(restricted=False, commission_date=years_ago(3)),
            "restrictedNode1": NodeRecord(restricted=True, commission_date=years_ago(1)),
            "restrictedNode2": NodeRecord(restricted=True, commission_date=years_ago(1)),
        },
        restricted_task_substrings=tuple(RESTRICTED_TASKS),
    )
    values.update(overrides)
    return PolicyConfig(**values)


def make_config(**overrides) -> Config:
    values = dict(
        OBJECT_STORE_BUCKET="test-bucket",
        S3_ROOT_FOLDER="",
        SERVE_MODE="stream",
        POLICY_CONFIG_PATH=None,
        API_PREFIX="/api/v1/data",
        LOG_LEVEL="WARNING",
    )
    values.update(overrides)
    return Config(**values).validate()


@pytest.fixture
def engine():
    return PolicyEngine(make_policy())


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def make_client(engine, store):
    def _make(cfg=None, store_=None, engine_=None):
        app = create_app(cfg or make_config(), store=store_ or store, engine=engine_ or engine)
        return TestClient(app)
    return _make


@pytest.fixture
def client(make_client):
    return make_client()
