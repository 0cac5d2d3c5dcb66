"""
Shared pytest configuration for photo pipeline tests.

Forces ENV=test before any route module is imported so the rate limiter is a
no-op, and provides an in-memory storage backend so no object store is needed.
"""

import os

os.environ["ENV"] = "test"

from datetime import datetime, timedelta
from typing import Dict, List, Tuple

import pytest
import pytz

from wee_adventure.models.schemas import StoredObjectInfo
from wee_adventure.services.storage_service import StorageBackend, StorageConfig, StorageService
from wee_adventure.utils.errors import StorageError

BASE_TIME = datetime(2025, 8, 3, 12, 0, tzinfo=pytz.UTC)


class InMemoryStorageBackend(StorageBackend):
    """Dict-backed StorageBackend used in place of a real object store."""

    def __init__(self, bucket_exists: bool = True):
        self.objects: Dict[str, Tuple[bytes, str]] = {}
        self.modified: Dict[str, datetime] = {}
        self.exists = bucket_exists
        self.created_buckets = 0
        self.fail_deletes = False
        self.reachable = True
        self._clock = BASE_TIME

    def bucket_exists(self) -> bool:
        return self.exists

    def create_bucket(self) -> None:
        self.created_buckets += 1
        self.exists = True

    def put_object(self, key: str, data: bytes, content_type: str) -> None:
        self.objects[key] = (data, content_type)
        self._clock += timedelta(minutes=1)
        self.modified[key] = self._clock

    def presigned_url(self, key: str, expiry_seconds: int) -> str:
        return f"https://storage.test/bucket/{key}?X-Amz-Expires={expiry_seconds}"

    def delete_object(self, key: str) -> None:
        if self.fail_deletes:
            raise StorageError(f"Delete failed: {key}")
        self.objects.pop(key, None)
        self.modified.pop(key, None)

    def list_objects(self, prefix: str) -> List[StoredObjectInfo]:
        return [
            StoredObjectInfo(key=key, size=len(data), last_modified=self.modified.get(key))
            for key, (data, _) in self.objects.items()
            if key.startswith(prefix)
        ]

    def check_connection(self) -> bool:
        return self.reachable


@pytest.fixture
def storage_config():
    return StorageConfig(
        endpoint_url="http://localhost:9000",
        access_key_id="minioadmin",
        secret_access_key="minioadmin",
        bucket="wee-adventure-photos",
    )


@pytest.fixture
def memory_backend():
    return InMemoryStorageBackend()


@pytest.fixture
def storage(storage_config, memory_backend):
    return StorageService(storage_config, backend=memory_backend)


@pytest.fixture
def unconfigured_storage():
    return StorageService(StorageConfig())
