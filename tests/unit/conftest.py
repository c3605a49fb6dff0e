import asyncio
import io
from collections.abc import Callable
from datetime import datetime, timezone

import pytest

from streamup.backend.base import StorageBackend
from streamup.config.settings import DownloadConfig, UploadConfig
from streamup.models import CompletedPart, MultipartSessionInfo, ObjectInfo

TEST_CREDENTIALS = {
    "access_key_id": "test-access-key",
    "secret_access_key": "test-secret-key",
    "bucket": "test-bucket",
}

STORAGE_ENV_VARS = (
    "S3_ACCESS_KEY_ID",
    "S3_SECRET_ACCESS_KEY",
    "S3_BUCKET",
    "S3_ENDPOINT",
    "S3_REGION",
    "R2_ACCOUNT_ID",
)


class FakeBody:
    """In-memory object body returned by FakeBackend.get_object."""

    def __init__(self, data: bytes, truncate_to: int | None = None):
        self._stream = io.BytesIO(data if truncate_to is None else data[:truncate_to])
        self.closed = False

    def read(self, amt=None):
        return self._stream.read(amt)

    def close(self):
        self.closed = True


class FakeBackend(StorageBackend):
    """In-memory multipart store with failure and delay hooks."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.sessions: dict[str, dict] = {}
        self.listed_sessions: list[MultipartSessionInfo] = []
        self.upload_calls: list[int] = []
        self.completed_order: list[int] = []
        self.completed_parts: list[CompletedPart] | None = None
        self.begin_kwargs: dict = {}
        self.abort_calls = 0
        self.aborted: list[tuple[str, str]] = []
        self.deleted: list[str] = []
        self.closed = False
        self.part_delays: dict[int, float] = {}
        # part number -> list of exceptions raised by successive attempts
        self.part_failures: dict[int, list[BaseException]] = {}
        self.begin_error: BaseException | None = None
        self.complete_error: BaseException | None = None
        self.abort_error: BaseException | None = None
        self.abort_failures: dict[str, BaseException] = {}
        self.on_upload_part: Callable[[int], None] | None = None
        self.truncate_downloads_to: int | None = None
        self._next_id = 0

    async def begin_multipart(
        self, key, content_type=None, metadata=None, headers=None
    ):
        if self.begin_error is not None:
            raise self.begin_error
        self._next_id += 1
        upload_id = f"upload-{self._next_id}"
        self.sessions[upload_id] = {"key": key, "parts": {}}
        self.begin_kwargs = {
            "key": key,
            "content_type": content_type,
            "metadata": metadata,
            "headers": headers,
        }
        return upload_id

    async def upload_part(self, key, upload_id, part_number, data):
        self.upload_calls.append(part_number)
        if self.on_upload_part is not None:
            self.on_upload_part(part_number)
        delay = self.part_delays.get(part_number)
        if delay:
            await asyncio.sleep(delay)
        failures = self.part_failures.get(part_number)
        if failures:
            raise failures.pop(0)
        self.sessions[upload_id]["parts"][part_number] = bytes(data)
        self.completed_order.append(part_number)
        return f'"etag-{part_number}"'

    async def complete_multipart(self, key, upload_id, parts):
        if self.complete_error is not None:
            raise self.complete_error
        self.completed_parts = list(parts)
        stored = self.sessions.pop(upload_id)["parts"]
        self.objects[key] = b"".join(stored[part.part_number] for part in parts)

    async def abort_multipart(self, key, upload_id):
        self.abort_calls += 1
        if upload_id in self.abort_failures:
            raise self.abort_failures[upload_id]
        if self.abort_error is not None:
            raise self.abort_error
        self.aborted.append((key, upload_id))
        self.sessions.pop(upload_id, None)

    async def head_object(self, key):
        return len(self.objects[key])

    async def get_object(self, key):
        return FakeBody(self.objects[key], self.truncate_downloads_to)

    async def list_multipart_sessions(self, prefix="", max_results=0):
        sessions = [s for s in self.listed_sessions if s.key.startswith(prefix)]
        if max_results > 0:
            sessions = sessions[:max_results]
        return sessions

    async def list_objects(self, prefix="", max_keys=1000):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        return [
            ObjectInfo(key=key, size=len(data), last_modified=now)
            for key, data in sorted(self.objects.items())
            if key.startswith(prefix)
        ][:max_keys]

    async def delete_object(self, key):
        self.deleted.append(key)
        self.objects.pop(key, None)

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def clean_storage_env(monkeypatch):
    """Remove storage settings that may be set in the developer's shell."""
    for name in STORAGE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _upload_config(**overrides) -> UploadConfig:
    settings = {
        **TEST_CREDENTIALS,
        "key": "data/archive.bin",
        "total_size": 1024,
        "retry_delay_ms": 1,
        "max_retry_delay_ms": 5,
    }
    settings.update(overrides)
    return UploadConfig(**settings)


def _download_config(**overrides) -> DownloadConfig:
    settings = {**TEST_CREDENTIALS, "key": "data/archive.bin"}
    settings.update(overrides)
    return DownloadConfig(**settings)


@pytest.fixture
def make_upload_config():
    """Factory for valid upload configs with fast retries."""
    return _upload_config


@pytest.fixture
def make_download_config():
    """Factory for valid download configs."""
    return _download_config
