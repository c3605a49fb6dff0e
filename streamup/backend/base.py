"""Abstract storage backend used by the uploader, downloader and housekeeping."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol

from streamup.models import CompletedPart, MultipartSessionInfo, ObjectInfo


class ReadableBody(Protocol):
    """Blocking readable returned by ``get_object``."""

    def read(self, amt: int | None = None) -> bytes:
        """Read up to ``amt`` bytes, ``b""`` at the end of the body."""
        ...

    def close(self) -> None:
        """Release the underlying connection."""
        ...


class StorageBackend(ABC):
    """Multipart-capable object store.

    All operations are coroutines. Implementations must not retry on their
    own: part uploads are retried by the caller's retry policy.
    """

    @abstractmethod
    async def begin_multipart(
        self,
        key: str,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> str:
        """Start a multipart upload and return its upload ID."""

    @abstractmethod
    async def upload_part(
        self, key: str, upload_id: str, part_number: int, data: bytes | bytearray
    ) -> str:
        """Upload one part and return its ETag."""

    @abstractmethod
    async def complete_multipart(
        self, key: str, upload_id: str, parts: list[CompletedPart]
    ) -> None:
        """Assemble the uploaded parts, given in ascending part order."""

    @abstractmethod
    async def abort_multipart(self, key: str, upload_id: str) -> None:
        """Discard a multipart upload and its uploaded parts."""

    @abstractmethod
    async def head_object(self, key: str) -> int:
        """Return the size of an object in bytes."""

    @abstractmethod
    async def get_object(self, key: str) -> ReadableBody:
        """Open an object for streaming reads."""

    @abstractmethod
    async def list_multipart_sessions(
        self, prefix: str = "", max_results: int = 0
    ) -> list[MultipartSessionInfo]:
        """List unfinished multipart uploads, all of them when max_results is 0."""

    @abstractmethod
    async def list_objects(
        self, prefix: str = "", max_keys: int = 1000
    ) -> list[ObjectInfo]:
        """List objects under a prefix."""

    @abstractmethod
    async def delete_object(self, key: str) -> None:
        """Delete an object."""

    async def close(self) -> None:
        """Release resources held by the backend."""
