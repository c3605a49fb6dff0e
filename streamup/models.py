"""Models shared by the upload pipeline, the backends and the CLI."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class SessionState(str, Enum):
    """Lifecycle states of a multipart upload session.

    State transitions:
    - CREATED -> UPLOADING -> COMPLETING -> DONE
    - UPLOADING -> ABORTED (chunk failure or cancellation)
    - COMPLETING -> ABORTED (complete call failed)
    """

    CREATED = "created"
    UPLOADING = "uploading"
    COMPLETING = "completing"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class Chunk:
    """One contiguous slice of the input, numbered from 1."""

    sequence: int
    data: bytes | bytearray

    @property
    def size(self) -> int:
        """Number of bytes in this chunk."""
        return len(self.data)


@dataclass(frozen=True)
class ChunkResult:
    """Outcome of uploading a single chunk."""

    sequence: int
    size: int
    etag: str | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        """True when the chunk was stored remotely."""
        return self.error is None


@dataclass(frozen=True)
class CompletedPart:
    """Part reference sent with the complete-multipart call."""

    part_number: int
    etag: str


@dataclass(frozen=True)
class UploadProgress:
    """Cumulative progress of a transfer."""

    bytes_completed: int = 0
    chunks_completed: int = 0
    total_bytes: int = 0
    total_chunks: int = 0

    @property
    def fraction(self) -> float:
        """Completed share of the total bytes, 1.0 for empty inputs."""
        if self.total_bytes <= 0:
            return 1.0
        return self.bytes_completed / self.total_bytes


@dataclass(frozen=True)
class MultipartSessionInfo:
    """A multipart upload that was started remotely and not yet finished."""

    key: str
    upload_id: str
    initiated: datetime
    storage_class: str | None = None


@dataclass(frozen=True)
class ObjectInfo:
    """An entry of an object listing."""

    key: str
    size: int
    last_modified: datetime


@dataclass
class CleanupResult:
    """Summary of an incomplete-upload cleanup run."""

    total_found: int = 0
    total_aborted: int = 0
    errors: list[str] = field(default_factory=list)
    sessions: list[MultipartSessionInfo] = field(default_factory=list)
