"""Streaming multipart uploads to S3-compatible object storage."""

__version__ = "1.0.0"

from .calculator import calculate_part_size  # noqa: E402
from .checksum import ChecksumAccumulator, ChecksumAlgorithm  # noqa: E402
from .config.settings import DownloadConfig, StorageConfig, UploadConfig  # noqa: E402
from .downloader import Downloader  # noqa: E402
from .exceptions import (  # noqa: E402
    DownloadError,
    SizeLimitExceededError,
    SourceError,
    StreamupError,
    UploadCancelledError,
    UploadError,
    ValidationError,
)
from .housekeeping import (  # noqa: E402
    cleanup_incomplete_uploads,
    list_incomplete_uploads,
    list_objects,
)
from .limits import ServiceLimits  # noqa: E402
from .upload.uploader import Uploader  # noqa: E402

__all__ = [
    "ChecksumAccumulator",
    "ChecksumAlgorithm",
    "DownloadConfig",
    "DownloadError",
    "Downloader",
    "ServiceLimits",
    "SizeLimitExceededError",
    "SourceError",
    "StorageConfig",
    "StreamupError",
    "UploadCancelledError",
    "UploadConfig",
    "UploadError",
    "Uploader",
    "ValidationError",
    "calculate_part_size",
    "cleanup_incomplete_uploads",
    "list_incomplete_uploads",
    "list_objects",
]
