"""Pydantic models for streamup transfer configuration."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field

from streamup.checksum import ChecksumAlgorithm
from streamup.const import (
    DEFAULT_CHECKSUM_ALGORITHM,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_RETRY_DELAY_MS,
    DEFAULT_QUEUE_DEPTH,
    DEFAULT_REGION,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_RETRY_MULTIPLIER,
    DEFAULT_WORKERS,
    R2_ENDPOINT_TEMPLATE,
    R2_REGION,
)
from streamup.content_type import detect_content_type
from streamup.exceptions import SizeLimitExceededError, ValidationError
from streamup.limits import ServiceLimits
from streamup.retry import RetryPolicy
from streamup.validation import validate_metadata

ProgressCallback = Callable[[int, int], Any]
DownloadProgressCallback = Callable[[int], Any]


class StorageConfig(BaseModel):
    """Connection settings for an S3-compatible service.

    Attributes:
        access_key_id: access key ID used to sign requests.
        secret_access_key: secret access key used to sign requests.
        bucket: name of the bucket to operate on.
        account_id: Cloudflare R2 account ID, selects the R2 endpoint.
        endpoint: custom endpoint, with or without scheme.
        region: signing region, ``auto`` for R2 and ``us-east-1`` otherwise.
    """

    access_key_id: str | None = None
    secret_access_key: str | None = None
    bucket: str | None = None
    account_id: str | None = None
    endpoint: str | None = None
    region: str | None = None

    def resolved_region(self) -> str:
        """Region to sign requests for."""
        if self.region:
            return self.region
        return R2_REGION if self.account_id else DEFAULT_REGION

    def resolved_endpoint(self) -> str | None:
        """Endpoint URL, or None to let the SDK pick the AWS endpoint."""
        if self.endpoint:
            if "://" not in self.endpoint:
                return f"https://{self.endpoint}"
            return self.endpoint
        if self.account_id:
            return R2_ENDPOINT_TEMPLATE.format(account_id=self.account_id)
        return None

    def ensure_credentials(self) -> None:
        """Check that credentials and bucket are present.

        Raises:
            ValidationError: If any of them is missing.
        """
        if not self.access_key_id:
            raise ValidationError(
                "access_key_id", "S3_ACCESS_KEY_ID or --access-key is required"
            )
        if not self.secret_access_key:
            raise ValidationError(
                "secret_access_key", "S3_SECRET_ACCESS_KEY or --secret-key is required"
            )
        if not self.bucket:
            raise ValidationError("bucket", "S3_BUCKET or --bucket is required")

    def storage_settings(self) -> StorageConfig:
        """Only the connection part of this configuration."""
        return StorageConfig(
            **self.model_dump(include=set(StorageConfig.model_fields.keys()))
        )


class UploadConfig(StorageConfig):
    """Settings of a single streaming upload.

    Attributes:
        key: object key to upload to.
        total_size: exact number of bytes the source will deliver.
        workers: number of concurrent part uploads.
        queue_depth: capacity of the part queue between reader and workers.
        max_memory_mb: memory budget for part buffers in MiB, 0 for none.
        limits: multipart limits of the target service.
        max_retries: retries per part after the first attempt.
        retry_delay_ms: delay before the first retry.
        max_retry_delay_ms: ceiling for a single retry delay.
        retry_multiplier: backoff growth factor.
        content_type: MIME type, detected from the key when empty.
        content_disposition: Content-Disposition header.
        content_encoding: Content-Encoding header.
        content_language: Content-Language header.
        cache_control: Cache-Control header.
        metadata: custom object metadata.
        calculate_checksum: whether to hash the source while uploading.
        checksum_algorithm: ``md5`` or ``sha256``.
        progress_callback: called with cumulative (bytes, parts) after each part.
    """

    key: str = ""
    total_size: int = 0
    workers: int = DEFAULT_WORKERS
    queue_depth: int = DEFAULT_QUEUE_DEPTH
    max_memory_mb: int = 0
    limits: ServiceLimits = Field(default_factory=ServiceLimits)
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    max_retry_delay_ms: int = DEFAULT_MAX_RETRY_DELAY_MS
    retry_multiplier: int = DEFAULT_RETRY_MULTIPLIER
    content_type: str | None = None
    content_disposition: str | None = None
    content_encoding: str | None = None
    content_language: str | None = None
    cache_control: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    calculate_checksum: bool = True
    checksum_algorithm: str = DEFAULT_CHECKSUM_ALGORITHM
    progress_callback: ProgressCallback | None = None

    def ensure_valid(self) -> UploadConfig:
        """Validate the configuration and fill in defaults.

        Non-positive tuning values fall back to their defaults and the content
        type is detected from the key when not given.

        Returns:
            A normalized copy of this configuration.

        Raises:
            ValidationError: If a required value is missing or invalid.
            SizeLimitExceededError: If ``total_size`` exceeds the service limits.
        """
        self.ensure_credentials()
        if not self.key:
            raise ValidationError("key", "required")
        if self.total_size <= 0:
            raise ValidationError("total_size", "must be greater than 0")

        algorithm = (self.checksum_algorithm or DEFAULT_CHECKSUM_ALGORITHM).lower()
        if algorithm not in {a.value for a in ChecksumAlgorithm}:
            raise ValidationError("checksum_algorithm", "must be 'md5' or 'sha256'")

        self.limits.ensure_valid()
        if self.total_size > self.limits.max_object_size:
            raise SizeLimitExceededError(
                "total_size",
                f"exceeds service limit of {self.limits.max_object_size} bytes "
                f"({self.limits.max_object_size // 1024**3} GB)",
            )

        for name, value in self.metadata.items():
            validate_metadata(name, value)

        if self.max_memory_mb < 0:
            raise ValidationError("max_memory_mb", "must not be negative")

        return self.model_copy(
            update={
                "workers": self.workers if self.workers > 0 else DEFAULT_WORKERS,
                "queue_depth": (
                    self.queue_depth if self.queue_depth > 0 else DEFAULT_QUEUE_DEPTH
                ),
                "max_retries": (
                    self.max_retries if self.max_retries >= 0 else DEFAULT_MAX_RETRIES
                ),
                "retry_delay_ms": (
                    self.retry_delay_ms
                    if self.retry_delay_ms > 0
                    else DEFAULT_RETRY_DELAY_MS
                ),
                "max_retry_delay_ms": (
                    self.max_retry_delay_ms
                    if self.max_retry_delay_ms > 0
                    else DEFAULT_MAX_RETRY_DELAY_MS
                ),
                "retry_multiplier": (
                    self.retry_multiplier
                    if self.retry_multiplier > 0
                    else DEFAULT_RETRY_MULTIPLIER
                ),
                "checksum_algorithm": algorithm,
                "content_type": self.content_type or detect_content_type(self.key),
            }
        )

    def retry_policy(self) -> RetryPolicy:
        """Retry policy described by this configuration."""
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay_ms=self.retry_delay_ms,
            max_delay_ms=self.max_retry_delay_ms,
            multiplier=self.retry_multiplier,
        )

    def object_headers(self) -> dict[str, str]:
        """Standard object headers to set when the upload begins."""
        headers = {
            "ContentDisposition": self.content_disposition,
            "ContentEncoding": self.content_encoding,
            "ContentLanguage": self.content_language,
            "CacheControl": self.cache_control,
        }
        return {name: value for name, value in headers.items() if value}


class DownloadConfig(StorageConfig):
    """Settings of a single streaming download.

    Attributes:
        key: object key to download.
        calculate_checksum: whether to hash the bytes while streaming.
        checksum_algorithm: ``md5`` or ``sha256``.
        read_size: bytes requested per read from the response body.
        progress_callback: called with the cumulative byte count after each read.
    """

    key: str = ""
    calculate_checksum: bool = False
    checksum_algorithm: str = DEFAULT_CHECKSUM_ALGORITHM
    read_size: int = 1024 * 1024
    progress_callback: DownloadProgressCallback | None = None

    def ensure_valid(self) -> DownloadConfig:
        """Validate the configuration and return a normalized copy.

        Raises:
            ValidationError: If a required value is missing or invalid.
        """
        self.ensure_credentials()
        if not self.key:
            raise ValidationError("key", "required")
        algorithm = (self.checksum_algorithm or DEFAULT_CHECKSUM_ALGORITHM).lower()
        if algorithm not in {a.value for a in ChecksumAlgorithm}:
            raise ValidationError("checksum_algorithm", "must be 'md5' or 'sha256'")
        if self.read_size <= 0:
            raise ValidationError("read_size", "must be greater than 0")
        return self.model_copy(update={"checksum_algorithm": algorithm})
