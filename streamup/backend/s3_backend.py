"""boto3 implementation of the storage backend for S3-compatible services."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, TypeVar

import boto3
from botocore.config import Config

from streamup.backend.base import ReadableBody, StorageBackend
from streamup.config.settings import StorageConfig
from streamup.const import DEFAULT_WORKERS
from streamup.models import CompletedPart, MultipartSessionInfo, ObjectInfo
from streamup.version import BuildInfo

logger = logging.getLogger(__name__)

T = TypeVar("T")

LIST_PAGE_SIZE = 1000


def build_client_config(
    build_info: BuildInfo, max_pool_connections: int, path_style: bool
) -> Config:
    """botocore client settings for streaming transfers.

    botocore's own retries are disabled; the retry policy owns retries.
    """
    return Config(
        user_agent_extra=build_info.user_agent(),
        retries={"max_attempts": 1, "mode": "standard"},
        max_pool_connections=max_pool_connections,
        signature_version="s3v4",
        s3={"addressing_style": "path" if path_style else "auto"},
    )


def create_s3_client(
    config: StorageConfig,
    build_info: BuildInfo | None = None,
    max_pool_connections: int = DEFAULT_WORKERS,
) -> Any:
    """Create a boto3 S3 client for the configured service.

    Args:
        config: Connection settings.
        build_info: Build identity used for the user agent.
        max_pool_connections: HTTP connection pool size.

    Returns:
        A boto3 S3 client.
    """
    endpoint = config.resolved_endpoint()
    path_style = endpoint is not None
    return boto3.client(
        "s3",
        endpoint_url=endpoint,
        aws_access_key_id=config.access_key_id,
        aws_secret_access_key=config.secret_access_key,
        region_name=config.resolved_region(),
        config=build_client_config(
            build_info or BuildInfo(), max_pool_connections, path_style
        ),
    )


class S3Backend(StorageBackend):
    """Storage backend talking to S3 through boto3.

    boto3 is blocking, so every call runs on a private thread pool sized to
    the number of concurrent part uploads.
    """

    def __init__(
        self,
        config: StorageConfig,
        build_info: BuildInfo | None = None,
        workers: int = DEFAULT_WORKERS,
        client: Any | None = None,
    ) -> None:
        """Initialize the backend.

        Args:
            config: Connection settings, including the bucket.
            build_info: Build identity used for the user agent.
            workers: Number of concurrent part uploads to size pools for.
            client: Pre-built boto3 client, mainly for tests.
        """
        config.ensure_credentials()
        self.bucket = str(config.bucket)
        pool_size = max(workers, DEFAULT_WORKERS)
        self._client = client or create_s3_client(config, build_info, pool_size)
        self._executor = ThreadPoolExecutor(
            max_workers=pool_size + 2, thread_name_prefix="streamup-s3"
        )
        logger.debug(
            "S3 backend ready for bucket %s (endpoint %s, region %s)",
            self.bucket,
            config.resolved_endpoint() or "aws",
            config.resolved_region(),
        )

    @property
    def client(self) -> Any:
        """The underlying boto3 client."""
        return self._client

    async def _call(self, func: Callable[..., T], **kwargs: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(func, **kwargs))

    async def begin_multipart(
        self,
        key: str,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> str:
        """Start a multipart upload and return its upload ID."""
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        if content_type:
            params["ContentType"] = content_type
        if metadata:
            params["Metadata"] = dict(metadata)
        params.update(headers or {})

        response = await self._call(self._client.create_multipart_upload, **params)
        upload_id = response["UploadId"]
        logger.info(f"Started multipart upload {upload_id} for {key}")
        return upload_id

    async def upload_part(
        self, key: str, upload_id: str, part_number: int, data: bytes | bytearray
    ) -> str:
        """Upload one part and return its ETag."""
        response = await self._call(
            self._client.upload_part,
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
            PartNumber=part_number,
            Body=data,
        )
        return response["ETag"]

    async def complete_multipart(
        self, key: str, upload_id: str, parts: list[CompletedPart]
    ) -> None:
        """Assemble the uploaded parts, given in ascending part order."""
        await self._call(
            self._client.complete_multipart_upload,
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
            MultipartUpload={
                "Parts": [
                    {"PartNumber": part.part_number, "ETag": part.etag}
                    for part in parts
                ]
            },
        )
        logger.info(f"Completed multipart upload {upload_id} with {len(parts)} parts")

    async def abort_multipart(self, key: str, upload_id: str) -> None:
        """Discard a multipart upload and its uploaded parts."""
        await self._call(
            self._client.abort_multipart_upload,
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
        )
        logger.info(f"Aborted multipart upload {upload_id} for {key}")

    async def head_object(self, key: str) -> int:
        """Return the size of an object in bytes."""
        response = await self._call(
            self._client.head_object, Bucket=self.bucket, Key=key
        )
        return int(response["ContentLength"])

    async def get_object(self, key: str) -> ReadableBody:
        """Open an object for streaming reads."""
        response = await self._call(
            self._client.get_object, Bucket=self.bucket, Key=key
        )
        return response["Body"]

    async def list_multipart_sessions(
        self, prefix: str = "", max_results: int = 0
    ) -> list[MultipartSessionInfo]:
        """List unfinished multipart uploads, all of them when max_results is 0."""
        sessions: list[MultipartSessionInfo] = []
        params: dict[str, Any] = {"Bucket": self.bucket}
        if prefix:
            params["Prefix"] = prefix

        while True:
            if max_results > 0:
                params["MaxUploads"] = min(LIST_PAGE_SIZE, max_results - len(sessions))
            response = await self._call(self._client.list_multipart_uploads, **params)

            for upload in response.get("Uploads", []):
                sessions.append(
                    MultipartSessionInfo(
                        key=upload["Key"],
                        upload_id=upload["UploadId"],
                        initiated=upload["Initiated"],
                        storage_class=upload.get("StorageClass"),
                    )
                )
                if 0 < max_results <= len(sessions):
                    return sessions

            if not response.get("IsTruncated"):
                return sessions
            params["KeyMarker"] = response.get("NextKeyMarker")
            params["UploadIdMarker"] = response.get("NextUploadIdMarker")

    async def list_objects(
        self, prefix: str = "", max_keys: int = 1000
    ) -> list[ObjectInfo]:
        """List objects under a prefix, at most ``max_keys`` of them."""
        objects: list[ObjectInfo] = []
        params: dict[str, Any] = {"Bucket": self.bucket}
        if prefix:
            params["Prefix"] = prefix

        while True:
            params["MaxKeys"] = min(LIST_PAGE_SIZE, max_keys - len(objects))
            response = await self._call(self._client.list_objects_v2, **params)

            for item in response.get("Contents", []):
                objects.append(
                    ObjectInfo(
                        key=item["Key"],
                        size=int(item["Size"]),
                        last_modified=item["LastModified"],
                    )
                )
                if len(objects) >= max_keys:
                    return objects

            if not response.get("IsTruncated"):
                return objects
            params["ContinuationToken"] = response["NextContinuationToken"]

    async def delete_object(self, key: str) -> None:
        """Delete an object."""
        await self._call(self._client.delete_object, Bucket=self.bucket, Key=key)
        logger.info(f"Deleted {key}")

    async def close(self) -> None:
        """Shut down the thread pool."""
        self._executor.shutdown(wait=False)
