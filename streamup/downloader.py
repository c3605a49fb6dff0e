"""Streaming object download."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, BinaryIO

from streamup.backend.base import StorageBackend
from streamup.backend.s3_backend import S3Backend
from streamup.checksum import ChecksumAccumulator
from streamup.config.settings import DownloadConfig
from streamup.exceptions import DownloadError
from streamup.version import BuildInfo

logger = logging.getLogger(__name__)


class Downloader:
    """Streams one object into a writable sink in fixed-size reads.

    There is no chunking, pooling or retry: the object is read sequentially
    and each read is written to the sink before the next one is requested.
    """

    def __init__(
        self,
        config: DownloadConfig,
        backend: StorageBackend | None = None,
        build_info: BuildInfo | None = None,
    ) -> None:
        """Initialize the downloader.

        Args:
            config: Download settings.
            backend: Storage backend, an S3Backend built from ``config`` when None.
            build_info: Build identity used for the S3 user agent.

        Raises:
            ValidationError: If the configuration is invalid.
        """
        self.config = config.ensure_valid()
        if backend is None:
            backend = S3Backend(self.config, build_info, workers=1)
            self._owns_backend = True
        else:
            self._owns_backend = False
        self._backend = backend
        self._checksum: ChecksumAccumulator | None = None
        self.bytes_downloaded = 0

    @property
    def checksum(self) -> str | None:
        """Hex digest of the downloaded bytes once the download finished."""
        if self._checksum is None:
            return None
        return self._checksum.hexdigest

    async def get_size(self) -> int:
        """Size of the object in bytes.

        Raises:
            DownloadError: If the object cannot be inspected.
        """
        try:
            return await self._backend.head_object(self.config.key)
        except Exception as exc:
            raise DownloadError(
                f"failed to get size of {self.config.key}: {exc}"
            ) from exc

    async def download(self, sink: BinaryIO) -> int:
        """Stream the object into ``sink``.

        Each read is written to the sink, then hashed, then reported to the
        progress callback with the cumulative byte count.

        Args:
            sink: Writable binary file-like object.

        Returns:
            Number of bytes written.

        Raises:
            DownloadError: If the object cannot be read or written, or the
                byte count differs from the object size.
        """
        config = self.config
        expected = await self.get_size()
        if config.calculate_checksum:
            self._checksum = ChecksumAccumulator(config.checksum_algorithm)

        try:
            body = await self._backend.get_object(config.key)
        except Exception as exc:
            raise DownloadError(f"failed to open {config.key}: {exc}") from exc

        loop = asyncio.get_running_loop()
        self.bytes_downloaded = 0
        try:
            while True:
                data = await loop.run_in_executor(None, body.read, config.read_size)
                if not data:
                    break
                await loop.run_in_executor(None, sink.write, data)
                if self._checksum is not None:
                    self._checksum.update(data)
                self.bytes_downloaded += len(data)
                await self._report_progress(self.bytes_downloaded)
        except Exception as exc:
            raise DownloadError(
                f"download of {config.key} failed after "
                f"{self.bytes_downloaded} bytes: {exc}"
            ) from exc
        finally:
            body.close()

        if self.bytes_downloaded != expected:
            raise DownloadError(
                f"download of {config.key} incomplete: got {self.bytes_downloaded} "
                f"of {expected} bytes"
            )

        if self._checksum is not None:
            digest = self._checksum.finalize()
            logger.info(
                f"Downloaded {config.key} ({self.bytes_downloaded} bytes, "
                f"{self._checksum.algorithm.value} {digest})"
            )
        else:
            logger.info(f"Downloaded {config.key} ({self.bytes_downloaded} bytes)")
        return self.bytes_downloaded

    async def _report_progress(self, downloaded: int) -> None:
        callback = self.config.progress_callback
        if callback is None:
            return
        try:
            outcome: Any = callback(downloaded)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.warning(f"Progress callback failed: {exc}")

    async def close(self) -> None:
        """Release the backend when this downloader created it."""
        if self._owns_backend:
            await self._backend.close()

    async def __aenter__(self) -> Downloader:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
