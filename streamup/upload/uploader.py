"""Session controller for streaming multipart uploads."""

from __future__ import annotations

import asyncio
import logging
from typing import BinaryIO, NoReturn

from streamup.backend.base import StorageBackend
from streamup.backend.s3_backend import S3Backend
from streamup.calculator import (
    calculate_memory_usage,
    calculate_part_count,
    calculate_part_size,
)
from streamup.checksum import ChecksumAccumulator
from streamup.config.settings import UploadConfig
from streamup.const import BYTES_PER_MIB
from streamup.exceptions import UploadCancelledError, UploadError
from streamup.models import CompletedPart, SessionState, UploadProgress
from streamup.upload.pipeline import UploadPipeline, UploadSession
from streamup.version import BuildInfo

logger = logging.getLogger(__name__)


class Uploader:
    """Streams one input into one object using a multipart upload.

    An Uploader is single-use: create it with a validated configuration, call
    ``upload`` once, then read ``checksum`` and ``progress``. ``cancel`` may be
    called from any thread while the upload runs.
    """

    def __init__(
        self,
        config: UploadConfig,
        backend: StorageBackend | None = None,
        build_info: BuildInfo | None = None,
    ) -> None:
        """Validate the configuration and choose the part size.

        Args:
            config: Upload settings; validated before anything else happens.
            backend: Storage backend, an S3Backend built from ``config`` when None.
            build_info: Build identity used for the S3 user agent.

        Raises:
            ValidationError: If the configuration is invalid.
            SizeLimitExceededError: If the input is too large for the limits.
        """
        self.config = config.ensure_valid()
        self.part_size = calculate_part_size(
            self.config.total_size,
            self.config.max_memory_mb,
            self.config.workers,
            self.config.queue_depth,
            self.config.limits,
        )
        self.total_parts = calculate_part_count(self.config.total_size, self.part_size)

        if backend is None:
            backend = S3Backend(self.config, build_info, workers=self.config.workers)
            self._owns_backend = True
        else:
            self._owns_backend = False
        self._backend = backend

        self._session: UploadSession | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._finished: asyncio.Event | None = None
        self._cancel_requested = False
        self._abort_attempted = False
        self._started = False

    @property
    def state(self) -> SessionState:
        """Current session state, CREATED before the upload starts."""
        if self._session is None:
            return SessionState.CREATED
        return self._session.state

    @property
    def upload_id(self) -> str | None:
        """Remote multipart upload ID once the upload has begun."""
        return self._session.upload_id if self._session is not None else None

    @property
    def checksum(self) -> str | None:
        """Hex digest of the uploaded bytes, only once the upload is done."""
        if self._session is None or self._session.checksum is None:
            return None
        if self._session.state is not SessionState.DONE:
            return None
        return self._session.checksum.hexdigest

    @property
    def progress(self) -> UploadProgress:
        """Cumulative bytes and parts uploaded so far."""
        if self._session is None:
            return UploadProgress(
                total_bytes=self.config.total_size, total_chunks=self.total_parts
            )
        return self._session.progress()

    def memory_usage(self) -> int:
        """Peak bytes of part buffers held by the pipeline."""
        return calculate_memory_usage(
            self.part_size, self.config.workers, self.config.queue_depth
        )

    async def upload(self, stream: BinaryIO) -> None:
        """Upload ``stream`` and complete the object.

        Args:
            stream: Blocking readable delivering ``config.total_size`` bytes.

        Raises:
            UploadCancelledError: If the upload was cancelled.
            UploadError: If a part, the begin call or the complete call failed.
                The remote session has been aborted.
            RuntimeError: If called more than once.
        """
        if self._started:
            raise RuntimeError("Uploader instances are single-use")
        self._started = True
        self._loop = asyncio.get_running_loop()
        self._finished = asyncio.Event()
        try:
            await self._upload(stream)
        finally:
            self._finished.set()

    async def _upload(self, stream: BinaryIO) -> None:
        config = self.config
        if self._cancel_requested:
            raise UploadCancelledError("CreateMultipartUpload")

        logger.info(
            "Uploading %s: %d bytes in %d parts of %d MB "
            "(%d workers, queue %d, ~%d MB part buffers)",
            config.key,
            config.total_size,
            self.total_parts,
            self.part_size // BYTES_PER_MIB,
            config.workers,
            config.queue_depth,
            self.memory_usage() // BYTES_PER_MIB,
        )
        logger.debug(f"Service limits for {config.key}: {config.limits.describe()}")

        try:
            upload_id = await self._backend.begin_multipart(
                config.key,
                content_type=config.content_type,
                metadata=config.metadata,
                headers=config.object_headers(),
            )
        except Exception as exc:
            raise UploadError("CreateMultipartUpload", exc) from exc

        checksum = (
            ChecksumAccumulator(config.checksum_algorithm)
            if config.calculate_checksum
            else None
        )
        session = UploadSession(
            config.key, upload_id, config.total_size, self.part_size, checksum
        )
        self._session = session
        if self._cancel_requested:
            session.fail(UploadCancelledError())

        session.state = SessionState.UPLOADING
        pipeline = UploadPipeline(
            self._backend,
            session,
            config.retry_policy(),
            workers=config.workers,
            queue_depth=config.queue_depth,
            progress_callback=config.progress_callback,
        )
        try:
            results = await pipeline.run(stream)
        except asyncio.CancelledError:
            session.fail(UploadCancelledError())
            await self._abort_remote()
            raise

        if not session.errors.is_set():
            expected = list(range(1, session.total_chunks + 1))
            if [result.sequence for result in results] != expected:
                session.fail(
                    UploadError(
                        "CompleteMultipartUpload",
                        RuntimeError(
                            f"uploaded parts do not cover 1..{session.total_chunks}"
                        ),
                    )
                )

        if session.errors.is_set():
            await self._fail(session.errors.error)

        session.state = SessionState.COMPLETING
        parts = [CompletedPart(result.sequence, str(result.etag)) for result in results]
        try:
            await self._backend.complete_multipart(config.key, upload_id, parts)
        except asyncio.CancelledError:
            await self._abort_remote()
            raise
        except Exception as exc:
            session.fail(UploadError("CompleteMultipartUpload", exc))
            await self._fail(session.errors.error)

        session.state = SessionState.DONE
        if checksum is not None:
            digest = checksum.finalize()
            logger.info(
                f"Uploaded {config.key} ({config.total_size} bytes, "
                f"{len(parts)} parts, {checksum.algorithm.value} {digest})"
            )
        else:
            logger.info(
                f"Uploaded {config.key} ({config.total_size} bytes, {len(parts)} parts)"
            )

    async def _fail(self, error: BaseException | None) -> NoReturn:
        """Abort the remote session and raise the first session error."""
        abort_error = await self._abort_remote()
        if error is None:
            error = UploadError("upload", None)
        if isinstance(error, UploadError) and abort_error is not None:
            error.abort_error = abort_error
        raise error

    async def _abort_remote(self) -> BaseException | None:
        """Abort the remote multipart upload at most once.

        Returns:
            The abort failure, if the abort call itself failed.
        """
        session = self._session
        if session is None or self._abort_attempted:
            return None
        if session.state is SessionState.DONE:
            return None
        self._abort_attempted = True
        session.state = SessionState.ABORTED
        try:
            await self._backend.abort_multipart(session.key, session.upload_id)
        except Exception as exc:
            logger.error(
                f"Failed to abort multipart upload {session.upload_id}: {exc}"
            )
            return exc
        return None

    def cancel(self) -> None:
        """Ask the running upload to stop; safe to call from any thread.

        The upload then aborts the remote session and raises
        UploadCancelledError. Calling it before ``upload`` makes ``upload``
        fail immediately.
        """
        self._cancel_requested = True
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._cancel_session()
        else:
            loop.call_soon_threadsafe(self._cancel_session)

    def _cancel_session(self) -> None:
        session = self._session
        if session is None:
            return
        if session.state in (SessionState.CREATED, SessionState.UPLOADING):
            logger.info(f"Cancelling upload of {session.key}")
            session.fail(UploadCancelledError())

    async def abort(self) -> None:
        """Cancel the upload and make sure the remote session is aborted.

        While ``upload`` runs this waits for it to abort the session itself;
        otherwise the abort call is made here.
        """
        self.cancel()
        if self._finished is not None and not self._finished.is_set():
            await self._finished.wait()
            return
        abort_error = await self._abort_remote()
        if abort_error is not None:
            raise UploadError("AbortMultipartUpload", abort_error) from abort_error

    async def close(self) -> None:
        """Release the backend when this uploader created it."""
        if self._owns_backend:
            await self._backend.close()

    async def __aenter__(self) -> Uploader:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
