"""Producer / worker pool / collector pipeline behind a multipart upload.

One producer reads the source in part-sized chunks and feeds a bounded queue,
``workers`` coroutines upload chunks concurrently, and one collector gathers
their results. The queue capacities bound memory to
``part_size * (workers + queue_depth)`` plus the chunk being read.

Blocking reads run on a thread pool; everything else runs on the event loop,
so the progress counters need no locking.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from concurrent.futures import Executor
from typing import Any, BinaryIO

from streamup.backend.base import StorageBackend
from streamup.calculator import calculate_part_count
from streamup.checksum import ChecksumAccumulator
from streamup.exceptions import SourceError, UploadCancelledError, UploadError
from streamup.models import Chunk, ChunkResult, SessionState, UploadProgress
from streamup.retry import RetryPolicy
from streamup.sampled_logger import make_sampled_logger

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Any]

# Closes the chunk queue (one per worker) and the result queue (one per worker).
_END = None

log_part_uploaded = make_sampled_logger(
    "Uploaded part %d/%d (%d bytes)", target_logger=logger
)


def read_fully(stream: BinaryIO, size: int) -> bytes | bytearray:
    """Read exactly ``size`` bytes unless the stream ends first.

    Streams may return fewer bytes than asked for without being at the end,
    so reads are repeated until the buffer is full or ``b""`` comes back.
    A complete first read is returned as is; short reads are accumulated in
    one growing buffer which is returned without a further copy.
    """
    data = stream.read(size)
    if not data or len(data) >= size:
        return data
    buffer = bytearray(data)
    while len(buffer) < size:
        data = stream.read(size - len(buffer))
        if not data:
            break
        buffer += data
    return buffer


class ErrorSlot:
    """Holds the first error of a session; later errors are dropped."""

    def __init__(self) -> None:
        """Initialize an empty slot."""
        self._error: BaseException | None = None

    @property
    def error(self) -> BaseException | None:
        """The first error recorded, if any."""
        return self._error

    def is_set(self) -> bool:
        """Whether an error was recorded."""
        return self._error is not None

    def set(self, error: BaseException) -> bool:
        """Record ``error`` unless the slot is taken.

        Returns:
            True when ``error`` became the session error.
        """
        if self._error is not None:
            logger.debug(f"Discarding subsequent error: {error}")
            return False
        self._error = error
        return True


class UploadSession:
    """Runtime state of one multipart upload.

    Mutated only from the event loop thread, apart from the checksum
    accumulator which the reader thread feeds.
    """

    def __init__(
        self,
        key: str,
        upload_id: str,
        total_size: int,
        chunk_size: int,
        checksum: ChecksumAccumulator | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            key: Object key being uploaded.
            upload_id: Remote multipart upload ID.
            total_size: Expected number of source bytes.
            chunk_size: Size of every part except possibly the last.
            checksum: Accumulator fed with the source bytes, if enabled.
        """
        self.key = key
        self.upload_id = upload_id
        self.total_size = total_size
        self.chunk_size = chunk_size
        self.total_chunks = calculate_part_count(total_size, chunk_size)
        self.checksum = checksum
        self.state = SessionState.CREATED
        self.bytes_completed = 0
        self.chunks_completed = 0
        self.bytes_read = 0
        self.errors = ErrorSlot()
        self.cancel_event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        """Whether the pipeline has been told to stop."""
        return self.cancel_event.is_set()

    def fail(self, error: BaseException) -> bool:
        """Record ``error`` as the session error and stop the pipeline.

        Returns:
            True when ``error`` is the first error of the session.
        """
        first = self.errors.set(error)
        self.cancel_event.set()
        return first

    def record_chunk(self, size: int) -> UploadProgress:
        """Count one uploaded chunk and return the cumulative progress."""
        self.bytes_completed += size
        self.chunks_completed += 1
        return self.progress()

    def progress(self) -> UploadProgress:
        """Current cumulative progress."""
        return UploadProgress(
            bytes_completed=self.bytes_completed,
            chunks_completed=self.chunks_completed,
            total_bytes=self.total_size,
            total_chunks=self.total_chunks,
        )


class UploadPipeline:
    """Runs one producer, a bounded worker pool and a collector for a session."""

    def __init__(
        self,
        backend: StorageBackend,
        session: UploadSession,
        retry_policy: RetryPolicy,
        workers: int,
        queue_depth: int,
        progress_callback: ProgressCallback | None = None,
        executor: Executor | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            backend: Storage backend receiving the parts.
            session: Session being uploaded.
            retry_policy: Policy applied to each part.
            workers: Number of concurrent part uploads.
            queue_depth: Capacity of the chunk queue.
            progress_callback: Called with cumulative (bytes, parts) after each
                uploaded part. Coroutine functions are scheduled on the loop.
            executor: Executor for blocking source reads, default loop executor
                when None.
        """
        self._backend = backend
        self._session = session
        self._retry_policy = retry_policy
        self._workers = workers
        self._queue_depth = queue_depth
        self._progress_callback = progress_callback
        self._executor = executor
        self._callback_tasks: set[asyncio.Task] = set()

    async def run(self, stream: BinaryIO) -> list[ChunkResult]:
        """Upload ``stream`` part by part.

        Returns:
            Successful results sorted by sequence number. When the session
            error slot is set afterwards the list is incomplete and must not
            be used to complete the upload.
        """
        chunk_queue: asyncio.Queue[Chunk | None] = asyncio.Queue(
            maxsize=self._queue_depth
        )
        result_queue: asyncio.Queue[ChunkResult | None] = asyncio.Queue(
            maxsize=self._workers
        )

        collector = asyncio.create_task(self._collect(result_queue))
        workers = [
            asyncio.create_task(self._work(worker_id, chunk_queue, result_queue))
            for worker_id in range(self._workers)
        ]
        producer = asyncio.create_task(self._produce(stream, chunk_queue))
        tasks = [producer, *workers, collector]

        try:
            await producer
            await asyncio.gather(*workers)
            results = await collector
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if self._callback_tasks:
            await asyncio.gather(*self._callback_tasks, return_exceptions=True)
        return results

    def _read_chunk(self, stream: BinaryIO, size: int) -> bytes | bytearray:
        data = read_fully(stream, size)
        if data and self._session.checksum is not None:
            self._session.checksum.update(data)
        return data

    async def _produce(
        self, stream: BinaryIO, chunk_queue: asyncio.Queue[Chunk | None]
    ) -> None:
        session = self._session
        loop = asyncio.get_running_loop()
        sequence = 0
        try:
            while sequence < session.total_chunks and not session.cancelled:
                remaining = session.total_size - session.bytes_read
                wanted = min(session.chunk_size, remaining)
                try:
                    data = await loop.run_in_executor(
                        self._executor, self._read_chunk, stream, wanted
                    )
                except Exception as exc:
                    logger.error(f"Reading source failed after part {sequence}: {exc}")
                    session.fail(UploadError("reading data", exc))
                    break
                session.bytes_read += len(data)
                if len(data) < wanted:
                    self._fail_size_mismatch(
                        f"source ended after {session.bytes_read} of "
                        f"{session.total_size} bytes"
                    )
                    break

                sequence += 1
                if not await self._publish(chunk_queue, Chunk(sequence, data)):
                    break
            else:
                if not session.cancelled:
                    await self._check_source_exhausted(stream)
        finally:
            for _ in range(self._workers):
                await chunk_queue.put(_END)
            logger.debug(f"Producer finished after {sequence} parts")

    async def _check_source_exhausted(self, stream: BinaryIO) -> None:
        """Fail the session if the source holds more than the declared size."""
        loop = asyncio.get_running_loop()
        try:
            extra = await loop.run_in_executor(self._executor, stream.read, 1)
        except Exception as exc:
            self._session.fail(UploadError("reading data", exc))
            return
        if extra:
            self._fail_size_mismatch(
                f"source is longer than the declared {self._session.total_size} bytes"
            )

    def _fail_size_mismatch(self, message: str) -> None:
        logger.error(f"Upload of {self._session.key} stopped: {message}")
        self._session.fail(UploadError("reading data", SourceError(message)))

    async def _publish(
        self, chunk_queue: asyncio.Queue[Chunk | None], chunk: Chunk
    ) -> bool:
        """Put ``chunk`` on the queue unless the session is cancelled first."""
        if self._session.cancelled:
            return False
        put = asyncio.ensure_future(chunk_queue.put(chunk))
        cancelled = asyncio.ensure_future(self._session.cancel_event.wait())
        try:
            await asyncio.wait({put, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
        if put.done():
            return True
        put.cancel()
        return False

    async def _work(
        self,
        worker_id: int,
        chunk_queue: asyncio.Queue[Chunk | None],
        result_queue: asyncio.Queue[ChunkResult | None],
    ) -> None:
        session = self._session
        try:
            while True:
                chunk = await chunk_queue.get()
                if chunk is _END:
                    break
                result = await self._upload_chunk(chunk)
                del chunk
                await result_queue.put(result)
        finally:
            await result_queue.put(_END)
            logger.debug(f"Worker {worker_id} finished for {session.upload_id}")

    async def _upload_chunk(self, chunk: Chunk) -> ChunkResult:
        session = self._session
        sequence, size = chunk.sequence, chunk.size
        if session.cancelled:
            return ChunkResult(sequence, size, error=UploadCancelledError())

        data = chunk.data

        async def attempt() -> str:
            return await self._backend.upload_part(
                session.key, session.upload_id, sequence, data
            )

        try:
            etag = await self._retry_policy.run(
                attempt, session.cancel_event, f"Upload of part {sequence}"
            )
        except Exception as exc:
            return ChunkResult(sequence, size, error=exc)

        progress = session.record_chunk(size)
        log_part_uploaded(sequence, session.total_chunks, size)
        self._report_progress(progress)
        return ChunkResult(sequence, size, etag=etag)

    def _report_progress(self, progress: UploadProgress) -> None:
        if self._progress_callback is None:
            return
        try:
            outcome = self._progress_callback(
                progress.bytes_completed, progress.chunks_completed
            )
        except Exception as exc:
            logger.warning(f"Progress callback failed: {exc}")
            return
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(self._await_callback(outcome))
            self._callback_tasks.add(task)
            task.add_done_callback(self._callback_tasks.discard)

    async def _await_callback(self, outcome: Awaitable[Any]) -> None:
        try:
            await outcome
        except Exception as exc:
            logger.warning(f"Progress callback failed: {exc}")

    async def _collect(
        self, result_queue: asyncio.Queue[ChunkResult | None]
    ) -> list[ChunkResult]:
        session = self._session
        results: list[ChunkResult] = []
        open_workers = self._workers
        while open_workers:
            result = await result_queue.get()
            if result is _END:
                open_workers -= 1
                continue
            if result.error is None:
                results.append(result)
                continue
            if isinstance(result.error, UploadCancelledError):
                error: UploadError = UploadCancelledError(
                    f"uploading part {result.sequence}"
                )
            else:
                error = UploadError(f"uploading part {result.sequence}", result.error)
            if session.fail(error):
                logger.error(f"Upload of {session.key} failed: {error}")

        results.sort(key=lambda result: result.sequence)
        return results
