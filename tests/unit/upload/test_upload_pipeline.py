"""Unit tests for the producer / worker / collector pipeline."""

import asyncio
import hashlib
import io
from unittest.mock import MagicMock

import pytest

from streamup.checksum import ChecksumAccumulator
from streamup.exceptions import SourceError, UploadCancelledError, UploadError
from streamup.retry import RetryPolicy
from streamup.upload.pipeline import (
    ErrorSlot,
    UploadPipeline,
    UploadSession,
    read_fully,
)

FAST_RETRIES = RetryPolicy(max_retries=3, base_delay_ms=1, max_delay_ms=2)


class TrickleStream:
    """Returns at most ``step`` bytes per read, like a slow socket."""

    def __init__(self, data: bytes, step: int):
        self._stream = io.BytesIO(data)
        self._step = step

    def read(self, size=-1):
        return self._stream.read(min(size, self._step))


class CountingStream(io.BytesIO):
    def __init__(self, data: bytes):
        super().__init__(data)
        self.chunks_read = 0

    def read(self, size=-1):
        data = super().read(size)
        if data:
            self.chunks_read += 1
        return data


class FailingStream:
    def __init__(self, good_reads: int, chunk: bytes):
        self._good_reads = good_reads
        self._chunk = chunk

    def read(self, size=-1):
        if self._good_reads == 0:
            raise OSError("disk went away")
        self._good_reads -= 1
        return self._chunk


async def make_session(backend, data_size, chunk_size=4, checksum=True):
    upload_id = await backend.begin_multipart("data/archive.bin")
    return UploadSession(
        "data/archive.bin",
        upload_id,
        data_size,
        chunk_size,
        ChecksumAccumulator() if checksum else None,
    )


def make_pipeline(backend, session, workers=3, queue_depth=2, **kwargs):
    return UploadPipeline(
        backend,
        session,
        kwargs.pop("retry_policy", FAST_RETRIES),
        workers=workers,
        queue_depth=queue_depth,
        **kwargs,
    )


class TestReadFully:
    def test_fills_buffer_across_short_reads(self):
        assert read_fully(TrickleStream(b"abcdefghij", 3), 8) == b"abcdefgh"

    def test_returns_partial_buffer_at_end_of_stream(self):
        assert read_fully(TrickleStream(b"abc", 2), 8) == b"abc"

    def test_returns_empty_at_end_of_stream(self):
        assert read_fully(io.BytesIO(b""), 8) == b""

    def test_complete_first_read_is_not_copied(self):
        payload = b"x" * 8
        stream = MagicMock()
        stream.read.return_value = payload

        assert read_fully(stream, 8) is payload
        stream.read.assert_called_once_with(8)

    def test_short_reads_fill_a_single_buffer(self):
        data = read_fully(TrickleStream(b"abcdefgh", 3), 8)
        assert isinstance(data, bytearray)
        assert data == b"abcdefgh"


class TestErrorSlot:
    def test_keeps_only_the_first_error(self):
        slot = ErrorSlot()
        first, second = RuntimeError("first"), RuntimeError("second")

        assert slot.set(first) is True
        assert slot.set(second) is False
        assert slot.error is first
        assert slot.is_set()


class TestPipelineOrdering:
    @pytest.mark.asyncio
    async def test_results_sorted_when_parts_finish_out_of_order(self, fake_backend):
        data = b"aaaabbbbccccdd"
        fake_backend.part_delays = {1: 0.05, 2: 0.02}
        session = await make_session(fake_backend, len(data))

        results = await make_pipeline(fake_backend, session).run(io.BytesIO(data))

        finished = fake_backend.completed_order
        assert finished.index(3) < finished.index(1)
        assert [result.sequence for result in results] == [1, 2, 3, 4]
        assert [result.size for result in results] == [4, 4, 4, 2]
        assert not session.errors.is_set()

    @pytest.mark.asyncio
    async def test_parts_are_submitted_in_source_order(self, fake_backend):
        data = bytes(range(40))
        session = await make_session(fake_backend, len(data))

        await make_pipeline(fake_backend, session, workers=1).run(io.BytesIO(data))

        stored = fake_backend.sessions[session.upload_id]["parts"]
        assert fake_backend.upload_calls == list(range(1, 11))
        assert b"".join(stored[n] for n in range(1, 11)) == data

    @pytest.mark.asyncio
    async def test_checksum_follows_source_order(self, fake_backend):
        data = b"0123456789" * 7
        fake_backend.part_delays = {1: 0.03}
        session = await make_session(fake_backend, len(data), chunk_size=8)

        await make_pipeline(fake_backend, session).run(io.BytesIO(data))

        assert session.checksum.finalize() == hashlib.md5(data).hexdigest()


class TestPipelineRetries:
    @pytest.mark.asyncio
    async def test_retried_part_is_counted_once(self, fake_backend):
        data = b"x" * 16
        fake_backend.part_failures = {2: [ConnectionResetError("reset")]}
        session = await make_session(fake_backend, len(data))

        results = await make_pipeline(fake_backend, session).run(io.BytesIO(data))

        assert fake_backend.upload_calls.count(2) == 2
        assert len(results) == 4
        assert session.chunks_completed == 4
        assert session.bytes_completed == len(data)

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_the_session(self, fake_backend):
        data = b"x" * 16
        fake_backend.part_failures = {2: [RuntimeError("boom")] * 10}
        session = await make_session(fake_backend, len(data))
        policy = RetryPolicy(max_retries=1, base_delay_ms=1, max_delay_ms=1)

        results = await make_pipeline(
            fake_backend, session, retry_policy=policy
        ).run(io.BytesIO(data))

        error = session.errors.error
        assert isinstance(error, UploadError)
        assert error.operation == "uploading part 2"
        assert isinstance(error.cause, RuntimeError)
        assert 2 not in [result.sequence for result in results]
        assert fake_backend.upload_calls.count(2) == 2

    @pytest.mark.asyncio
    async def test_first_failure_stops_remaining_parts(self, fake_backend):
        data = b"x" * 400
        fake_backend.part_failures = {1: [RuntimeError("boom")]}
        session = await make_session(fake_backend, len(data))
        policy = RetryPolicy(max_retries=0)

        await make_pipeline(
            fake_backend, session, workers=1, queue_depth=1, retry_policy=policy
        ).run(io.BytesIO(data))

        assert session.cancelled
        assert len(fake_backend.upload_calls) < 100


class TestPipelineErrors:
    @pytest.mark.asyncio
    async def test_read_error_fails_the_session(self, fake_backend):
        session = await make_session(fake_backend, 12)

        await make_pipeline(fake_backend, session).run(FailingStream(1, b"abcd"))

        error = session.errors.error
        assert isinstance(error, UploadError)
        assert error.operation == "reading data"
        assert isinstance(error.cause, OSError)

    @pytest.mark.asyncio
    async def test_cancellation_stops_the_producer(self, fake_backend):
        data = b"x" * 400
        session = await make_session(fake_backend, len(data))

        def cancel_on_part_3(part_number):
            if part_number == 3:
                session.fail(UploadCancelledError())

        fake_backend.on_upload_part = cancel_on_part_3
        stream = CountingStream(data)

        await make_pipeline(fake_backend, session, workers=1, queue_depth=1).run(stream)

        assert isinstance(session.errors.error, UploadCancelledError)
        assert stream.chunks_read < 100

    @pytest.mark.asyncio
    async def test_short_source_fails_the_session(self, fake_backend):
        session = await make_session(fake_backend, 100)

        results = await make_pipeline(fake_backend, session).run(io.BytesIO(b"x" * 10))

        error = session.errors.error
        assert isinstance(error, UploadError)
        assert error.operation == "reading data"
        assert isinstance(error.cause, SourceError)
        assert "ended after 10 of 100 bytes" in str(error.cause)
        assert len(results) < session.total_chunks
        assert 3 not in fake_backend.upload_calls

    @pytest.mark.asyncio
    async def test_long_source_stops_at_declared_size(self, fake_backend):
        session = await make_session(fake_backend, 16)
        stream = io.BytesIO(b"x" * 40)

        await make_pipeline(fake_backend, session).run(stream)

        assert set(fake_backend.upload_calls) <= {1, 2, 3, 4}
        assert session.bytes_read == 16
        assert stream.tell() == 17
        error = session.errors.error
        assert isinstance(error, UploadError)
        assert isinstance(error.cause, SourceError)
        assert "longer than the declared 16 bytes" in str(error.cause)

    @pytest.mark.asyncio
    async def test_exact_source_completes_every_part(self, fake_backend):
        session = await make_session(fake_backend, 14)

        results = await make_pipeline(fake_backend, session).run(io.BytesIO(b"x" * 14))

        assert not session.errors.is_set()
        assert [result.sequence for result in results] == [1, 2, 3, 4]
        assert [result.size for result in results] == [4, 4, 4, 2]


class TestPipelineBackpressure:
    @pytest.mark.asyncio
    async def test_resident_chunks_bounded_by_workers_plus_queue(self, fake_backend):
        gate = asyncio.Event()
        upload_part = fake_backend.upload_part

        async def gated_upload_part(*args):
            await gate.wait()
            return await upload_part(*args)

        fake_backend.upload_part = gated_upload_part
        data = b"x" * 80
        session = await make_session(fake_backend, len(data))
        stream = CountingStream(data)
        workers, queue_depth = 2, 1

        task = asyncio.create_task(
            make_pipeline(fake_backend, session, workers, queue_depth).run(stream)
        )
        await asyncio.sleep(0.1)

        # in flight + queued + the one chunk waiting to be published
        assert stream.chunks_read <= workers + queue_depth + 1

        gate.set()
        results = await task
        assert len(results) == 20


class TestPipelineProgress:
    @pytest.mark.asyncio
    async def test_sync_callback_sees_cumulative_totals(self, fake_backend):
        data = b"x" * 14
        calls = []
        session = await make_session(fake_backend, len(data))

        await make_pipeline(
            fake_backend,
            session,
            progress_callback=lambda done, parts: calls.append((done, parts)),
        ).run(io.BytesIO(data))

        assert len(calls) == 4
        assert calls[-1] == (14, 4)
        assert [done for done, _ in calls] == sorted(done for done, _ in calls)

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited_before_run_returns(self, fake_backend):
        data = b"x" * 8
        calls = []
        session = await make_session(fake_backend, len(data))

        async def on_progress(done, parts):
            await asyncio.sleep(0.01)
            calls.append(done)

        await make_pipeline(
            fake_backend, session, progress_callback=on_progress
        ).run(io.BytesIO(data))

        assert sorted(calls) == [4, 8]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_fail_the_upload(self, fake_backend):
        data = b"x" * 8
        session = await make_session(fake_backend, len(data))

        def on_progress(done, parts):
            raise ValueError("display closed")

        results = await make_pipeline(
            fake_backend, session, progress_callback=on_progress
        ).run(io.BytesIO(data))

        assert len(results) == 2
        assert not session.errors.is_set()
