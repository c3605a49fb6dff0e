"""Unit tests for retry classification and backoff."""

import asyncio
import errno

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from streamup.exceptions import UploadCancelledError, ValidationError
from streamup.retry import RetryPolicy, is_transient_error, should_retry


def client_error(code: str, status: int = 400) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        "UploadPart",
    )


class TestBackoff:
    def test_default_delays_double_up_to_the_ceiling(self):
        policy = RetryPolicy()
        delays = [policy.backoff_ms(attempt) for attempt in range(6)]
        assert delays == [1000, 2000, 4000, 8000, 16000, 30000]

    def test_delay_never_exceeds_ceiling(self):
        policy = RetryPolicy(base_delay_ms=500, max_delay_ms=1200, multiplier=3)
        assert policy.backoff_ms(0) == 500
        assert policy.backoff_ms(1) == 1200
        assert policy.backoff_ms(10) == 1200


class TestClassification:
    @pytest.mark.parametrize(
        "exc",
        [
            client_error("SlowDown", 503),
            client_error("InternalError", 500),
            client_error("RequestTimeout", 400),
            client_error("Whatever", 429),
            client_error("503"),
            EndpointConnectionError(endpoint_url="https://s3.example.com"),
            ConnectionResetError(errno.ECONNRESET, "reset"),
            TimeoutError("timed out"),
            OSError(errno.EPIPE, "broken pipe"),
        ],
    )
    def test_transient_errors(self, exc):
        assert is_transient_error(exc)
        assert should_retry(exc)

    def test_access_denied_is_unclassified_but_retried(self):
        exc = client_error("AccessDenied", 403)
        assert not is_transient_error(exc)
        assert should_retry(exc)

    def test_unknown_errors_are_retried(self):
        assert should_retry(RuntimeError("boom"))

    @pytest.mark.parametrize(
        "exc",
        [
            UploadCancelledError(),
            asyncio.CancelledError(),
            ValidationError("key", "bad"),
        ],
    )
    def test_cancellation_and_validation_are_final(self, exc):
        assert not should_retry(exc)


class TestRun:
    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        policy = RetryPolicy(base_delay_ms=1, max_delay_ms=1)
        attempts = []

        async def operation():
            attempts.append(1)
            if len(attempts) < 3:
                raise client_error("SlowDown", 503)
            return "etag"

        assert await policy.run(operation, asyncio.Event()) == "etag"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries_plus_one_attempts(self):
        policy = RetryPolicy(max_retries=2, base_delay_ms=1, max_delay_ms=1)
        attempts = []

        async def operation():
            attempts.append(1)
            raise client_error("AccessDenied", 403)

        with pytest.raises(ClientError):
            await policy.run(operation, asyncio.Event())
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_the_last_error(self):
        policy = RetryPolicy(max_retries=2, base_delay_ms=1, max_delay_ms=1)
        errors = [RuntimeError("first"), RuntimeError("second"), RuntimeError("third")]
        pending = list(errors)

        async def operation():
            raise pending.pop(0)

        with pytest.raises(RuntimeError) as exc_info:
            await policy.run(operation, asyncio.Event())
        assert exc_info.value is errors[-1]
        assert pending == []

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self):
        policy = RetryPolicy(max_retries=0)
        attempts = []

        async def operation():
            attempts.append(1)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await policy.run(operation, asyncio.Event())
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_fatal_error_is_not_retried(self):
        policy = RetryPolicy(base_delay_ms=1)
        attempts = []

        async def operation():
            attempts.append(1)
            raise ValidationError("key", "bad")

        with pytest.raises(ValidationError):
            await policy.run(operation, asyncio.Event())
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_does_not_start_when_already_cancelled(self):
        policy = RetryPolicy()
        cancel_event = asyncio.Event()
        cancel_event.set()

        async def operation():
            raise AssertionError("must not be called")

        with pytest.raises(UploadCancelledError):
            await policy.run(operation, cancel_event)

    @pytest.mark.asyncio
    async def test_cancellation_interrupts_backoff(self):
        policy = RetryPolicy(base_delay_ms=60_000, max_delay_ms=60_000)
        cancel_event = asyncio.Event()
        attempts = []

        async def operation():
            attempts.append(1)
            asyncio.get_running_loop().call_later(0.01, cancel_event.set)
            raise client_error("SlowDown", 503)

        with pytest.raises(UploadCancelledError):
            await asyncio.wait_for(policy.run(operation, cancel_event), timeout=5)
        assert len(attempts) == 1
