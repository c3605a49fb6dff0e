"""Retry classification and exponential backoff for part uploads."""

from __future__ import annotations

import asyncio
import errno
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from pydantic import BaseModel, ConfigDict

from streamup.const import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_RETRY_DELAY_MS,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_RETRY_MULTIPLIER,
)
from streamup.exceptions import UploadCancelledError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERROR_CODES = {
    "InternalError",
    "ServiceUnavailable",
    "SlowDown",
    "RequestTimeout",
    "RequestTimeoutException",
    "Throttling",
    "ThrottlingException",
}
RETRYABLE_STATUS_CODES = {408, 429}
NETWORK_ERRNOS = {
    errno.ECONNRESET,
    errno.ECONNREFUSED,
    errno.ECONNABORTED,
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
    errno.ETIMEDOUT,
    errno.EPIPE,
}
NETWORK_EXCEPTIONS = (
    EndpointConnectionError,
    ConnectionClosedError,
    ReadTimeoutError,
    ConnectTimeoutError,
    ConnectionError,
    TimeoutError,
)


def is_transient_error(exc: BaseException) -> bool:
    """Whether ``exc`` is a known network or transient backend failure."""
    if isinstance(exc, NETWORK_EXCEPTIONS):
        return True
    if isinstance(exc, OSError) and exc.errno in NETWORK_ERRNOS:
        return True

    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code") or "")
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        if code in TRANSIENT_ERROR_CODES:
            return True
        if len(code) >= 3 and code[0] == "5":
            return True
        if status >= 500 or status in RETRYABLE_STATUS_CODES:
            return True

    return False


def should_retry(exc: BaseException) -> bool:
    """Decide whether a failed attempt is worth repeating.

    Cancellation and configuration errors are final. Everything else is
    retried, including errors that are not known to be transient.
    """
    if isinstance(exc, (UploadCancelledError, asyncio.CancelledError)):
        return False
    if isinstance(exc, ValidationError):
        return False
    return True


class RetryPolicy(BaseModel):
    """Exponential backoff retry policy applied to each part independently.

    Attributes:
        max_retries: retries after the first attempt (``max_retries + 1`` attempts).
        base_delay_ms: delay before the first retry, in milliseconds.
        max_delay_ms: ceiling for any single delay, in milliseconds.
        multiplier: growth factor between consecutive delays.
    """

    model_config = ConfigDict(frozen=True)

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    max_delay_ms: int = DEFAULT_MAX_RETRY_DELAY_MS
    multiplier: float = DEFAULT_RETRY_MULTIPLIER

    def backoff_ms(self, attempt: int) -> int:
        """Delay after the 0-indexed ``attempt`` failed, in milliseconds."""
        delay = self.base_delay_ms * self.multiplier**attempt
        return int(min(float(self.max_delay_ms), delay))

    async def sleep(self, attempt: int, cancel_event: asyncio.Event) -> None:
        """Sleep for the backoff of ``attempt``, waking early on cancellation.

        Raises:
            UploadCancelledError: If ``cancel_event`` is set before the delay
                elapses.
        """
        if cancel_event.is_set():
            raise UploadCancelledError("retry backoff")
        try:
            await asyncio.wait_for(
                cancel_event.wait(), timeout=self.backoff_ms(attempt) / 1000
            )
        except asyncio.TimeoutError:
            return
        raise UploadCancelledError("retry backoff")

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        cancel_event: asyncio.Event,
        description: str = "operation",
    ) -> T:
        """Run ``operation`` until it succeeds or retrying stops making sense.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt.
            cancel_event: Shared cancellation signal.
            description: Used in log messages.

        Returns:
            The result of the first successful attempt.

        Raises:
            UploadCancelledError: If cancelled before or between attempts.
            Exception: The last error once it is not retryable or attempts
                are exhausted.
        """
        attempt = 0
        while True:
            if cancel_event.is_set():
                raise UploadCancelledError(description)
            try:
                return await operation()
            except Exception as exc:
                if not should_retry(exc):
                    logger.error(f"{description} failed with a fatal error: {exc}")
                    raise
                if attempt >= self.max_retries:
                    logger.error(
                        f"{description} failed after {attempt + 1} attempts: {exc}"
                    )
                    raise
                logger.warning(
                    "%s failed (attempt %d/%d, %s error), retrying in %d ms: %s",
                    description,
                    attempt + 1,
                    self.max_retries + 1,
                    "transient" if is_transient_error(exc) else "unclassified",
                    self.backoff_ms(attempt),
                    exc,
                )
            await self.sleep(attempt, cancel_event)
            attempt += 1
