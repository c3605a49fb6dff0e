"""Open upload sources: local files, http(s) URLs and stdin."""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Callable
from typing import BinaryIO

import requests

from streamup.exceptions import SourceError
from streamup.validation import is_url, validate_file_path, validate_url

logger = logging.getLogger(__name__)

STDIN_SOURCE = "-"
URL_TIMEOUT_SECONDS = 30


class SourceStream:
    """Readable byte stream of known length with an idempotent close."""

    def __init__(
        self,
        reader: BinaryIO,
        size: int,
        description: str,
        closer: Callable[[], None] | None = None,
    ) -> None:
        """Initialize the stream.

        Args:
            reader: Object with a ``read(n)`` method.
            size: Total number of bytes the source will deliver.
            description: Human readable origin, used in log messages.
            closer: Optional callable releasing the underlying resource.
        """
        self._reader = reader
        self.size = size
        self.description = description
        self._closer = closer if closer is not None else reader.close
        self._closed = False

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes."""
        return self._reader.read(size)

    def close(self) -> None:
        """Release the underlying file or connection."""
        if self._closed:
            return
        self._closed = True
        self._closer()

    def __enter__(self) -> SourceStream:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def open_file(path: str) -> SourceStream:
    """Open a local file for streaming.

    Raises:
        ValidationError: If the path is unsafe.
        SourceError: If the file cannot be opened.
    """
    validate_file_path(path)
    try:
        handle = open(path, "rb")
    except OSError as exc:
        raise SourceError(f"failed to open file {path}: {exc}") from exc
    size = os.fstat(handle.fileno()).st_size
    return SourceStream(handle, size, path)


def open_url(url: str, session: requests.Session | None = None) -> SourceStream:
    """Open an http(s) URL for streaming.

    A HEAD request establishes the size, then a streaming GET delivers the
    body. Both must report the same Content-Length.

    Raises:
        ValidationError: If the URL fails validation.
        SourceError: If either request fails or the lengths disagree.
    """
    validate_url(url)
    http = session or requests.Session()

    try:
        head = http.head(url, allow_redirects=True, timeout=URL_TIMEOUT_SECONDS)
        head.raise_for_status()
    except requests.exceptions.RequestException as exc:
        raise SourceError(f"HEAD request to {url} failed: {exc}") from exc

    content_length = head.headers.get("Content-Length")
    if content_length is None:
        raise SourceError(f"{url} did not provide a Content-Length header")
    size = int(content_length)

    try:
        response = http.get(url, stream=True, timeout=URL_TIMEOUT_SECONDS)
        response.raise_for_status()
    except requests.exceptions.RequestException as exc:
        raise SourceError(f"GET request to {url} failed: {exc}") from exc

    get_length = response.headers.get("Content-Length")
    if get_length is not None and int(get_length) != size:
        response.close()
        raise SourceError(
            f"Content-Length mismatch: HEAD returned {size}, GET returned {get_length}"
        )

    # Keep the body byte-identical to what the server advertised.
    response.raw.decode_content = False
    logger.info(f"Streaming {size} bytes from {url}")
    return SourceStream(response.raw, size, url, closer=response.close)


def open_stdin(size: int | None) -> SourceStream:
    """Wrap standard input; the caller must know its size up front.

    Raises:
        SourceError: If no positive size was given.
    """
    if size is None or size <= 0:
        raise SourceError("a positive --size is required when reading from stdin")
    return SourceStream(sys.stdin.buffer, size, "stdin", closer=lambda: None)


def open_source(source: str, size: int | None = None) -> SourceStream:
    """Open a path, an http(s) URL or ``-`` (stdin).

    Args:
        source: Source argument as given on the command line.
        size: Size of the input, required for stdin and otherwise ignored.

    Returns:
        An open SourceStream; close it when done.
    """
    if source == STDIN_SOURCE:
        return open_stdin(size)
    if is_url(source):
        return open_url(source)
    return open_file(source)
