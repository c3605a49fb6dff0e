"""Running content checksum fed in source byte order."""

from __future__ import annotations

import hashlib
import threading
from enum import Enum


class ChecksumAlgorithm(str, Enum):
    """Supported checksum algorithms."""

    MD5 = "md5"
    SHA256 = "sha256"


class ChecksumAccumulator:
    """Sequential hasher for the bytes of one transfer.

    Only the reader of the source may feed it: the digest must reflect the
    exact order of the source, never the order in which parts finish
    uploading. Feeding happens on a reader thread while the digest is read
    from the event loop, so both go through a lock.
    """

    def __init__(self, algorithm: ChecksumAlgorithm | str = ChecksumAlgorithm.MD5):
        """Initialize the accumulator.

        Args:
            algorithm: ``md5`` or ``sha256``.

        Raises:
            ValueError: If the algorithm is not supported.
        """
        self.algorithm = ChecksumAlgorithm(algorithm)
        self._hash = hashlib.new(self.algorithm.value)
        self._lock = threading.Lock()
        self._digest: str | None = None
        self._bytes = 0

    @property
    def bytes_hashed(self) -> int:
        """Number of bytes fed so far."""
        with self._lock:
            return self._bytes

    def update(self, data: bytes | bytearray | memoryview) -> None:
        """Feed the next bytes of the source.

        Raises:
            RuntimeError: If the accumulator was already finalized.
        """
        with self._lock:
            if self._digest is not None:
                raise RuntimeError("checksum already finalized")
            self._hash.update(data)
            self._bytes += len(data)

    def finalize(self) -> str:
        """Return the hex digest; further updates are rejected."""
        with self._lock:
            if self._digest is None:
                self._digest = self._hash.hexdigest()
            return self._digest

    @property
    def hexdigest(self) -> str | None:
        """The finalized digest, or None while the transfer is running."""
        with self._lock:
            return self._digest
