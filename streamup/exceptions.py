"""Exception classes for streamup."""

from __future__ import annotations


class StreamupError(Exception):
    """Base error for streamup."""


class ValidationError(StreamupError):
    """Raised when configuration is invalid, before any network call."""

    def __init__(self, field: str, message: str) -> None:
        """Initialize ValidationError.

        Args:
            field: Name of the offending configuration field.
            message: Description of the problem.
        """
        super().__init__(f"validation error for {field}: {message}")
        self.field = field
        self.message = message


class SizeLimitExceededError(ValidationError):
    """Raised when an input cannot be represented under the service limits."""


class UploadError(StreamupError):
    """Raised when an upload fails during a named operation."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        """Initialize UploadError.

        Args:
            operation: The operation that failed (e.g. ``uploading part 3``).
            cause: The underlying exception, if any.
        """
        super().__init__(f"upload error during {operation}: {cause}")
        self.operation = operation
        self.cause = cause
        self.abort_error: BaseException | None = None


class UploadCancelledError(UploadError):
    """Raised when an upload is cancelled before it completed."""

    def __init__(self, operation: str = "upload") -> None:
        """Initialize UploadCancelledError."""
        super().__init__(operation, None)

    def __str__(self) -> str:
        return f"upload cancelled during {self.operation}"


class DownloadError(StreamupError):
    """Raised when an object cannot be streamed to the sink."""


class SourceError(StreamupError):
    """Raised when an input source cannot be opened."""
