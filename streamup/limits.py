"""Multipart upload limits of S3-compatible services."""

from pydantic import BaseModel, ConfigDict

from streamup.const import (
    BYTES_PER_GIB,
    S3_MAX_PART_SIZE,
    S3_MAX_PARTS,
    S3_MIN_PART_SIZE,
)
from streamup.exceptions import ValidationError


class ServiceLimits(BaseModel):
    """Constraints a storage service places on multipart uploads.

    Attributes:
        min_part_size: smallest allowed part, in bytes (the last part is exempt).
        max_part_size: largest allowed part, in bytes.
        max_parts: maximum number of parts in a single upload.
    """

    model_config = ConfigDict(frozen=True)

    min_part_size: int = S3_MIN_PART_SIZE
    max_part_size: int = S3_MAX_PART_SIZE
    max_parts: int = S3_MAX_PARTS

    @property
    def max_object_size(self) -> int:
        """Largest object these limits can represent."""
        return self.max_part_size * self.max_parts

    def ensure_valid(self) -> None:
        """Check the limits against the S3 protocol bounds.

        Raises:
            ValidationError: If any limit falls outside what S3 allows.
        """
        if self.min_part_size < S3_MIN_PART_SIZE:
            raise ValidationError("min_part_size", "must be at least 5MB (S3 minimum)")
        if self.max_part_size > S3_MAX_PART_SIZE:
            raise ValidationError("max_part_size", "cannot exceed 5GB (S3 maximum)")
        if self.min_part_size > self.max_part_size:
            raise ValidationError(
                "min_part_size", "cannot be greater than max_part_size"
            )
        if self.max_parts <= 0 or self.max_parts > S3_MAX_PARTS:
            raise ValidationError(
                "max_parts", f"must be positive and not exceed {S3_MAX_PARTS}"
            )

    def describe(self) -> str:
        """Human readable summary used in log lines."""
        return (
            f"parts {self.min_part_size}..{self.max_part_size} bytes, "
            f"at most {self.max_parts} parts "
            f"({self.max_object_size // BYTES_PER_GIB} GB max object)"
        )
