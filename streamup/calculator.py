"""Part size selection for multipart uploads.

The calculator aims for roughly 1000 parts per upload, which balances per
request overhead against parallelism and gives 0.1% progress granularity.

Peak memory of the upload pipeline is exactly::

    part_size * (workers + queue_depth)

because at most ``workers`` parts are in flight and ``queue_depth`` parts wait
in the queue. With the defaults (4 workers, queue of 10) a 70 GiB input gets
72 MiB parts, 996 parts and about 1 GiB of resident buffers.
"""

import logging

from streamup.const import BYTES_PER_MIB, TARGET_PARTS
from streamup.exceptions import SizeLimitExceededError, ValidationError
from streamup.limits import ServiceLimits

logger = logging.getLogger(__name__)


def round_to_nearest_mb(size: int) -> int:
    """Round a byte count to the nearest MiB, rounding up at the midpoint."""
    remainder = size % BYTES_PER_MIB
    if remainder < BYTES_PER_MIB // 2:
        return size - remainder
    return size + (BYTES_PER_MIB - remainder)


def calculate_part_count(total_size: int, part_size: int) -> int:
    """Number of parts needed to cover ``total_size`` bytes."""
    return -(-total_size // part_size)


def calculate_memory_usage(part_size: int, workers: int, queue_depth: int) -> int:
    """Peak bytes held by the pipeline for the given tuning."""
    return part_size * (workers + queue_depth)


def calculate_part_size(
    total_size: int,
    max_memory_mb: int,
    workers: int,
    queue_depth: int,
    limits: ServiceLimits,
) -> int:
    """Choose a part size obeying the service limits and the memory budget.

    Args:
        total_size: Size of the input in bytes.
        max_memory_mb: Memory budget in MiB, 0 for no budget.
        workers: Number of concurrent upload workers.
        queue_depth: Capacity of the part queue.
        limits: Service constraints.

    Returns:
        Part size in bytes.

    Raises:
        ValidationError: If the limits or tuning values are invalid.
        SizeLimitExceededError: If the input cannot be uploaded under ``limits``.
    """
    limits.ensure_valid()

    if total_size < 0:
        raise ValidationError("total_size", "must not be negative")

    if total_size > limits.max_object_size:
        raise SizeLimitExceededError(
            "total_size",
            f"{total_size} bytes exceeds service limit of "
            f"{limits.max_object_size} bytes",
        )

    part_size = total_size // TARGET_PARTS

    if max_memory_mb > 0:
        slots = workers + queue_depth
        if slots <= 0:
            raise ValidationError(
                "workers", "workers + queue_depth must be positive with a memory cap"
            )
        memory_capped = max_memory_mb * BYTES_PER_MIB // slots
        part_size = min(part_size, memory_capped)

    part_size = round_to_nearest_mb(part_size)
    part_size = max(part_size, limits.min_part_size)
    part_size = min(part_size, limits.max_part_size)

    if calculate_part_count(total_size, part_size) > limits.max_parts:
        required = calculate_part_count(total_size, limits.max_parts)
        part_size = round_to_nearest_mb(required)
        if part_size < required:
            part_size += BYTES_PER_MIB
        part_size = max(part_size, limits.min_part_size)

        if part_size > limits.max_part_size:
            if required > limits.max_part_size:
                raise SizeLimitExceededError(
                    "total_size",
                    f"{total_size} bytes cannot be uploaded with given limits "
                    f"(would require part size {required // BYTES_PER_MIB} MB, "
                    f"max is {limits.max_part_size // BYTES_PER_MIB} MB)",
                )
            part_size = limits.max_part_size

        if (
            max_memory_mb > 0
            and calculate_memory_usage(part_size, workers, queue_depth)
            > max_memory_mb * BYTES_PER_MIB
        ):
            logger.warning(
                "Part size raised to %d bytes to stay within %d parts; "
                "memory use will exceed the %d MB budget",
                part_size,
                limits.max_parts,
                max_memory_mb,
            )

    return part_size
