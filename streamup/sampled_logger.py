"""Sampled logger for per-part log messages.

Reduces log spam on large uploads by only logging parts at intervals.
"""

import logging
from collections.abc import Callable

from streamup.const import PART_LOG_INTERVAL

logger = logging.getLogger(__name__)


def make_sampled_logger(
    log_format: str,
    log_interval: int = PART_LOG_INTERVAL,
    target_logger: logging.Logger | None = None,
    level: int = logging.INFO,
) -> Callable[..., None]:
    """Create a logger that only logs the first, last and every Nth part.

    Args:
        log_format: Format string for the log message. The first two
                    placeholders receive the part number and the total number
                    of parts, remaining placeholders receive format_args.
        log_interval: Log every Nth part (default from
                      ``STREAMUP_PART_LOG_INTERVAL``).
        target_logger: Logger instance to use (default: module logger)
        level: Log level to use (default: INFO)

    Returns:
        A function: (part_number, total_parts, *format_args) -> None
    """
    _logger = target_logger or logger
    interval = max(1, log_interval)

    def log_sampled(part_number: int, total_parts: int, *format_args: object) -> None:
        is_first = part_number == 1
        is_last = part_number == total_parts
        if is_first or is_last or part_number % interval == 0:
            _logger.log(level, log_format, part_number, total_parts, *format_args)

    return log_sampled
