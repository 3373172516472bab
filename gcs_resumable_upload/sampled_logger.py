"""Sampled logger for high-frequency log messages.

Provides utilities to reduce log spam by only logging at configurable intervals.
"""

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


def make_sampled_logger(
    log_format: str,
    log_interval: int = 100,
    target_logger: logging.Logger | None = None,
    level: int = logging.DEBUG,
) -> Callable[..., None]:
    """Create a sampled logger that logs the first item and every Nth after it.

    Indices are supplied by the caller and restart at zero for every request,
    so each new request always logs its first chunk.

    Args:
        log_format: Format string for the log message. The first placeholder
                    receives the item index, the second the key (typically a
                    session uri), remaining placeholders receive format_args.
        log_interval: Log every Nth item (default 100)
        target_logger: Logger instance to use (default: module logger)
        level: Log level to use (default: DEBUG)

    Returns:
        A function: (key, item_idx, *format_args) -> None
    """
    if log_interval <= 0:
        raise ValueError(f"log_interval must be positive, got {log_interval}")
    _logger = target_logger or logger

    def log_sampled(key: str, item_idx: int, *format_args: object) -> None:
        if not _logger.isEnabledFor(level):
            return
        if item_idx % log_interval == 0:
            _logger.log(level, log_format, item_idx, key, *format_args)

    return log_sampled
