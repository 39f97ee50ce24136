"""
Retry helper for store writes that hit a locked database.
"""

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from contactsync.storage.db import is_busy_error

DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_DELAY = 0.1  # seconds

T = TypeVar("T")

logger = logging.getLogger(__name__)


def retry_db_operation(
    operation: Callable[[], T],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
) -> T:
    """
    Run a store operation, retrying while the database is busy.

    Only the store's busy/locked signal is retried. Each failed attempt
    waits base_delay * 2**attempt seconds (100, 200, 400, 800, 1600 ms with
    the defaults). Any other error is raised immediately.

    Args:
        operation: Callable performing the store write
        max_retries: Maximum number of attempts
        base_delay: Delay after the first failed attempt in seconds

    Returns:
        Result of the operation

    Raises:
        The last busy error once attempts are exhausted, or the first
        non-busy error
    """
    last_error: Exception | None = None

    for attempt in range(max_retries):
        try:
            return operation()
        except Exception as e:
            if not is_busy_error(e):
                raise
            last_error = e
            delay = base_delay * (2**attempt)
            logger.debug(
                f"Database busy, retrying in {delay * 1000:.0f}ms "
                f"(attempt {attempt + 1}/{max_retries})"
            )
            time.sleep(delay)

    assert last_error is not None
    logger.warning(f"Database still busy after {max_retries} attempts: {last_error}")
    raise last_error
