"""Exponential backoff for fallible operations"""

import logging
import time
from collections.abc import Callable
from typing import TypeVar

T = TypeVar("T")

logger = logging.getLogger("Retry")


def retry(
    operation: Callable[[], T],
    max_attempts: int = 3,
    initial_delay: float = 0.1,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call operation until it succeeds or max_attempts is exhausted

    The delay starts at initial_delay and doubles after each failure. The
    last error is re-raised once attempts run out; exceptions outside
    retry_on propagate immediately.

    Args:
        operation: Zero-argument callable
        max_attempts: Total attempts including the first
        initial_delay: Seconds to wait after the first failure
        retry_on: Exception types that trigger another attempt
        sleep: Sleep function (injected by tests)

    Returns:
        The operation's result
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    delay = initial_delay
    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except retry_on as e:
            if attempt == max_attempts:
                raise
            logger.warning(f"Attempt {attempt}/{max_attempts} failed: {e}. Retrying in {delay:.2f}s")
            sleep(delay)
            delay *= 2

    raise AssertionError("unreachable")
