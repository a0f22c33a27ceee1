"""Retry with exponential backoff for network-sensitive operations."""

import time
import logging
from typing import Callable, TypeVar

import requests

from errors import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient_error(exc: BaseException) -> bool:
    """Return True if ``exc`` is worth retrying.

    Collaborators tag their own errors with a ``transient`` attribute; raw
    requests connection errors and timeouts are always transient.
    """
    if getattr(exc, "transient", False):
        return True
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


def with_retry(
    operation: Callable[[], T],
    max_retries: int,
    base_delay: float = 2,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
) -> T:
    """Run ``operation``, retrying transient failures with exponential backoff.

    The operation runs once, then up to ``max_retries`` more times. Before the
    k-th retry the executor sleeps ``base_delay * 2 ** (k - 1)`` seconds.
    Permanent failures are re-raised immediately without consuming the retry
    budget.

    Raises:
        RetryExhaustedError: if every attempt failed with a transient error
    """
    attempts = 0
    delay = base_delay

    while True:
        attempts += 1
        try:
            return operation()
        except Exception as e:
            if not is_transient_error(e):
                raise
            if attempts > max_retries:
                raise RetryExhaustedError(attempts, e) from e

            logger.warning(
                f"{description} failed (attempt {attempts}/{max_retries + 1}): {e}. "
                f"Retrying in {delay}s..."
            )
            sleep(delay)
            delay *= 2
