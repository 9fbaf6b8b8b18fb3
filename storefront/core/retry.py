"""Retry wrapper for relational store calls.

Transient failures (connection resets, timeouts, refused connections, DNS
retries, deadlocks) are retried with exponential backoff and +/-20% jitter.
Anything else propagates on the first failure.
"""

import asyncio
import errno
import random
import re
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from storefront.core.logging import get_logger, log_retry_attempt

T = TypeVar("T")

default_logger = get_logger(__name__)

TRANSIENT_ERROR_CODES = frozenset({
    "ECONNRESET",
    "ETIMEDOUT",
    "ECONNREFUSED",
    "EAI_AGAIN",
})

TRANSIENT_MESSAGE_PATTERN = re.compile(r"timeout|deadlock", re.IGNORECASE)

# Builtin exceptions raised without an errno
_EXCEPTION_CODES = (
    (ConnectionResetError, "ECONNRESET"),
    (ConnectionRefusedError, "ECONNREFUSED"),
    (TimeoutError, "ETIMEDOUT"),
)

JITTER_LOW = 0.8
JITTER_SPAN = 0.4


class RetryExhaustedError(Exception):
    """Every attempt failed with a transient error."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"Operation failed after {attempts} attempt(s){detail}")


def _error_code(error: BaseException) -> Optional[str]:
    code = getattr(error, "code", None)
    if isinstance(code, str):
        return code
    err_no = getattr(error, "errno", None)
    if isinstance(err_no, int):
        return errno.errorcode.get(err_no)
    for exc_type, name in _EXCEPTION_CODES:
        if isinstance(error, exc_type):
            return name
    return None


def is_transient_error(error: Optional[BaseException]) -> bool:
    """Return True if retrying the failed call is likely to succeed.

    SQLAlchemy wraps driver exceptions in ``DBAPIError``; the wrapped
    exception (``orig``) is checked as well.
    """
    if error is None:
        return False

    if _error_code(error) in TRANSIENT_ERROR_CODES:
        return True
    if TRANSIENT_MESSAGE_PATTERN.search(str(error)):
        return True

    orig = getattr(error, "orig", None)
    if isinstance(orig, BaseException) and orig is not error:
        return is_transient_error(orig)
    return False


def compute_backoff_delay(attempt: int, base_delay: float,
                          rand: Optional[Callable[[], float]] = None) -> float:
    """Delay in seconds before retrying after failed attempt ``attempt`` (1-indexed)."""
    jitter = (rand or random.random)()
    return base_delay * (2 ** (attempt - 1)) * (JITTER_LOW + jitter * JITTER_SPAN)


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    logger: Optional[structlog.BoundLogger] = None,
) -> T:
    """Run ``operation`` retrying transient failures.

    Args:
        operation: Zero-argument coroutine function performing one call
        max_retries: Total number of attempts. With 0 the operation never runs
        base_delay: Backoff delay in seconds before the second attempt
        logger: Logger for retry diagnostics (defaults to the module logger)

    Returns:
        The operation's result

    Raises:
        RetryExhaustedError: All attempts failed with transient errors
        Exception: The first non-transient error, unchanged
    """
    log = logger or default_logger
    attempt = 0
    last_error: Optional[BaseException] = None

    while attempt < max_retries:
        try:
            return await operation()
        except Exception as e:
            attempt += 1
            last_error = e

            if not is_transient_error(e):
                log.error("Non-retryable error occurred", error=str(e),
                          error_type=type(e).__name__)
                raise

            if attempt == max_retries:
                log_retry_attempt(log, attempt, max_retries, e)
                log.error("Max retry attempts reached", attempts=attempt, error=str(e))
                break

            delay = compute_backoff_delay(attempt, base_delay)
            log_retry_attempt(log, attempt, max_retries, e, retry_in=delay)
            await asyncio.sleep(delay)

    raise RetryExhaustedError(attempt, last_error)


async def handle_database_operation(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    logger: Optional[structlog.BoundLogger] = None,
) -> Optional[T]:
    """Like :func:`retry_operation` but returns None once retries are exhausted.

    Non-transient errors still propagate. ``max_retries=0`` returns None
    without invoking the operation.
    """
    try:
        return await retry_operation(operation, max_retries=max_retries,
                                     base_delay=base_delay, logger=logger)
    except RetryExhaustedError:
        return None
