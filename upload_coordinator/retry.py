"""Client-side retry with exponential backoff.

The coordinator itself never retries; retrying a part transfer is the
uploading client's decision, and it is safe because re-sending a part
index simply replaces the earlier record.

Transient (Retryable):
- Connection, read and write timeouts
- Connection errors and dropped connections
- Server errors (500, 502, 503, 504)
- Rate limiting (429)

Permanent (Not Retryable):
- Client errors (4xx except 429), including parts_invalid and
  invalid_state responses from the coordinator
- Signature mismatches and expired presigned URLs (403)
"""

import logging
import time
from typing import Any, Callable, Optional, Sequence

import httpx

logger = logging.getLogger(__name__)

# HTTP status codes that indicate transient server issues
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

TRANSIENT_ERRORS = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.RemoteProtocolError,
)


class RetryExhausted(Exception):
    """Raised when all retry attempts have been exhausted."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


def is_retryable_error(error: Exception) -> bool:
    """Determine if an error is transient and worth retrying.

    Args:
        error: The exception that was raised.

    Returns:
        True if the error is transient, False if retrying won't help.
    """
    if isinstance(error, TRANSIENT_ERRORS):
        return True

    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES

    return False


def retry_with_backoff(
    func: Callable[..., Any],
    max_attempts: int = 3,
    delays: Sequence[float] = (1.0, 2.0, 4.0),
    args: tuple = (),
    kwargs: Optional[dict] = None,
) -> Any:
    """Execute a function, retrying transient failures with backoff.

    Args:
        func: The function to execute.
        max_attempts: Maximum number of attempts (including first try).
        delays: Delay in seconds before each retry; delays[0] follows the
                first failure, the last entry repeats.
        args: Positional arguments to pass to func.
        kwargs: Keyword arguments to pass to func.

    Returns:
        The return value of func if successful.

    Raises:
        RetryExhausted: If all attempts fail with retryable errors.
        Exception: A non-retryable error is raised immediately.

    Example:
        >>> etag = retry_with_backoff(
        ...     client.put_presigned,
        ...     args=(url, data),
        ... )
    """
    if kwargs is None:
        kwargs = {}

    last_error: Optional[Exception] = None

    for attempt in range(1, max_attempts + 1):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            last_error = e

            if not is_retryable_error(e):
                raise

            if attempt >= max_attempts:
                break

            delay = delays[min(attempt - 1, len(delays) - 1)]
            logger.warning(
                "Attempt %d/%d failed (%s), retrying in %.1fs",
                attempt,
                max_attempts,
                e,
                delay,
            )
            time.sleep(delay)

    raise RetryExhausted(
        f"Operation failed after {max_attempts} attempts",
        attempts=max_attempts,
        last_error=last_error,
    ) from last_error
