"""
Retry policy for remote index calls.

Which failures are worth another attempt is decided from the exception type
raised by ``raise_for_status``:

* 5xx, 408/504 and transport failures back off exponentially;
* 429 waits for the server's ``Retry-After`` hint when there is one;
* any other status is final.
"""

import asyncio
import logging
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar, cast

from feed_cache.errors import (
    RemoteFetchError,
    RemoteRateLimitError,
    RemoteServerError,
    RemoteTimeoutError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
AsyncFunc = Callable[..., Awaitable[T]]

MAX_RETRY_AFTER_SECONDS = 60.0


class ConsecutiveErrorTracker:
    """
    Counts server errors in a row across calls sharing one tracker.

    A single success resets the count; once ``threshold`` is reached callers stop
    retrying and surface the error.
    """

    def __init__(self, threshold: int):
        self.threshold = threshold
        self.consecutive_errors = 0

    def record_error(self) -> None:
        self.consecutive_errors += 1
        logger.warning(f"Remote index server error streak: {self.consecutive_errors}/{self.threshold}")

    def record_success(self) -> None:
        if self.consecutive_errors:
            logger.info(f"Remote index recovered after {self.consecutive_errors} server errors")
        self.consecutive_errors = 0

    def should_abort(self) -> bool:
        return self.consecutive_errors >= self.threshold


def retry_delay(error: RemoteFetchError, backoff: float) -> Optional[float]:
    """
    Seconds to wait before retrying after ``error``, or ``None`` if it is final.
    """
    if isinstance(error, RemoteRateLimitError):
        if error.retry_after is None:
            return backoff
        return min(error.retry_after, MAX_RETRY_AFTER_SECONDS)
    if isinstance(error, (RemoteServerError, RemoteTimeoutError)):
        return backoff
    if error.status_code is None:
        # Connection reset, DNS failure and the like.
        return backoff
    return None


def with_exponential_backoff(
    max_retries: int = 3,
    initial_backoff: float = 0.5,
    max_backoff: float = 8.0,
    backoff_factor: float = 2.0,
    error_tracker: Optional[ConsecutiveErrorTracker] = None,
) -> Callable[[AsyncFunc[T]], AsyncFunc[T]]:
    """
    Wrap an async remote call so transient failures are retried.

    Args:
        max_retries: Attempts allowed after the first one.
        initial_backoff: First wait in seconds.
        max_backoff: Upper bound for any computed wait.
        backoff_factor: Growth of the wait after each retry.
        error_tracker: Shared server-error streak; when it reaches its threshold
                       the current error is raised without further retries.
    """
    def decorator(func: AsyncFunc[T]) -> AsyncFunc[T]:
        name = getattr(func, "__name__", "remote call")

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            backoff = initial_backoff
            attempt = 0
            while True:
                try:
                    result = await func(*args, **kwargs)
                except RemoteFetchError as e:
                    if isinstance(e, RemoteServerError) and error_tracker is not None:
                        error_tracker.record_error()
                        if error_tracker.should_abort():
                            logger.critical(f"Giving up on {name}: too many server errors in a row ({e})")
                            raise

                    delay = retry_delay(e, backoff)
                    if delay is None:
                        raise
                    if attempt >= max_retries:
                        logger.error(f"{name} failed after {attempt} retries: {e}")
                        raise

                    attempt += 1
                    logger.warning(f"{name}: {e}; retry {attempt}/{max_retries} in {delay:.2f}s")
                    await asyncio.sleep(delay)
                    backoff = min(backoff * backoff_factor, max_backoff)
                else:
                    if error_tracker is not None:
                        error_tracker.record_success()
                    return result

        return cast(AsyncFunc[T], wrapper)
    return decorator
