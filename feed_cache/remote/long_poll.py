"""
Expiry-bounded "timeout, retry immediately" loop for structured remote results.
"""
import logging
import time
from typing import Awaitable, Callable, Optional

from feed_cache.remote.results import RemoteResult, RemoteTimeout

logger = logging.getLogger(__name__)


async def long_poll(
    attempt: Callable[[], Awaitable[RemoteResult]],
    expires_at: float,
    clock: Callable[[], float] = time.time,
    should_continue: Optional[Callable[[], bool]] = None,
) -> RemoteResult:
    """
    Repeat ``attempt`` while it reports a timeout, until ``expires_at``.

    The expiry (seconds, same scale as ``clock``) is checked before every attempt,
    so no request is issued once it has passed. Success and not-found results end
    the loop immediately.

    Args:
        attempt: Coroutine factory performing one remote call.
        expires_at: Absolute deadline.
        clock: Time source, ``time.time`` by default.
        should_continue: Optional predicate (e.g. a cancellation check); when it
                         returns False the loop stops with ``RemoteTimeout``.

    Returns:
        The first non-timeout result, or ``RemoteTimeout()`` once expired.
    """
    attempts = 0
    while clock() < expires_at:
        if should_continue is not None and not should_continue():
            logger.debug(f"Long poll stopped by caller after {attempts} attempts")
            return RemoteTimeout()
        attempts += 1
        result = await attempt()
        if not result.timeout:
            return result
        logger.debug(f"Long poll attempt {attempts} timed out, retrying")
    logger.debug(f"Long poll expired after {attempts} attempts")
    return RemoteTimeout()
