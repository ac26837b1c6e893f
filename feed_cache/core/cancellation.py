"""
Cooperative cancellation for cache entry points.

Fetches are not aborted mid-flight. Instead, callers that may be superseded (a
view navigating away, a newer query replacing an older one) pass a token, and the
entry point discards its result if the token was cancelled while it was waiting.
"""
import asyncio
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")


class CancelledByCaller(asyncio.CancelledError):
    """Raised by ``raise_if_cancelled`` when the owning caller gave up."""


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise CancelledByCaller()


async def unless_cancelled(awaitable: Awaitable[T], token: Optional[CancellationToken]) -> Optional[T]:
    """
    Await ``awaitable`` and return its value, or ``None`` if ``token`` was
    cancelled before it resolved. The awaited work still completes (and its
    cache writes still land); only the result is dropped.
    """
    result = await awaitable
    if token is not None and token.cancelled:
        return None
    return result
