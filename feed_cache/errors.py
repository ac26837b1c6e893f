"""
Exception taxonomy for the feed cache.

Everything raised by this package derives from ``FeedCacheError`` so callers can
choose between catching a specific failure or the whole family.
"""
from typing import Optional


class FeedCacheError(Exception):
    """Base class for all feed cache errors."""


class MalformedIdError(FeedCacheError, ValueError):
    """A composite identifier could not be split into owner and local parts."""

    def __init__(self, composite_id: object):
        self.composite_id = composite_id
        super().__init__(f"Malformed composite id: {composite_id!r}")


class StorageError(FeedCacheError):
    """
    A cache table operation failed.

    Attributes:
        operation: Name of the table operation (e.g. ``"posts_details.upsert"``).
        key: The key (or keys) the operation was addressing, if any.
    """

    def __init__(self, operation: str, key: object = None, cause: Optional[BaseException] = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        message = f"{operation} failed for key {key!r}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class RemoteFetchError(FeedCacheError):
    """A call to the remote index failed (network, HTTP status or payload parsing)."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.url = url
        super().__init__(message)

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"[{self.status_code}] {self.message}"
        return self.message


class RemoteServerError(RemoteFetchError):
    """5xx response from the remote index."""


class RemoteRateLimitError(RemoteFetchError):
    """429 response; ``retry_after`` holds the server hint in seconds when present."""

    def __init__(self, message: str, status_code: Optional[int] = 429, url: Optional[str] = None,
                 retry_after: Optional[float] = None):
        super().__init__(message, status_code, url)
        self.retry_after = retry_after


class RemoteAuthError(RemoteFetchError):
    """401/403 response."""


class RemoteClientError(RemoteFetchError):
    """Any other 4xx response."""


class RemoteNotFoundError(RemoteClientError):
    """404 response raised where the caller did not ask for a structured result."""


class RemoteTimeoutError(RemoteFetchError):
    """Request timed out (transport timeout, 408 or 504)."""
