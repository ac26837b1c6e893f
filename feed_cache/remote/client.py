"""
Async client for the remote index service.

The client is stateless apart from its HTTP connection pool: no caching and no
retained results. Every payload is validated into a DTO right after the call, empty
results come back as ``[]`` and failures raise ``RemoteFetchError`` subclasses.
``poll_*`` helpers return structured ``RemoteResult`` values instead of raising
for timeouts and missing entities.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from feed_cache.config.settings import settings
from feed_cache.errors import (
    RemoteAuthError,
    RemoteClientError,
    RemoteFetchError,
    RemoteNotFoundError,
    RemoteRateLimitError,
    RemoteServerError,
    RemoteTimeoutError,
)
from feed_cache.models.dtos import (
    HotTagDTO,
    NotificationDTO,
    PostDTO,
    PostKeysPage,
    TagDTO,
    UserDTO,
)
from feed_cache.remote.results import RemoteNotFound, RemoteResult, RemoteSuccess, RemoteTimeout
from feed_cache.remote.retry import ConsecutiveErrorTracker, with_exponential_backoff

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def encode_segment(segment: Any) -> str:
    """Percent-encodes a single path segment, including any '/' and ':' it contains."""
    return quote(str(segment), safe="")


def raise_for_status(response: httpx.Response) -> None:
    """Maps an unsuccessful HTTP status onto the remote error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    try:
        url = str(response.request.url)
    except RuntimeError:
        url = None
    detail = response.text[:200]
    message = f"{response.reason_phrase or 'HTTP error'}: {detail}".strip()

    if status == 429:
        retry_after = response.headers.get("Retry-After")
        try:
            retry_after_seconds = float(retry_after) if retry_after is not None else None
        except ValueError:
            retry_after_seconds = None
        raise RemoteRateLimitError(message, status, url, retry_after=retry_after_seconds)
    if status in (408, 504):
        raise RemoteTimeoutError(message, status, url)
    if status >= 500:
        raise RemoteServerError(message, status, url)
    if status in (401, 403):
        raise RemoteAuthError(message, status, url)
    if status == 404:
        raise RemoteNotFoundError(message, status, url)
    raise RemoteClientError(message, status, url)


class RemoteIndexClient:
    """
    Thin HTTP query layer over the remote index.

    Args:
        base_url: Index base URL (``settings.INDEX_BASE_URL`` by default).
        version: API version path prefix, e.g. ``v0``.
        timeout: Request timeout in seconds.
        max_retries: Retries for server errors, timeouts and transport failures.
        http_client: Optional pre-built ``httpx.AsyncClient`` (tests inject one
                     backed by ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        version: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        initial_backoff: Optional[float] = None,
        max_backoff: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.INDEX_BASE_URL).rstrip("/")
        self.version = version or settings.INDEX_API_VERSION
        self.timeout = timeout if timeout is not None else settings.INDEX_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else settings.INDEX_MAX_RETRIES
        self.initial_backoff = initial_backoff if initial_backoff is not None else settings.INDEX_INITIAL_BACKOFF_SECONDS
        self.max_backoff = max_backoff if max_backoff is not None else settings.INDEX_MAX_BACKOFF_SECONDS
        self.error_tracker = ConsecutiveErrorTracker(settings.INDEX_MAX_CONSECUTIVE_SERVER_ERRORS)

        self.client = http_client or httpx.AsyncClient(
            headers={"Accept": "application/json"},
            timeout=httpx.Timeout(self.timeout),
        )
        logger.info(f"Remote index client initialized for {self.base_url}/{self.version}")

    async def close(self) -> None:
        await self.client.aclose()
        logger.info("Remote index client closed")

    async def __aenter__(self) -> "RemoteIndexClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    def build_url(self, *segments: Any) -> str:
        """``<base>/<version>/<seg>/<seg>...`` with each segment percent-encoded."""
        path = "/".join(encode_segment(segment) for segment in segments)
        return f"{self.base_url}/{encode_segment(self.version)}/{path}"

    @staticmethod
    def _clean_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        cleaned: Dict[str, Any] = {}
        for key, value in (params or {}).items():
            if value is None:
                continue
            if isinstance(value, (list, tuple)):
                if not value:
                    continue
                value = ",".join(str(v) for v in value)
            cleaned[key] = value
        return cleaned

    async def _send(self, method: str, url: str, params: Dict[str, Any], body: Optional[Dict[str, Any]]) -> Any:
        try:
            response = await self.client.request(method, url, params=params, json=body)
        except httpx.TimeoutException as e:
            raise RemoteTimeoutError(f"Request timed out: {e}", url=url) from e
        except httpx.HTTPError as e:
            raise RemoteFetchError(f"Transport error: {e}", url=url) from e

        raise_for_status(response)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RemoteFetchError(f"Invalid JSON in response: {e}", response.status_code, url) from e

    async def _request(
        self,
        method: str,
        segments: Iterable[Any],
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = self.build_url(*segments)
        send = with_exponential_backoff(
            max_retries=self.max_retries,
            initial_backoff=self.initial_backoff,
            max_backoff=self.max_backoff,
            error_tracker=self.error_tracker,
        )(self._send)
        logger.debug(f"{method} {url} params={params}")
        return await send(method, url, self._clean_params(params), body)

    @staticmethod
    def _parse(model: Type[ModelT], data: Any) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise RemoteFetchError(f"Unexpected {model.__name__} payload: {e}") from e

    @classmethod
    def _parse_list(cls, model: Type[ModelT], data: Any) -> List[ModelT]:
        if not data:
            return []
        if not isinstance(data, list):
            raise RemoteFetchError(f"Expected a list of {model.__name__}, got {type(data).__name__}")
        return [cls._parse(model, item) for item in data]

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    async def stream_post_keys(
        self,
        source: str,
        sorting: Optional[str] = None,
        kind: Optional[str] = None,
        tags: Optional[List[str]] = None,
        observer_id: Optional[str] = None,
        author_id: Optional[str] = None,
        viewer_id: Optional[str] = None,
        skip: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> PostKeysPage:
        """Ordered composite post ids for a timeline query."""
        data = await self._request(
            "GET",
            ["stream", "posts", "keys"],
            params={
                "source": source,
                "sorting": sorting,
                "kind": kind,
                "tags": tags,
                "observer_id": observer_id,
                "author_id": author_id,
                "viewer_id": viewer_id,
                "skip": skip,
                "limit": limit,
            },
        )
        if not data:
            return PostKeysPage()
        return self._parse(PostKeysPage, data)

    async def posts_by_ids(self, post_ids: List[str], viewer_id: Optional[str] = None) -> List[PostDTO]:
        if not post_ids:
            return []
        data = await self._request(
            "POST", ["stream", "posts", "by_ids"], body={"post_ids": post_ids, "viewer_id": viewer_id}
        )
        return self._parse_list(PostDTO, data)

    async def stream_users(
        self,
        source: str,
        user_id: str,
        viewer_id: Optional[str] = None,
        skip: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[UserDTO]:
        """Users in a follower/following/friends/muted stream of ``user_id``."""
        data = await self._request(
            "GET",
            ["stream", "users"],
            params={"source": source, "user_id": user_id, "viewer_id": viewer_id, "skip": skip, "limit": limit},
        )
        return self._parse_list(UserDTO, data)

    async def users_by_ids(self, user_ids: List[str], viewer_id: Optional[str] = None) -> List[UserDTO]:
        if not user_ids:
            return []
        data = await self._request(
            "POST", ["stream", "users", "by_ids"], body={"user_ids": user_ids, "viewer_id": viewer_id}
        )
        return self._parse_list(UserDTO, data)

    # ------------------------------------------------------------------
    # Single entities
    # ------------------------------------------------------------------

    async def user(self, user_id: str, viewer_id: Optional[str] = None) -> Optional[UserDTO]:
        """Returns ``None`` when the index does not know the user."""
        try:
            data = await self._request("GET", ["user", user_id], params={"viewer_id": viewer_id})
        except RemoteNotFoundError:
            return None
        return self._parse(UserDTO, data) if data else None

    async def post(
        self,
        author_id: str,
        post_id: str,
        viewer_id: Optional[str] = None,
        limit_tags: Optional[int] = None,
        limit_taggers: Optional[int] = None,
    ) -> Optional[PostDTO]:
        """Returns ``None`` when the index does not know the post."""
        try:
            data = await self._request(
                "GET",
                ["post", author_id, post_id],
                params={"viewer_id": viewer_id, "limit_tags": limit_tags, "limit_taggers": limit_taggers},
            )
        except RemoteNotFoundError:
            return None
        return self._parse(PostDTO, data) if data else None

    async def post_tags(
        self,
        author_id: str,
        post_id: str,
        viewer_id: Optional[str] = None,
        skip_tags: Optional[int] = None,
        limit_tags: Optional[int] = None,
        limit_taggers: Optional[int] = None,
    ) -> List[TagDTO]:
        data = await self._request(
            "GET",
            ["post", author_id, post_id, "tags"],
            params={
                "viewer_id": viewer_id,
                "skip_tags": skip_tags,
                "limit_tags": limit_tags,
                "limit_taggers": limit_taggers,
            },
        )
        return self._parse_list(TagDTO, data)

    # ------------------------------------------------------------------
    # Hot tags & notifications
    # ------------------------------------------------------------------

    async def hot_tags(
        self,
        timeframe: str,
        reach: str,
        user_id: Optional[str] = None,
        skip: Optional[int] = None,
        limit: Optional[int] = None,
        taggers_limit: Optional[int] = None,
    ) -> List[HotTagDTO]:
        data = await self._request(
            "GET",
            ["tags", "hot"],
            params={
                # "all" is the index default and is not sent explicitly
                "reach": None if reach == "all" else reach,
                "timeframe": timeframe,
                "user_id": user_id,
                "skip": skip,
                "limit": limit,
                "taggers_limit": taggers_limit,
            },
        )
        return self._parse_list(HotTagDTO, data)

    async def notifications(
        self,
        user_id: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
        skip: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[NotificationDTO]:
        """
        Notifications for ``user_id``, newest first.

        Args:
            start: Only items with a timestamp strictly greater than this (epoch ms).
            end: Only items with a timestamp strictly lower than this (epoch ms).
        """
        data = await self._request(
            "GET",
            ["user", user_id, "notifications"],
            params={"start": start, "end": end, "skip": skip, "limit": limit},
        )
        return self._parse_list(NotificationDTO, data)

    # ------------------------------------------------------------------
    # Structured polling helpers
    # ------------------------------------------------------------------

    async def _poll(self, segments: List[Any], params: Dict[str, Any], model: Type[ModelT]) -> RemoteResult[ModelT]:
        url = self.build_url(*segments)
        try:
            data = await self._send("GET", url, self._clean_params(params), None)
        except RemoteTimeoutError:
            return RemoteTimeout()
        except RemoteNotFoundError:
            return RemoteNotFound()
        if not data:
            return RemoteNotFound()
        return RemoteSuccess(self._parse(model, data))

    async def poll_user(self, user_id: str, viewer_id: Optional[str] = None) -> RemoteResult[UserDTO]:
        """Single attempt; timeouts and 404s are results, not exceptions."""
        return await self._poll(["user", user_id], {"viewer_id": viewer_id}, UserDTO)

    async def poll_post(self, author_id: str, post_id: str, viewer_id: Optional[str] = None) -> RemoteResult[PostDTO]:
        """Single attempt; timeouts and 404s are results, not exceptions."""
        return await self._poll(["post", author_id, post_id], {"viewer_id": viewer_id}, PostDTO)
