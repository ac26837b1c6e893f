"""
Following/follower user streams.

Stream ids are ``<user_id>:<source>`` where source is one of ``followers``,
``following``, ``friends`` or ``muted``. Pages come from the sync engine, then any
user whose details are missing or expired is hydrated in one batched call before
the views are assembled with the viewer's ``is_following`` flag.
"""
import logging
from typing import List, Optional, Sequence, Set

from sqlalchemy.ext.asyncio import AsyncSession

from feed_cache.config.settings import settings
from feed_cache.core.background import BackgroundTaskRunner
from feed_cache.core.cancellation import CancellationToken, unless_cancelled
from feed_cache.core.composite_id import decode, encode
from feed_cache.core.persistence import LocalPersistenceService
from feed_cache.core.stream_sync import FetchedPage, StreamSource, StreamSyncEngine
from feed_cache.models.dtos import UserDTO, UserStreamPage, UserView
from feed_cache.remote.client import RemoteIndexClient
from feed_cache.storage.cache_store import CacheStore
from feed_cache.storage.tables import CacheTable

logger = logging.getLogger(__name__)

FOLLOWERS = "followers"
FOLLOWING = "following"
FRIENDS = "friends"
MUTED = "muted"
USER_STREAM_SOURCES = (FOLLOWERS, FOLLOWING, FRIENDS, MUTED)


def user_stream_id(user_id: str, source: str) -> str:
    if source not in USER_STREAM_SOURCES:
        raise ValueError(f"Unknown user stream source: {source}")
    return encode(user_id, source)


class UserStreamSource(StreamSource):
    """Remote user streams; every page carries full user records."""

    def __init__(self, client: RemoteIndexClient, persistence: LocalPersistenceService):
        self.client = client
        self.persistence = persistence

    def stream_table(self, store: CacheStore) -> CacheTable:
        return store.user_streams

    async def fetch_page(self, stream_id: str, skip: int, limit: int, viewer_id: Optional[str]) -> FetchedPage:
        user_id, source = decode(stream_id)
        users = await self.client.stream_users(source, user_id, viewer_id=viewer_id, skip=skip, limit=limit)
        return FetchedPage(ids=[user.id for user in users], records=users)

    async def persist_records(self, records: List[UserDTO], session: Optional[AsyncSession] = None) -> None:
        await self.persistence.persist_users(records, session=session)

    async def stale_ids(self, ids: Sequence[str]) -> List[str]:
        return await self.persistence.stale_user_ids(ids)

    async def fetch_by_ids(self, ids: List[str], viewer_id: Optional[str]) -> List[UserDTO]:
        return await self.client.users_by_ids(ids, viewer_id=viewer_id)


class UserStreamService:
    """
    Cache-first follower/following pages with user hydration.

    Errors from storage and the remote index propagate to the caller.
    """

    def __init__(
        self,
        store: CacheStore,
        client: RemoteIndexClient,
        background: BackgroundTaskRunner,
        persistence: Optional[LocalPersistenceService] = None,
    ):
        self.store = store
        self.persistence = persistence or LocalPersistenceService(store)
        self.engine = StreamSyncEngine(store, UserStreamSource(client, self.persistence), background)

    async def get_or_fetch_stream_slice(
        self,
        stream_id: str,
        viewer_id: Optional[str] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> Optional[UserStreamPage]:
        """
        One page of users for ``stream_id``.

        Returns:
            The page, or ``None`` if ``token`` was cancelled while it was loading.
        """
        return await unless_cancelled(self._load_page(stream_id, viewer_id, skip, limit), token)

    async def _load_page(
        self, stream_id: str, viewer_id: Optional[str], skip: int, limit: Optional[int]
    ) -> UserStreamPage:
        limit = limit or settings.USER_STREAM_PAGE_LIMIT
        stream_slice = await self.engine.get_or_fetch_slice(stream_id, skip=skip, limit=limit, viewer_id=viewer_id)
        if not stream_slice.page_ids:
            return UserStreamPage(users=[], next_cursor=None)

        await self.engine.fetch_missing_entities(stream_slice.page_ids, viewer_id)
        users = await self.persistence.load_users(stream_slice.page_ids)
        followed = await self._viewer_following(viewer_id)

        views: List[UserView] = []
        for user_id in stream_slice.page_ids:
            user = users.get(user_id)
            if user is None:
                logger.warning(f"User {user_id} in stream {stream_id} could not be hydrated")
                continue
            views.append(self._to_view(user, viewer_id, followed))
        return UserStreamPage(users=views, next_cursor=stream_slice.next_cursor)

    async def _viewer_following(self, viewer_id: Optional[str]) -> Set[str]:
        if not viewer_id:
            return set()
        record = await self.store.user_streams.find_by_id(user_stream_id(viewer_id, FOLLOWING))
        return set(record["stream"] or []) if record else set()

    @staticmethod
    def _to_view(user: UserDTO, viewer_id: Optional[str], followed: Set[str]) -> UserView:
        is_following = bool(viewer_id) and user.id != viewer_id and (
            user.relationship.following or user.id in followed
        )
        return UserView(
            id=user.id,
            details=user.details,
            counts=user.counts,
            tags=user.tags,
            is_following=is_following,
        )

    async def followers(self, user_id: str, viewer_id: Optional[str] = None, skip: int = 0,
                        limit: Optional[int] = None) -> UserStreamPage:
        return await self._load_page(user_stream_id(user_id, FOLLOWERS), viewer_id, skip, limit)

    async def following(self, user_id: str, viewer_id: Optional[str] = None, skip: int = 0,
                        limit: Optional[int] = None) -> UserStreamPage:
        return await self._load_page(user_stream_id(user_id, FOLLOWING), viewer_id, skip, limit)

    async def muted_owner_set(self, viewer_id: str) -> Set[str]:
        """Owners the viewer has muted, from the cached muted stream (empty if not cached)."""
        record = await self.store.user_streams.find_by_id(user_stream_id(viewer_id, MUTED))
        return set(record["stream"] or []) if record else set()
