"""
Post timelines.

Stream ids look like ``<sorting>:<source>:<kind>[:<tag>,<tag>...]``, e.g.
``timeline:all:all`` or ``timeline:friends:video:bitcoin,lightning``. The remote
index only returns ordered post keys for a timeline page, so post details are
hydrated afterwards and post authors are fetched lazily through a batch queue.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from feed_cache.config.settings import settings
from feed_cache.core.background import BackgroundTaskRunner
from feed_cache.core.batch_queue import BatchQueue
from feed_cache.core.cancellation import CancellationToken, unless_cancelled
from feed_cache.core.filters import filter_strict
from feed_cache.core.persistence import LocalPersistenceService
from feed_cache.core.stream_sync import FetchedPage, StreamSource, StreamSyncEngine
from feed_cache.core.user_streams import MUTED, user_stream_id
from feed_cache.models.dtos import PostDTO, PostStreamPage
from feed_cache.remote.client import RemoteIndexClient
from feed_cache.storage.cache_store import CacheStore
from feed_cache.storage.tables import CacheTable

logger = logging.getLogger(__name__)

# Sources whose content depends on who is looking.
VIEWER_SCOPED_SOURCES = {"following", "followers", "friends", "bookmarks", "me"}
ALL = "all"


@dataclass
class PostStreamQuery:
    sorting: str
    source: str
    kind: str = ALL
    tags: List[str] = field(default_factory=list)

    @classmethod
    def from_stream_id(cls, stream_id: str) -> "PostStreamQuery":
        parts = stream_id.split(":", 3)
        if len(parts) < 3 or not all(parts[:3]):
            raise ValueError(f"Invalid post stream id: {stream_id!r}")
        tags = [t for t in parts[3].split(",") if t] if len(parts) == 4 else []
        return cls(sorting=parts[0], source=parts[1], kind=parts[2], tags=tags)

    def to_stream_id(self) -> str:
        base = f"{self.sorting}:{self.source}:{self.kind}"
        return f"{base}:{','.join(self.tags)}" if self.tags else base


class PostStreamSource(StreamSource):
    """Remote timelines; pages carry keys only, records come from ``fetch_by_ids``."""

    def __init__(self, client: RemoteIndexClient, persistence: LocalPersistenceService):
        self.client = client
        self.persistence = persistence

    def stream_table(self, store: CacheStore) -> CacheTable:
        return store.post_streams

    async def fetch_page(self, stream_id: str, skip: int, limit: int, viewer_id: Optional[str]) -> FetchedPage:
        query = PostStreamQuery.from_stream_id(stream_id)
        page = await self.client.stream_post_keys(
            source=query.source,
            sorting=query.sorting,
            kind=None if query.kind == ALL else query.kind,
            tags=query.tags or None,
            observer_id=viewer_id if query.source in VIEWER_SCOPED_SOURCES else None,
            viewer_id=viewer_id,
            skip=skip,
            limit=limit,
        )
        return FetchedPage(ids=list(page.post_keys))

    async def persist_records(self, records: List[PostDTO], session: Optional[AsyncSession] = None) -> None:
        await self.persistence.persist_posts(records, session=session)

    async def stale_ids(self, ids: Sequence[str]) -> List[str]:
        return await self.persistence.stale_post_ids(ids)

    async def fetch_by_ids(self, ids: List[str], viewer_id: Optional[str]) -> List[PostDTO]:
        return await self.client.posts_by_ids(ids, viewer_id=viewer_id)


class PostStreamService:
    """Cache-first timelines with mute filtering and post/author hydration."""

    def __init__(
        self,
        store: CacheStore,
        client: RemoteIndexClient,
        background: BackgroundTaskRunner,
        persistence: Optional[LocalPersistenceService] = None,
    ):
        self.store = store
        self.client = client
        self.background = background
        self.persistence = persistence or LocalPersistenceService(store)
        self.engine = StreamSyncEngine(store, PostStreamSource(client, self.persistence), background)
        self.author_queue: BatchQueue[str, None] = BatchQueue("PostAuthors", self._hydrate_authors)

    async def _hydrate_authors(self, user_ids: List[str]) -> None:
        users = await self.client.users_by_ids(user_ids)
        await self.persistence.persist_users(users)

    async def get_or_fetch_slice(
        self,
        stream_id: str,
        viewer_id: Optional[str] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> Optional[PostStreamPage]:
        """
        One page of posts, with the viewer's muted authors removed.

        Returns:
            The page, or ``None`` if ``token`` was cancelled while it was loading.
        """
        return await unless_cancelled(self._load_page(stream_id, viewer_id, skip, limit), token)

    async def _load_page(
        self, stream_id: str, viewer_id: Optional[str], skip: int, limit: Optional[int]
    ) -> PostStreamPage:
        limit = limit or settings.STREAM_PAGE_LIMIT
        stream_slice = await self.engine.get_or_fetch_slice(stream_id, skip=skip, limit=limit, viewer_id=viewer_id)

        post_ids = stream_slice.page_ids
        if viewer_id:
            muted = await self._muted_owners(viewer_id)
            if muted:
                post_ids = filter_strict(post_ids, muted)

        if not post_ids:
            return PostStreamPage(post_ids=[], posts=[], next_cursor=stream_slice.next_cursor)

        await self.engine.fetch_missing_entities(post_ids, viewer_id)
        posts = await self.persistence.load_posts(post_ids)

        authors = list(dict.fromkeys(p.details.author for p in posts.values()))
        missing_authors = await self.persistence.missing_user_ids(authors)
        if missing_authors:
            self.background.spawn(
                self.author_queue.enqueue_many(missing_authors),
                name=f"authors:{stream_id}",
                error_level=logging.WARNING,
            )

        return PostStreamPage(
            post_ids=post_ids,
            posts=[posts[post_id] for post_id in post_ids if post_id in posts],
            next_cursor=stream_slice.next_cursor,
        )

    async def _muted_owners(self, viewer_id: str) -> set:
        record = await self.store.user_streams.find_by_id(user_stream_id(viewer_id, MUTED))
        return set(record["stream"] or []) if record else set()
