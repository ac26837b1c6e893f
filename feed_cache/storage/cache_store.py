"""
The cache store: one explicitly constructed handle owning the database engine
and every cache table.

Orchestrators receive a ``CacheStore`` instead of reaching for module-level
globals. ``open()`` is called at application start, ``close()`` on shutdown and
``clear_all()`` on logout.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from feed_cache.config.settings import settings
from feed_cache.errors import StorageError
from feed_cache.models import (
    Base,
    HotTagsORM,
    NotificationMetaORM,
    PostCountsORM,
    PostDetailsORM,
    PostRelationshipsORM,
    PostStreamORM,
    PostTagsORM,
    SYNC_STATUS_SYNCED,
    UserCountsORM,
    UserDetailsORM,
    UserRelationshipsORM,
    UserStreamORM,
    UserTagsORM,
)
from feed_cache.storage.notification_table import NotificationTable
from feed_cache.storage.tables import CacheTable
from feed_cache.utils.db_session import (
    create_engine_for_url,
    create_session_factory,
    get_db_session_context_manager,
)

logger = logging.getLogger(__name__)

STREAM_DEFAULTS = {"stream": [], "reached_end": False, "updated_at": 0}
ENTITY_DEFAULTS = {"data": None, "sync_status": SYNC_STATUS_SYNCED, "created_at": 0, "sync_ttl": 0}


class CacheStore:
    """
    Owns the engine, session factory and table handles of the local cache.

    Args:
        database_url: SQLAlchemy async URL; defaults to ``settings.DATABASE_URL``.
        engine: An existing engine to use instead of creating one (tests).
    """

    def __init__(self, database_url: Optional[str] = None, engine: Optional[AsyncEngine] = None):
        self.database_url = database_url or settings.DATABASE_URL
        self._engine = engine
        self._owns_engine = engine is None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

        self.post_streams = CacheTable(self, PostStreamORM, STREAM_DEFAULTS)
        self.user_streams = CacheTable(self, UserStreamORM, STREAM_DEFAULTS)

        self.user_details = CacheTable(self, UserDetailsORM, ENTITY_DEFAULTS)
        self.user_counts = CacheTable(self, UserCountsORM, ENTITY_DEFAULTS)
        self.user_relationships = CacheTable(self, UserRelationshipsORM, ENTITY_DEFAULTS)
        self.user_tags = CacheTable(self, UserTagsORM, ENTITY_DEFAULTS)

        self.post_details = CacheTable(self, PostDetailsORM, ENTITY_DEFAULTS)
        self.post_counts = CacheTable(self, PostCountsORM, ENTITY_DEFAULTS)
        self.post_relationships = CacheTable(self, PostRelationshipsORM, ENTITY_DEFAULTS)
        self.post_tags = CacheTable(self, PostTagsORM, ENTITY_DEFAULTS)

        self.notifications = NotificationTable(self)
        self.notifications_meta = CacheTable(
            self, NotificationMetaORM, {"last_read": 0, "unread_count": 0}, key_column="user_id"
        )
        self.hot_tags = CacheTable(self, HotTagsORM, {"tags": [], "updated_at": 0})

    @property
    def tables(self) -> List[CacheTable]:
        return [
            self.post_streams, self.user_streams,
            self.user_details, self.user_counts, self.user_relationships, self.user_tags,
            self.post_details, self.post_counts, self.post_relationships, self.post_tags,
            self.notifications, self.notifications_meta, self.hot_tags,
        ]

    @property
    def is_open(self) -> bool:
        return self._session_factory is not None

    @property
    def dialect_name(self) -> str:
        if self._engine is None:
            raise StorageError("dialect_name", None, RuntimeError("CacheStore is not open"))
        return self._engine.dialect.name

    async def open(self) -> "CacheStore":
        """Creates the engine (if needed) and all cache tables."""
        if self.is_open:
            return self
        if self._engine is None:
            self._engine = create_engine_for_url(self.database_url, echo=settings.DEBUG)
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create cache tables at {self.database_url}: {e}", exc_info=True)
            raise StorageError("open", self.database_url, e) from e
        self._session_factory = create_session_factory(self._engine)
        logger.info(f"Cache store opened ({self._engine.dialect.name})")
        return self

    async def close(self) -> None:
        """Disposes the engine if this store created it."""
        if self._engine is not None and self._owns_engine:
            await self._engine.dispose()
            self._engine = None
        self._session_factory = None
        logger.info("Cache store closed")

    async def __aenter__(self) -> "CacheStore":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @asynccontextmanager
    async def session(self, existing_session: Optional[AsyncSession] = None) -> AsyncGenerator[AsyncSession, None]:
        """Yields ``existing_session`` untouched, or a new committed-on-exit session."""
        if self._session_factory is None and existing_session is None:
            raise StorageError("session", None, RuntimeError("CacheStore is not open"))
        async with get_db_session_context_manager(existing_session, self._session_factory) as db:
            yield db

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """
        A session shared by several table calls so they commit or roll back together.

        Pass the yielded session as ``session=`` to each table method.
        """
        async with self.session() as db:
            yield db

    async def clear_all(self) -> None:
        """Empties every cache table in a single transaction (logout/reset)."""
        async with self.transaction() as db:
            for table in self.tables:
                await table.clear(session=db)
        logger.info("All cache tables cleared")
