"""
Stream Synchronization Engine.

Serves pages of composite ids for a stream, deciding between the local stream
record and the remote index:

* A non-initial page (``skip > 0``) always goes to the remote index. Cached lists
  are only authoritative for the first page. The fetched page is appended to the
  stored list only when that list ends exactly at ``skip``.
* The initial page is served from cache when the stored list holds at least
  ``limit`` ids, or when the remote previously confirmed the stream ends within
  the stored list. A background refresh then re-fetches the same page.
* Otherwise the remote page replaces the stored first page and every returned
  entity record is persisted alongside it.

Concurrent reads of the same key may both miss and both fetch; writes are full
replacements, so the last one wins and nothing is duplicated.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from feed_cache.core.background import BackgroundTaskRunner
from feed_cache.models.dtos import StreamSlice
from feed_cache.storage.cache_store import CacheStore
from feed_cache.storage.tables import CacheTable
from feed_cache.utils.clock import now_ms

logger = logging.getLogger(__name__)


def dedupe(ids: Sequence[str]) -> List[str]:
    """Order-preserving removal of duplicate ids."""
    return list(dict.fromkeys(ids))


@dataclass
class FetchedPage:
    """Ids for one remote page plus the full records fetched with them (may be empty)."""
    ids: List[str]
    records: List[Any] = field(default_factory=list)


class StreamSource(ABC):
    """
    Feature-specific side of the engine: which stream table to use, how to query the
    remote index for a page, and how to hydrate and persist entity records.
    """

    @abstractmethod
    def stream_table(self, store: CacheStore) -> CacheTable:
        """The cache table holding this feature's stream records."""

    @abstractmethod
    async def fetch_page(self, stream_id: str, skip: int, limit: int, viewer_id: Optional[str]) -> FetchedPage:
        """Query the remote index for one page of ``stream_id``."""

    @abstractmethod
    async def persist_records(self, records: List[Any], session: Optional[AsyncSession] = None) -> None:
        """Write full entity records into the detail tables."""

    @abstractmethod
    async def stale_ids(self, ids: Sequence[str]) -> List[str]:
        """Subset of ``ids`` with no local detail record or an expired ``sync_ttl``."""

    @abstractmethod
    async def fetch_by_ids(self, ids: List[str], viewer_id: Optional[str]) -> List[Any]:
        """Fetch full entity records for ``ids`` from the remote index."""


class StreamSyncEngine:
    """
    Cache-first pagination over one ``StreamSource``.

    Args:
        store: Open cache store.
        source: Feature-specific stream source.
        background: Runner for refresh-ahead tasks.
        persist_empty: Whether an empty first page is stored as a confirmed-empty
                       stream. ID streams do; snapshot-style features do not.
    """

    def __init__(
        self,
        store: CacheStore,
        source: StreamSource,
        background: BackgroundTaskRunner,
        persist_empty: bool = True,
    ):
        self.store = store
        self.source = source
        self.background = background
        self.persist_empty = persist_empty
        self.table = source.stream_table(store)

    async def get_or_fetch_slice(
        self,
        stream_id: str,
        skip: int = 0,
        limit: int = 20,
        viewer_id: Optional[str] = None,
    ) -> StreamSlice:
        """
        Return one page of ``stream_id``.

        Args:
            stream_id: Colon-joined stream identifier.
            skip: Offset of the page; anything above zero bypasses the cache.
            limit: Page size.
            viewer_id: Viewer used for relationship-dependent remote queries.

        Returns:
            ``StreamSlice`` whose ``next_cursor`` is ``skip + len(page_ids)``, or
            ``None`` when the page is empty.

        Raises:
            StorageError: if the stream table cannot be read or written.
            RemoteFetchError: if the remote index call fails.
        """
        if limit <= 0:
            return StreamSlice(page_ids=[], next_cursor=skip or None)

        if skip and skip > 0:
            logger.debug(f"Stream {stream_id}: skip={skip}, going to remote")
            return await self._fetch_next_page(stream_id, skip, limit, viewer_id)

        record = await self.table.find_by_id(stream_id)
        if record is not None:
            cached = record["stream"] or []
            if len(cached) >= limit or record["reached_end"]:
                page_ids = cached[:limit]
                logger.debug(f"Stream {stream_id}: cache hit ({len(page_ids)}/{len(cached)} ids)")
                self.schedule_refresh(stream_id, limit, viewer_id)
                return StreamSlice(page_ids=page_ids, next_cursor=len(page_ids) or None, from_cache=True)
            logger.debug(f"Stream {stream_id}: insufficient cache ({len(cached)} < {limit})")
        else:
            logger.debug(f"Stream {stream_id}: cache miss")

        page = await self.source.fetch_page(stream_id, 0, limit, viewer_id)
        page_ids = dedupe(page.ids)
        await self._store_first_page(stream_id, page_ids, limit, page.records)
        return StreamSlice(page_ids=page_ids, next_cursor=len(page_ids) or None)

    async def _fetch_next_page(self, stream_id: str, skip: int, limit: int, viewer_id: Optional[str]) -> StreamSlice:
        page = await self.source.fetch_page(stream_id, skip, limit, viewer_id)
        page_ids = dedupe(page.ids)

        async with self.store.transaction() as db:
            if page.records:
                await self.source.persist_records(page.records, session=db)
            record = await self.table.find_by_id(stream_id, session=db)
            stored = list(record["stream"] or []) if record is not None else []
            if record is not None and len(stored) == skip:
                known = set(stored)
                await self.table.upsert(
                    stream_id,
                    {
                        "stream": stored + [i for i in page_ids if i not in known],
                        "reached_end": len(page.ids) < limit,
                        "updated_at": now_ms(),
                    },
                    session=db,
                )
            elif record is not None:
                logger.debug(f"Stream {stream_id}: {len(stored)} cached ids, page at skip={skip} not appended")

        return StreamSlice(page_ids=page_ids, next_cursor=(skip + len(page_ids)) if page_ids else None)

    async def _store_first_page(self, stream_id: str, page_ids: List[str], limit: int, records: List[Any]) -> None:
        if not page_ids and not self.persist_empty:
            logger.debug(f"Stream {stream_id}: empty result not persisted")
            return
        async with self.store.transaction() as db:
            await self.table.upsert(
                stream_id,
                {"stream": page_ids, "reached_end": len(page_ids) < limit, "updated_at": now_ms()},
                session=db,
            )
            if records:
                await self.source.persist_records(records, session=db)

    # ------------------------------------------------------------------
    # Refresh-ahead
    # ------------------------------------------------------------------

    def schedule_refresh(self, stream_id: str, limit: int, viewer_id: Optional[str] = None) -> None:
        """Fire-and-forget refresh of the first page; failures are logged at debug level."""
        self.background.spawn(
            self.refresh_first_page(stream_id, limit, viewer_id),
            name=f"refresh:{stream_id}",
            error_level=logging.DEBUG,
        )

    async def refresh_first_page(self, stream_id: str, limit: int, viewer_id: Optional[str] = None) -> bool:
        """
        Re-fetch the first page and overwrite the stored record if it changed.

        Returns:
            True if the stored record was replaced.
        """
        page = await self.source.fetch_page(stream_id, 0, limit, viewer_id)
        page_ids = dedupe(page.ids)
        record = await self.table.find_by_id(stream_id)
        if record is not None:
            current = (record["stream"] or [])[:limit]
            if current == page_ids and bool(record["reached_end"]) == (len(page_ids) < limit):
                logger.debug(f"Stream {stream_id}: refresh found no changes")
                if page.records:
                    await self.source.persist_records(page.records)
                return False
        await self._store_first_page(stream_id, page_ids, limit, page.records)
        logger.debug(f"Stream {stream_id}: refreshed with {len(page_ids)} ids")
        return bool(page_ids) or self.persist_empty

    # ------------------------------------------------------------------
    # Hydration
    # ------------------------------------------------------------------

    async def fetch_missing_entities(self, ids: Sequence[str], viewer_id: Optional[str] = None) -> List[str]:
        """
        Fetch and persist detail records for ids that are missing or stale locally.

        Ids with a fresh record are filtered out before the remote call.

        Returns:
            The ids that were requested from the remote index.
        """
        to_fetch = await self.source.stale_ids(dedupe(list(ids)))
        if not to_fetch:
            return []
        logger.debug(f"Hydrating {len(to_fetch)} missing or stale entities")
        records = await self.source.fetch_by_ids(to_fetch, viewer_id)
        if records:
            await self.source.persist_records(records)
        return to_fetch
