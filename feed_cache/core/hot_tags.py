"""
Hot tag leaderboards.

Snapshots are cached under ``<timeframe>:<reach>``. Hot tags are a non-critical
surface: every failure is logged and turned into an empty list, and an empty
remote result is never stored so it cannot mask a later successful fetch.
"""
import logging
from typing import List, Optional

from feed_cache.config.settings import settings
from feed_cache.core.background import BackgroundTaskRunner
from feed_cache.models.dtos import HotTagDTO
from feed_cache.remote.client import RemoteIndexClient
from feed_cache.storage.cache_store import CacheStore
from feed_cache.utils.clock import now_ms

logger = logging.getLogger(__name__)

TIMEFRAMES = ("today", "this_month", "all_time")
REACHES = ("all", "following", "followers", "friends")


def hot_tags_key(timeframe: str, reach: str) -> str:
    return f"{timeframe}:{reach}"


class HotTagsService:
    def __init__(self, store: CacheStore, client: RemoteIndexClient, background: BackgroundTaskRunner):
        self.store = store
        self.client = client
        self.background = background

    async def get_or_fetch(
        self,
        timeframe: str = "today",
        reach: str = "all",
        user_id: Optional[str] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        taggers_limit: Optional[int] = None,
    ) -> List[HotTagDTO]:
        """
        Hot tags for a timeframe/reach, cache first.

        ``skip > 0`` always queries the remote index and never touches the cache.
        The snapshot is always fetched and stored at ``HOT_TAGS_LIMIT`` tags;
        ``limit`` only slices what this call returns. A cache hit refreshes the
        snapshot in the background. Never raises; returns ``[]`` on any error.
        """
        try:
            if skip and skip > 0:
                return await self._fetch(timeframe, reach, user_id, skip, limit, taggers_limit)

            key = hot_tags_key(timeframe, reach)
            record = await self.store.hot_tags.find_by_id(key)
            if record is not None and record["tags"]:
                tags = [HotTagDTO.model_validate(t) for t in record["tags"]]
                logger.debug(f"Hot tags {key}: cache hit ({len(tags)} tags)")
                self.background.spawn(
                    self.refresh(timeframe, reach, user_id, taggers_limit),
                    name=f"hot_tags:{key}",
                    error_level=logging.DEBUG,
                )
            else:
                tags = await self.refresh(timeframe, reach, user_id, taggers_limit)
            return tags[:limit] if limit is not None else tags
        except Exception as e:
            logger.error(f"Error in HotTagsService.get_or_fetch ({timeframe}:{reach}): {e}", exc_info=True)
            return []

    async def refresh(
        self,
        timeframe: str,
        reach: str,
        user_id: Optional[str] = None,
        taggers_limit: Optional[int] = None,
    ) -> List[HotTagDTO]:
        """Fetch a full first page from the remote index and replace the snapshot if non-empty."""
        tags = await self._fetch(timeframe, reach, user_id, 0, settings.HOT_TAGS_LIMIT, taggers_limit)
        await self._save(hot_tags_key(timeframe, reach), tags)
        return tags

    async def _fetch(
        self,
        timeframe: str,
        reach: str,
        user_id: Optional[str],
        skip: int,
        limit: Optional[int],
        taggers_limit: Optional[int],
    ) -> List[HotTagDTO]:
        return await self.client.hot_tags(
            timeframe,
            reach,
            user_id=user_id,
            skip=skip or None,
            limit=limit or settings.HOT_TAGS_LIMIT,
            taggers_limit=taggers_limit or settings.HOT_TAGS_TAGGERS_LIMIT,
        )

    async def _save(self, key: str, tags: List[HotTagDTO]) -> None:
        if not tags:
            logger.debug(f"Hot tags {key}: empty result, snapshot left untouched")
            return
        await self.store.hot_tags.upsert(key, {"tags": [t.model_dump() for t in tags], "updated_at": now_ms()})
