"""
Interval pollers that keep hot cache entries fresh while an app session is open.
"""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Set

from feed_cache.config.settings import settings
from feed_cache.core.notifications import NotificationService
from feed_cache.core.stream_sync import StreamSource, StreamSyncEngine
from feed_cache.errors import FeedCacheError

logger = logging.getLogger(__name__)


class IntervalPoller(ABC):
    """
    Runs ``run_once`` every ``interval`` seconds on its own asyncio task.

    A failed cycle is logged and the loop carries on with the next one.
    """

    def __init__(self, name: str, interval: float):
        self.name = name
        self.interval = interval
        self.running = False
        self._task: Optional[asyncio.Task] = None
        self.stats: Dict[str, int] = {"runs_completed": 0, "runs_failed": 0}

    @abstractmethod
    async def run_once(self) -> Any:
        """One polling cycle."""

    async def run_loop(self) -> None:
        self.running = True
        logger.info(f"Starting poller {self.name}, interval: {self.interval}s")
        try:
            while self.running:
                cycle_start = time.monotonic()
                try:
                    await self.run_once()
                    self.stats["runs_completed"] += 1
                except Exception as e:
                    self.stats["runs_failed"] += 1
                    logger.error(f"Error in poller {self.name} cycle: {e}")

                sleep_time = max(0.0, self.interval - (time.monotonic() - cycle_start))
                await asyncio.sleep(sleep_time)
        except asyncio.CancelledError:
            logger.info(f"Poller {self.name} cancelled")
        finally:
            self.running = False
            logger.info(
                f"Poller {self.name} stopped after {self.stats['runs_completed']} cycles "
                f"({self.stats['runs_failed']} failed)"
            )

    def start(self) -> asyncio.Task:
        """Schedule the loop on the running event loop; a second call is a no-op."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_loop(), name=f"poller:{self.name}")
        return self._task

    async def stop(self) -> None:
        """Stop the loop and wait for its task to finish."""
        self.running = False
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()


class NotificationPoller(IntervalPoller):
    """Polls for notifications newer than the user's watermark and tracks the unread count."""

    def __init__(self, service: NotificationService, user_id: str, interval: Optional[float] = None):
        super().__init__(
            f"notifications:{user_id}",
            interval if interval is not None else settings.NOTIFICATION_POLL_INTERVAL_SECONDS,
        )
        self.service = service
        self.user_id = user_id
        self.unread_count = 0

    async def run_once(self) -> int:
        self.unread_count = await self.service.notifications(self.user_id)
        logger.debug(f"Poller {self.name}: {self.unread_count} unread")
        return self.unread_count


class StreamPoller(IntervalPoller):
    """Re-fetches the first page of one stream on an interval."""

    def __init__(
        self,
        engine: StreamSyncEngine,
        stream_id: str,
        limit: Optional[int] = None,
        viewer_id: Optional[str] = None,
        interval: Optional[float] = None,
    ):
        super().__init__(
            f"stream:{stream_id}",
            interval if interval is not None else settings.STREAM_POLL_INTERVAL_SECONDS,
        )
        self.engine = engine
        self.stream_id = stream_id
        self.limit = limit or settings.STREAM_PAGE_LIMIT
        self.viewer_id = viewer_id
        self.last_changed = False

    async def run_once(self) -> bool:
        self.last_changed = await self.engine.refresh_first_page(self.stream_id, self.limit, self.viewer_id)
        return self.last_changed


class TtlRefreshPoller(IntervalPoller):
    """
    Keeps the posts and users currently on screen fresh.

    Callers subscribe entities as they become visible and unsubscribe them when
    they scroll away. Each cycle re-fetches up to ``batch_size`` subscribed posts
    and users whose ``sync_ttl`` has passed. Ids that fail to refresh stay stale
    and are picked up again on the next cycle.

    User subscriptions are reference counted since several cards (a post and
    its replies, say) can show the same author.
    """

    def __init__(
        self,
        post_source: StreamSource,
        user_source: StreamSource,
        viewer_id: Optional[str] = None,
        interval: Optional[float] = None,
        batch_size: Optional[int] = None,
    ):
        super().__init__(
            "ttl",
            interval if interval is not None else settings.TTL_REFRESH_INTERVAL_SECONDS,
        )
        self.post_source = post_source
        self.user_source = user_source
        self.viewer_id = viewer_id
        self.batch_size = batch_size or settings.TTL_REFRESH_BATCH_SIZE
        self.subscribed_posts: Set[str] = set()
        self._user_refs: Dict[str, int] = {}

    @property
    def subscribed_users(self) -> Set[str]:
        return set(self._user_refs)

    def subscribe_post(self, post_id: str) -> None:
        self.subscribed_posts.add(post_id)

    def unsubscribe_post(self, post_id: str) -> None:
        self.subscribed_posts.discard(post_id)

    def subscribe_user(self, user_id: str) -> None:
        self._user_refs[user_id] = self._user_refs.get(user_id, 0) + 1

    def unsubscribe_user(self, user_id: str) -> None:
        count = self._user_refs.get(user_id, 0)
        if count <= 1:
            self._user_refs.pop(user_id, None)
        else:
            self._user_refs[user_id] = count - 1

    def reset(self) -> None:
        """Drop every subscription (route change, logout)."""
        self.subscribed_posts.clear()
        self._user_refs.clear()

    async def run_once(self) -> int:
        """
        Returns:
            Number of ids requested from the remote index this cycle.
        """
        refreshed = await self._refresh("post", self.post_source, sorted(self.subscribed_posts))
        refreshed += await self._refresh("user", self.user_source, sorted(self._user_refs))
        return refreshed

    async def _refresh(self, kind: str, source: StreamSource, ids: List[str]) -> int:
        if not ids:
            return 0
        try:
            batch = (await source.stale_ids(ids))[:self.batch_size]
            if not batch:
                return 0
            records = await source.fetch_by_ids(batch, self.viewer_id)
            if records:
                await source.persist_records(records)
        except FeedCacheError as e:
            logger.warning(f"Poller {self.name}: failed to refresh stale {kind}s: {e}")
            return 0
        logger.debug(f"Poller {self.name}: refreshed {len(batch)} stale {kind}s of {len(ids)} subscribed")
        return len(batch)
