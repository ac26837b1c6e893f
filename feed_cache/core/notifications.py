"""
Notifications and unread tracking.

Unread state hangs off a per-user ``last_read`` watermark (epoch ms): a
notification is unread when its timestamp is strictly greater. The watermark only
moves forward locally and is written through to the user's homeserver so other
devices see the same value.
"""
import asyncio
import logging
import math
from typing import Callable, Dict, List, Optional

from feed_cache.config.settings import settings
from feed_cache.core.background import BackgroundTaskRunner
from feed_cache.models.dtos import NotificationDTO, NotificationsPage
from feed_cache.remote.client import RemoteIndexClient
from feed_cache.remote.homeserver import PUT, HomeserverWriter
from feed_cache.storage.cache_store import CacheStore
from feed_cache.storage.notification_table import notification_key
from feed_cache.utils.clock import now_ms

logger = logging.getLogger(__name__)


def last_read_url(user_id: str) -> str:
    return f"pubky://{user_id}/pub/pubky.app/last_read"


class NotificationService:
    """
    Args:
        store: Open cache store.
        client: Remote index client.
        homeserver: Write-through collaborator for the ``last_read`` record.
        background: Runner for fire-and-forget writes.
        clock: Epoch-ms time source.
    """

    def __init__(
        self,
        store: CacheStore,
        client: RemoteIndexClient,
        homeserver: HomeserverWriter,
        background: BackgroundTaskRunner,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.client = client
        self.homeserver = homeserver
        self.background = background
        self.clock = clock
        self._unread: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Watermark
    # ------------------------------------------------------------------

    async def get_last_read(self, user_id: str) -> int:
        record = await self.store.notifications_meta.find_by_id(user_id)
        return int(record["last_read"]) if record else 0

    def unread_count(self, user_id: str) -> int:
        """Last unread count computed in this process (0 before the first poll)."""
        return self._unread.get(user_id, 0)

    async def apply_remote_last_read(self, user_id: str, remote_last_read: int) -> int:
        """
        Adopt the homeserver's watermark if it is ahead of the local one.

        Returns:
            The resulting local watermark.
        """
        record = await self.store.notifications_meta.find_by_id(user_id)
        local = int(record["last_read"]) if record else 0
        if remote_last_read <= local:
            return local
        unread = record["unread_count"] if record else 0
        await self.store.notifications_meta.upsert(user_id, {"last_read": remote_last_read, "unread_count": unread})
        logger.debug(f"Adopted remote last_read {remote_last_read} for {user_id} (was {local})")
        return remote_last_read

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def notifications(self, user_id: str, last_read: Optional[int] = None) -> int:
        """
        Fetch notifications newer than the watermark, store them and update the
        unread counter.

        Args:
            user_id: Recipient.
            last_read: Watermark to use; the stored one when omitted.

        Returns:
            The unread count.

        Raises:
            RemoteFetchError: remote failures propagate and nothing is stored.
            StorageError: persistence failures propagate.
        """
        if last_read is None:
            last_read = await self.get_last_read(user_id)
        items = await self.client.notifications(user_id, start=last_read)
        return await self.persist_and_get_unread_count(user_id, items, last_read)

    async def persist_and_get_unread_count(
        self, user_id: str, items: List[NotificationDTO], last_read: int
    ) -> int:
        """
        Store ``items`` and return how many are newer than the watermark.

        The stored watermark is re-read in the same transaction and the larger of it
        and ``last_read`` is kept, so a poll that raced ``mark_all_as_read`` (or was
        handed an old value) never moves it back.
        """
        async with self.store.transaction() as db:
            record = await self.store.notifications_meta.find_by_id(user_id, session=db)
            watermark = max(int(record["last_read"]) if record else 0, last_read)
            unread = sum(1 for item in items if item.timestamp > watermark)
            if items:
                await self.store.notifications.bulk_upsert(
                    [self._row(user_id, item) for item in items], session=db
                )
            await self.store.notifications_meta.upsert(
                user_id, {"last_read": watermark, "unread_count": unread}, session=db
            )
        if watermark != last_read:
            logger.debug(f"Watermark for {user_id} moved to {watermark} during poll; unread recomputed")
        self._unread[user_id] = unread
        return unread

    @staticmethod
    def _row(user_id: str, item: NotificationDTO) -> Dict[str, object]:
        return {
            "id": notification_key(user_id, item.timestamp, item.body),
            "user_id": user_id,
            "timestamp": item.timestamp,
            "body": item.body,
        }

    # ------------------------------------------------------------------
    # Mark as read
    # ------------------------------------------------------------------

    async def mark_all_as_read(self, user_id: str) -> int:
        """
        Advance the watermark to now and zero the unread counter.

        The homeserver write is dispatched before the local counter is zeroed but
        is not awaited; its failure is logged as a warning.

        Returns:
            The new watermark.
        """
        previous = await self.get_last_read(user_id)
        timestamp = max(self.clock(), previous)
        current_unread = self.unread_count(user_id)

        await self.store.notifications_meta.upsert(
            user_id, {"last_read": timestamp, "unread_count": current_unread}
        )
        self.background.spawn(
            self._write_last_read(user_id, timestamp),
            name=f"last_read:{user_id}",
            error_level=logging.WARNING,
        )
        # Let the write start before the counter is zeroed.
        await asyncio.sleep(0)
        await self.store.notifications_meta.upsert(user_id, {"last_read": timestamp, "unread_count": 0})
        self._unread[user_id] = 0
        return timestamp

    async def _write_last_read(self, user_id: str, timestamp: int) -> None:
        try:
            await self.homeserver.request(PUT, last_read_url(user_id), {"timestamp": timestamp})
        except Exception as e:
            logger.warning(f"Failed to update lastRead on homeserver for {user_id}: {e}")

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def get_or_fetch_notifications(
        self,
        user_id: str,
        older_than: float = math.inf,
        limit: Optional[int] = None,
    ) -> NotificationsPage:
        """
        Newest-first page of notifications older than ``older_than``.

        Cached notifications are used first; a short page is topped up from the
        remote index starting below the oldest cached timestamp. Fetched items are
        stored in the background.

        Raises:
            RemoteFetchError: if the remote index call fails.
        """
        limit = limit or settings.NOTIFICATIONS_PAGE_LIMIT
        cached = [
            NotificationDTO(timestamp=row["timestamp"], body=row["body"] or {})
            for row in await self.store.notifications.find_older_than(user_id, older_than, limit)
        ]
        if len(cached) >= limit:
            return NotificationsPage(notifications=cached, older_than=cached[-1].timestamp)

        if cached:
            end: Optional[int] = cached[-1].timestamp
        else:
            end = None if math.isinf(older_than) else int(older_than)

        remaining = limit - len(cached)
        fetched = await self.client.notifications(user_id, end=end, limit=remaining)
        if not fetched and not cached:
            return NotificationsPage(notifications=[], older_than=None)

        seen = {notification_key(user_id, item.timestamp, item.body) for item in cached}
        fresh = [item for item in fetched if notification_key(user_id, item.timestamp, item.body) not in seen]
        if fresh:
            self.background.spawn(
                self.store.notifications.bulk_upsert([self._row(user_id, item) for item in fresh]),
                name=f"notifications:{user_id}",
                error_level=logging.WARNING,
            )

        combined = cached + fresh
        has_more = len(fetched) >= remaining
        return NotificationsPage(
            notifications=combined,
            older_than=combined[-1].timestamp if combined and has_more else None,
        )
