"""
Local follow and mute writes.

Following or muting someone updates the cached user streams and relationship
records straight away, so the next page render reflects it without waiting for
the remote index. Post timelines that depend on the follow graph are dropped from
the cache and re-fetched on next read.
"""
import logging
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from feed_cache.core.user_streams import FOLLOWERS, FOLLOWING, FRIENDS, MUTED, user_stream_id
from feed_cache.storage.cache_store import CacheStore
from feed_cache.utils.clock import now_ms

logger = logging.getLogger(__name__)

POST_STREAM_SORTINGS = ("timeline", "popularity")


class LocalFollowService:
    def __init__(self, store: CacheStore):
        self.store = store

    async def follow(self, follower: str, followee: str) -> bool:
        """
        Record that ``follower`` follows ``followee``.

        Returns:
            True if the two users became friends (mutual follow) with this call.
        """
        return await self._set_following(follower, followee, True)

    async def unfollow(self, follower: str, followee: str) -> bool:
        """
        Record that ``follower`` no longer follows ``followee``.

        Returns:
            True if a friendship was broken by this call.
        """
        return await self._set_following(follower, followee, False)

    async def _set_following(self, follower: str, followee: str, following: bool) -> bool:
        async with self.store.transaction() as db:
            relationship = await self._relationship(followee, db)
            changed = bool(relationship.get("following")) != following
            friendship_changed = changed and bool(relationship.get("followed_by"))

            if changed:
                relationship["following"] = following
                await self._save_relationship(followee, relationship, db)
                delta = 1 if following else -1
                await self._adjust_counts(follower, {"following": delta, "friends": delta if friendship_changed else 0}, db)
                await self._adjust_counts(followee, {"followers": delta, "friends": delta if friendship_changed else 0}, db)

            await self._update_stream(user_stream_id(follower, FOLLOWING), followee, following, db)
            await self._update_stream(user_stream_id(followee, FOLLOWERS), follower, following, db)
            if friendship_changed:
                await self._update_stream(user_stream_id(follower, FRIENDS), followee, following, db)
                await self._update_stream(user_stream_id(followee, FRIENDS), follower, following, db)

            dropped = await self._invalidate_timelines(friendship_changed, db)

        action = "follow" if following else "unfollow"
        logger.debug(
            f"Local {action} {follower} -> {followee} (friendship changed: {friendship_changed}, "
            f"{dropped} timeline streams dropped)"
        )
        return friendship_changed

    async def mute(self, muter: str, mutee: str) -> None:
        """Add ``mutee`` to the muter's muted stream and flag the relationship."""
        await self._set_muted(muter, mutee, True)

    async def unmute(self, muter: str, mutee: str) -> None:
        await self._set_muted(muter, mutee, False)

    async def _set_muted(self, muter: str, mutee: str, muted: bool) -> None:
        async with self.store.transaction() as db:
            relationship = await self._relationship(mutee, db)
            if bool(relationship.get("muted")) != muted:
                relationship["muted"] = muted
                await self._save_relationship(mutee, relationship, db)
            await self._update_stream(user_stream_id(muter, MUTED), mutee, muted, db)
        logger.debug(f"Local {'mute' if muted else 'unmute'} {muter} -> {mutee}")

    async def _relationship(self, user_id: str, session: AsyncSession) -> Dict[str, object]:
        record = await self.store.user_relationships.find_by_id(user_id, session=session)
        if record is None or not record["data"]:
            return {"following": False, "followed_by": False, "muted": False}
        return dict(record["data"])

    async def _save_relationship(self, user_id: str, data: Dict[str, object], session: AsyncSession) -> None:
        record = await self.store.user_relationships.find_by_id(user_id, session=session)
        if record is None:
            now = now_ms()
            record = {"created_at": now, "sync_ttl": now}
        record["data"] = data
        await self.store.user_relationships.upsert(user_id, record, session=session)

    async def _adjust_counts(self, user_id: str, deltas: Dict[str, int], session: AsyncSession) -> None:
        record = await self.store.user_counts.find_by_id(user_id, session=session)
        if record is None:
            return
        data = dict(record["data"] or {})
        for field, delta in deltas.items():
            if delta:
                data[field] = max(0, int(data.get(field, 0)) + delta)
        record["data"] = data
        await self.store.user_counts.upsert(user_id, record, session=session)

    async def _update_stream(self, stream_id: str, user_id: str, add: bool, session: AsyncSession) -> None:
        record: Optional[Dict[str, object]] = await self.store.user_streams.find_by_id(stream_id, session=session)
        if record is None:
            if not add:
                return
            record = {"stream": [], "reached_end": False}
        stream = [i for i in (record["stream"] or []) if i != user_id]
        if add:
            stream.insert(0, user_id)
        record["stream"] = stream
        record["updated_at"] = now_ms()
        await self.store.user_streams.upsert(stream_id, record, session=session)

    async def _invalidate_timelines(self, include_friends: bool, session: AsyncSession) -> int:
        sources = [FOLLOWING, FRIENDS] if include_friends else [FOLLOWING]
        dropped = 0
        for sorting in POST_STREAM_SORTINGS:
            for source in sources:
                dropped += await self.store.post_streams.delete_by_prefix(f"{sorting}:{source}:", session=session)
        return dropped
