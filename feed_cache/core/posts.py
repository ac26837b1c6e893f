"""
Local post writes.

Creating, editing and deleting a post updates the cache optimistically, before the
remote index has indexed the change. Related counters (parent replies, reposted
post reposts, author counts) and the author's reply streams are kept in step in the
same transaction.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from feed_cache.core.composite_id import decode, decode_safe, encode
from feed_cache.errors import FeedCacheError
from feed_cache.models import SYNC_STATUS_LOCAL
from feed_cache.models.dtos import PostDetailsDTO
from feed_cache.storage.cache_store import CacheStore
from feed_cache.utils.clock import now_ms

logger = logging.getLogger(__name__)

DELETED = "[DELETED]"
POST_URI_PREFIX = "pubky://"


def post_uri(author_id: str, post_id: str) -> str:
    return f"{POST_URI_PREFIX}{author_id}/pub/pubky.app/posts/{post_id}"


def post_id_from_uri(uri: Optional[str]) -> Optional[str]:
    """
    Composite id for a ``pubky://<author>/pub/pubky.app/posts/<id>`` URI.

    Returns ``None`` for anything else.
    """
    if not uri or not uri.startswith(POST_URI_PREFIX):
        return None
    parts = uri[len(POST_URI_PREFIX):].split("/")
    if len(parts) != 5 or parts[3] != "posts" or not parts[0] or not parts[4]:
        return None
    return encode(parts[0], parts[4])


class PostNotFoundError(FeedCacheError):
    def __init__(self, post_id: str):
        self.post_id = post_id
        super().__init__(f"Post {post_id} is not cached")


class LocalPostService:
    """
    Optimistic post writes against the cache.

    Args:
        store: Open cache store.
    """

    def __init__(self, store: CacheStore):
        self.store = store

    async def create(
        self,
        author_id: str,
        post_id: str,
        content: str,
        kind: str = "short",
        parent_uri: Optional[str] = None,
        reposted_uri: Optional[str] = None,
        attachments: Optional[List[str]] = None,
    ) -> str:
        """
        Store a post written on this device before the index has seen it.

        Returns:
            The composite post id.
        """
        composite_id = encode(author_id, post_id)
        now = now_ms()
        meta = {"sync_status": SYNC_STATUS_LOCAL, "created_at": now, "sync_ttl": now}
        details = {
            "id": composite_id,
            "content": content,
            "kind": kind.lower(),
            "uri": post_uri(author_id, post_id),
            "attachments": attachments,
            "indexed_at": now,
        }
        relationships = {"replied": parent_uri, "reposted": reposted_uri, "mentioned": [], "bookmark": None}
        counts = {"tags": 0, "unique_tags": 0, "replies": 0, "reposts": 0}

        async with self.store.transaction() as db:
            await self.store.post_details.upsert(composite_id, {"data": details, **meta}, session=db)
            await self.store.post_counts.upsert(composite_id, {"data": counts, **meta}, session=db)
            await self.store.post_relationships.upsert(composite_id, {"data": relationships, **meta}, session=db)
            await self.store.post_tags.upsert(composite_id, {"data": [], **meta}, session=db)

            await self._adjust_post_count(post_id_from_uri(parent_uri), "replies", 1, db)
            await self._adjust_post_count(post_id_from_uri(reposted_uri), "reposts", 1, db)
            await self._adjust_user_counts(author_id, {"posts": 1, "replies": 1 if parent_uri else 0}, db)
            await self._update_reply_streams(composite_id, author_id, parent_uri, prepend=True, session=db)

        logger.debug(f"Created local post {composite_id} (reply={bool(parent_uri)}, repost={bool(reposted_uri)})")
        return composite_id

    async def edit(self, post_id: str, details: Dict[str, Any]) -> PostDetailsDTO:
        """
        Shallow-merge ``details`` into the cached post details.

        Raises:
            PostNotFoundError: if the post has no cached details.
        """
        async with self.store.transaction() as db:
            record = await self.store.post_details.find_by_id(post_id, session=db)
            if record is None:
                raise PostNotFoundError(post_id)
            data = dict(record["data"] or {})
            data.update({k: v for k, v in details.items() if k not in ("id", "author")})
            record["data"] = data
            await self.store.post_details.upsert(post_id, record, session=db)

        author_id, local_id = decode_safe(post_id) or ("", post_id)
        return PostDetailsDTO.model_validate({**data, "id": local_id, "author": author_id})

    async def delete(self, post_id: str) -> bool:
        """
        Delete a post from the cache.

        A post that others interacted with (tags, replies, reposts) or that the
        user bookmarked keeps its record and has its content replaced by
        ``[DELETED]``. Anything else is removed along with its counters.

        Returns:
            True if the post was soft-deleted, False if it was removed.

        Raises:
            PostNotFoundError: if the post has no cached details.
        """
        async with self.store.transaction() as db:
            details = await self.store.post_details.find_by_id(post_id, session=db)
            if details is None:
                raise PostNotFoundError(post_id)
            counts_record = await self.store.post_counts.find_by_id(post_id, session=db)
            rel_record = await self.store.post_relationships.find_by_id(post_id, session=db)
            counts = (counts_record or {}).get("data") or {}
            relationships = (rel_record or {}).get("data") or {}

            linked = any(counts.get(field, 0) > 0 for field in ("replies", "reposts", "tags"))
            if linked or relationships.get("bookmark"):
                details["data"] = {**(details["data"] or {}), "content": DELETED}
                await self.store.post_details.upsert(post_id, details, session=db)
                logger.debug(f"Soft-deleted post {post_id}")
                return True

            for table in (
                self.store.post_details,
                self.store.post_counts,
                self.store.post_relationships,
                self.store.post_tags,
            ):
                await table.delete(post_id, session=db)

            parent_uri = relationships.get("replied")
            author_id = decode(post_id).owner_id
            await self._adjust_post_count(post_id_from_uri(parent_uri), "replies", -1, db)
            await self._adjust_post_count(post_id_from_uri(relationships.get("reposted")), "reposts", -1, db)
            await self._adjust_user_counts(author_id, {"posts": -1, "replies": -1 if parent_uri else 0}, db)
            await self._update_reply_streams(post_id, author_id, parent_uri, prepend=False, session=db)

        logger.debug(f"Removed post {post_id}")
        return False

    async def _adjust_post_count(self, post_id: Optional[str], field: str, delta: int, session: AsyncSession) -> None:
        if not post_id:
            return
        record = await self.store.post_counts.find_by_id(post_id, session=session)
        if record is None:
            return
        data = dict(record["data"] or {})
        data[field] = max(0, int(data.get(field, 0)) + delta)
        record["data"] = data
        await self.store.post_counts.upsert(post_id, record, session=session)

    async def _adjust_user_counts(self, user_id: str, deltas: Dict[str, int], session: AsyncSession) -> None:
        record = await self.store.user_counts.find_by_id(user_id, session=session)
        if record is None:
            return
        data = dict(record["data"] or {})
        for field, delta in deltas.items():
            if delta:
                data[field] = max(0, int(data.get(field, 0)) + delta)
        record["data"] = data
        await self.store.user_counts.upsert(user_id, record, session=session)

    async def _update_reply_streams(
        self, post_id: str, author_id: str, parent_uri: Optional[str], prepend: bool, session: AsyncSession
    ) -> None:
        parent_id = post_id_from_uri(parent_uri)
        if not parent_id:
            return
        for stream_id in (f"author_replies:{author_id}", f"post_replies:{parent_id}"):
            record = await self.store.post_streams.find_by_id(stream_id, session=session)
            if record is None:
                continue
            stream = [i for i in (record["stream"] or []) if i != post_id]
            if prepend:
                stream.insert(0, post_id)
            record["stream"] = stream
            record["updated_at"] = now_ms()
            await self.store.post_streams.upsert(stream_id, record, session=session)
