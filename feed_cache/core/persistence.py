"""
Entity persistence: fans full user/post records out into their four cache tables
and assembles them back.
"""
import logging
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from feed_cache.config.settings import settings
from feed_cache.core.composite_id import decode, encode
from feed_cache.models import SYNC_STATUS_SYNCED
from feed_cache.models.dtos import (
    BookmarkDTO,
    PostCountsDTO,
    PostDetailsDTO,
    PostDTO,
    PostRelationshipsDTO,
    TagDTO,
    UserCountsDTO,
    UserDetailsDTO,
    UserDTO,
    UserRelationshipDTO,
)
from feed_cache.storage.cache_store import CacheStore
from feed_cache.storage.tables import CacheTable
from feed_cache.utils.clock import now_ms

logger = logging.getLogger(__name__)


def post_composite_id(post: PostDTO) -> str:
    return encode(post.details.author, post.details.id)


class LocalPersistenceService:
    """
    Reads and writes entity records in the cache.

    Args:
        store: Open cache store.
        ttl_seconds: Freshness window applied to ``sync_ttl`` on write.
    """

    def __init__(self, store: CacheStore, ttl_seconds: Optional[int] = None):
        self.store = store
        self.ttl_ms = (ttl_seconds if ttl_seconds is not None else settings.ENTITY_TTL_SECONDS) * 1000

    def _bookkeeping(self, created_at: int, now: int, sync_status: str = SYNC_STATUS_SYNCED) -> Dict[str, object]:
        return {"sync_status": sync_status, "created_at": created_at, "sync_ttl": now + self.ttl_ms}

    async def _created_at(self, table: CacheTable, ids: List[str], now: int, session: AsyncSession) -> Dict[str, int]:
        existing = await table.find_by_ids(ids, session=session)
        return {i: (existing[i]["created_at"] if i in existing else now) for i in ids}

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def persist_users(self, users: Sequence[UserDTO], session: Optional[AsyncSession] = None) -> List[str]:
        """
        Save details, counts, relationship and tags for each user in one transaction.

        Returns:
            The persisted user ids.
        """
        if not users:
            return []
        now = now_ms()
        ids = [user.id for user in users]
        async with self.store.session(session) as db:
            created = await self._created_at(self.store.user_details, ids, now, db)
            details, counts, relationships, tags = [], [], [], []
            for user in users:
                meta = self._bookkeeping(created[user.id], now)
                details.append({"id": user.id, "data": user.details.model_dump(), **meta})
                counts.append({"id": user.id, "data": user.counts.model_dump(), **meta})
                relationships.append({"id": user.id, "data": user.relationship.model_dump(), **meta})
                tags.append({"id": user.id, "data": [t.model_dump() for t in user.tags], **meta})
            await self.store.user_details.bulk_upsert(details, session=db)
            await self.store.user_counts.bulk_upsert(counts, session=db)
            await self.store.user_relationships.bulk_upsert(relationships, session=db)
            await self.store.user_tags.bulk_upsert(tags, session=db)
        logger.debug(f"Persisted {len(ids)} users")
        return ids

    async def load_users(self, user_ids: Iterable[str]) -> Dict[str, UserDTO]:
        """Assemble cached users; ids without a details record are omitted."""
        ids = list(dict.fromkeys(user_ids))
        async with self.store.transaction() as db:
            details = await self.store.user_details.find_by_ids(ids, session=db)
            counts = await self.store.user_counts.find_by_ids(ids, session=db)
            relationships = await self.store.user_relationships.find_by_ids(ids, session=db)
            tags = await self.store.user_tags.find_by_ids(ids, session=db)
        users: Dict[str, UserDTO] = {}
        for user_id in ids:
            if user_id not in details:
                continue
            users[user_id] = UserDTO(
                details=UserDetailsDTO.model_validate(details[user_id]["data"]),
                counts=UserCountsDTO.model_validate(counts[user_id]["data"]) if user_id in counts else UserCountsDTO(),
                relationship=(
                    UserRelationshipDTO.model_validate(relationships[user_id]["data"])
                    if user_id in relationships and relationships[user_id]["data"]
                    else UserRelationshipDTO()
                ),
                tags=[TagDTO.model_validate(t) for t in (tags[user_id]["data"] or [])] if user_id in tags else [],
            )
        return users

    async def missing_user_ids(self, user_ids: Sequence[str]) -> List[str]:
        found = await self.store.user_details.find_by_ids(user_ids)
        return [user_id for user_id in dict.fromkeys(user_ids) if user_id not in found]

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    async def persist_posts(self, posts: Sequence[PostDTO], session: Optional[AsyncSession] = None) -> List[str]:
        """
        Save details, counts, relationships and tags for each post in one transaction.

        Posts are keyed by ``author:post_id``; the author moves into the key and is
        not repeated in the details payload.

        Returns:
            The persisted composite post ids.
        """
        if not posts:
            return []
        now = now_ms()
        ids = [post_composite_id(post) for post in posts]
        async with self.store.session(session) as db:
            created = await self._created_at(self.store.post_details, ids, now, db)
            details, counts, relationships, tags = [], [], [], []
            for composite_id, post in zip(ids, posts):
                meta = self._bookkeeping(created[composite_id], now)
                data = post.details.model_dump(exclude={"author"})
                data["id"] = composite_id
                details.append({"id": composite_id, "data": data, **meta})
                counts.append({"id": composite_id, "data": post.counts.model_dump(), **meta})
                rel = post.relationships.model_dump()
                rel["bookmark"] = post.bookmark.model_dump() if post.bookmark else None
                relationships.append({"id": composite_id, "data": rel, **meta})
                tags.append({"id": composite_id, "data": [t.model_dump() for t in post.tags], **meta})
            await self.store.post_details.bulk_upsert(details, session=db)
            await self.store.post_counts.bulk_upsert(counts, session=db)
            await self.store.post_relationships.bulk_upsert(relationships, session=db)
            await self.store.post_tags.bulk_upsert(tags, session=db)
        logger.debug(f"Persisted {len(ids)} posts")
        return ids

    async def load_posts(self, post_ids: Iterable[str]) -> Dict[str, PostDTO]:
        """Assemble cached posts keyed by composite id; ids without details are omitted."""
        ids = list(dict.fromkeys(post_ids))
        async with self.store.transaction() as db:
            details = await self.store.post_details.find_by_ids(ids, session=db)
            counts = await self.store.post_counts.find_by_ids(ids, session=db)
            relationships = await self.store.post_relationships.find_by_ids(ids, session=db)
            tags = await self.store.post_tags.find_by_ids(ids, session=db)
        posts: Dict[str, PostDTO] = {}
        for composite_id in ids:
            if composite_id not in details:
                continue
            author_id, post_id = decode(composite_id)
            data = dict(details[composite_id]["data"] or {})
            data.update({"id": post_id, "author": author_id})
            rel = dict(relationships[composite_id]["data"] or {}) if composite_id in relationships else {}
            bookmark = rel.pop("bookmark", None)
            posts[composite_id] = PostDTO(
                details=PostDetailsDTO.model_validate(data),
                counts=PostCountsDTO.model_validate(counts[composite_id]["data"]) if composite_id in counts else PostCountsDTO(),
                relationships=PostRelationshipsDTO.model_validate(rel),
                tags=[TagDTO.model_validate(t) for t in (tags[composite_id]["data"] or [])] if composite_id in tags else [],
                bookmark=BookmarkDTO.model_validate(bookmark) if bookmark else None,
            )
        return posts

    # ------------------------------------------------------------------
    # Freshness
    # ------------------------------------------------------------------

    async def stale_ids(self, table: CacheTable, ids: Sequence[str], now: Optional[int] = None) -> List[str]:
        """Ids whose record is missing or whose ``sync_ttl`` has passed."""
        now = now if now is not None else now_ms()
        found = await table.find_by_ids(ids)
        return [i for i in dict.fromkeys(ids) if i not in found or found[i]["sync_ttl"] <= now]

    async def stale_user_ids(self, user_ids: Sequence[str]) -> List[str]:
        return await self.stale_ids(self.store.user_details, user_ids)

    async def stale_post_ids(self, post_ids: Sequence[str]) -> List[str]:
        return await self.stale_ids(self.store.post_details, post_ids)
