"""
Notification table with timestamp-ordered range reads.
"""
import hashlib
import json
import math
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from feed_cache.models import NotificationORM
from feed_cache.storage.tables import CacheTable


def notification_key(user_id: str, timestamp: int, body: Optional[Dict[str, Any]] = None) -> str:
    """
    Row key for one notification: recipient, timestamp and a digest of the body.

    Two notifications sharing a millisecond still get distinct keys, while the
    same notification fetched twice maps to the same row.
    """
    digest = hashlib.sha1(json.dumps(body or {}, sort_keys=True, default=str).encode("utf-8")).hexdigest()[:16]
    return f"{user_id}:{timestamp}:{digest}"


class NotificationTable(CacheTable):
    """``CacheTable`` over ``notifications`` plus newest-first paging by timestamp."""

    def __init__(self, store: Any):
        super().__init__(store, NotificationORM, {"user_id": "", "timestamp": 0, "body": {}})

    async def find_older_than(
        self,
        user_id: str,
        older_than: float = math.inf,
        limit: int = 30,
        session: Optional[AsyncSession] = None,
    ) -> List[Dict[str, Any]]:
        """Up to ``limit`` notifications with ``timestamp < older_than``, newest first."""
        stmt = select(*NotificationORM.__table__.columns).where(NotificationORM.user_id == user_id)
        if not math.isinf(older_than):
            stmt = stmt.where(NotificationORM.timestamp < int(older_than))
        stmt = stmt.order_by(NotificationORM.timestamp.desc()).limit(limit)
        async with self._guard("find_older_than", user_id):
            async with self._store.session(session) as db:
                result = await db.execute(stmt)
                return [self._to_dict(row) for row in result]

    async def count_newer_than(self, user_id: str, timestamp: int, session: Optional[AsyncSession] = None) -> int:
        """Number of stored notifications strictly newer than ``timestamp``."""
        stmt = (
            select(func.count())
            .select_from(NotificationORM)
            .where(NotificationORM.user_id == user_id, NotificationORM.timestamp > timestamp)
        )
        async with self._guard("count_newer_than", user_id):
            async with self._store.session(session) as db:
                result = await db.execute(stmt)
                return int(result.scalar_one())
