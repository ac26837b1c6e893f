"""
Generic cache table helper.

A ``CacheTable`` wraps one ORM model and offers the small key-value surface every
cache consumer needs: find, upsert (full replacement), transactional bulk upsert,
delete and clear. Reads return plain dict copies, never live ORM instances, so
callers can't mutate stored state by accident. Any SQLAlchemy failure is
re-raised as ``StorageError`` carrying the operation name and key.
"""
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncGenerator, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from feed_cache.errors import StorageError

if TYPE_CHECKING:
    from feed_cache.storage.cache_store import CacheStore

logger = logging.getLogger(__name__)

# Keeps a single INSERT well below sqlite's bound-parameter limit.
BULK_CHUNK_SIZE = 200


class CacheTable:
    """
    Key-value access to a single cache table.

    Args:
        store: The owning ``CacheStore``; provides sessions and the dialect name.
        model: ORM class with a single-column string primary key named ``id``
               (or ``key_column`` when different).
        defaults: Values used for columns missing from an upsert payload, so an
                  upsert always replaces the whole row.
        key_column: Name of the primary key column.
    """

    def __init__(
        self,
        store: "CacheStore",
        model: Any,
        defaults: Optional[Dict[str, Any]] = None,
        key_column: str = "id",
    ):
        self._store = store
        self.model = model
        self.name = model.__tablename__
        self.key_column = key_column
        self._key = getattr(model, key_column)
        self._defaults = dict(defaults or {})
        self._value_columns = [c.name for c in model.__table__.columns if c.name != key_column]

    def __repr__(self) -> str:
        return f"<CacheTable(name='{self.name}')>"

    # -- internals -----------------------------------------------------------

    @asynccontextmanager
    async def _guard(self, operation: str, key: Any) -> AsyncGenerator[None, None]:
        try:
            yield
        except StorageError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Cache table operation {self.name}.{operation} failed for key {key!r}: {e}")
            raise StorageError(f"{self.name}.{operation}", key, e) from e

    def _row_values(self, key: str, value: Dict[str, Any]) -> Dict[str, Any]:
        row = {self.key_column: key}
        for column in self._value_columns:
            if column in value:
                row[column] = value[column]
            else:
                default = self._defaults.get(column)
                # Fresh copies so list/dict defaults are never shared between rows.
                row[column] = type(default)(default) if isinstance(default, (list, dict)) else default
        return row

    def _upsert_statement(self, rows: List[Dict[str, Any]]):
        if self._store.dialect_name == "postgresql":
            stmt = postgresql.insert(self.model).values(rows)
        else:
            stmt = sqlite.insert(self.model).values(rows)
        return stmt.on_conflict_do_update(
            index_elements=[self.key_column],
            set_={column: stmt.excluded[column] for column in self._value_columns},
        )

    def _to_dict(self, row: Any) -> Dict[str, Any]:
        return dict(row._mapping)

    # -- reads ---------------------------------------------------------------

    async def find_by_id(self, key: str, session: Optional[AsyncSession] = None) -> Optional[Dict[str, Any]]:
        """Returns a copy of the row for ``key`` or ``None``."""
        async with self._guard("find_by_id", key):
            async with self._store.session(session) as db:
                result = await db.execute(select(*self.model.__table__.columns).where(self._key == key))
                row = result.first()
                return self._to_dict(row) if row is not None else None

    async def find_by_ids(self, keys: Iterable[str], session: Optional[AsyncSession] = None) -> Dict[str, Dict[str, Any]]:
        """Returns ``{key: row}`` for the keys that exist; missing keys are omitted."""
        keys = list(dict.fromkeys(keys))
        if not keys:
            return {}
        found: Dict[str, Dict[str, Any]] = {}
        async with self._guard("find_by_ids", keys):
            async with self._store.session(session) as db:
                for start in range(0, len(keys), BULK_CHUNK_SIZE):
                    chunk = keys[start:start + BULK_CHUNK_SIZE]
                    result = await db.execute(select(*self.model.__table__.columns).where(self._key.in_(chunk)))
                    for row in result:
                        data = self._to_dict(row)
                        found[data[self.key_column]] = data
        return found

    async def find_all(self, session: Optional[AsyncSession] = None) -> List[Dict[str, Any]]:
        async with self._guard("find_all", None):
            async with self._store.session(session) as db:
                result = await db.execute(select(*self.model.__table__.columns))
                return [self._to_dict(row) for row in result]

    async def count(self, session: Optional[AsyncSession] = None) -> int:
        async with self._guard("count", None):
            async with self._store.session(session) as db:
                result = await db.execute(select(func.count()).select_from(self.model))
                return int(result.scalar_one())

    # -- writes --------------------------------------------------------------

    async def upsert(self, key: str, value: Dict[str, Any], session: Optional[AsyncSession] = None) -> None:
        """
        Insert or fully replace the row for ``key``.

        No merging happens here: columns absent from ``value`` are reset to the
        table defaults.
        """
        async with self._guard("upsert", key):
            async with self._store.session(session) as db:
                await db.execute(self._upsert_statement([self._row_values(key, value)]))

    async def bulk_upsert(self, records: Sequence[Dict[str, Any]], session: Optional[AsyncSession] = None) -> None:
        """
        Upsert many rows in one transaction; either all are written or none.

        Each record must carry its key under the table's key column. When the same
        key appears more than once, the last record wins.
        """
        if not records:
            return
        rows: Dict[str, Dict[str, Any]] = {}
        for record in records:
            key = record[self.key_column]
            rows[key] = self._row_values(key, record)
        keys = list(rows)
        async with self._guard("bulk_upsert", keys):
            async with self._store.session(session) as db:
                values = list(rows.values())
                for start in range(0, len(values), BULK_CHUNK_SIZE):
                    await db.execute(self._upsert_statement(values[start:start + BULK_CHUNK_SIZE]))

    async def delete(self, key: str, session: Optional[AsyncSession] = None) -> None:
        async with self._guard("delete", key):
            async with self._store.session(session) as db:
                await db.execute(delete(self.model).where(self._key == key))

    async def bulk_delete(self, keys: Iterable[str], session: Optional[AsyncSession] = None) -> None:
        keys = list(keys)
        if not keys:
            return
        async with self._guard("bulk_delete", keys):
            async with self._store.session(session) as db:
                for start in range(0, len(keys), BULK_CHUNK_SIZE):
                    await db.execute(delete(self.model).where(self._key.in_(keys[start:start + BULK_CHUNK_SIZE])))

    async def clear(self, session: Optional[AsyncSession] = None) -> None:
        """Removes every row (logout/reset)."""
        async with self._guard("clear", None):
            async with self._store.session(session) as db:
                await db.execute(delete(self.model))
        logger.info(f"Cleared cache table {self.name}")

    async def delete_by_prefix(self, prefix: str, session: Optional[AsyncSession] = None) -> int:
        """
        Removes every row whose key starts with ``prefix``.

        Returns:
            The number of rows deleted.
        """
        async with self._guard("delete_by_prefix", prefix):
            async with self._store.session(session) as db:
                result = await db.execute(delete(self.model).where(self._key.startswith(prefix, autoescape=True)))
                return int(result.rowcount or 0)
