import pytest

from feed_cache.errors import StorageError
from feed_cache.storage.cache_store import CacheStore
from feed_cache.utils.db_session import get_db_session_context_manager


@pytest.mark.asyncio
async def test_open_creates_tables_and_is_idempotent(database_url):
    store = CacheStore(database_url)
    assert not store.is_open

    await store.open()
    await store.open()

    assert store.is_open
    assert store.dialect_name == "sqlite"
    assert await store.hot_tags.count() == 0
    await store.close()
    assert not store.is_open


@pytest.mark.asyncio
async def test_in_memory_database_shares_one_connection():
    async with CacheStore("sqlite+aiosqlite://") as store:
        await store.post_streams.upsert("timeline:all:all", {"stream": ["a:1"]})
        record = await store.post_streams.find_by_id("timeline:all:all")
    assert record["stream"] == ["a:1"]


@pytest.mark.asyncio
async def test_unopened_store_raises_storage_error(database_url):
    store = CacheStore(database_url)
    with pytest.raises(StorageError):
        await store.hot_tags.find_by_id("today:all")
    with pytest.raises(StorageError):
        _ = store.dialect_name


@pytest.mark.asyncio
async def test_data_survives_reopen(database_url):
    async with CacheStore(database_url) as store:
        await store.notifications_meta.upsert("me", {"last_read": 42, "unread_count": 3})

    async with CacheStore(database_url) as store:
        record = await store.notifications_meta.find_by_id("me")

    assert record == {"user_id": "me", "last_read": 42, "unread_count": 3}


@pytest.mark.asyncio
async def test_clear_all_empties_every_table(store):
    await store.post_streams.upsert("timeline:all:all", {"stream": ["a:1"]})
    await store.user_details.upsert("u1", {"data": {"id": "u1"}})
    await store.notifications_meta.upsert("me", {"last_read": 1})
    await store.hot_tags.upsert("today:all", {"tags": [{"label": "x"}]})

    await store.clear_all()

    for table in store.tables:
        assert await table.count() == 0, table.name


@pytest.mark.asyncio
async def test_transaction_shares_session_across_tables(store):
    async with store.transaction() as db:
        await store.user_details.upsert("u1", {"data": {"id": "u1"}}, session=db)
        await store.user_counts.upsert("u1", {"data": {"posts": 1}}, session=db)
        assert (await store.user_counts.find_by_id("u1", session=db))["data"] == {"posts": 1}

    assert await store.user_details.find_by_id("u1") is not None


@pytest.mark.asyncio
async def test_session_context_needs_a_factory_without_existing_session():
    with pytest.raises(ValueError):
        async with get_db_session_context_manager(None, None):
            pass


@pytest.mark.asyncio
async def test_session_context_passes_existing_session_through(store):
    async with store.session() as db:
        async with get_db_session_context_manager(db, None) as inner:
            assert inner is db
