import asyncio
import logging
import math

import pytest
from unittest.mock import AsyncMock

from feed_cache.core.notifications import NotificationService, last_read_url
from feed_cache.errors import RemoteServerError
from feed_cache.models.dtos import NotificationDTO
from feed_cache.remote.client import RemoteIndexClient
from feed_cache.remote.homeserver import PUT, HomeserverWriter

USER = "me"
NOW = 1_700_000_000_000


def notes(*timestamps):
    return [NotificationDTO(timestamp=ts, body={"type": "follow", "followed_by": f"u{ts}"}) for ts in timestamps]


@pytest.fixture
def client():
    return AsyncMock(spec=RemoteIndexClient)


@pytest.fixture
def homeserver():
    return AsyncMock(spec=HomeserverWriter)


@pytest.fixture
def service(store, client, homeserver, runner):
    return NotificationService(store, client, homeserver, runner, clock=lambda: NOW)


async def seed(store, *timestamps):
    await store.notifications.bulk_upsert([NotificationService._row(USER, n) for n in notes(*timestamps)])


def test_last_read_url():
    assert last_read_url("alice") == "pubky://alice/pub/pubky.app/last_read"


@pytest.mark.asyncio
async def test_unread_counts_strictly_newer(store, client, service):
    client.notifications.return_value = notes(300, 200, 100)

    unread = await service.notifications(USER, last_read=200)

    assert unread == 1
    assert service.unread_count(USER) == 1
    client.notifications.assert_awaited_once_with(USER, start=200)
    assert await store.notifications.count() == 3
    meta = await store.notifications_meta.find_by_id(USER)
    assert meta == {"user_id": USER, "last_read": 200, "unread_count": 1}


@pytest.mark.asyncio
async def test_notifications_uses_stored_watermark(store, client, service):
    await store.notifications_meta.upsert(USER, {"last_read": 150})
    client.notifications.return_value = notes(200, 100)

    assert await service.notifications(USER) == 1
    client.notifications.assert_awaited_once_with(USER, start=150)


@pytest.mark.asyncio
async def test_notifications_remote_error_propagates(store, client, service):
    client.notifications.side_effect = RemoteServerError("down", 503)

    with pytest.raises(RemoteServerError):
        await service.notifications(USER, last_read=0)
    assert await store.notifications.count() == 0


@pytest.mark.asyncio
async def test_poll_racing_mark_all_as_read_keeps_newer_watermark(store, client, service, runner):
    await store.notifications_meta.upsert(USER, {"last_read": 100})
    fetching = asyncio.Event()
    release = asyncio.Event()

    async def slow_fetch(*args, **kwargs):
        fetching.set()
        await release.wait()
        return notes(NOW - 10)

    client.notifications.side_effect = slow_fetch
    poll = asyncio.create_task(service.notifications(USER))
    await fetching.wait()

    await service.mark_all_as_read(USER)
    release.set()

    assert await poll == 0
    assert service.unread_count(USER) == 0
    meta = await store.notifications_meta.find_by_id(USER)
    assert meta == {"user_id": USER, "last_read": NOW, "unread_count": 0}
    await runner.drain()


@pytest.mark.asyncio
async def test_older_explicit_last_read_does_not_roll_back(store, client, service):
    await store.notifications_meta.upsert(USER, {"last_read": NOW})
    client.notifications.return_value = notes(NOW - 10, 50)

    assert await service.notifications(USER, last_read=5) == 0

    assert await service.get_last_read(USER) == NOW


@pytest.mark.asyncio
async def test_notifications_sharing_a_timestamp_are_kept_apart(store, client, service):
    client.notifications.return_value = [
        NotificationDTO(timestamp=300, body={"type": "follow", "followed_by": "alice"}),
        NotificationDTO(timestamp=300, body={"type": "follow", "followed_by": "bob"}),
    ]

    assert await service.notifications(USER, last_read=0) == 2
    assert await store.notifications.count() == 2

    # Fetching the same items again does not add rows.
    await service.notifications(USER, last_read=0)
    assert await store.notifications.count() == 2


@pytest.mark.asyncio
async def test_unread_count_before_first_poll_is_zero(service):
    assert service.unread_count(USER) == 0
    assert await service.get_last_read(USER) == 0


@pytest.mark.asyncio
async def test_apply_remote_last_read_only_moves_forward(service):
    assert await service.apply_remote_last_read(USER, 500) == 500
    assert await service.apply_remote_last_read(USER, 400) == 500
    assert await service.get_last_read(USER) == 500


@pytest.mark.asyncio
async def test_mark_all_as_read(store, client, homeserver, service, runner):
    client.notifications.return_value = notes(NOW - 10, NOW - 20)
    await service.notifications(USER, last_read=0)
    assert service.unread_count(USER) == 2

    timestamp = await service.mark_all_as_read(USER)

    assert timestamp == NOW
    assert service.unread_count(USER) == 0
    assert await service.get_last_read(USER) == NOW
    await runner.drain()
    homeserver.request.assert_awaited_once_with(PUT, last_read_url(USER), {"timestamp": NOW})


@pytest.mark.asyncio
async def test_mark_all_as_read_survives_homeserver_failure(homeserver, service, runner, caplog):
    homeserver.request.side_effect = RuntimeError("homeserver unreachable")

    with caplog.at_level(logging.WARNING, logger="feed_cache.core.notifications"):
        await service.mark_all_as_read(USER)
        await runner.drain()

    assert service.unread_count(USER) == 0
    assert await service.get_last_read(USER) == NOW
    assert "Failed to update lastRead on homeserver" in caplog.text


@pytest.mark.asyncio
async def test_mark_all_as_read_never_moves_watermark_back(store, service, runner):
    await store.notifications_meta.upsert(USER, {"last_read": NOW + 5000})

    assert await service.mark_all_as_read(USER) == NOW + 5000
    await runner.drain()


@pytest.mark.asyncio
async def test_history_full_cache_hit(store, client, service):
    await seed(store, 50, 40, 30, 20, 10)

    page = await service.get_or_fetch_notifications(USER, limit=3)

    assert [n.timestamp for n in page.notifications] == [50, 40, 30]
    assert page.older_than == 30
    client.notifications.assert_not_awaited()


@pytest.mark.asyncio
async def test_history_partial_cache_tops_up_from_remote(store, client, service, runner):
    await seed(store, 50, 40)
    client.notifications.return_value = notes(40, 30, 20)

    page = await service.get_or_fetch_notifications(USER, limit=5)
    await runner.drain()

    assert [n.timestamp for n in page.notifications] == [50, 40, 30, 20]
    client.notifications.assert_awaited_once_with(USER, end=40, limit=3)
    assert page.older_than == 20
    assert await store.notifications.count() == 4


@pytest.mark.asyncio
async def test_history_short_remote_page_ends_paging(store, client, service, runner):
    await seed(store, 50)
    client.notifications.return_value = notes(30)

    page = await service.get_or_fetch_notifications(USER, limit=5)
    await runner.drain()

    assert [n.timestamp for n in page.notifications] == [50, 30]
    assert page.older_than is None


@pytest.mark.asyncio
async def test_history_cache_miss_uses_older_than_as_end(client, service, runner):
    client.notifications.return_value = notes(90, 80)

    page = await service.get_or_fetch_notifications(USER, older_than=100, limit=2)
    await runner.drain()

    client.notifications.assert_awaited_once_with(USER, end=100, limit=2)
    assert page.older_than == 80


@pytest.mark.asyncio
async def test_history_first_page_without_bound(client, service):
    client.notifications.return_value = []

    page = await service.get_or_fetch_notifications(USER, older_than=math.inf, limit=10)

    client.notifications.assert_awaited_once_with(USER, end=None, limit=10)
    assert page.notifications == []
    assert page.older_than is None


@pytest.mark.asyncio
async def test_history_remote_error_propagates(store, client, service):
    await seed(store, 50)
    client.notifications.side_effect = RemoteServerError("down", 500)

    with pytest.raises(RemoteServerError):
        await service.get_or_fetch_notifications(USER, limit=5)


@pytest.mark.asyncio
async def test_homeserver_write_is_dispatched_before_counter_reset(store, homeserver, service, runner):
    seen = []

    async def record_state(*args):
        seen.append(service.unread_count(USER))
        await asyncio.sleep(0)

    service._unread[USER] = 4
    homeserver.request.side_effect = record_state

    await service.mark_all_as_read(USER)
    await runner.drain()

    assert seen == [4]
