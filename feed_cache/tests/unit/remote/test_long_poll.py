import pytest
from unittest.mock import AsyncMock

from feed_cache.remote.long_poll import long_poll
from feed_cache.remote.results import RemoteNotFound, RemoteSuccess, RemoteTimeout


class FakeClock:
    def __init__(self, start: float = 0.0, step: float = 1.0):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


@pytest.mark.asyncio
async def test_returns_first_non_timeout_result():
    attempt = AsyncMock(side_effect=[RemoteTimeout(), RemoteTimeout(), RemoteSuccess("done")])

    result = await long_poll(attempt, expires_at=100, clock=FakeClock())

    assert isinstance(result, RemoteSuccess)
    assert result.data == "done"
    assert attempt.await_count == 3


@pytest.mark.asyncio
async def test_not_found_ends_loop():
    attempt = AsyncMock(return_value=RemoteNotFound())
    result = await long_poll(attempt, expires_at=100, clock=FakeClock())
    assert result.not_found
    attempt.assert_awaited_once()


@pytest.mark.asyncio
async def test_expiry_checked_before_each_attempt():
    attempt = AsyncMock(return_value=RemoteTimeout())

    # Clock reads 0, 1, 2, 3 ... and the deadline is 3: attempts at 0, 1 and 2 only.
    result = await long_poll(attempt, expires_at=3, clock=FakeClock())

    assert isinstance(result, RemoteTimeout)
    assert attempt.await_count == 3


@pytest.mark.asyncio
async def test_already_expired_makes_no_request():
    attempt = AsyncMock(return_value=RemoteSuccess("never"))
    result = await long_poll(attempt, expires_at=5, clock=FakeClock(start=10))
    assert isinstance(result, RemoteTimeout)
    attempt.assert_not_awaited()


@pytest.mark.asyncio
async def test_should_continue_stops_loop():
    attempt = AsyncMock(return_value=RemoteTimeout())
    calls = iter([True, False])

    result = await long_poll(attempt, expires_at=100, clock=FakeClock(), should_continue=lambda: next(calls))

    assert isinstance(result, RemoteTimeout)
    attempt.assert_awaited_once()
