import asyncio

import pytest

from feed_cache.core.batch_queue import BatchQueue


class Recorder:
    def __init__(self, fail=False, gate=None):
        self.batches = []
        self.fail = fail
        self.gate = gate

    async def __call__(self, keys):
        self.batches.append(list(keys))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("batch failed")


async def lookup(key):
    return f"result:{key}"


@pytest.mark.asyncio
async def test_rapid_enqueues_are_batched():
    recorder = Recorder()
    queue = BatchQueue("test", recorder, get_result=lookup, delay=0.01)

    results = await asyncio.gather(queue.enqueue("a"), queue.enqueue("b"), queue.enqueue("c"))

    assert results == ["result:a", "result:b", "result:c"]
    assert recorder.batches == [["a", "b", "c"]]


@pytest.mark.asyncio
async def test_duplicate_keys_are_fetched_once():
    recorder = Recorder()
    queue = BatchQueue("test", recorder, get_result=lookup, delay=0.01)

    first, second = await asyncio.gather(queue.enqueue("a"), queue.enqueue("a"))

    assert first == second == "result:a"
    assert recorder.batches == [["a"]]


@pytest.mark.asyncio
async def test_in_flight_keys_join_running_request():
    gate = asyncio.Event()
    recorder = Recorder(gate=gate)
    queue = BatchQueue("test", recorder, get_result=lookup, delay=0)

    first = asyncio.create_task(queue.enqueue("a"))
    while not queue.in_flight_keys:
        await asyncio.sleep(0)
    second = asyncio.create_task(queue.enqueue("a"))
    await asyncio.sleep(0)
    assert queue.pending_keys == []

    gate.set()
    assert await first == await second == "result:a"
    assert recorder.batches == [["a"]]
    assert queue.in_flight_keys == []


@pytest.mark.asyncio
async def test_max_size_flushes_without_waiting():
    recorder = Recorder()
    queue = BatchQueue("test", recorder, delay=60, max_size=2)

    await asyncio.wait_for(asyncio.gather(queue.enqueue("a"), queue.enqueue("b")), timeout=1)

    assert recorder.batches == [["a", "b"]]


@pytest.mark.asyncio
async def test_failed_batch_resolves_with_none():
    queue = BatchQueue("test", Recorder(fail=True), get_result=lookup, delay=0)

    assert await queue.enqueue("a") is None
    assert queue.in_flight_keys == []


@pytest.mark.asyncio
async def test_without_result_lookup_resolves_none():
    recorder = Recorder()
    queue = BatchQueue("test", recorder, delay=0)

    await queue.enqueue_many(["a", "b", "a"])

    assert recorder.batches == [["a", "b"]]


@pytest.mark.asyncio
async def test_enqueue_many_with_no_keys_is_noop():
    recorder = Recorder()
    queue = BatchQueue("test", recorder, delay=0)

    await queue.enqueue_many([])

    assert recorder.batches == []


@pytest.mark.asyncio
async def test_explicit_flush():
    recorder = Recorder()
    queue = BatchQueue("test", recorder, get_result=lookup, delay=60)

    waiter = asyncio.create_task(queue.enqueue("a"))
    await asyncio.sleep(0)
    await queue.flush()

    assert await waiter == "result:a"


@pytest.mark.asyncio
async def test_clear_resolves_waiters():
    recorder = Recorder()
    queue = BatchQueue("test", recorder, delay=60)

    waiter = asyncio.create_task(queue.enqueue("a"))
    await asyncio.sleep(0)
    assert queue.pending_keys == ["a"]

    queue.clear()

    assert await waiter is None
    assert queue.pending_keys == []
    assert recorder.batches == []
