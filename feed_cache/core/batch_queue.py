"""
Debounced request batching.

Several rapid ``enqueue`` calls are combined into a single ``execute_batch`` call:
keys wait ``delay`` seconds for company, duplicates are fetched once, and keys
already being fetched join the in-flight request instead of starting a new one.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Generic, Hashable, Iterable, List, Optional, TypeVar

from feed_cache.config.settings import settings

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
R = TypeVar("R")


class BatchQueue(Generic[K, R]):
    """
    Args:
        name: Used in log messages.
        execute_batch: Async callable receiving the batched keys.
        get_result: Optional async lookup run per key once its batch completes
                    (typically a cache read); its value resolves ``enqueue``.
        delay: Debounce delay in seconds.
        max_size: A pending batch reaching this size is flushed without waiting.
    """

    def __init__(
        self,
        name: str,
        execute_batch: Callable[[List[K]], Awaitable[object]],
        get_result: Optional[Callable[[K], Awaitable[Optional[R]]]] = None,
        delay: Optional[float] = None,
        max_size: Optional[int] = None,
    ):
        self.name = name
        self.execute_batch = execute_batch
        self.get_result = get_result
        self.delay = delay if delay is not None else settings.BATCH_QUEUE_DELAY_SECONDS
        self.max_size = max_size if max_size is not None else settings.BATCH_QUEUE_MAX_SIZE

        self._pending: Dict[K, asyncio.Future] = {}
        self._in_flight: Dict[K, asyncio.Future] = {}
        self._timer: Optional[asyncio.TimerHandle] = None
        self._flushes: set = set()

    @property
    def pending_keys(self) -> List[K]:
        return list(self._pending)

    @property
    def in_flight_keys(self) -> List[K]:
        return list(self._in_flight)

    def _future_for(self, key: K) -> asyncio.Future:
        if key in self._in_flight:
            logger.debug(f"[{self.name}] Reusing in-flight request for {key}")
            return self._in_flight[key]
        if key not in self._pending:
            self._pending[key] = asyncio.get_running_loop().create_future()
        return self._pending[key]

    def _schedule(self) -> None:
        if len(self._pending) >= self.max_size:
            self._flush_soon()
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(self.delay, self._flush_soon)

    def _flush_soon(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        task = asyncio.create_task(self.flush())
        self._flushes.add(task)
        task.add_done_callback(self._flushes.discard)

    async def enqueue(self, key: K) -> Optional[R]:
        """Queue ``key`` and wait for its batch; returns ``get_result(key)`` or None."""
        future = self._future_for(key)
        if key in self._pending:
            self._schedule()
        return await asyncio.shield(future)

    async def enqueue_many(self, keys: Iterable[K]) -> None:
        """Queue several keys and wait until all of their batches completed."""
        futures = [self._future_for(key) for key in dict.fromkeys(keys)]
        if not futures:
            return
        if self._pending:
            self._schedule()
        await asyncio.gather(*(asyncio.shield(f) for f in futures))

    async def flush(self) -> None:
        """Execute the pending batch now."""
        if not self._pending:
            return
        batch = self._pending
        self._pending = {}
        self._in_flight.update(batch)
        keys = list(batch)
        logger.debug(f"[{self.name}] Executing batch of {len(keys)} keys")
        try:
            await self.execute_batch(keys)
        except Exception as e:
            logger.error(f"[{self.name}] Batch of {len(keys)} keys failed: {e}", exc_info=True)
            for key, future in batch.items():
                if not future.done():
                    future.set_result(None)
        else:
            for key, future in batch.items():
                if future.done():
                    continue
                try:
                    result = await self.get_result(key) if self.get_result else None
                except Exception as e:
                    logger.warning(f"[{self.name}] Result lookup for {key} failed: {e}")
                    result = None
                future.set_result(result)
        finally:
            for key in keys:
                self._in_flight.pop(key, None)

    def clear(self) -> None:
        """Drop pending and in-flight state; waiting callers resolve with None."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for future in list(self._pending.values()) + list(self._in_flight.values()):
            if not future.done():
                future.set_result(None)
        self._pending.clear()
        self._in_flight.clear()
