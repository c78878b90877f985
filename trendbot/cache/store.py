"""TTL cache for trend data with single-flight fetching.

- get: lazy eviction, an expired entry is a miss and is removed
- get_or_fetch: at most one upstream fetch per key is in flight; concurrent
  callers share its result (or its exception)
- get_or_fetch_many: the same for a group of keys served by one upstream
  call; each key is stored with its own slice of the result
- put: unconditional overwrite
- background sweep purges expired entries every ``sweep_interval`` seconds

The cache never raises its own errors: a failing backend degrades to
"always miss".
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Hashable, List, Optional, Sequence, TypeVar

from trendbot.core.logging import get_logger
from trendbot.core.models import CacheEntry, CacheKey, TrendData, TrendStatus
from trendbot.core.time import Clock, wall_clock
from .backends import CacheBackend, MemoryCacheBackend

logger = get_logger(__name__)

FetchFn = Callable[[], Awaitable[TrendData]]
MultiFetchFn = Callable[[List[CacheKey]], Awaitable[TrendData]]

T = TypeVar("T")

DEFAULT_SWEEP_INTERVAL = 60.0


def is_cacheable(data: TrendData) -> bool:
    """Failed results are never stored."""
    return data.status != TrendStatus.FAILED


@dataclass
class _Flight:
    """An in-flight fetch and the number of callers awaiting it."""
    task: asyncio.Task
    waiters: int = 0


class TrendCache:
    """TTL-keyed store owning every CacheEntry."""

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        clock: Clock = wall_clock,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        cacheable: Callable[[TrendData], bool] = is_cacheable,
    ):
        self.backend = backend if backend is not None else MemoryCacheBackend()
        self.clock = clock
        self.sweep_interval = sweep_interval
        self.cacheable = cacheable
        self._inflight: Dict[Hashable, _Flight] = {}
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._sweeper: Optional[asyncio.Task] = None
        self.stats = {
            "hits": 0,
            "misses": 0,
            "shared": 0,
            "fetches": 0,
            "backend_errors": 0,
        }

    def _lock_for(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def get(self, key: CacheKey) -> Optional[TrendData]:
        """Return the cached value if still fresh, else None."""
        try:
            entry = await self.backend.get(key.as_string())
        except Exception as e:
            self.stats["backend_errors"] += 1
            logger.warning(f"Cache backend read failed for {key.as_string()}: {e}")
            return None

        if entry is None:
            return None

        if not entry.is_fresh(self.clock()):
            logger.debug(f"Evicting expired cache entry {entry.key}")
            await self.invalidate(key)
            return None

        return entry.value

    async def put(self, key: CacheKey, data: TrendData, ttl: float) -> None:
        """Store data, resetting its expiry to now + ttl."""
        entry = CacheEntry.build(key, data, self.clock(), ttl)
        try:
            await self.backend.put(entry, ttl)
        except Exception as e:
            self.stats["backend_errors"] += 1
            logger.warning(f"Cache backend write failed for {entry.key}: {e}")

    async def invalidate(self, key: CacheKey) -> None:
        try:
            await self.backend.delete(key.as_string())
        except Exception as e:
            self.stats["backend_errors"] += 1
            logger.warning(f"Cache backend delete failed for {key.as_string()}: {e}")

    async def get_or_fetch(self, key: CacheKey, fetch_fn: FetchFn, ttl: float) -> TrendData:
        """
        Return a fresh cached value or fetch it exactly once.

        Concurrent callers for the same key await the same fetch. Failures
        reach every waiter and are not cached. Once every waiter has been
        cancelled the fetch itself is cancelled.
        """
        async def lookup() -> Optional[TrendData]:
            cached = await self.get(key)
            if cached is not None:
                self.stats["hits"] += 1
            else:
                self.stats["misses"] += 1
            return cached

        async def fetch_and_store() -> TrendData:
            data = await fetch_fn()
            if self.cacheable(data):
                await self.put(key, data, ttl)
            return data

        return await self._single_flight(key, key.as_string(), lookup, fetch_and_store)

    async def get_or_fetch_many(
        self,
        keys: Sequence[CacheKey],
        fetch_fn: MultiFetchFn,
        ttl_for: Callable[[CacheKey], float],
    ) -> Dict[CacheKey, TrendData]:
        """
        Fresh values for every key, fetching all misses in one call.

        ``fetch_fn`` receives the missed keys and returns one TrendData that
        covers them; each key gets (and caches) its own data type's slice.
        Concurrent callers missing the same keys share that call.
        """
        found: Dict[CacheKey, TrendData] = {}
        for key in keys:
            cached = await self.get(key)
            if cached is not None:
                self.stats["hits"] += 1
                found[key] = cached

        missing = tuple(sorted((key for key in keys if key not in found), key=CacheKey.as_string))
        if not missing:
            return found
        self.stats["misses"] += len(missing)

        async def lookup() -> Optional[Dict[CacheKey, TrendData]]:
            # A flight for the same keys may have landed while we waited for the lock
            values = {key: await self.get(key) for key in missing}
            return values if all(value is not None for value in values.values()) else None

        async def fetch_and_store() -> Dict[CacheKey, TrendData]:
            data = await fetch_fn(list(missing))
            slices = {key: data.only(key.data_type) for key in missing}
            for key, value in slices.items():
                if self.cacheable(value):
                    await self.put(key, value, ttl_for(key))
            return slices

        label = "+".join(key.as_string() for key in missing)
        found.update(await self._single_flight(missing, label, lookup, fetch_and_store))
        return found

    async def _single_flight(
        self,
        flight_key: Hashable,
        label: str,
        lookup: Callable[[], Awaitable[Optional[T]]],
        fetch: Callable[[], Awaitable[T]],
    ) -> T:
        async with self._lock_for(flight_key):
            flight = self._inflight.get(flight_key)
            if flight is None:
                cached = await lookup()
                if cached is not None:
                    return cached

                self.stats["fetches"] += 1
                task = asyncio.ensure_future(self._run_flight(flight_key, fetch))
                flight = _Flight(task=task)
                self._inflight[flight_key] = flight
            else:
                self.stats["shared"] += 1

            flight.waiters += 1

        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                logger.info(f"All callers gave up on {label}, cancelling fetch")
                flight.task.cancel()

    async def _run_flight(self, flight_key: Hashable, fetch: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fetch()
        finally:
            self._inflight.pop(flight_key, None)

    async def sweep(self) -> int:
        """Eagerly purge expired entries; returns how many were removed."""
        try:
            removed = await self.backend.delete_expired(self.clock())
        except Exception as e:
            self.stats["backend_errors"] += 1
            logger.warning(f"Cache sweep failed: {e}")
            return 0

        if removed:
            logger.debug(f"Cache sweep removed {removed} expired entries")
        return removed

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            await self.sweep()

    def start(self) -> None:
        """Start the background sweeper (requires a running loop)."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None

        pending = [flight.task for flight in self._inflight.values()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        try:
            await self.backend.close()
        except Exception as e:
            logger.warning(f"Cache backend close failed: {e}")
