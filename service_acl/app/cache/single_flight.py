"""
Single-flight coalescing cache for the ACL cache subsystem.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from shared.logging import get_logger
from shared.metrics import AclCacheMetrics

Loader = Callable[[], Awaitable[Any]]
Store = Callable[[Any], Awaitable[None]]


class SingleFlightCache:
    """In-memory cache where concurrent misses on a key share one loader call.

    The first caller that misses on a key starts the loader in its own task;
    every other caller arriving while that task runs awaits the same task and
    receives the same value or the same exception. A failed load stores
    nothing, so the next caller retries. There is no eviction policy beyond
    explicit ``put``/``evict``/``clear``.

    Coalescing and the per-key locks are asyncio primitives: they hold for
    coroutines on the event loop that owns the cache. Callers on other
    threads or loops must not share an instance.
    """

    def __init__(self, metrics: Optional[AclCacheMetrics] = None):
        self.logger = get_logger("acl.cache.single_flight")
        self.metrics = metrics

        self._values: Dict[str, Any] = {}
        self._in_flight: Dict[str, "asyncio.Task[Any]"] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        """Get the write lock scoped to a single key."""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _count(self, metric_name: str, **labels):
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)

    def contains(self, key: str) -> bool:
        """Return True if a value is stored under key."""
        return key in self._values

    def keys(self) -> List[str]:
        """Keys currently holding a value."""
        return list(self._values)

    async def get(self, key: str) -> Optional[Any]:
        """Get the stored value without loading. Returns None on a miss."""
        return self._values.get(key)

    async def get_or_load(self, key: str, loader: Loader, store: Optional[Store] = None) -> Any:
        """Get the value for key, running loader once if it is absent.

        When store is given it persists the loaded value in place of the
        default write, and must call ``put`` itself.
        """
        if key in self._values:
            self._count("acl_cache_hits_total")
            return self._values[key]

        task = self._in_flight.get(key)
        if task is None:
            # No await between the lookup and the registration, so exactly one
            # caller starts the load.
            task = asyncio.ensure_future(self._load(key, loader, store))
            self._in_flight[key] = task
            self.logger.debug("Cache miss, loading", key=key)
        else:
            self._count("acl_cache_coalesced_waits_total")
            self.logger.debug("Joining in-flight load", key=key)

        # A cancelled waiter must not cancel the shared load.
        return await asyncio.shield(task)

    async def _load(self, key: str, loader: Loader, store: Optional[Store]) -> Any:
        try:
            try:
                value = await loader()
                if store is not None:
                    await store(value)
                else:
                    async with self._lock_for(key):
                        self._values[key] = value
            except Exception as e:
                self._count("acl_cache_loads_total", status="failure")
                self.logger.warning("Cache load failed", key=key, error=str(e))
                raise

            self._count("acl_cache_loads_total", status="success")
            return value
        finally:
            self._in_flight.pop(key, None)

    async def put(self, key: str, value: Any) -> None:
        """Store value under key, replacing anything already there."""
        async with self._lock_for(key):
            self._values[key] = value
        self.logger.debug("Cache value stored", key=key)

    async def evict(self, key: str) -> bool:
        """Remove key. Returns True if a value was removed."""
        async with self._lock_for(key):
            existed = key in self._values
            self._values.pop(key, None)
        if existed:
            self.logger.debug("Cache value evicted", key=key)
        return existed

    async def clear(self) -> None:
        """Remove every stored value."""
        for key in list(self._values):
            await self.evict(key)
