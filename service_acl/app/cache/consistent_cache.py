"""
Consistency layer keeping per-process caches coherent through a shared hash store.

Each process holds its values locally in a SingleFlightCache. Whenever a
value is written, the MD5 hash of its JSON encoding is published to the
shared hash store under ``<key>-hash-code``. Reads compare the local hash
with the published one at most once every ``timeout_seconds``; a mismatch
or a missing published hash means another process wrote (or cleared) the
value, so the local copy is evicted and the next access reloads it.
"""

import asyncio
import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from shared.errors import ConsistencyStoreUnavailableError, ValidationError
from shared.logging import get_logger
from shared.metrics import AclCacheMetrics

from .hash_store import HashStore
from .single_flight import Loader, SingleFlightCache

HASH_KEY_SUFFIX = "-hash-code"
DEFAULT_TIMEOUT_SECONDS = 30


def hash_key(key: str) -> str:
    """Shared store key holding the hash of the value cached under key."""
    return f"{key}{HASH_KEY_SUFFIX}"


def content_hash(value: Any) -> str:
    """Deterministic hash of a JSON-compatible value."""
    encoded = json.dumps(value, sort_keys=True, default=str)
    return hashlib.md5(encoded.encode()).hexdigest()


@dataclass
class ConsistencyRecord:
    """Local view of a cached value's hash. last_checked None forces a check."""
    content_hash: str
    last_checked: Optional[float] = None


class ConsistentCache:
    """Cache that periodically cross-checks its values against a shared hash store."""

    def __init__(
        self,
        delegate: SingleFlightCache,
        hash_store: HashStore,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        keys_to_track: Optional[Iterable[str]] = None,
        assume_unchanged_on_store_error: bool = False,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[AclCacheMetrics] = None
    ):
        if timeout_seconds <= 0:
            raise ValidationError(
                "Consistency timeout must be positive",
                details={"timeout_seconds": timeout_seconds}
            )

        self.delegate = delegate
        self.hash_store = hash_store
        self.timeout_seconds = timeout_seconds
        self.keys_to_track: List[str] = list(keys_to_track or [])
        self.assume_unchanged_on_store_error = assume_unchanged_on_store_error
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("acl.cache.consistent")

        self._records: Dict[str, ConsistencyRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _count(self, result: str):
        if self.metrics:
            self.metrics.increment_counter("acl_cache_consistency_checks_total", result=result)

    def _check_due(self, record: ConsistencyRecord) -> bool:
        if record.last_checked is None:
            return True
        return self.clock() - record.last_checked >= self.timeout_seconds

    def contains(self, key: str) -> bool:
        return self.delegate.contains(key)

    def keys(self) -> List[str]:
        return self.delegate.keys()

    def record_for(self, key: str) -> Optional[ConsistencyRecord]:
        """The consistency record of key, if a value was written locally."""
        return self._records.get(key)

    async def _ensure_consistent(self, key: str) -> None:
        """Evict the local value of key if the shared store says it is stale."""
        record = self._records.get(key)
        if record is None or not self.delegate.contains(key):
            # Nothing cached locally, so nothing to validate.
            return
        if not self._check_due(record):
            return

        async with self._lock_for(key):
            record = self._records.get(key)
            if record is None or not self._check_due(record):
                return

            try:
                shared_hash = await self.hash_store.get(hash_key(key))
            except ConsistencyStoreUnavailableError as e:
                self._count("unavailable")
                if not self.assume_unchanged_on_store_error:
                    raise
                self.logger.warning(
                    "Hash store unreachable, serving local value",
                    key=key,
                    error=e.message
                )
                return

            if shared_hash == record.content_hash:
                record.last_checked = self.clock()
                self._count("consistent")
                return

            self._count("stale")
            self.logger.info(
                "Cached value is stale, evicting",
                key=key,
                local_hash=record.content_hash,
                shared_hash=shared_hash
            )
            self._records.pop(key, None)
            await self.delegate.evict(key)

    async def _record_write(self, key: str, value: Any) -> None:
        """Hash a freshly written value and publish the hash."""
        record = ConsistencyRecord(content_hash=content_hash(value))
        self._records[key] = record
        await self.hash_store.set(hash_key(key), record.content_hash)
        record.last_checked = self.clock()

    async def get(self, key: str) -> Optional[Any]:
        await self._ensure_consistent(key)
        return await self.delegate.get(key)

    async def _store_loaded(self, key: str, value: Any) -> None:
        """Publish and store a value loaded on a miss as one locked write.

        The hash is published before the value becomes visible to waiters. If
        publishing fails nothing local changes, so the load fails clean.
        """
        async with self._lock_for(key):
            digest = content_hash(value)
            await self.hash_store.set(hash_key(key), digest)
            self._records[key] = ConsistencyRecord(content_hash=digest, last_checked=self.clock())
            await self.delegate.put(key, value)

    async def get_or_load(self, key: str, loader: Loader) -> Any:
        await self._ensure_consistent(key)

        async def store(value):
            await self._store_loaded(key, value)

        return await self.delegate.get_or_load(key, loader, store=store)

    async def put(self, key: str, value: Any) -> None:
        async with self._lock_for(key):
            await self.delegate.put(key, value)
            await self._record_write(key, value)

    async def evict(self, key: str) -> bool:
        self._records.pop(key, None)
        return await self.delegate.evict(key)

    async def clear(self) -> None:
        """Clear locally and delete the tracked hashes so every process reloads."""
        self._records.clear()
        await self.delegate.clear()
        if self.keys_to_track:
            await self.hash_store.delete(*self.keys_to_track)
        self.logger.info("Consistent cache cleared", keys_to_track=self.keys_to_track)

    def expire_hash_timeouts(self) -> None:
        """Force the next read of every key to check the shared store."""
        for record in self._records.values():
            record.last_checked = None
        self.logger.debug("Consistency check timeouts expired", keys=list(self._records))
