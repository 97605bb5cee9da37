"""
Shared hash stores used for cross-process cache consistency.

A hash store maps a tracking key (e.g. ``acls-hash-code``) to the content
hash of the value most recently written under it by any process. Stores
raise ConsistencyStoreUnavailableError when they cannot be reached.
"""

from typing import Dict, Optional, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import ConsistencyStoreUnavailableError
from shared.logging import get_logger


class HashStore(Protocol):
    """Protocol for shared hash stores."""

    async def get(self, key: str) -> Optional[str]:
        """Return the published hash or None if there is none."""
        ...

    async def set(self, key: str, value: str) -> None:
        """Publish a hash, overwriting the previous one."""
        ...

    async def delete(self, *keys: str) -> None:
        """Remove published hashes."""
        ...


class InMemoryHashStore:
    """Hash store held in process memory.

    Sharing one instance between several consistent caches simulates
    several processes sharing a remote store.
    """

    def __init__(self):
        self._hashes: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._hashes.get(key)

    async def set(self, key: str, value: str) -> None:
        self._hashes[key] = value

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._hashes.pop(key, None)


class RedisHashStore:
    """Redis-backed hash store shared by every process running the cache."""

    def __init__(
        self,
        redis_url: str,
        key_prefix: str = "acl-cache:",
        redis_client: Optional[redis.Redis] = None
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.logger = get_logger("acl.cache.hash_store")
        self._redis: Optional[redis.Redis] = redis_client

    def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                health_check_interval=30
            )
        return self._redis

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _unavailable(self, operation: str, key: str, error: Exception) -> ConsistencyStoreUnavailableError:
        self.logger.error("Hash store unavailable", operation=operation, key=key, error=str(error))
        return ConsistencyStoreUnavailableError(
            f"Hash store {operation} failed: {error}",
            details={"key": key, "redis_url": self.redis_url}
        )

    async def start(self):
        """Connect and verify the store is reachable."""
        try:
            await self._get_redis().ping()
        except RedisError as e:
            raise self._unavailable("ping", "", e) from e
        self.logger.info("Hash store started", redis_url=self.redis_url)

    async def stop(self):
        """Close the Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Hash store stopped")

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self._get_redis().get(self._key(key))
        except RedisError as e:
            raise self._unavailable("get", key, e) from e
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str) -> None:
        try:
            await self._get_redis().set(self._key(key), value)
        except RedisError as e:
            raise self._unavailable("set", key, e) from e

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            await self._get_redis().delete(*(self._key(key) for key in keys))
        except RedisError as e:
            raise self._unavailable("delete", ",".join(keys), e) from e

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self._get_redis().ping()
            return True
        except RedisError:
            return False
