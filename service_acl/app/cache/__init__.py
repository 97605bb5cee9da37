"""
Cache package for the ACL cache.

Provides an in-memory single-flight cache and a consistency layer that
keeps it coherent across processes through a shared hash store (Redis in
production).
"""

from .consistent_cache import ConsistentCache, ConsistencyRecord, content_hash, hash_key
from .hash_store import HashStore, InMemoryHashStore, RedisHashStore
from .single_flight import SingleFlightCache

__all__ = [
    "ConsistentCache",
    "ConsistencyRecord",
    "HashStore",
    "InMemoryHashStore",
    "RedisHashStore",
    "SingleFlightCache",
    "content_hash",
    "hash_key",
]
