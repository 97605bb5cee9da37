"""
ACL fetching with an optional cache.

ACLs can be fetched through an AclCache. The cache is always populated with
the ACLs of every object identity type it tracks, never with a subset:
otherwise a later request for another tracked type would find the entry
and silently miss ACLs that were never fetched. Requests for types the
cache does not track bypass it. Use the refresh job in
service_acl.app.jobs.refresh to keep a cache warm.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, Iterator, List, Optional, Union

from shared.config import AclCacheConfig, get_config
from shared.errors import ValidationError
from shared.logging import get_logger
from shared.metrics import AclCacheMetrics

from ..cache.consistent_cache import ConsistentCache, hash_key
from ..cache.hash_store import HashStore, RedisHashStore
from ..cache.single_flight import SingleFlightCache
from .source import ACL, AclSource, acl_matches

ACL_CACHE_KEY = "acls"

# Shared store keys deleted when the ACL cache is cleared.
ACL_KEYS_TO_TRACK = [hash_key(ACL_CACHE_KEY)]

logger = get_logger("acl.fetcher")


class AclLookupOutcome(str, Enum):
    """How an ACL request was answered."""
    CACHED = "cached"
    BYPASSED = "bypassed"
    DIRECT = "direct"


@dataclass(frozen=True)
class AclLookup:
    """ACLs returned for a request, with the routing decision that produced them."""
    acls: List[ACL]
    outcome: AclLookupOutcome
    uncovered: FrozenSet[str] = frozenset()

    def __iter__(self) -> Iterator[ACL]:
        return iter(self.acls)

    def __len__(self) -> int:
        return len(self.acls)


@dataclass(frozen=True)
class AclCache:
    """A cache bound to the fixed set of object identity types it serves."""
    delegate: Union[SingleFlightCache, ConsistentCache]
    object_identity_types: FrozenSet[str]
    metrics: Optional[AclCacheMetrics] = field(default=None, compare=False)

    @property
    def is_consistent(self) -> bool:
        return isinstance(self.delegate, ConsistentCache)


def _tracked_types(object_identity_types: Iterable[str]) -> FrozenSet[str]:
    if isinstance(object_identity_types, str):
        raise ValidationError(
            "Object identity types must be a collection, not a string",
            details={"object_identity_types": object_identity_types}
        )
    tracked = frozenset(object_identity_types)
    if not tracked:
        raise ValidationError("An ACL cache must track at least one object identity type")
    invalid = [oit for oit in tracked if not isinstance(oit, str) or not oit]
    if invalid:
        raise ValidationError(
            "Object identity types must be non-empty strings",
            details={"invalid": [repr(oit) for oit in invalid]}
        )
    return tracked


def create_acl_cache(
    object_identity_types: Iterable[str],
    metrics: Optional[AclCacheMetrics] = None
) -> AclCache:
    """Create an in-process ACL cache for the given object identity types."""
    return AclCache(
        delegate=SingleFlightCache(metrics=metrics),
        object_identity_types=_tracked_types(object_identity_types),
        metrics=metrics
    )


def create_consistent_acl_cache(
    object_identity_types: Iterable[str],
    hash_store: HashStore,
    timeout_seconds: Optional[int] = None,
    assume_unchanged_on_store_error: Optional[bool] = None,
    metrics: Optional[AclCacheMetrics] = None,
    config: Optional[AclCacheConfig] = None,
    **consistent_cache_options
) -> AclCache:
    """Create an ACL cache kept consistent across processes through hash_store.

    Options left as None are taken from the configuration.
    """
    config = config or get_config()
    if timeout_seconds is None:
        timeout_seconds = config.acl_cache_consistent_timeout_seconds
    if assume_unchanged_on_store_error is None:
        assume_unchanged_on_store_error = config.acl_cache_assume_unchanged_on_store_error

    tracked = _tracked_types(object_identity_types)
    consistent = ConsistentCache(
        SingleFlightCache(metrics=metrics),
        hash_store,
        timeout_seconds=timeout_seconds,
        keys_to_track=ACL_KEYS_TO_TRACK,
        assume_unchanged_on_store_error=assume_unchanged_on_store_error,
        metrics=metrics,
        **consistent_cache_options
    )
    return AclCache(delegate=consistent, object_identity_types=tracked, metrics=metrics)


def create_acl_cache_from_config(
    object_identity_types: Iterable[str],
    config: Optional[AclCacheConfig] = None,
    hash_store: Optional[HashStore] = None,
    metrics: Optional[AclCacheMetrics] = None
) -> AclCache:
    """Create the ACL cache variant selected by configuration.

    The consistent variant uses a RedisHashStore at ``redis_url`` unless a
    hash store is given.
    """
    config = config or get_config()
    if not config.acl_cache_use_consistent_cache:
        return create_acl_cache(object_identity_types, metrics=metrics)

    if hash_store is None:
        hash_store = RedisHashStore(config.redis_url, key_prefix=config.acl_cache_hash_key_prefix)
    return create_consistent_acl_cache(
        object_identity_types,
        hash_store,
        metrics=metrics,
        config=config
    )


def _count_request(acl_cache: Optional[AclCache], outcome: AclLookupOutcome):
    if acl_cache is not None and acl_cache.metrics:
        acl_cache.metrics.increment_counter("acl_cache_requests_total", outcome=outcome.value)


async def fetch_tracked_acls(source: AclSource, acl_cache: AclCache) -> List[ACL]:
    """Fetch the ACLs of every type the cache tracks straight from the source."""
    return list(await source.fetch(acl_cache.object_identity_types))


async def get_acls(
    source: AclSource,
    acl_cache: Optional[AclCache],
    object_identity_types: Iterable[str]
) -> AclLookup:
    """Get the current ACLs limited to a set of object identity types."""
    requested = frozenset(object_identity_types)

    if acl_cache is None:
        acls = list(await source.fetch(requested))
        return AclLookup(acls=acls, outcome=AclLookupOutcome.DIRECT)

    # A cache that does not track every requested type would silently
    # return no ACLs for the untracked ones.
    uncovered = requested - acl_cache.object_identity_types
    if uncovered:
        logger.info(
            "The application is not configured to cache ACLs of these object "
            "identity types, fetching them directly each time they are needed",
            uncovered=sorted(uncovered)
        )
        _count_request(acl_cache, AclLookupOutcome.BYPASSED)
        acls = list(await source.fetch(requested))
        return AclLookup(acls=acls, outcome=AclLookupOutcome.BYPASSED, uncovered=frozenset(uncovered))

    cached = await acl_cache.delegate.get_or_load(
        ACL_CACHE_KEY,
        lambda: fetch_tracked_acls(source, acl_cache)
    )
    _count_request(acl_cache, AclLookupOutcome.CACHED)
    return AclLookup(
        acls=[acl for acl in cached if acl_matches(source, acl, requested)],
        outcome=AclLookupOutcome.CACHED
    )


def expire_consistent_cache_hashes(acl_cache: AclCache) -> None:
    """Force the next ACL read to check the shared store for consistency."""
    if not acl_cache.is_consistent:
        logger.debug("ACL cache is not consistent, nothing to expire")
        return
    acl_cache.delegate.expire_hash_timeouts()


async def clear_acl_cache(acl_cache: AclCache) -> None:
    """Drop the cached ACLs. A consistent cache also clears them in other processes."""
    await acl_cache.delegate.clear()
    logger.info("ACL cache cleared", consistent=acl_cache.is_consistent)
