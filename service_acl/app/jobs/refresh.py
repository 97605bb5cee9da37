"""
Job for refreshing ACLs in the cache.

The refresh replaces the cached ACLs with a fresh fetch of every tracked
object identity type, whatever the state of the current entry. Failures
are not retried or swallowed here: they propagate to the scheduler, which
logs them and lets the next run try again.
"""

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, FrozenSet, Optional

from shared.config import get_config
from shared.errors import AccessLayerException, ValidationError
from shared.logging import get_logger, set_job_key

from ..acls.fetcher import ACL_CACHE_KEY, AclCache, fetch_tracked_acls
from ..acls.source import AclSource

logger = get_logger("acl.jobs.refresh")


@dataclass(frozen=True)
class RefreshResult:
    """Summary of a completed refresh."""
    object_identity_types: FrozenSet[str]
    acl_count: int
    duration_seconds: float


@dataclass(frozen=True)
class JobDescriptor:
    """What a scheduler should run and how often."""
    job_key: str
    interval: int
    target: Callable[[], Awaitable[Any]]

    async def run(self) -> Any:
        """Invoke the target once."""
        set_job_key(self.job_key)
        try:
            return await self.target()
        finally:
            set_job_key(None)


async def refresh_acl_cache(source: AclSource, acl_cache: AclCache) -> RefreshResult:
    """Refresh the ACLs stored in the cache.

    Raises whatever the source raises; the cached ACLs are left as they
    were in that case.
    """
    start_time = time.monotonic()
    metrics = acl_cache.metrics

    try:
        acls = await fetch_tracked_acls(source, acl_cache)
        await acl_cache.delegate.put(ACL_CACHE_KEY, acls)
    except Exception as e:
        if metrics:
            metrics.increment_counter("acl_cache_refresh_total", status="failure")
        error = e.to_dict() if isinstance(e, AccessLayerException) else str(e)
        logger.warning("ACL cache refresh failed", error=error)
        raise

    duration = time.monotonic() - start_time
    if metrics:
        metrics.increment_counter("acl_cache_refresh_total", status="success")
        metrics.observe_histogram("acl_cache_refresh_duration_seconds", duration)

    logger.info(
        "ACL cache refreshed",
        acl_count=len(acls),
        object_identity_types=sorted(acl_cache.object_identity_types),
        duration_seconds=round(duration, 3)
    )
    return RefreshResult(
        object_identity_types=acl_cache.object_identity_types,
        acl_count=len(acls),
        duration_seconds=duration
    )


def refresh_acl_cache_job(
    job_key: str,
    source: AclSource,
    acl_cache: AclCache,
    interval: Optional[int] = None
) -> JobDescriptor:
    """Describe the periodic ACL refresh for registration with a scheduler."""
    if interval is None:
        interval = get_config().acl_cache_refresh_interval_seconds
    if interval <= 0:
        raise ValidationError("Refresh interval must be positive", details={"interval": interval})

    async def refresh_acl_cache_target() -> RefreshResult:
        return await refresh_acl_cache(source, acl_cache)

    return JobDescriptor(job_key=job_key, interval=interval, target=refresh_acl_cache_target)
