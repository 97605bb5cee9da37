"""
Scheduled jobs for the ACL cache.
"""

from .refresh import JobDescriptor, RefreshResult, refresh_acl_cache, refresh_acl_cache_job

__all__ = ["JobDescriptor", "RefreshResult", "refresh_acl_cache", "refresh_acl_cache_job"]
