"""
ACL cache application package.

- app.cache: Single-flight cache, consistency layer and shared hash stores.
- app.acls: Remote ACL source interface and cache-aware ACL fetching.
- app.jobs: Periodic refresh job keeping the cache warm.

Guidelines:
- Pass the AclCache explicitly to whatever needs it; there is no global cache.
- Never retry remote fetches here; retries belong to callers and the scheduler.
"""
