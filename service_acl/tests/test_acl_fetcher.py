"""
Unit tests for ACL fetching through the ACL cache.
"""

import asyncio

import pytest
from structlog.testing import capture_logs

from conftest import FakeAclSource, make_acl
from service_acl.app.acls.fetcher import (
    ACL_CACHE_KEY,
    AclCache,
    AclLookupOutcome,
    clear_acl_cache,
    create_acl_cache,
    create_acl_cache_from_config,
    create_consistent_acl_cache,
    expire_consistent_cache_hashes,
    get_acls,
)
from service_acl.app.acls.source import default_lookup_key_for
from service_acl.app.cache.consistent_cache import ConsistentCache, content_hash
from service_acl.app.cache.hash_store import RedisHashStore
from service_acl.app.cache.single_flight import SingleFlightCache
from shared.config import AclCacheConfig
from shared.errors import RemoteAclSourceError, ValidationError


class TestAclCacheCreation:
    """Test cases for ACL cache construction."""

    def test_create_acl_cache(self):
        acl_cache = create_acl_cache(["provider-object", "system-object"])

        assert isinstance(acl_cache.delegate, SingleFlightCache)
        assert acl_cache.object_identity_types == frozenset({"provider-object", "system-object"})
        assert acl_cache.is_consistent is False

    def test_tracked_types_are_immutable(self):
        """Test the tracked type set cannot be changed after creation."""
        acl_cache = create_acl_cache(["provider-object"])

        with pytest.raises(AttributeError):
            acl_cache.object_identity_types = frozenset({"system-object"})
        assert isinstance(acl_cache.object_identity_types, frozenset)

    @pytest.mark.parametrize("types", [[], "provider-object", ["provider-object", ""], [None]])
    def test_invalid_tracked_types(self, types):
        with pytest.raises(ValidationError):
            create_acl_cache(types)

    def test_create_consistent_acl_cache_uses_config(self, hash_store):
        """Test unset options fall back to configuration."""
        config = AclCacheConfig(
            acl_cache_consistent_timeout_seconds=45,
            acl_cache_assume_unchanged_on_store_error=True
        )

        acl_cache = create_consistent_acl_cache(["provider-object"], hash_store, config=config)

        assert isinstance(acl_cache.delegate, ConsistentCache)
        assert acl_cache.delegate.timeout_seconds == 45
        assert acl_cache.delegate.assume_unchanged_on_store_error is True
        assert acl_cache.delegate.keys_to_track == ["acls-hash-code"]

    def test_create_consistent_acl_cache_defaults(self, hash_store):
        acl_cache = create_consistent_acl_cache(
            ["provider-object"], hash_store, config=AclCacheConfig()
        )

        assert acl_cache.delegate.timeout_seconds == 30
        assert acl_cache.delegate.assume_unchanged_on_store_error is False

    def test_create_from_config_plain(self):
        config = AclCacheConfig(acl_cache_use_consistent_cache=False)

        acl_cache = create_acl_cache_from_config(["system-object"], config=config)

        assert isinstance(acl_cache.delegate, SingleFlightCache)

    def test_create_from_config_builds_redis_store(self):
        config = AclCacheConfig(redis_url="redis://cache:6379/2", acl_cache_hash_key_prefix="acl:")

        acl_cache = create_acl_cache_from_config(["system-object"], config=config)

        store = acl_cache.delegate.hash_store
        assert isinstance(store, RedisHashStore)
        assert store.redis_url == "redis://cache:6379/2"
        assert store.key_prefix == "acl:"


class TestGetAcls:
    """Test cases for get_acls routing and filtering."""

    @pytest.mark.asyncio
    async def test_no_cache_fetches_directly(self, acl_source, provider_acls):
        """Test requests without a cache go straight to the source."""
        result = await get_acls(acl_source, None, ["provider-object"])

        assert result.outcome == AclLookupOutcome.DIRECT
        assert result.acls == provider_acls
        assert acl_source.calls == [frozenset({"provider-object"})]

    @pytest.mark.asyncio
    async def test_cached_request_fetches_all_tracked_types(self, acl_source, provider_acls, metrics, registry):
        """Test a miss populates the cache with every tracked type and filters the result."""
        acl_cache = create_acl_cache(["provider-object", "system-object"], metrics=metrics)

        result = await get_acls(acl_source, acl_cache, ["provider-object"])

        assert result.outcome == AclLookupOutcome.CACHED
        assert list(result) == provider_acls
        assert len(result) == 2
        assert acl_source.calls == [frozenset({"provider-object", "system-object"})]
        assert len(await acl_cache.delegate.get(ACL_CACHE_KEY)) == 3
        assert registry.get_sample_value("acl_cache_requests_total", {"outcome": "cached"}) == 1.0

    @pytest.mark.asyncio
    async def test_later_requests_served_from_cache(self, acl_source, system_acls):
        """Test a differently scoped request is answered from the same entry."""
        acl_cache = create_acl_cache(["provider-object", "system-object"])
        await get_acls(acl_source, acl_cache, ["provider-object"])

        result = await get_acls(acl_source, acl_cache, ["system-object"])

        assert result.acls == system_acls
        assert len(acl_source.calls) == 1

    @pytest.mark.asyncio
    async def test_cached_result_matches_full_fetch_filter(self, acl_source):
        """Test cached results equal a full fetch filtered by the requested types."""
        tracked = {"provider-object", "system-object", "catalog-item"}
        acl_cache = create_acl_cache(tracked)
        full = await acl_source.fetch(frozenset(tracked))

        for requested in [{"provider-object"}, {"system-object", "catalog-item"}, tracked, set()]:
            result = await get_acls(acl_source, acl_cache, requested)
            expected = [
                acl for acl in full
                if any(acl.get(default_lookup_key_for(oit)) is not None for oit in requested)
            ]
            assert result.acls == expected

    @pytest.mark.asyncio
    async def test_scenario_provider_and_system(self):
        """Test tracking provider and system: one fetch for both, provider ACLs returned."""
        provider = make_acl("provider", "PROV1")
        system = make_acl("system", "ANY_ACL")
        source = FakeAclSource([provider, system])
        acl_cache = create_acl_cache({"provider", "system"})

        result = await get_acls(source, acl_cache, {"provider"})

        assert source.calls == [frozenset({"provider", "system"})]
        assert result.acls == [provider]
        assert all(acl.get("provider_identity") is not None for acl in result)

    @pytest.mark.asyncio
    async def test_uncovered_types_bypass_cache(self, metrics, registry):
        """Test a request outside the tracked types never touches the cache."""
        acl_a = make_acl("A", "a")
        acl_b = make_acl("B", "b")
        source = FakeAclSource([acl_a, acl_b])
        acl_cache = create_acl_cache({"A"}, metrics=metrics)

        with capture_logs() as logs:
            result = await get_acls(source, acl_cache, {"A", "B"})

        assert result.outcome == AclLookupOutcome.BYPASSED
        assert result.uncovered == frozenset({"B"})
        assert result.acls == [acl_a, acl_b]
        assert source.calls == [frozenset({"A", "B"})]
        assert acl_cache.delegate.keys() == []

        notices = [log for log in logs if log["log_level"] == "info"]
        assert len(notices) == 1
        assert notices[0]["uncovered"] == ["B"]
        assert registry.get_sample_value("acl_cache_requests_total", {"outcome": "bypassed"}) == 1.0

    @pytest.mark.asyncio
    async def test_bypass_does_not_write_cache_entry(self):
        """Test a bypassed request leaves an existing entry untouched."""
        source = FakeAclSource([make_acl("A", "a"), make_acl("B", "b")])
        acl_cache = create_acl_cache({"A"})
        await acl_cache.delegate.put(ACL_CACHE_KEY, ["previous"])

        await get_acls(source, acl_cache, {"B"})

        assert await acl_cache.delegate.get(ACL_CACHE_KEY) == ["previous"]

    @pytest.mark.asyncio
    async def test_concurrent_misses_fetch_once(self, acl_source, provider_acls, system_acls):
        """Test N concurrent misses trigger a single remote fetch."""
        acl_source.gate = asyncio.Event()
        acl_cache = create_acl_cache(["provider-object", "system-object"])

        requests = [["provider-object"], ["system-object"], ["provider-object", "system-object"]] * 4
        tasks = [asyncio.create_task(get_acls(acl_source, acl_cache, r)) for r in requests]
        await asyncio.sleep(0)
        acl_source.gate.set()
        results = await asyncio.gather(*tasks)

        assert len(acl_source.calls) == 1
        for requested, result in zip(requests, results):
            if requested == ["provider-object"]:
                assert result.acls == provider_acls
            elif requested == ["system-object"]:
                assert result.acls == system_acls
            else:
                assert result.acls == provider_acls + system_acls

    @pytest.mark.asyncio
    async def test_remote_failure_propagates(self, acl_source):
        """Test a remote failure reaches the caller and leaves the cache empty."""
        acl_source.error = RemoteAclSourceError("ECHO returned 503")
        acl_cache = create_acl_cache(["provider-object"])

        with pytest.raises(RemoteAclSourceError):
            await get_acls(acl_source, acl_cache, ["provider-object"])

        assert acl_cache.delegate.keys() == []

    @pytest.mark.asyncio
    async def test_remote_failure_propagates_without_cache(self, acl_source):
        acl_source.error = RemoteAclSourceError("ECHO returned 503")

        with pytest.raises(RemoteAclSourceError):
            await get_acls(acl_source, None, ["provider-object"])


class TestConsistentAclCache:
    """Test cases for the consistency-checked ACL cache."""

    @pytest.fixture
    def acl_cache(self, hash_store, clock):
        return create_consistent_acl_cache(
            ["provider-object", "system-object"],
            hash_store,
            timeout_seconds=30,
            assume_unchanged_on_store_error=False,
            clock=clock
        )

    @pytest.mark.asyncio
    async def test_forced_expiration_refetches_on_mismatch(self, acl_cache, acl_source, hash_store, clock):
        """Test expiring hashes makes the next read check and refetch when stale."""
        await get_acls(acl_source, acl_cache, ["provider-object"])
        await hash_store.set("acls-hash-code", content_hash(["written elsewhere"]))

        clock.advance(1)
        await get_acls(acl_source, acl_cache, ["provider-object"])
        assert len(acl_source.calls) == 1

        expire_consistent_cache_hashes(acl_cache)
        await get_acls(acl_source, acl_cache, ["provider-object"])

        assert len(acl_source.calls) == 2

    @pytest.mark.asyncio
    async def test_clear_removes_shared_hash(self, acl_cache, acl_source, hash_store):
        await get_acls(acl_source, acl_cache, ["system-object"])
        assert await hash_store.get("acls-hash-code") is not None

        await clear_acl_cache(acl_cache)

        assert await hash_store.get("acls-hash-code") is None
        assert acl_cache.delegate.keys() == []

    def test_expire_on_plain_cache_is_noop(self):
        acl_cache = create_acl_cache(["provider-object"])

        expire_consistent_cache_hashes(acl_cache)

        assert isinstance(acl_cache, AclCache)
