"""
Shared test fixtures for the ACL cache.
"""

import asyncio
from typing import Any, Dict, FrozenSet, List, Optional

import pytest
from prometheus_client import CollectorRegistry

from service_acl.app.acls.source import BaseAclSource, acl_matches
from service_acl.app.cache.hash_store import InMemoryHashStore
from shared.metrics import AclCacheMetrics


class FakeAclSource(BaseAclSource):
    """Remote ACL source double that records every fetch."""

    def __init__(self, acls: List[Dict[str, Any]]):
        self.acls = list(acls)
        self.calls: List[FrozenSet[str]] = []
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    async def fetch(self, object_identity_types):
        self.calls.append(frozenset(object_identity_types))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return [acl for acl in self.acls if acl_matches(self, acl, object_identity_types)]


class CountingHashStore(InMemoryHashStore):
    """In-memory hash store that counts reads."""

    def __init__(self):
        super().__init__()
        self.get_calls = 0

    async def get(self, key: str) -> Optional[str]:
        self.get_calls += 1
        return await super().get(key)


class YieldingHashStore(InMemoryHashStore):
    """In-memory hash store whose writes suspend like a network round trip."""

    async def set(self, key: str, value: str) -> None:
        await asyncio.sleep(0)
        await super().set(key, value)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_acl(object_identity_type: str, name: str) -> Dict[str, Any]:
    """ACL record covering one object identity type."""
    return {
        "name": name,
        f"{object_identity_type.replace('-', '_')}_identity": {"target": name},
        "aces": [{"permissions": ["read"], "user_type": "registered"}],
    }


@pytest.fixture
def provider_acls():
    return [make_acl("provider-object", "PROV1"), make_acl("provider-object", "PROV2")]


@pytest.fixture
def system_acls():
    return [make_acl("system-object", "INGEST_MANAGEMENT_ACL")]


@pytest.fixture
def catalog_acls():
    return [make_acl("catalog-item", "COLLECTIONS_ALL")]


@pytest.fixture
def acl_source(provider_acls, system_acls, catalog_acls):
    """Source serving provider, system and catalog item ACLs."""
    return FakeAclSource(provider_acls + system_acls + catalog_acls)


@pytest.fixture
def hash_store():
    return CountingHashStore()


@pytest.fixture
def yielding_hash_store():
    return YieldingHashStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return AclCacheMetrics(registry)
