"""
Remote ACL source interface.

The ACL cache never talks to the authorization service itself. It is
handed an AclSource that fetches every ACL relevant to a set of object
identity types and knows which key of an ACL record identifies each type.
"""

from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Protocol

ACL = Mapping[str, Any]

ACL_TYPE_LOOKUP_KEYS: Dict[str, str] = {
    "catalog-item": "catalog_item_identity",
    "system-object": "system_object_identity",
    "provider-object": "provider_object_identity",
}


class AclSource(Protocol):
    """Protocol for remote ACL sources."""

    async def fetch(self, object_identity_types: FrozenSet[str]) -> List[ACL]:
        """Fetch all ACLs relevant to the given object identity types."""
        ...

    def lookup_key_for(self, object_identity_type: str) -> str:
        """Key of an ACL record that is present when the ACL covers the type."""
        ...


def default_lookup_key_for(object_identity_type: str) -> str:
    """Lookup key used by the authorization service for an object identity type."""
    known = ACL_TYPE_LOOKUP_KEYS.get(object_identity_type)
    if known is not None:
        return known
    return f"{object_identity_type.replace('-', '_')}_identity"


class BaseAclSource:
    """Base class for sources that use the service's standard lookup keys."""

    async def fetch(self, object_identity_types: FrozenSet[str]) -> List[ACL]:
        raise NotImplementedError

    def lookup_key_for(self, object_identity_type: str) -> str:
        return default_lookup_key_for(object_identity_type)


def acl_matches(source: AclSource, acl: ACL, object_identity_types: Iterable[str]) -> bool:
    """True if the ACL carries the lookup key of at least one of the types."""
    return any(
        acl.get(source.lookup_key_for(object_identity_type)) is not None
        for object_identity_type in object_identity_types
    )
