"""
ACL fetching package.
"""

from .fetcher import (
    ACL_CACHE_KEY,
    ACL_KEYS_TO_TRACK,
    AclCache,
    AclLookup,
    AclLookupOutcome,
    clear_acl_cache,
    create_acl_cache,
    create_acl_cache_from_config,
    create_consistent_acl_cache,
    expire_consistent_cache_hashes,
    get_acls,
)
from .source import ACL, AclSource, BaseAclSource, acl_matches, default_lookup_key_for

__all__ = [
    "ACL",
    "ACL_CACHE_KEY",
    "ACL_KEYS_TO_TRACK",
    "AclCache",
    "AclLookup",
    "AclLookupOutcome",
    "AclSource",
    "BaseAclSource",
    "acl_matches",
    "clear_acl_cache",
    "create_acl_cache",
    "create_acl_cache_from_config",
    "create_consistent_acl_cache",
    "default_lookup_key_for",
    "expire_consistent_cache_hashes",
    "get_acls",
]
