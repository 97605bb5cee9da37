"""
Shared configuration management for the ACL cache subsystem.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")


class AclCacheConfig(BaseConfig):
    """Settings for the ACL cache and its refresh job."""

    acl_cache_consistent_timeout_seconds: int = Field(
        default=30,
        gt=0,
        description="Seconds between consistency checks against the shared hash store"
    )
    acl_cache_refresh_interval_seconds: int = Field(
        default=3600,
        gt=0,
        description="Recurrence interval of the ACL refresh job"
    )
    acl_cache_assume_unchanged_on_store_error: bool = Field(
        default=False,
        description="Serve the local value when the shared hash store is unreachable"
    )
    acl_cache_use_consistent_cache: bool = Field(default=True)
    acl_cache_hash_key_prefix: str = Field(default="acl-cache:")


@lru_cache
def get_config() -> AclCacheConfig:
    """Get the process-wide ACL cache configuration."""
    return AclCacheConfig()
