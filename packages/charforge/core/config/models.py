"""Configuration models for the charforge client."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from charforge.core.generation.retry import RetryPolicy

DEFAULT_BASE_URL = "http://localhost:54321/functions/v1"
DEFAULT_CACHE_DIR = Path("~/.cache/charforge")


class CacheBackend(str, Enum):
    FS = "fs"
    MEMORY = "memory"
    NULL = "null"


class CacheConfig(BaseModel):
    """Local image cache configuration."""

    model_config = ConfigDict(frozen=True)

    backend: CacheBackend = Field(default=CacheBackend.FS, description="Storage backend")

    directory: Path = Field(
        default=DEFAULT_CACHE_DIR, description="Root directory for the filesystem backend"
    )

    ttl_seconds: float | None = Field(
        default=7 * 24 * 60 * 60, gt=0, description="Entry lifetime (None = never expire)"
    )

    max_entries: int | None = Field(
        default=100, gt=0, description="Entry cap before LRU eviction (None = unbounded)"
    )


class ClientConfig(BaseModel):
    """Generation client configuration.

    ``cache_enabled`` is the global switch; individual requests can still
    opt out with ``cache=False``.
    """

    model_config = ConfigDict(frozen=True)

    api_key: str = Field(default="", repr=False, description="Service API key")

    base_url: str = Field(default=DEFAULT_BASE_URL, description="Generation service base URL")

    generate_path: str = Field(
        default="/generate-character", description="Endpoint path relative to base_url"
    )

    cache_enabled: bool = Field(default=True, description="Global cache toggle")

    cache: CacheConfig = Field(default_factory=CacheConfig)

    retry: RetryPolicy = Field(default_factory=RetryPolicy)

    coalesce_in_flight: bool = Field(
        default=False,
        description="Share one remote call between concurrent requests for the same key",
    )

    user_agent: str = Field(default="charforge-python/0.1")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")
