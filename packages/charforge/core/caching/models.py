"""Models for the blob cache."""

from pydantic import BaseModel, Field


class CacheEntryMeta(BaseModel):
    """
    Metadata committed after the blob write (commit marker).

    Presence of meta.json with a matching key and size indicates a complete,
    valid cache entry.
    """

    key: str = Field(description="Canonical request key the entry is addressed by")
    fingerprint: str = Field(description="SHA256 hex digest of the key")
    blob_name: str = Field(description="File name of the blob inside the entry directory")
    content_type: str = Field(default="application/octet-stream")
    size_bytes: int = Field(ge=0)
    created_at: float = Field(description="Unix timestamp (seconds)")
    accessed_at: float = Field(description="Unix timestamp of the last hit (seconds)")
    source: str | None = Field(
        default=None, description="Remote reference the blob was fetched from, if any"
    )
