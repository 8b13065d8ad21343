"""Local blob cache for generated images.

Cache-aside storage keyed by canonical request key:
- FSBlobCache: durable, aiofiles-backed, atomic commit (blob → meta)
- InMemoryBlobCache: process-local
- NullBlobCache: caching disabled

Key features:
- At most one authoritative value per key
- Miss-on-error semantics (corruption → cache miss)
- Remote references fetched and stored as bytes, with graceful fallback
- Expiry and least-recently-accessed eviction (filesystem backend)
"""

from charforge.core.caching.backends.fs import FSBlobCache
from charforge.core.caching.backends.memory import InMemoryBlobCache
from charforge.core.caching.backends.null import NullBlobCache
from charforge.core.caching.blobs import BlobFetcher
from charforge.core.caching.fingerprint import compute_fingerprint
from charforge.core.caching.models import CacheEntryMeta
from charforge.core.caching.protocols import BlobCache

__all__ = [
    # Core
    "BlobCache",
    "CacheEntryMeta",
    # Backends
    "FSBlobCache",
    "InMemoryBlobCache",
    "NullBlobCache",
    # Utils
    "BlobFetcher",
    "compute_fingerprint",
]
