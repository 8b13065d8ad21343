"""Process-local blob cache.

Keeps bytes in an ordered dict and hands out ``data:`` URIs. Nothing survives
the process; useful for tests, notebooks, and short-lived workers.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable
import logging
import time
from typing import NamedTuple

import httpx

from charforge.core.caching.backends.fs import DEFAULT_MAX_ENTRIES, DEFAULT_TTL_SECONDS
from charforge.core.caching.blobs import BlobFetcher, sniff_content_type, to_data_uri

logger = logging.getLogger(__name__)


class _Entry(NamedTuple):
    blob: bytes
    content_type: str
    created_at: float


class InMemoryBlobCache:
    """
    In-memory cache with the same once-per-key semantics as FSBlobCache.

    Entries are kept in access order; once more than ``max_entries`` are held
    the least recently accessed one is evicted.

    Args:
        ttl_seconds: Entry lifetime (None disables expiry)
        max_entries: Entry cap (None disables eviction)
        fetcher: Resolver for remote references passed to ``set``
        clock: Time source (injectable for tests)
    """

    def __init__(
        self,
        *,
        ttl_seconds: float | None = DEFAULT_TTL_SECONDS,
        max_entries: int | None = DEFAULT_MAX_ENTRIES,
        fetcher: BlobFetcher | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._fetcher = fetcher or BlobFetcher()
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def _expired(self, entry: _Entry) -> bool:
        if self.ttl_seconds is None:
            return False
        return self._clock() > entry.created_at + self.ttl_seconds

    def _lookup(self, key: str) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry

    def _evict(self) -> None:
        if self.max_entries is None:
            return
        while len(self._entries) > self.max_entries:
            key, _ = self._entries.popitem(last=False)
            logger.debug("Evicted in-memory cache entry", extra={"cache_key": key})

    async def get(self, key: str) -> str | None:
        entry = self._lookup(key)
        if entry is None:
            return None
        return to_data_uri(entry.blob, entry.content_type)

    async def set(self, key: str, data: bytes | str) -> str:
        existing = self._lookup(key)
        if existing is not None:
            return to_data_uri(existing.blob, existing.content_type)

        if isinstance(data, str):
            try:
                blob, content_type = await self._fetcher.fetch(data)
            except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
                logger.warning("Failed to fetch image for caching: %s", e)
                return data
        else:
            blob, content_type = data, sniff_content_type(data)

        # Another writer may have filled the key while we were fetching.
        entry = self._lookup(key)
        if entry is None:
            entry = _Entry(blob, content_type, self._clock())
            self._entries[key] = entry
            self._evict()
        return to_data_uri(entry.blob, entry.content_type)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()

    async def close(self) -> None:
        await self._fetcher.aclose()
