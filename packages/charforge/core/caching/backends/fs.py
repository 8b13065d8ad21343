"""Filesystem-backed blob cache using aiofiles for non-blocking I/O.

Layout::

    <root>/<fingerprint>/image.<ext>   blob, written first
    <root>/<fingerprint>/meta.json     commit marker, written last

Both files are written to a temp name and moved into place with ``os.replace``,
so readers never observe a partially written entry.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import logging
from pathlib import Path
import re
import shutil
import time
import uuid
import weakref

import aiofiles  # type: ignore[import-untyped]
import aiofiles.os  # type: ignore[import-untyped]
import httpx
from pydantic import ValidationError

from charforge.core.caching.blobs import (
    BlobFetcher,
    extension_for,
    is_data_uri,
    sniff_content_type,
    to_data_uri,
)
from charforge.core.caching.fingerprint import compute_fingerprint
from charforge.core.caching.models import CacheEntryMeta

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 7 * 24 * 60 * 60
DEFAULT_MAX_ENTRIES = 100

_META_NAME = "meta.json"
_ENTRY_NAME = re.compile(r"[0-9a-f]{64}")
_TMP_NAME = re.compile(r"\..+\.tmp")


class FSBlobCache:
    """
    Durable blob cache rooted at a local directory.

    The cache lazily initializes on first use. Entries expire after
    ``ttl_seconds``; once more than ``max_entries`` are stored the least
    recently accessed ones are evicted.

    Args:
        root: Cache root directory
        ttl_seconds: Entry lifetime (None disables expiry)
        max_entries: Entry cap (None disables eviction)
        fetcher: Resolver for remote references passed to ``set``
        clock: Time source (injectable for tests)
    """

    def __init__(
        self,
        root: Path | str,
        *,
        ttl_seconds: float | None = DEFAULT_TTL_SECONDS,
        max_entries: int | None = DEFAULT_MAX_ENTRIES,
        fetcher: BlobFetcher | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.root = Path(root).expanduser()
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._fetcher = fetcher or BlobFetcher()
        self._clock = clock
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._key_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def initialize(self) -> None:
        """
        Ensure the root exists. Called automatically; safe to call repeatedly.
        """
        async with self._init_lock:
            if not self._initialized:
                await aiofiles.os.makedirs(self.root, exist_ok=True)
                self._initialized = True

    def _entry_dir(self, fingerprint: str) -> Path:
        return self.root / fingerprint

    def _meta_path(self, fingerprint: str) -> Path:
        return self._entry_dir(fingerprint) / _META_NAME

    def _blob_path(self, meta: CacheEntryMeta) -> Path:
        return self._entry_dir(meta.fingerprint) / meta.blob_name

    def _lock_for(self, fingerprint: str) -> asyncio.Lock:
        lock = self._key_locks.get(fingerprint)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[fingerprint] = lock
        return lock

    def _expired(self, meta: CacheEntryMeta) -> bool:
        if self.ttl_seconds is None:
            return False
        return self._clock() > meta.created_at + self.ttl_seconds

    async def _write_atomic(self, path: Path, content: bytes) -> None:
        """Write to a temp file in the same directory, then replace."""
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            async with aiofiles.open(tmp_path, mode="wb") as f:
                await f.write(content)
            await aiofiles.os.replace(tmp_path, path)
        except OSError:
            try:
                await aiofiles.os.remove(tmp_path)
            except OSError:
                pass
            raise

    async def _read_meta(self, fingerprint: str) -> CacheEntryMeta | None:
        try:
            async with aiofiles.open(self._meta_path(fingerprint), encoding="utf-8") as f:
                raw = await f.read()
            return CacheEntryMeta.model_validate_json(raw)
        except (FileNotFoundError, NotADirectoryError, ValidationError, ValueError):
            # Missing or corrupted meta → miss
            return None

    async def _load_valid_meta(self, key: str) -> CacheEntryMeta | None:
        """Meta for a complete, unexpired entry matching ``key``, else None."""
        fingerprint = compute_fingerprint(key)
        meta = await self._read_meta(fingerprint)
        if meta is None or meta.key != key:
            return None

        if self._expired(meta):
            logger.debug("Cache entry expired", extra={"fingerprint": fingerprint})
            await self._remove_entry(fingerprint)
            return None

        blob_path = self._blob_path(meta)
        try:
            size = await aiofiles.os.path.getsize(blob_path)
        except (FileNotFoundError, NotADirectoryError):
            return None
        if size != meta.size_bytes:
            return None
        return meta

    async def _touch(self, meta: CacheEntryMeta) -> None:
        updated = meta.model_copy(update={"accessed_at": self._clock()})
        try:
            await self._write_atomic(
                self._meta_path(meta.fingerprint), updated.model_dump_json().encode("utf-8")
            )
        except OSError as e:
            logger.debug("Failed to refresh cache access time: %s", e)

    async def _remove_entry(self, fingerprint: str) -> None:
        entry_dir = self._entry_dir(fingerprint)
        await asyncio.to_thread(shutil.rmtree, entry_dir, True)

    async def get(self, key: str) -> str | None:
        """Return a ``file://`` URI for a stored image, or None on miss."""
        try:
            await self.initialize()
            meta = await self._load_valid_meta(key)
        except OSError as e:
            logger.warning("Cache lookup failed: %s", e, extra={"cache_root": str(self.root)})
            return None

        if meta is None:
            return None

        await self._touch(meta)
        return self._blob_path(meta).resolve().as_uri()

    async def set(self, key: str, data: bytes | str) -> str:
        """Store an image once per key and return its local reference.

        A valid existing entry is never overwritten; its reference is returned.
        Fetch or write failures degrade to the caller's own reference.
        """
        fingerprint = compute_fingerprint(key)

        async with self._lock_for(fingerprint):
            try:
                await self.initialize()
                existing = await self._load_valid_meta(key)
            except OSError as e:
                logger.warning("Cache lookup before store failed: %s", e)
                existing = None
            if existing is not None:
                return self._blob_path(existing).resolve().as_uri()

            source: str | None = None
            if isinstance(data, str):
                try:
                    blob, content_type = await self._fetcher.fetch(data)
                except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
                    logger.warning(
                        "Failed to fetch image for caching: %s",
                        e,
                        extra={"fingerprint": fingerprint},
                    )
                    return data
                source = None if is_data_uri(data) else data
            else:
                blob, content_type = data, sniff_content_type(data)

            now = self._clock()
            meta = CacheEntryMeta(
                key=key,
                fingerprint=fingerprint,
                blob_name=f"image{extension_for(content_type)}",
                content_type=content_type,
                size_bytes=len(blob),
                created_at=now,
                accessed_at=now,
                source=source,
            )

            try:
                await aiofiles.os.makedirs(self._entry_dir(fingerprint), exist_ok=True)
                await self._write_atomic(self._blob_path(meta), blob)
                await self._write_atomic(
                    self._meta_path(fingerprint), meta.model_dump_json(indent=2).encode("utf-8")
                )
            except OSError as e:
                logger.warning(
                    "Cache storage failed: %s", e, extra={"fingerprint": fingerprint}
                )
                return data if isinstance(data, str) else to_data_uri(blob, content_type)

        logger.debug(
            "Cached image",
            extra={"fingerprint": fingerprint, "bytes": meta.size_bytes},
        )
        await self.prune()
        return self._blob_path(meta).resolve().as_uri()

    async def delete(self, key: str) -> None:
        """Remove the entry for ``key`` (no-op when absent)."""
        await self._remove_entry(compute_fingerprint(key))

    async def clear(self) -> None:
        """
        Remove every entry under the root.

        Only entry directories and stray temp files are removed; anything else
        sharing the root is left alone. Each entry is removed under its key
        lock, so an in-progress ``set`` finishes before its entry goes.
        """
        await self.initialize()
        removed = 0
        for name in await aiofiles.os.listdir(self.root):
            path = self.root / name
            if _ENTRY_NAME.fullmatch(name) and await aiofiles.os.path.isdir(path):
                async with self._lock_for(name):
                    await self._remove_entry(name)
                removed += 1
            elif _TMP_NAME.fullmatch(name) and await aiofiles.os.path.isfile(path):
                try:
                    await aiofiles.os.remove(path)
                except FileNotFoundError:
                    pass
        logger.info(
            "Cache cleared", extra={"cache_root": str(self.root), "entries": removed}
        )

    async def entries(self) -> list[CacheEntryMeta]:
        """Metadata of all committed entries (expired ones included)."""
        await self.initialize()
        metas: list[CacheEntryMeta] = []
        for name in await aiofiles.os.listdir(self.root):
            if not _ENTRY_NAME.fullmatch(name):
                continue
            meta = await self._read_meta(name)
            if meta is not None:
                metas.append(meta)
        return metas

    async def prune(self) -> int:
        """
        Drop expired entries, then evict least recently accessed ones over the cap.

        Returns:
            Number of entries removed
        """
        try:
            metas = await self.entries()
            expired = [m for m in metas if self._expired(m)]
            live = sorted(
                (m for m in metas if not self._expired(m)), key=lambda m: m.accessed_at
            )
            overflow = 0
            if self.max_entries is not None and len(live) > self.max_entries:
                overflow = len(live) - self.max_entries

            doomed = expired + live[:overflow]
            for meta in doomed:
                await self._remove_entry(meta.fingerprint)
        except OSError as e:
            logger.warning("Cache pruning failed: %s", e)
            return 0

        if doomed:
            logger.info(
                "Pruned %d cache entries", len(doomed), extra={"cache_root": str(self.root)}
            )
        return len(doomed)

    async def close(self) -> None:
        await self._fetcher.aclose()
