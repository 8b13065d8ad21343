"""Cache-aware, retrying generation client.

``GenerationClient.generate`` is the public entry point:

1. Derive the canonical key for the request.
2. If caching applies, look the key up; a hit returns without any network call.
3. On a miss, call the service through ``call_with_retry``.
4. Store the result (best effort) and return the local reference, falling back
   to the remote one when caching fails.

Classified errors from step 3 propagate untouched. Cache-layer failures are
logged and treated as a miss / no-op.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
import logging
from pathlib import Path
import time
from typing import Any

import httpx
from pydantic import ValidationError

from charforge.core.caching import BlobCache, FSBlobCache, InMemoryBlobCache, NullBlobCache
from charforge.core.caching.blobs import BlobFetcher
from charforge.core.config.loader import load_client_config
from charforge.core.config.models import CacheBackend, CacheConfig, ClientConfig
from charforge.core.generation.endpoint import GenerationEndpoint, ImageGenerator
from charforge.core.generation.errors import (
    AuthenticationRequiredError,
    ClassifiedError,
    classify,
)
from charforge.core.generation.models import GenerationRequest, GenerationResult, canonical_key
from charforge.core.generation.retry import call_with_retry

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]

STATUS_CACHE_HIT = "Retrieved from cache"
STATUS_CALLING = "Calling generation service..."
STATUS_WAITING = "Waiting for an identical generation in progress..."
STATUS_CACHING = "Caching result..."


def _emit(on_status: StatusCallback | None, status: str) -> None:
    if on_status is not None:
        on_status(status)


def create_cache(
    config: CacheConfig, *, transport: httpx.AsyncBaseTransport | None = None
) -> BlobCache:
    """Build the cache backend described by ``config``."""
    fetcher = BlobFetcher(transport=transport)
    if config.backend is CacheBackend.FS:
        return FSBlobCache(
            config.directory,
            ttl_seconds=config.ttl_seconds,
            max_entries=config.max_entries,
            fetcher=fetcher,
        )
    if config.backend is CacheBackend.MEMORY:
        return InMemoryBlobCache(
            ttl_seconds=config.ttl_seconds,
            max_entries=config.max_entries,
            fetcher=fetcher,
        )
    return NullBlobCache()


class GenerationClient:
    """Turns a generation request into an idempotent, cache-aware operation.

    Collaborators are injected; when omitted they are built from ``config``.

    Args:
        config: Client configuration
        cache: Blob cache (defaults to the backend named in ``config.cache``)
        endpoint: One-attempt image generator (defaults to the HTTP endpoint)
        transport: Optional httpx transport for the default endpoint and
            cache fetcher (useful for testing)

    Raises:
        AuthenticationRequiredError: No API key and no injected endpoint

    Example:
        >>> async with GenerationClient(ClientConfig(api_key="cf_live_123")) as client:
        ...     image = await client.generate(
        ...         {"gender": "female", "hairStyle": "bob", "transparent": True},
        ...         on_status=print,
        ...     )
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        cache: BlobCache | None = None,
        endpoint: ImageGenerator | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if endpoint is None and not config.api_key:
            raise AuthenticationRequiredError("API key is required")

        self.config = config
        self.cache: BlobCache = (
            cache if cache is not None else create_cache(config.cache, transport=transport)
        )
        self.endpoint: ImageGenerator = endpoint or GenerationEndpoint.create(
            base_url=config.base_url,
            api_key=config.api_key,
            path=config.generate_path,
            timeout_s=config.retry.attempt_timeout_s,
            user_agent=config.user_agent,
            transport=transport,
        )
        self._in_flight: dict[str, asyncio.Future[str]] = {}

        logger.info(
            "Generation client initialized",
            extra={
                "cache_enabled": config.cache_enabled,
                "cache_backend": type(self.cache).__name__,
                "base_url": config.base_url,
            },
        )

    @classmethod
    def from_config_file(cls, path: str | Path | None = None, **overrides: Any) -> GenerationClient:
        """Build a client from a JSON/YAML file, the environment and overrides."""
        return cls(load_client_config(path, **overrides))

    async def __aenter__(self) -> GenerationClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Release HTTP connections held by the endpoint and cache."""
        aclose = getattr(self.endpoint, "aclose", None)
        if aclose is not None:
            await aclose()
        await self.cache.close()

    async def generate(
        self,
        request: GenerationRequest | Mapping[str, Any],
        on_status: StatusCallback | None = None,
    ) -> str:
        """Generate (or recall) a character image.

        Args:
            request: Request model, or a mapping of its attributes
            on_status: Optional progress callback, called synchronously at each
                phase transition; count and timing are not fixed

        Returns:
            Image reference: local (``file://``/``data:``) when cached, else remote

        Raises:
            ClassifiedError: Invalid request or a failed remote call
        """
        result = await self.generate_result(request, on_status)
        return result.image

    async def generate_result(
        self,
        request: GenerationRequest | Mapping[str, Any],
        on_status: StatusCallback | None = None,
    ) -> GenerationResult:
        """Like ``generate`` but also reports whether the cache served the call."""
        start = time.perf_counter()
        request = self._coerce(request)
        should_cache = self.config.cache_enabled and request.cache
        key = canonical_key(request)

        logger.debug("Starting generation", extra={"should_cache": should_cache, "cache_key": key})

        if should_cache:
            cached = await self._cache_get(key)
            if cached is not None:
                logger.info("Cache hit", extra={"cache_key": key})
                _emit(on_status, STATUS_CACHE_HIT)
                return GenerationResult(
                    image=cached, cached=True, cache_key=key, duration_ms=_elapsed_ms(start)
                )
            logger.debug("Cache miss", extra={"cache_key": key})

        if should_cache and self.config.coalesce_in_flight:
            image = await self._generate_coalesced(key, request, on_status)
        else:
            image = await self._generate_remote(key, request, should_cache, on_status)

        return GenerationResult(
            image=image, cached=False, cache_key=key, duration_ms=_elapsed_ms(start)
        )

    async def clear_cache(self) -> None:
        """Remove every cached image. Failures are logged, never raised."""
        logger.info("Clearing cache")
        try:
            await self.cache.clear()
        except Exception as e:
            logger.warning("Cache clear failed: %s", e)

    @staticmethod
    def _coerce(request: GenerationRequest | Mapping[str, Any]) -> GenerationRequest:
        if isinstance(request, GenerationRequest):
            return request
        try:
            return GenerationRequest.model_validate(request)
        except ValidationError as e:
            raise classify(e) from e

    async def _cache_get(self, key: str) -> str | None:
        try:
            return await self.cache.get(key)
        except Exception as e:
            logger.warning("Cache lookup failed: %s", e, extra={"cache_key": key})
            return None

    async def _cache_store(self, key: str, remote: str) -> str:
        try:
            stored = await self.cache.set(key, remote)
            local = await self.cache.get(key)
        except Exception as e:
            logger.warning("Failed to cache image: %s", e, extra={"cache_key": key})
            return remote
        if local is None:
            logger.debug("Cached entry not readable back; using store result")
        return local or stored or remote

    async def _call_remote(
        self, request: GenerationRequest, on_status: StatusCallback | None
    ) -> str:
        policy = self.config.retry

        def on_retry(attempt: int, delay_s: float, error: ClassifiedError) -> None:
            _emit(
                on_status,
                f"Retrying in {delay_s:.1f}s (attempt {attempt} of {policy.max_attempts})...",
            )

        return await call_with_retry(
            lambda: self.endpoint.generate(request), policy, on_retry=on_retry
        )

    async def _generate_remote(
        self,
        key: str,
        request: GenerationRequest,
        should_cache: bool,
        on_status: StatusCallback | None,
    ) -> str:
        _emit(on_status, STATUS_CALLING)
        remote = await self._call_remote(request, on_status)
        logger.info("Generation successful", extra={"cache_key": key})

        if not should_cache:
            return remote

        _emit(on_status, STATUS_CACHING)
        return await self._cache_store(key, remote)

    def _settle_in_flight(self, key: str, task: asyncio.Future[str]) -> None:
        self._in_flight.pop(key, None)
        # Every waiter may have been cancelled; retrieve the failure so it is
        # not reported as never retrieved.
        if not task.cancelled() and task.exception() is not None:
            logger.debug(
                "Shared generation failed: %s", task.exception(), extra={"cache_key": key}
            )

    async def _generate_coalesced(
        self, key: str, request: GenerationRequest, on_status: StatusCallback | None
    ) -> str:
        """Single-flight: concurrent callers for one key share one remote call."""
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._generate_remote(key, request, True, on_status))
            self._in_flight[key] = task
            task.add_done_callback(lambda done: self._settle_in_flight(key, done))
        else:
            logger.debug("Joining in-flight generation", extra={"cache_key": key})
            _emit(on_status, STATUS_WAITING)
        return await asyncio.shield(task)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
