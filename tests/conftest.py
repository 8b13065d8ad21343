"""Shared pytest fixtures for charforge tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from charforge.core.caching import FSBlobCache, InMemoryBlobCache
from charforge.core.caching.blobs import BlobFetcher
from charforge.core.generation.models import GenerationRequest
from charforge.core.generation.retry import RetryPolicy

# ============================================================================
# Image Fixtures
# ============================================================================

# 8-byte PNG signature plus a tiny IHDR-ish tail; enough for content sniffing.
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 13

REMOTE_IMAGE_URL = "https://cdn.example.test/characters/abc123.png"


@pytest.fixture
def png_bytes() -> bytes:
    """Minimal PNG-signed payload."""
    return PNG_BYTES


@pytest.fixture
def remote_url() -> str:
    """Reference the fake service hands back."""
    return REMOTE_IMAGE_URL


def image_cdn_handler(request: httpx.Request) -> httpx.Response:
    """Serve PNG bytes for any CDN URL."""
    return httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"})


@pytest.fixture
def cdn_fetcher() -> BlobFetcher:
    """Fetcher resolving remote references through a mock CDN."""
    return BlobFetcher(transport=httpx.MockTransport(image_cdn_handler))


# ============================================================================
# Cache Fixtures
# ============================================================================


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """Per-test cache root."""
    return tmp_path / "cache"


@pytest.fixture
def fs_cache(cache_dir: Path, cdn_fetcher: BlobFetcher) -> FSBlobCache:
    """Filesystem cache backed by the mock CDN."""
    return FSBlobCache(cache_dir, fetcher=cdn_fetcher)


@pytest.fixture
def memory_cache(cdn_fetcher: BlobFetcher) -> InMemoryBlobCache:
    """In-memory cache backed by the mock CDN."""
    return InMemoryBlobCache(fetcher=cdn_fetcher)


# ============================================================================
# Generation Fixtures
# ============================================================================


@pytest.fixture
def no_wait_policy() -> RetryPolicy:
    """Retry policy with zero backoff so retry tests run instantly."""
    return RetryPolicy(max_retries=3, base_delay_s=0.0, max_delay_s=0.0, jitter=0.0)


@pytest.fixture
def sample_request() -> GenerationRequest:
    """Typical fully-specified request."""
    return GenerationRequest(
        gender="female",
        age_group="young_adult",
        skin_tone="medium",
        hair_style="bob",
        hair_color="auburn",
        clothing="hoodie",
        clothing_color="teal",
        eye_color="green",
        accessories=["glasses"],
        transparent=True,
    )


class FakeEndpoint:
    """Scripted stand-in for GenerationEndpoint.

    ``outcomes`` is consumed one per call: an exception is raised, anything
    else is returned. The last outcome repeats once the script runs out.
    """

    def __init__(self, *outcomes: object) -> None:
        self.outcomes = list(outcomes) or [REMOTE_IMAGE_URL]
        self.calls: list[GenerationRequest] = []
        self.closed = False

    async def generate(self, request: GenerationRequest) -> str:
        self.calls.append(request)
        index = min(len(self.calls) - 1, len(self.outcomes) - 1)
        outcome = self.outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome  # type: ignore[return-value]

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_endpoint_factory() -> Callable[..., FakeEndpoint]:
    """Build scripted endpoints."""
    return FakeEndpoint
