"""Tests for GenerationClient: cache-aside flow, retries and status reporting."""

from __future__ import annotations

import asyncio
import gc
from pathlib import Path
from unittest.mock import AsyncMock

import httpx
import pytest

from charforge.core.api.http.errors import (
    AuthError,
    EmbeddedErrorResponse,
    NetworkError,
    ServerError,
)
from charforge.core.caching import FSBlobCache, InMemoryBlobCache, NullBlobCache
from charforge.core.config.models import CacheBackend, CacheConfig, ClientConfig
from charforge.core.generation.client import (
    STATUS_CACHE_HIT,
    STATUS_CACHING,
    STATUS_CALLING,
    STATUS_WAITING,
    GenerationClient,
    create_cache,
)
from charforge.core.generation.errors import (
    AuthenticationRequiredError,
    InsufficientBalanceError,
    ServerSideError,
    ValidationFailedError,
)
from charforge.core.generation.models import GenerationRequest, canonical_key
from charforge.core.generation.retry import RetryPolicy


def _raw(exc_type, status: int | None, body: str | None = None):
    return exc_type(
        message="HTTP error response",
        method="POST",
        url="https://forge.example.test/functions/v1/generate-character",
        status_code=status,
        response_body_snippet=body,
    )


class BrokenCache:
    """Cache whose operations fail on demand."""

    def __init__(self, *, fail_get: bool = False, fail_set: bool = False) -> None:
        self.fail_get = fail_get
        self.fail_set = fail_set
        self.sets = 0

    async def get(self, key: str) -> str | None:
        if self.fail_get:
            raise OSError("disk on fire")
        return None

    async def set(self, key: str, data: bytes | str) -> str:
        self.sets += 1
        if self.fail_set:
            raise OSError("read-only filesystem")
        return data if isinstance(data, str) else ""

    async def delete(self, key: str) -> None:
        pass

    async def clear(self) -> None:
        raise OSError("permission denied")

    async def close(self) -> None:
        pass


@pytest.fixture
def config(no_wait_policy: RetryPolicy) -> ClientConfig:
    return ClientConfig(retry=no_wait_policy)


@pytest.fixture
def request_payload() -> dict:
    return {"gender": "female", "hairStyle": "bob", "transparent": True}


class TestConstruction:
    def test_missing_api_key_rejected(self):
        with pytest.raises(AuthenticationRequiredError):
            GenerationClient(ClientConfig(api_key=""))

    def test_api_key_builds_default_endpoint(self, tmp_path: Path):
        config = ClientConfig(api_key="cf_test", cache=CacheConfig(directory=tmp_path))
        client = GenerationClient(config)
        assert isinstance(client.cache, FSBlobCache)

    @pytest.mark.parametrize(
        ("backend", "cache_type"),
        [
            (CacheBackend.FS, FSBlobCache),
            (CacheBackend.MEMORY, InMemoryBlobCache),
            (CacheBackend.NULL, NullBlobCache),
        ],
    )
    def test_create_cache(self, tmp_path: Path, backend: CacheBackend, cache_type: type):
        cache = create_cache(CacheConfig(backend=backend, directory=tmp_path))
        assert isinstance(cache, cache_type)

    async def test_create_memory_cache_honours_limits(self, png_bytes: bytes):
        cache = create_cache(
            CacheConfig(backend=CacheBackend.MEMORY, max_entries=2, ttl_seconds=60)
        )
        assert cache.ttl_seconds == 60
        for gender in ("a", "b", "c", "d", "e"):
            await cache.set(gender, png_bytes)

        assert len(cache) == 2
        await cache.close()

    async def test_close_releases_endpoint(self, config, memory_cache, fake_endpoint_factory):
        endpoint = fake_endpoint_factory()
        async with GenerationClient(config, cache=memory_cache, endpoint=endpoint):
            pass
        assert endpoint.closed


class TestCaching:
    async def test_second_call_served_from_cache(
        self, config, memory_cache, fake_endpoint_factory, request_payload, png_bytes
    ):
        endpoint = fake_endpoint_factory()
        client = GenerationClient(config, cache=memory_cache, endpoint=endpoint)

        first_statuses: list[str] = []
        second_statuses: list[str] = []
        first = await client.generate_result(request_payload, on_status=first_statuses.append)
        second = await client.generate_result(request_payload, on_status=second_statuses.append)

        assert len(endpoint.calls) == 1
        assert first.image == second.image
        assert first.image.startswith("data:image/png;base64,")
        assert not first.cached
        assert second.cached
        assert first_statuses == [STATUS_CALLING, STATUS_CACHING]
        assert second_statuses == [STATUS_CACHE_HIT]

    async def test_reordered_request_hits_cache(self, config, memory_cache, fake_endpoint_factory):
        endpoint = fake_endpoint_factory()
        client = GenerationClient(config, cache=memory_cache, endpoint=endpoint)

        await client.generate(
            {"gender": "male", "hairStyle": "afro", "accessories": ["cap", "glasses"]}
        )
        result = await client.generate_result(
            {"accessories": ["glasses", "cap"], "hairStyle": "afro", "gender": "male"}
        )

        assert result.cached
        assert len(endpoint.calls) == 1

    async def test_reordered_fields_zero_network_calls(self, config, fs_cache, remote_url):
        endpoint = AsyncMock()
        endpoint.generate.return_value = remote_url
        client = GenerationClient(config, cache=fs_cache, endpoint=endpoint)

        first = await client.generate(
            {"gender": "female", "hairStyle": "bob", "hairColor": "blonde", "transparent": True}
        )
        endpoint.generate.reset_mock()
        second = await client.generate(
            {"transparent": True, "hairColor": "blonde", "hairStyle": "bob", "gender": "female"}
        )

        assert second == first
        endpoint.generate.assert_not_awaited()

    async def test_hit_skips_endpoint_entirely(self, config, fake_endpoint_factory):
        cache = AsyncMock()
        cache.get.return_value = "file:///cache/abc/image.png"
        endpoint = fake_endpoint_factory()
        client = GenerationClient(config, cache=cache, endpoint=endpoint)

        result = await client.generate_result({"gender": "male"})

        assert result.cached
        assert result.image == "file:///cache/abc/image.png"
        assert endpoint.calls == []
        cache.set.assert_not_awaited()

    async def test_bypass_flag_skips_cache(
        self, config, memory_cache, fake_endpoint_factory, remote_url
    ):
        endpoint = fake_endpoint_factory()
        client = GenerationClient(config, cache=memory_cache, endpoint=endpoint)
        request = GenerationRequest(gender="female", hair_style="bob", cache=False)

        statuses: list[str] = []
        assert await client.generate(request, on_status=statuses.append) == remote_url
        assert await client.generate(request) == remote_url

        assert len(endpoint.calls) == 2
        assert len(memory_cache) == 0
        assert statuses == [STATUS_CALLING]

    async def test_bypass_ignores_existing_entry(
        self, config, memory_cache, fake_endpoint_factory, remote_url
    ):
        endpoint = fake_endpoint_factory()
        client = GenerationClient(config, cache=memory_cache, endpoint=endpoint)

        await client.generate(GenerationRequest(gender="female"))
        assert await client.generate(GenerationRequest(gender="female", cache=False)) == remote_url
        assert len(endpoint.calls) == 2

    async def test_global_switch_disables_cache(
        self, no_wait_policy, memory_cache, fake_endpoint_factory, remote_url
    ):
        config = ClientConfig(retry=no_wait_policy, cache_enabled=False)
        endpoint = fake_endpoint_factory()
        client = GenerationClient(config, cache=memory_cache, endpoint=endpoint)

        await client.generate({"gender": "male"})
        assert await client.generate({"gender": "male"}) == remote_url
        assert len(endpoint.calls) == 2
        assert len(memory_cache) == 0

    async def test_cache_write_failure_returns_remote(
        self, config, fake_endpoint_factory, remote_url
    ):
        cache = BrokenCache(fail_set=True)
        client = GenerationClient(config, cache=cache, endpoint=fake_endpoint_factory())

        assert await client.generate({"gender": "female"}) == remote_url
        assert cache.sets == 1

    async def test_cache_lookup_failure_is_a_miss(self, config, fake_endpoint_factory, remote_url):
        endpoint = fake_endpoint_factory()
        client = GenerationClient(config, cache=BrokenCache(fail_get=True), endpoint=endpoint)

        assert await client.generate({"gender": "female"}) == remote_url
        assert len(endpoint.calls) == 1

    async def test_filesystem_cache_returns_local_file(
        self, config, fs_cache, fake_endpoint_factory, png_bytes
    ):
        endpoint = fake_endpoint_factory()
        client = GenerationClient(config, cache=fs_cache, endpoint=endpoint)

        first = await client.generate({"gender": "male", "hairStyle": "buzz"})
        second = await client.generate({"hairStyle": "buzz", "gender": "male"})

        assert first == second
        assert first.startswith("file://")
        assert Path(httpx.URL(first).path).read_bytes() == png_bytes
        assert len(endpoint.calls) == 1

    async def test_concurrent_identical_requests_share_one_entry(
        self, config, memory_cache, fake_endpoint_factory
    ):
        client = GenerationClient(config, cache=memory_cache, endpoint=fake_endpoint_factory())
        results = await asyncio.gather(
            client.generate({"gender": "female"}), client.generate({"gender": "female"})
        )
        assert results[0] == results[1]
        assert len(memory_cache) == 1

    async def test_clear_cache_failure_is_logged(self, config, fake_endpoint_factory, caplog):
        client = GenerationClient(config, cache=BrokenCache(), endpoint=fake_endpoint_factory())
        await client.clear_cache()
        assert "Cache clear failed" in caplog.text


class TestFailures:
    async def test_auth_failure_not_retried(self, config, memory_cache, fake_endpoint_factory):
        endpoint = fake_endpoint_factory(_raw(AuthError, 401, '{"error": "Invalid API key"}'))
        client = GenerationClient(config, cache=memory_cache, endpoint=endpoint)

        with pytest.raises(AuthenticationRequiredError) as exc_info:
            await client.generate({"gender": "female"})

        assert len(endpoint.calls) == 1
        assert exc_info.value.message == "Invalid API key"
        assert len(memory_cache) == 0

    async def test_balance_failure_not_retried(self, config, memory_cache, fake_endpoint_factory):
        endpoint = fake_endpoint_factory(
            _raw(EmbeddedErrorResponse, 200, '{"error": "Insufficient credits"}')
        )
        client = GenerationClient(config, cache=memory_cache, endpoint=endpoint)

        with pytest.raises(InsufficientBalanceError):
            await client.generate({"gender": "female"})
        assert len(endpoint.calls) == 1

    async def test_retries_are_bounded(self, config, memory_cache, fake_endpoint_factory):
        endpoint = fake_endpoint_factory(_raw(ServerError, 503))
        client = GenerationClient(config, cache=memory_cache, endpoint=endpoint)

        with pytest.raises(ServerSideError):
            await client.generate({"gender": "female"})

        assert len(endpoint.calls) == config.retry.max_retries + 1
        assert len(memory_cache) == 0

    async def test_retry_then_success_reports_progress(
        self, config, memory_cache, fake_endpoint_factory
    ):
        endpoint = fake_endpoint_factory(
            _raw(NetworkError, None), "https://cdn.example.test/characters/abc123.png"
        )
        client = GenerationClient(config, cache=memory_cache, endpoint=endpoint)

        statuses: list[str] = []
        image = await client.generate({"gender": "female"}, on_status=statuses.append)

        assert image.startswith("data:image/png")
        assert len(endpoint.calls) == 2
        assert statuses == [
            STATUS_CALLING,
            "Retrying in 0.0s (attempt 2 of 4)...",
            STATUS_CACHING,
        ]

    async def test_invalid_request_never_reaches_service(
        self, config, memory_cache, fake_endpoint_factory
    ):
        endpoint = fake_endpoint_factory()
        client = GenerationClient(config, cache=memory_cache, endpoint=endpoint)

        with pytest.raises(ValidationFailedError):
            await client.generate({"gender": "female", "hairStyle": "mohawk"})
        assert endpoint.calls == []


class TestCoalescing:
    async def test_identical_in_flight_requests_share_one_call(
        self, no_wait_policy, memory_cache, remote_url
    ):
        gate = asyncio.Event()
        calls: list[GenerationRequest] = []

        class SlowEndpoint:
            async def generate(self, request: GenerationRequest) -> str:
                calls.append(request)
                await gate.wait()
                return remote_url

        config = ClientConfig(retry=no_wait_policy, coalesce_in_flight=True)
        client = GenerationClient(config, cache=memory_cache, endpoint=SlowEndpoint())

        first_statuses: list[str] = []
        second_statuses: list[str] = []
        first = asyncio.create_task(
            client.generate({"gender": "male"}, on_status=first_statuses.append)
        )
        second = asyncio.create_task(
            client.generate({"gender": "male"}, on_status=second_statuses.append)
        )
        await asyncio.sleep(0.01)
        gate.set()
        results = await asyncio.gather(first, second)

        assert len(calls) == 1
        assert results[0] == results[1]
        assert STATUS_WAITING in second_statuses
        assert client._in_flight == {}

    async def test_failure_propagates_to_all_waiters(
        self, no_wait_policy, memory_cache, fake_endpoint_factory
    ):
        config = ClientConfig(
            retry=no_wait_policy.model_copy(update={"max_retries": 0}), coalesce_in_flight=True
        )
        endpoint = fake_endpoint_factory(_raw(AuthError, 401))
        client = GenerationClient(config, cache=memory_cache, endpoint=endpoint)

        results = await asyncio.gather(
            client.generate({"gender": "male"}),
            client.generate({"gender": "male"}),
            return_exceptions=True,
        )
        assert all(isinstance(r, AuthenticationRequiredError) for r in results)

    async def test_failure_after_waiters_cancelled_is_retrieved(
        self, no_wait_policy, memory_cache
    ):
        gate = asyncio.Event()

        class FailingEndpoint:
            async def generate(self, request: GenerationRequest) -> str:
                await gate.wait()
                raise _raw(ServerError, 503)

        loop = asyncio.get_running_loop()
        reported: list[dict] = []
        loop.set_exception_handler(lambda _loop, context: reported.append(context))
        config = ClientConfig(
            retry=no_wait_policy.model_copy(update={"max_retries": 0}), coalesce_in_flight=True
        )
        client = GenerationClient(config, cache=memory_cache, endpoint=FailingEndpoint())

        try:
            waiter = asyncio.create_task(client.generate({"gender": "male"}))
            await asyncio.sleep(0.01)
            shared = client._in_flight[canonical_key({"gender": "male"})]
            waiter.cancel()
            with pytest.raises(asyncio.CancelledError):
                await waiter

            gate.set()
            await asyncio.wait({shared})
            assert client._in_flight == {}
            del shared
            gc.collect()
        finally:
            loop.set_exception_handler(None)

        assert not [c for c in reported if "never retrieved" in c.get("message", "")]
