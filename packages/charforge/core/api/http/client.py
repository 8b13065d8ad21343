"""HTTPX wrapper used to reach the generation service.

Provides:
- Structured error handling (every failure is an ``ApiError``)
- Request/response logging with header redaction
- Auth integration (API key)

Each call is a single attempt. Retrying belongs to the generation layer, which
classifies failures before deciding whether another paid attempt is worthwhile.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import time
from typing import Any
import uuid

import httpx

from charforge.core.api.http.config import HttpClientConfig
from charforge.core.api.http.errors import (
    ApiError,
    AuthError,
    ClientError,
    DecodeError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    UnexpectedStatusError,
)
from charforge.core.api.http.logging_utils import RequestLogContext, log_request, log_response
from charforge.core.api.http.utils import get_request_id, join_url, safe_snippet


def _default_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:16]}"


def _is_json_response(resp: httpx.Response) -> bool:
    """Check if response content-type indicates JSON."""
    ctype = resp.headers.get("content-type", "")
    return "application/json" in ctype or "+json" in ctype


def categorize_http_error(status_code: int) -> type[ApiError]:
    """Map HTTP status code to appropriate error class."""
    if status_code in (401, 403):
        return AuthError
    if status_code == 429:
        return RateLimitError
    if 400 <= status_code < 500:
        return ClientError
    if 500 <= status_code < 600:
        return ServerError
    return UnexpectedStatusError


def build_api_error(
    *,
    exc_type: type[ApiError],
    message: str,
    method: str,
    url: str,
    status_code: int | None = None,
    response: httpx.Response | None = None,
    request_id: str | None = None,
    body_snippet_limit: int = 4096,
    cause: BaseException | None = None,
) -> ApiError:
    """Build API error with response context.

    Args:
        exc_type: Error class to instantiate
        message: Human-readable error message
        method: HTTP method
        url: Request URL
        status_code: HTTP status code (if available)
        response: HTTP response (if available)
        request_id: Request ID for tracing
        body_snippet_limit: Max bytes to include in error
        cause: Original exception that triggered this error

    Returns:
        Constructed API error
    """
    headers: dict[str, str] | None = None
    snippet: str | None = None
    if response is not None:
        headers = dict(response.headers)
        snippet = safe_snippet(response.content or b"", body_snippet_limit)
        request_id = request_id or get_request_id(response.headers)

    return exc_type(
        message=message,
        method=method,
        url=url,
        status_code=status_code,
        request_id=request_id,
        response_headers=headers,
        response_body_snippet=snippet,
        cause=cause,
    )


class AsyncApiClient:
    """Asynchronous HTTP API client.

    Built on httpx.AsyncClient with structured errors and observability.

    Args:
        config: Client configuration
        auth: Optional authentication handler (e.g. ApiKeyAuth)
        transport: Optional custom transport (useful for testing)

    Example:
        >>> from charforge.core.api.http import ApiKeyAuth, AsyncApiClient, HttpClientConfig
        >>> config = HttpClientConfig(base_url="https://api.example.com/functions/v1")
        >>> async with AsyncApiClient(config, auth=ApiKeyAuth(api_key="secret")) as client:
        ...     resp = await client.post("/generate-character", json_body={"gender": "male"})
        ...     data = client.json(resp)
    """

    def __init__(
        self,
        config: HttpClientConfig,
        *,
        auth: httpx.Auth | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.auth = auth
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            headers={"User-Agent": config.user_agent, **config.headers},
            timeout=config.timeout,
            limits=config.limits,
            follow_redirects=config.follow_redirects,
            auth=auth,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client and release resources."""
        await self._client.aclose()

    async def __aenter__(self) -> AsyncApiClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        json_body: Any = None,
        timeout: httpx.Timeout | None = None,
        idempotency_key: str | None = None,
        expected_status: Sequence[int] | None = None,
    ) -> httpx.Response:
        """Send one request and normalize any failure into an ``ApiError``.

        Raises:
            RequestTimeoutError: Transport timed out
            NetworkError: Connection-level failure
            ApiError: Non-2xx (or unexpected) status, subclass chosen by status
        """
        method_u = method.upper()
        url = join_url(str(self._client.base_url), path)
        req_id = (headers or {}).get("X-Request-Id") or _default_request_id()

        merged_headers = dict(self._client.headers)
        if headers:
            merged_headers.update(headers)
        merged_headers.setdefault("X-Request-Id", req_id)
        if idempotency_key:
            merged_headers.setdefault("Idempotency-Key", idempotency_key)

        ctx = RequestLogContext.for_request(method_u, url, req_id)
        start = log_request(ctx, merged_headers, self.config.redact_headers)

        try:
            resp = await self._client.request(
                method_u,
                url,
                headers=merged_headers,
                json=json_body,
                timeout=timeout or self.config.timeout,
            )
        except httpx.TimeoutException as e:
            raise build_api_error(
                exc_type=RequestTimeoutError,
                message="Request timed out",
                method=method_u,
                url=url,
                request_id=req_id,
                cause=e,
            ) from e
        except httpx.RequestError as e:
            raise build_api_error(
                exc_type=NetworkError,
                message="Network error while sending request",
                method=method_u,
                url=url,
                request_id=req_id,
                cause=e,
            ) from e

        log_response(ctx, resp.status_code, time.perf_counter() - start)

        ok = resp.status_code in expected_status if expected_status else resp.status_code < 400
        if not ok:
            message = (
                f"Unexpected status code (expected {list(expected_status)})"
                if expected_status
                else "HTTP error response"
            )
            raise build_api_error(
                exc_type=categorize_http_error(resp.status_code),
                message=message,
                method=method_u,
                url=url,
                status_code=resp.status_code,
                response=resp,
                request_id=req_id,
                body_snippet_limit=self.config.max_response_body_for_error,
            )
        return resp

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        """Perform async POST request."""
        return await self.request("POST", path, **kwargs)

    def json(self, response: httpx.Response) -> Any:
        """Decode JSON response with structured error handling.

        Raises:
            DecodeError: If response is not JSON or parsing fails
        """
        if response.status_code == 204 or not response.content:
            return None
        if not _is_json_response(response):
            raise build_api_error(
                exc_type=DecodeError,
                message="Response is not JSON (content-type mismatch)",
                method=response.request.method,
                url=str(response.request.url),
                status_code=response.status_code,
                response=response,
                body_snippet_limit=self.config.max_response_body_for_error,
            )
        try:
            return response.json()
        except ValueError as e:
            raise build_api_error(
                exc_type=DecodeError,
                message="Failed to parse JSON response",
                method=response.request.method,
                url=str(response.request.url),
                status_code=response.status_code,
                response=response,
                body_snippet_limit=self.config.max_response_body_for_error,
                cause=e,
            ) from e
