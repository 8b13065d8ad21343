"""Adapter for the remote generation endpoint.

The service accepts the request payload and answers with ``{"image": ...}`` on
success. Failures arrive either as a non-2xx status (raised by
``AsyncApiClient``) or as ``{"error": ..., "code": ...}`` inside a success
status; both surface as raw ``ApiError`` for the classifier.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from charforge.core.api.http import (
    ApiKeyAuth,
    AsyncApiClient,
    DecodeError,
    EmbeddedErrorResponse,
    HttpClientConfig,
)
from charforge.core.api.http.client import build_api_error
from charforge.core.generation.models import GenerationRequest

logger = logging.getLogger(__name__)


class ImageGenerator(Protocol):
    """Anything that can turn a request into an image reference in one attempt."""

    async def generate(self, request: GenerationRequest) -> str: ...


class GenerationEndpoint:
    """One-attempt call to the generation service.

    Args:
        http: Configured API client (owned by the endpoint)
        path: Endpoint path relative to the client's base URL
    """

    def __init__(self, http: AsyncApiClient, *, path: str = "/generate-character") -> None:
        self._http = http
        self._path = path

    @classmethod
    def create(
        cls,
        *,
        base_url: str,
        api_key: str,
        path: str = "/generate-character",
        timeout_s: float | None = 30.0,
        user_agent: str = "charforge-python/0.1",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> GenerationEndpoint:
        """Build an endpoint with its own HTTP client."""
        config = HttpClientConfig(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_s, connect=5.0),
            user_agent=user_agent,
        )
        http = AsyncApiClient(config, auth=ApiKeyAuth(api_key=api_key), transport=transport)
        return cls(http, path=path)

    async def generate(self, request: GenerationRequest) -> str:
        """Request one image.

        Returns:
            The service's image reference (URL or ``data:`` URI)

        Raises:
            ApiError: Any transport or service failure, unclassified
        """
        resp = await self._http.post(self._path, json_body=request.to_payload())
        data = self._http.json(resp)
        return self._extract_image(resp, data)

    def _extract_image(self, resp: httpx.Response, data: Any) -> str:
        method = resp.request.method
        url = str(resp.request.url)

        if isinstance(data, dict) and data.get("error"):
            logger.debug(
                "Error payload in success response", extra={"status_code": resp.status_code}
            )
            raise build_api_error(
                exc_type=EmbeddedErrorResponse,
                message=str(data["error"]),
                method=method,
                url=url,
                status_code=resp.status_code,
                response=resp,
                body_snippet_limit=self._http.config.max_response_body_for_error,
            )

        image = data.get("image") if isinstance(data, dict) else None
        if not isinstance(image, str) or not image:
            raise build_api_error(
                exc_type=DecodeError,
                message="No image in generation response",
                method=method,
                url=url,
                status_code=resp.status_code,
                response=resp,
                body_snippet_limit=self._http.config.max_response_body_for_error,
            )
        return image

    async def aclose(self) -> None:
        await self._http.aclose()
