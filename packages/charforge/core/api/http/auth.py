from __future__ import annotations

from collections.abc import AsyncGenerator, Generator

import httpx
from pydantic import BaseModel, Field


class ApiKeyAuth(httpx.Auth, BaseModel):
    """Static API key header authentication for the generation service.

    The service expects the key as a bearer credential, so the default header is
    ``Authorization`` with a ``Bearer`` prefix. Session management lives outside
    this package; the key is treated as an opaque secret.

    Args:
        api_key: API key value
        header_name: Header carrying the key
        prefix: Optional prefix for the key value (``None`` sends the raw key)

    Example:
        >>> auth = ApiKeyAuth(api_key="cf_live_123")
        >>> # Raw key in a custom header:
        >>> auth = ApiKeyAuth(api_key="cf_live_123", header_name="X-API-Key", prefix=None)
    """

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    api_key: str = Field(repr=False)
    header_name: str = "Authorization"
    prefix: str | None = "Bearer"

    def header_value(self) -> str:
        return f"{self.prefix} {self.api_key}" if self.prefix else self.api_key

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        """Apply API key to request (sync)."""
        request.headers[self.header_name] = self.header_value()
        yield request

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        """Apply API key to request (async)."""
        request.headers[self.header_name] = self.header_value()
        yield request
