"""HTTPX wrapper for the generation service.

Exposes a small, ergonomic surface:
- AsyncApiClient: single-attempt async client with structured errors
- HttpClientConfig: configuration
- Exceptions: ApiError and subclasses
- ApiKeyAuth: API key header auth
"""

from charforge.core.api.http.auth import ApiKeyAuth
from charforge.core.api.http.client import AsyncApiClient
from charforge.core.api.http.config import HttpClientConfig
from charforge.core.api.http.errors import (
    ApiError,
    AuthError,
    ClientError,
    DecodeError,
    EmbeddedErrorResponse,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    UnexpectedStatusError,
)

__all__ = [
    "AsyncApiClient",
    "HttpClientConfig",
    "ApiKeyAuth",
    "ApiError",
    "NetworkError",
    "RequestTimeoutError",
    "DecodeError",
    "RateLimitError",
    "AuthError",
    "ClientError",
    "ServerError",
    "UnexpectedStatusError",
    "EmbeddedErrorResponse",
]
