"""Cache-aware, retrying client for the CharacterForge generation service."""

from charforge.core.caching import FSBlobCache, InMemoryBlobCache, NullBlobCache
from charforge.core.config import CacheConfig, ClientConfig, load_client_config
from charforge.core.generation import (
    AuthenticationRequiredError,
    ClassifiedError,
    ErrorKind,
    GenerationRequest,
    GenerationResult,
    InsufficientBalanceError,
    RetryPolicy,
    canonical_key,
    classify,
    user_message,
)
from charforge.core.generation.client import GenerationClient
from charforge.core.generation.endpoint import GenerationEndpoint

__version__ = "0.1.0"

__all__ = [
    "GenerationClient",
    "GenerationEndpoint",
    "GenerationRequest",
    "GenerationResult",
    "ClientConfig",
    "CacheConfig",
    "RetryPolicy",
    "load_client_config",
    "canonical_key",
    "classify",
    "user_message",
    "ErrorKind",
    "ClassifiedError",
    "AuthenticationRequiredError",
    "InsufficientBalanceError",
    "FSBlobCache",
    "InMemoryBlobCache",
    "NullBlobCache",
]
