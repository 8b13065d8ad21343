"""Generation domain: request models, error taxonomy and retry policy.

The client and endpoint live in ``charforge.core.generation.client`` and
``charforge.core.generation.endpoint`` (re-exported from ``charforge``); they
are not imported here because configuration models depend on this package.
"""

from charforge.core.generation.errors import (
    AuthenticationRequiredError,
    ClassifiedError,
    ErrorKind,
    InsufficientBalanceError,
    RateLimitedError,
    ServerSideError,
    TransientNetworkError,
    UnknownGenerationError,
    ValidationFailedError,
    classify,
    user_message,
)
from charforge.core.generation.models import (
    Accessory,
    AgeGroup,
    ClothingColor,
    ClothingItem,
    EyeColor,
    Gender,
    GenerationRequest,
    GenerationResult,
    HairColor,
    HairStyle,
    SkinTone,
    canonical_key,
)
from charforge.core.generation.retry import RetryPolicy, call_with_retry

__all__ = [
    # Errors
    "ErrorKind",
    "ClassifiedError",
    "AuthenticationRequiredError",
    "InsufficientBalanceError",
    "RateLimitedError",
    "TransientNetworkError",
    "ServerSideError",
    "ValidationFailedError",
    "UnknownGenerationError",
    "classify",
    "user_message",
    # Models
    "GenerationRequest",
    "GenerationResult",
    "canonical_key",
    "Gender",
    "AgeGroup",
    "SkinTone",
    "EyeColor",
    "HairStyle",
    "HairColor",
    "ClothingItem",
    "ClothingColor",
    "Accessory",
    # Retry
    "RetryPolicy",
    "call_with_retry",
]
