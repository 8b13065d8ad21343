"""Error taxonomy for generation calls.

Every raw failure (transport exception, non-2xx response, error payload inside a
success response, timeout) is converted into exactly one ``ClassifiedError`` by
``classify``. Classification happens once, at the retry boundary; every layer
above forwards the classified error unchanged.

Retryability is a property of the kind alone:

- retried: rate_limited, transient_network, server_side
- surfaced immediately: authentication_required, insufficient_balance,
  validation, unknown
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

import httpx
from pydantic import ValidationError

from charforge.core.api.http.errors import ApiError, NetworkError, RequestTimeoutError
from charforge.core.api.http.utils import header_lookup, parse_retry_after_seconds


class ErrorKind(str, Enum):
    """Closed set of failure categories."""

    AUTHENTICATION_REQUIRED = "authentication_required"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_NETWORK = "transient_network"
    SERVER_SIDE = "server_side"
    VALIDATION = "validation"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE_KINDS


_RETRYABLE_KINDS = frozenset(
    {ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT_NETWORK, ErrorKind.SERVER_SIDE}
)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

# Structured codes emitted by the service in {"error": ..., "code": ...} bodies.
_CODE_KINDS: dict[str, ErrorKind] = {
    "AUTH_ERROR": ErrorKind.AUTHENTICATION_REQUIRED,
    "AUTHORIZATION_ERROR": ErrorKind.AUTHENTICATION_REQUIRED,
    "SESSION_EXPIRED": ErrorKind.AUTHENTICATION_REQUIRED,
    "INSUFFICIENT_CREDITS": ErrorKind.INSUFFICIENT_BALANCE,
    "PAYMENT_ERROR": ErrorKind.INSUFFICIENT_BALANCE,
    "RATE_LIMIT": ErrorKind.RATE_LIMITED,
    "NETWORK_ERROR": ErrorKind.TRANSIENT_NETWORK,
    "API_ERROR": ErrorKind.SERVER_SIDE,
    "VALIDATION_ERROR": ErrorKind.VALIDATION,
    "CONFIG_VALIDATION_ERROR": ErrorKind.VALIDATION,
}

_CREDIT_VOCABULARY = ("insufficient", "credit", "balance", "payment required")
_AUTH_VOCABULARY = (
    "api key",
    "authentication",
    "unauthorized",
    "unauthorised",
    "not authorized",
    "logged in",
    "sign in",
    "session",
)
_NETWORK_VOCABULARY = (
    "network",
    "timeout",
    "timed out",
    "fetch",
    "connection",
    "econnreset",
)


class ClassifiedError(Exception):
    """A generation failure with a discriminated kind.

    Callers branch on ``kind`` (or on the subclass): authentication_required
    calls for a sign-in prompt, insufficient_balance for a purchase prompt,
    everything else for a generic retry-capable message.

    Attributes:
        kind: Failure category
        message: Human-readable description (service text when available)
        status_code: HTTP status of the failed attempt, if any
        code: Structured error code from the service, if any
        retry_after_s: Server-provided wait hint (rate_limited only)
        cause: The raw failure this error was classified from
    """

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        retry_after_s: float | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.code = code
        self.retry_after_s = retry_after_s
        self.cause = cause
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def __str__(self) -> str:
        parts = [f"[{self.kind.value}] {self.message}"]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.code:
            parts.append(f"code={self.code}")
        return " | ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "status_code": self.status_code,
            "code": self.code,
            "retry_after_s": self.retry_after_s,
        }

    @staticmethod
    def for_kind(kind: ErrorKind, message: str, **kwargs: Any) -> ClassifiedError:
        """Instantiate the subclass registered for ``kind``."""
        return _KIND_CLASSES[kind](message, **kwargs)


class AuthenticationRequiredError(ClassifiedError):
    """The caller must sign in (or supply a valid API key)."""

    kind = ErrorKind.AUTHENTICATION_REQUIRED


class InsufficientBalanceError(ClassifiedError):
    """The account has no credits left for a generation."""

    kind = ErrorKind.INSUFFICIENT_BALANCE


class RateLimitedError(ClassifiedError):
    """Too many requests; may carry a retry-after hint."""

    kind = ErrorKind.RATE_LIMITED


class TransientNetworkError(ClassifiedError):
    """Connection failure or timeout."""

    kind = ErrorKind.TRANSIENT_NETWORK


class ServerSideError(ClassifiedError):
    """Retryable failure status from the service."""

    kind = ErrorKind.SERVER_SIDE


class ValidationFailedError(ClassifiedError):
    """The request was rejected as malformed."""

    kind = ErrorKind.VALIDATION


class UnknownGenerationError(ClassifiedError):
    """Anything that matched no other rule."""

    kind = ErrorKind.UNKNOWN


_KIND_CLASSES: dict[ErrorKind, type[ClassifiedError]] = {
    cls.kind: cls
    for cls in (
        AuthenticationRequiredError,
        InsufficientBalanceError,
        RateLimitedError,
        TransientNetworkError,
        ServerSideError,
        ValidationFailedError,
        UnknownGenerationError,
    )
}


_USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.AUTHENTICATION_REQUIRED: "Please sign in to continue.",
    ErrorKind.INSUFFICIENT_BALANCE: "You need more credits. Purchase credits to continue.",
    ErrorKind.RATE_LIMITED: "You're doing that too fast. Please wait a moment.",
    ErrorKind.TRANSIENT_NETWORK: "Connection problem. Please check your internet.",
    ErrorKind.SERVER_SIDE: "The generation service is having trouble. Please try again.",
    ErrorKind.VALIDATION: "Some character settings are invalid. Please review and try again.",
    ErrorKind.UNKNOWN: "Something went wrong. Please try again.",
}


def user_message(error: ClassifiedError) -> str:
    """User-facing remediation text for a classified error."""
    return _USER_MESSAGES[error.kind]


def _extract_details(raw: object) -> tuple[str, int | None, str | None, float | None]:
    """Pull (message, status, code, retry_after) out of a raw failure."""
    status: int | None = None
    code: str | None = None
    retry_after: float | None = None

    if isinstance(raw, ApiError):
        message = raw.message
        status = raw.status_code
        body = raw.body_json()
        if body:
            if isinstance(body.get("error"), str) and body["error"]:
                message = body["error"]
            if isinstance(body.get("code"), str):
                code = body["code"]
        retry_after = parse_retry_after_seconds(header_lookup(raw.response_headers, "Retry-After"))
    elif isinstance(raw, Mapping):
        message = str(raw.get("error") or raw.get("message") or "")
        code = raw.get("code") if isinstance(raw.get("code"), str) else None
        if isinstance(raw.get("status"), int):
            status = raw["status"]
    elif isinstance(raw, BaseException):
        message = str(raw) or type(raw).__name__
        maybe_status = getattr(raw, "status_code", None)
        status = maybe_status if isinstance(maybe_status, int) else None
    else:
        message = str(raw)

    return message or "An unexpected error occurred", status, code, retry_after


def _matches(text: str, vocabulary: tuple[str, ...]) -> bool:
    return any(term in text for term in vocabulary)


def classify(raw: object) -> ClassifiedError:
    """Convert any raw failure into exactly one ``ClassifiedError``.

    Rules, first match wins:

    1. Already classified, a recognized structured ``code``, or a schema
       validation failure → pass through / map.
    2. Credit vocabulary (or 402) → insufficient_balance.
    3. Authentication vocabulary (or 401/403) → authentication_required.
    4. Status 408/429/5xx-retryable → rate_limited (429) or server_side.
    5. Transport exception or network vocabulary → transient_network.
    6. Status 400/422 → validation.
    7. Otherwise → unknown.

    Pure function: no logging, no side effects.
    """
    if isinstance(raw, ClassifiedError):
        return raw

    message, status, code, retry_after = _extract_details(raw)
    cause = raw if isinstance(raw, BaseException) else None

    def build(kind: ErrorKind) -> ClassifiedError:
        return ClassifiedError.for_kind(
            kind,
            message,
            status_code=status,
            code=code,
            retry_after_s=retry_after if kind is ErrorKind.RATE_LIMITED else None,
            cause=cause,
        )

    if code and code.upper() in _CODE_KINDS:
        return build(_CODE_KINDS[code.upper()])
    if isinstance(raw, ValidationError):
        return build(ErrorKind.VALIDATION)

    text = message.lower()

    if status == 402 or _matches(text, _CREDIT_VOCABULARY):
        return build(ErrorKind.INSUFFICIENT_BALANCE)

    if status in (401, 403) or _matches(text, _AUTH_VOCABULARY):
        return build(ErrorKind.AUTHENTICATION_REQUIRED)

    if status in RETRYABLE_STATUS_CODES:
        return build(ErrorKind.RATE_LIMITED if status == 429 else ErrorKind.SERVER_SIDE)

    if isinstance(raw, (NetworkError, RequestTimeoutError, httpx.TransportError, TimeoutError)):
        return build(ErrorKind.TRANSIENT_NETWORK)
    if isinstance(raw, ConnectionError) or _matches(text, _NETWORK_VOCABULARY):
        return build(ErrorKind.TRANSIENT_NETWORK)

    if status in (400, 422):
        return build(ErrorKind.VALIDATION)

    return build(ErrorKind.UNKNOWN)
