from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
import contextvars
import logging
import time

from pydantic import BaseModel

logger = logging.getLogger("charforge.core.api.http")

# 1-based attempt number of the generation call currently in progress.
_generation_attempt: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "generation_attempt", default=None
)


@contextmanager
def generation_attempt(attempt: int) -> Iterator[None]:
    """Tag HTTP logs emitted inside the block with a generation attempt number."""
    token = _generation_attempt.set(attempt)
    try:
        yield
    finally:
        _generation_attempt.reset(token)


def current_generation_attempt() -> int | None:
    return _generation_attempt.get()


def redact_headers(headers: Mapping[str, str], redact: tuple[str, ...]) -> dict[str, str]:
    """Redact sensitive headers (API keys, auth) for logging.

    Args:
        headers: Headers to redact
        redact: Header names to redact (case-insensitive)

    Returns:
        Headers with sensitive values replaced with "***REDACTED***"
    """
    red = {v.lower() for v in redact}
    return {k: ("***REDACTED***" if k.lower() in red else v) for k, v in headers.items()}


class RequestLogContext(BaseModel):
    """Structured context shared by the request and response log lines."""

    method: str
    url: str
    request_id: str | None = None
    attempt: int | None = None

    @classmethod
    def for_request(cls, method: str, url: str, request_id: str | None) -> RequestLogContext:
        return cls(
            method=method, url=url, request_id=request_id, attempt=current_generation_attempt()
        )

    def fields(self) -> dict[str, object]:
        return self.model_dump(exclude_none=True)


def log_request(
    ctx: RequestLogContext, headers: Mapping[str, str], redact: tuple[str, ...]
) -> float:
    """Log an outgoing request with redacted headers.

    Returns:
        Start timestamp for elapsed time calculation
    """
    start = time.perf_counter()
    logger.debug(
        "HTTP request", extra={**ctx.fields(), "headers": redact_headers(headers, redact)}
    )
    return start


def log_response(ctx: RequestLogContext, status_code: int, elapsed_s: float) -> None:
    logger.debug(
        "HTTP response",
        extra={**ctx.fields(), "status_code": status_code, "elapsed_ms": int(elapsed_s * 1000)},
    )
