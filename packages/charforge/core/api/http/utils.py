"""Utility functions for HTTP client operations."""

from __future__ import annotations

from collections.abc import Mapping
from urllib.parse import urljoin


def join_url(base_url: str, path: str) -> str:
    """Join base URL with path in a predictable way.

    Ensures base URL ends with '/' and strips leading '/' from path.

    Args:
        base_url: Base URL (e.g. "https://api.example.com/functions/v1")
        path: Request path (e.g. "/generate-character")

    Returns:
        Joined URL (e.g. "https://api.example.com/functions/v1/generate-character")
    """
    base = base_url if base_url.endswith("/") else base_url + "/"
    return urljoin(base, path.lstrip("/"))


def safe_snippet(content: bytes, limit: int) -> str:
    """Extract safe text snippet from response content for logging.

    Args:
        content: Response body bytes
        limit: Maximum number of bytes to include

    Returns:
        Truncated, decoded text snippet
    """
    if not content:
        return ""
    return content[:limit].decode("utf-8", errors="replace")


def get_request_id(headers: Mapping[str, str]) -> str | None:
    """Extract request ID from common tracing headers.

    Checks for: x-request-id, x-correlation-id, request-id, trace-id (case-insensitive).
    """
    for key in ("x-request-id", "x-correlation-id", "request-id", "trace-id"):
        for hk, hv in headers.items():
            if hk.lower() == key:
                return hv
    return None


def parse_retry_after_seconds(value: str | None) -> float | None:
    """Parse Retry-After header value to seconds.

    Handles numeric seconds format only (not HTTP-date format).

    Args:
        value: Retry-After header value

    Returns:
        Seconds to wait, or None if invalid or not provided
    """
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    if seconds < 0:
        return None
    return seconds


def header_lookup(headers: Mapping[str, str] | None, name: str) -> str | None:
    """Case-insensitive header lookup on a plain mapping."""
    if not headers:
        return None
    wanted = name.lower()
    for hk, hv in headers.items():
        if hk.lower() == wanted:
            return hv
    return None
