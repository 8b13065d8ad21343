"""Helpers for turning image references into bytes and bytes into references."""

from __future__ import annotations

import base64
import binascii
import logging

import httpx

logger = logging.getLogger(__name__)

_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)

_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


def sniff_content_type(data: bytes) -> str:
    """Best-effort image MIME type from magic bytes."""
    for signature, content_type in _SIGNATURES:
        if data.startswith(signature):
            return content_type
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "application/octet-stream"


def extension_for(content_type: str) -> str:
    return _EXTENSIONS.get(content_type.split(";")[0].strip().lower(), ".bin")


def is_data_uri(ref: str) -> bool:
    return ref.startswith("data:")


def to_data_uri(data: bytes, content_type: str | None = None) -> str:
    """Encode bytes as a base64 ``data:`` URI."""
    content_type = content_type or sniff_content_type(data)
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_uri(ref: str) -> tuple[bytes, str]:
    """Decode a base64 ``data:`` URI.

    Raises:
        ValueError: If the URI is malformed or not base64-encoded
    """
    header, sep, payload = ref.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError("Unsupported data URI (expected data:<type>;base64,<payload>)")
    content_type = header[len("data:") : -len(";base64")] or "application/octet-stream"
    try:
        return base64.b64decode(payload, validate=True), content_type
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload in data URI: {e}") from e


class BlobFetcher:
    """Resolves remote image references to bytes.

    The underlying ``httpx.AsyncClient`` is created lazily and owned by the
    fetcher unless one is injected.

    Args:
        client: Optional pre-built client (closed by its owner)
        timeout_s: Download timeout
        transport: Optional custom transport (useful for testing)
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout_s = timeout_s
        self._transport = transport

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout_s,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def fetch(self, ref: str) -> tuple[bytes, str]:
        """Download (or decode) a reference.

        Returns:
            ``(bytes, content_type)``

        Raises:
            ValueError: Malformed ``data:`` URI or unsupported scheme
            httpx.HTTPError: Download failure or non-2xx status
        """
        if is_data_uri(ref):
            return decode_data_uri(ref)
        if not ref.startswith(("http://", "https://")):
            raise ValueError(f"Unsupported image reference scheme: {ref[:32]!r}")

        response = await self._get_client().get(ref)
        response.raise_for_status()
        content = response.content
        content_type = response.headers.get("content-type") or sniff_content_type(content)
        logger.debug(
            "Fetched remote image",
            extra={"url": ref, "bytes": len(content), "content_type": content_type},
        )
        return content, content_type.split(";")[0].strip()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
