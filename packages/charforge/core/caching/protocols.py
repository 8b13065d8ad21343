"""Protocol for blob cache backends."""

from typing import Protocol


class BlobCache(Protocol):
    """
    Cache-aside storage for generated images, keyed by canonical request key.

    References returned by ``get``/``set`` are strings resolvable without the
    network (``file://`` or ``data:`` URIs), except for the degraded fallback of
    ``set`` which hands back the caller's own remote reference.

    Implementations must:
    - Never raise on a miss
    - Keep at most one authoritative value per key (no overwrite on re-set)
    - Never expose a partially written entry
    """

    async def get(self, key: str) -> str | None:
        """
        Look up a previously stored image.

        Args:
            key: Canonical request key

        Returns:
            Local reference, or None on miss/expiry/corruption
        """
        ...

    async def set(self, key: str, data: bytes | str) -> str:
        """
        Store an image once per key.

        Args:
            key: Canonical request key
            data: Raw image bytes, or a remote reference (URL or ``data:`` URI)
                  to fetch before storing

        Returns:
            Local reference to the stored bytes; on fetch/write failure the
            original reference (or a ``data:`` URI for raw bytes)
        """
        ...

    async def delete(self, key: str) -> None:
        """Remove a single entry (no-op when absent)."""
        ...

    async def clear(self) -> None:
        """Remove all entries."""
        ...

    async def close(self) -> None:
        """Release resources held by the backend."""
        ...
