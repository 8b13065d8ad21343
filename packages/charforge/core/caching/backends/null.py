"""No-op cache for environments without local storage.

Always reports cache miss, discards all stores.
"""

from charforge.core.caching.blobs import to_data_uri


class NullBlobCache:
    """
    No-op cache.

    ``set`` hands back a usable reference without storing anything: the remote
    reference unchanged, or a ``data:`` URI for raw bytes.
    """

    async def get(self, key: str) -> str | None:
        """Always returns None."""
        return None

    async def set(self, key: str, data: bytes | str) -> str:
        """Discard."""
        if isinstance(data, str):
            return data
        return to_data_uri(data)

    async def delete(self, key: str) -> None:
        """No-op."""

    async def clear(self) -> None:
        """No-op."""

    async def close(self) -> None:
        """No-op."""
