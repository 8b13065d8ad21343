from charforge.core.caching.backends.fs import FSBlobCache
from charforge.core.caching.backends.memory import InMemoryBlobCache
from charforge.core.caching.backends.null import NullBlobCache

__all__ = ["FSBlobCache", "InMemoryBlobCache", "NullBlobCache"]
