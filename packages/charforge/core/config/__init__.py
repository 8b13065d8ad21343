from charforge.core.config.loader import load_client_config, load_config
from charforge.core.config.models import CacheBackend, CacheConfig, ClientConfig

__all__ = [
    "CacheBackend",
    "CacheConfig",
    "ClientConfig",
    "load_client_config",
    "load_config",
]
