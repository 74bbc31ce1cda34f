"""
Storage providers for GrowthBank.

Provides the abstract interface and the memory, Redis and PostgreSQL
backends the ledger runs on.
"""

from .provider import AbstractStorageProvider, StorageConfig
from .memory_provider import MemoryStorageProvider
from .redis_provider import RedisStorageProvider
from .postgres_provider import PostgresStorageProvider

from ..exceptions import ConfigurationError

_BACKENDS: dict[str, type[AbstractStorageProvider]] = {
    "memory": MemoryStorageProvider,
    "redis": RedisStorageProvider,
    "postgres": PostgresStorageProvider,
}


def create_provider(config: StorageConfig) -> AbstractStorageProvider:
    """Instantiate the backend named by ``config.backend``."""
    try:
        provider_cls = _BACKENDS[config.backend]
    except KeyError:
        raise ConfigurationError(
            f"Unknown storage backend {config.backend!r}; "
            f"expected one of {sorted(_BACKENDS)}"
        ) from None
    return provider_cls(config)


__all__ = [
    "AbstractStorageProvider",
    "StorageConfig",
    "MemoryStorageProvider",
    "RedisStorageProvider",
    "PostgresStorageProvider",
    "create_provider",
]
