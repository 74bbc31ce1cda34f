"""
Abstract Storage Provider Interface.

Defines the contract that all ledger storage backends must implement.
"""

from abc import ABC, abstractmethod
from typing import Optional
from pydantic import BaseModel, Field


class StorageConfig(BaseModel):
    """Configuration for storage provider."""

    backend: str = Field(default="memory", description="memory, redis or postgres")
    connection_string: Optional[str] = Field(default=None, description="Connection string")
    pool_size: int = Field(default=10, ge=1, le=100, description="Connection pool size")
    timeout_seconds: int = Field(default=30, ge=1, le=300, description="Operation timeout")
    key_prefix: str = Field(default="gb", description="Namespace for every stored key")

    # Redis-specific
    redis_host: Optional[str] = Field(default="localhost")
    redis_port: int = Field(default=6379, ge=1, le=65535)
    redis_db: int = Field(default=0, ge=0)
    redis_password: Optional[str] = None
    redis_ssl: bool = False

    # PostgreSQL-specific
    postgres_host: Optional[str] = Field(default="localhost")
    postgres_port: int = Field(default=5432, ge=1, le=65535)
    postgres_database: Optional[str] = Field(default="growthbank")
    postgres_user: Optional[str] = None
    postgres_password: Optional[str] = None
    postgres_ssl_mode: str = Field(default="prefer")


class AbstractStorageProvider(ABC):
    """
    Abstract storage provider.

    The ledger, rule repository and scheduler state are all expressed in
    terms of these primitives:
    - Key-value operations (checkpoints, rule documents)
    - Hash operations (secondary indexes)
    - List operations (append-only ledger commits)
    - Sorted sets (balance leaderboard)
    - Atomic counters (balances, sequences)
    """

    def __init__(self, config: StorageConfig):
        """Initialize storage provider with configuration."""
        self.config = config

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to storage backend."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to storage backend."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if storage backend is healthy."""
        pass

    # Key-Value Operations

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Get value by key."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> bool:
        """Set value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key."""
        pass

    # Hash Operations

    @abstractmethod
    async def hget(self, key: str, field: str) -> Optional[str]:
        """Get hash field value."""
        pass

    @abstractmethod
    async def hset(self, key: str, field: str, value: str) -> bool:
        """Set hash field value."""
        pass

    @abstractmethod
    async def hgetall(self, key: str) -> dict[str, str]:
        """Get all hash fields."""
        pass

    @abstractmethod
    async def hdel(self, key: str, field: str) -> bool:
        """Delete hash field."""
        pass

    # List Operations

    @abstractmethod
    async def rpush(self, key: str, value: str) -> int:
        """Push value to tail of list. Returns new list length."""
        pass

    @abstractmethod
    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        """Get list range [start, stop]."""
        pass

    @abstractmethod
    async def llen(self, key: str) -> int:
        """Get list length."""
        pass

    # Sorted Set Operations (for balance rankings)

    @abstractmethod
    async def zadd(self, key: str, score: float, member: str) -> bool:
        """Add member to sorted set with score."""
        pass

    @abstractmethod
    async def zscore(self, key: str, member: str) -> Optional[float]:
        """Get score of member in sorted set."""
        pass

    @abstractmethod
    async def zrevrange(
        self,
        key: str,
        start: int,
        stop: int,
    ) -> list[tuple[str, float]]:
        """Get sorted set range with scores, highest score first."""
        pass

    # Atomic Operations

    @abstractmethod
    async def incrby(self, key: str, amount: int) -> int:
        """Increment value by amount. Returns new value."""
        pass
