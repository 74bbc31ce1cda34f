"""
Redis Storage Provider.

Production Redis backend with connection pooling.
"""

from typing import Optional
import logging

from .provider import AbstractStorageProvider, StorageConfig

logger = logging.getLogger(__name__)


class RedisStorageProvider(AbstractStorageProvider):
    """
    Redis storage provider.

    Ledger commits map onto RPUSH, balances onto INCRBY and the
    leaderboard onto a sorted set, so every ledger primitive is a single
    atomic Redis command.

    Requires: redis package
    """

    def __init__(self, config: StorageConfig):
        """Initialize Redis storage."""
        super().__init__(config)
        self._client = None
        self._pool = None

    async def connect(self) -> None:
        """Establish connection to Redis."""
        try:
            import redis.asyncio as aioredis
        except ImportError:
            raise ImportError(
                "redis package is required for RedisStorageProvider. "
                "Install with: pip install redis"
            )

        if self.config.connection_string:
            self._pool = aioredis.ConnectionPool.from_url(
                self.config.connection_string,
                max_connections=self.config.pool_size,
                decode_responses=True,
            )
        else:
            self._pool = aioredis.ConnectionPool(
                host=self.config.redis_host,
                port=self.config.redis_port,
                db=self.config.redis_db,
                password=self.config.redis_password,
                max_connections=self.config.pool_size,
                socket_timeout=self.config.timeout_seconds,
                socket_connect_timeout=self.config.timeout_seconds,
                decode_responses=True,
                **({"connection_class": aioredis.SSLConnection} if self.config.redis_ssl else {}),
            )

        self._client = aioredis.Redis(connection_pool=self._pool)
        await self._client.ping()
        logger.info("Connected to Redis at %s:%s", self.config.redis_host, self.config.redis_port)

    async def disconnect(self) -> None:
        """Close connection to Redis."""
        if self._client:
            await self._client.aclose()
            self._client = None
        if self._pool:
            await self._pool.disconnect()
            self._pool = None

    async def health_check(self) -> bool:
        """Check if Redis is healthy."""
        try:
            if self._client:
                await self._client.ping()
                return True
        except Exception:
            logger.debug("Redis health check failed", exc_info=True)
        return False

    # Key-Value Operations

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str) -> bool:
        return bool(await self._client.set(key, value))

    async def delete(self, key: str) -> bool:
        result = await self._client.delete(key)
        return result > 0

    # Hash Operations

    async def hget(self, key: str, field: str) -> Optional[str]:
        return await self._client.hget(key, field)

    async def hset(self, key: str, field: str, value: str) -> bool:
        result = await self._client.hset(key, field, value)
        return result >= 0

    async def hgetall(self, key: str) -> dict[str, str]:
        return await self._client.hgetall(key)

    async def hdel(self, key: str, field: str) -> bool:
        result = await self._client.hdel(key, field)
        return result > 0

    # List Operations

    async def rpush(self, key: str, value: str) -> int:
        return await self._client.rpush(key, value)

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        return await self._client.lrange(key, start, stop)

    async def llen(self, key: str) -> int:
        return await self._client.llen(key)

    # Sorted Set Operations

    async def zadd(self, key: str, score: float, member: str) -> bool:
        result = await self._client.zadd(key, {member: score})
        return result >= 0

    async def zscore(self, key: str, member: str) -> Optional[float]:
        return await self._client.zscore(key, member)

    async def zrevrange(
        self,
        key: str,
        start: int,
        stop: int,
    ) -> list[tuple[str, float]]:
        rows = await self._client.zrevrange(key, start, stop, withscores=True)
        return [(member, float(score)) for member, score in rows]

    # Atomic Operations

    async def incrby(self, key: str, amount: int) -> int:
        return await self._client.incrby(key, amount)
