"""
PostgreSQL Storage Provider.

Durable PostgreSQL backend on async SQLAlchemy.
"""

from typing import Optional
import logging

from .provider import AbstractStorageProvider, StorageConfig

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS growthbank_kv (
        key VARCHAR(512) PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS growthbank_hash (
        key VARCHAR(512) NOT NULL,
        field VARCHAR(512) NOT NULL,
        value TEXT NOT NULL,
        PRIMARY KEY (key, field)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS growthbank_list (
        key VARCHAR(512) NOT NULL,
        idx INTEGER NOT NULL,
        value TEXT NOT NULL,
        PRIMARY KEY (key, idx)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS growthbank_zset (
        key VARCHAR(512) NOT NULL,
        member VARCHAR(512) NOT NULL,
        score DOUBLE PRECISION NOT NULL,
        PRIMARY KEY (key, member)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_zset_score ON growthbank_zset(key, score)",
)


class PostgresStorageProvider(AbstractStorageProvider):
    """
    PostgreSQL storage provider.

    Lists are stored as (key, idx) rows; the primary key makes two
    concurrent RPUSHes to the same list collide instead of interleaving.

    Requires: sqlalchemy[asyncio], asyncpg packages
    """

    def __init__(self, config: StorageConfig):
        """Initialize PostgreSQL storage."""
        super().__init__(config)
        self._engine = None
        self._session_factory = None

    def _connection_string(self) -> str:
        if self.config.connection_string:
            return self.config.connection_string
        password_part = (
            f":{self.config.postgres_password}"
            if self.config.postgres_password
            else ""
        )
        conn_str = (
            f"postgresql+asyncpg://{self.config.postgres_user}"
            f"{password_part}@{self.config.postgres_host}"
            f":{self.config.postgres_port}/{self.config.postgres_database}"
        )
        if self.config.postgres_ssl_mode != "disable":
            conn_str += f"?ssl={self.config.postgres_ssl_mode}"
        return conn_str

    async def connect(self) -> None:
        """Establish connection to PostgreSQL."""
        try:
            from sqlalchemy.ext.asyncio import (
                create_async_engine,
                async_sessionmaker,
            )
        except ImportError:
            raise ImportError(
                "sqlalchemy[asyncio] and asyncpg packages are required for PostgresStorageProvider. "
                "Install with: pip install sqlalchemy[asyncio] asyncpg"
            )

        self._engine = create_async_engine(
            self._connection_string(),
            pool_size=self.config.pool_size,
            max_overflow=20,
            pool_pre_ping=True,
            echo=False,
        )
        self._session_factory = async_sessionmaker(
            self._engine,
            expire_on_commit=False,
        )
        await self._init_schema()

    async def _init_schema(self) -> None:
        """Create tables for key-value, hashes, lists and sorted sets."""
        from sqlalchemy import text

        async with self._engine.begin() as conn:
            for statement in _SCHEMA:
                await conn.execute(text(statement))

    async def disconnect(self) -> None:
        """Close connection to PostgreSQL."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None

    async def health_check(self) -> bool:
        """Check if PostgreSQL is healthy."""
        from sqlalchemy import text

        try:
            if self._engine:
                async with self._engine.begin() as conn:
                    await conn.execute(text("SELECT 1"))
                return True
        except Exception:
            logger.debug("PostgreSQL health check failed", exc_info=True)
        return False

    async def _fetch(self, sql: str, params: dict) -> list:
        from sqlalchemy import text

        async with self._session_factory() as session:
            result = await session.execute(text(sql), params)
            return list(result.fetchall())

    async def _write(self, sql: str, params: dict) -> int:
        from sqlalchemy import text

        async with self._session_factory() as session:
            result = await session.execute(text(sql), params)
            await session.commit()
            return result.rowcount

    # Key-Value Operations

    async def get(self, key: str) -> Optional[str]:
        rows = await self._fetch(
            "SELECT value FROM growthbank_kv WHERE key = :key", {"key": key}
        )
        return rows[0][0] if rows else None

    async def set(self, key: str, value: str) -> bool:
        await self._write(
            "INSERT INTO growthbank_kv (key, value) VALUES (:key, :value) "
            "ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value",
            {"key": key, "value": value},
        )
        return True

    async def delete(self, key: str) -> bool:
        removed = 0
        for table in ("growthbank_kv", "growthbank_hash", "growthbank_list", "growthbank_zset"):
            removed += await self._write(
                f"DELETE FROM {table} WHERE key = :key", {"key": key}
            )
        return removed > 0

    # Hash Operations

    async def hget(self, key: str, field: str) -> Optional[str]:
        rows = await self._fetch(
            "SELECT value FROM growthbank_hash WHERE key = :key AND field = :field",
            {"key": key, "field": field},
        )
        return rows[0][0] if rows else None

    async def hset(self, key: str, field: str, value: str) -> bool:
        await self._write(
            "INSERT INTO growthbank_hash (key, field, value) "
            "VALUES (:key, :field, :value) "
            "ON CONFLICT (key, field) DO UPDATE SET value = EXCLUDED.value",
            {"key": key, "field": field, "value": value},
        )
        return True

    async def hgetall(self, key: str) -> dict[str, str]:
        rows = await self._fetch(
            "SELECT field, value FROM growthbank_hash WHERE key = :key",
            {"key": key},
        )
        return {row[0]: row[1] for row in rows}

    async def hdel(self, key: str, field: str) -> bool:
        removed = await self._write(
            "DELETE FROM growthbank_hash WHERE key = :key AND field = :field",
            {"key": key, "field": field},
        )
        return removed > 0

    # List Operations

    async def rpush(self, key: str, value: str) -> int:
        from sqlalchemy import text

        async with self._session_factory() as session:
            result = await session.execute(
                text(
                    "INSERT INTO growthbank_list (key, idx, value) "
                    "SELECT :key, COALESCE(MAX(idx), -1) + 1, :value "
                    "FROM growthbank_list WHERE key = :key "
                    "RETURNING idx"
                ),
                {"key": key, "value": value},
            )
            idx = result.scalar_one()
            await session.commit()
            return idx + 1

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        if stop == -1:
            rows = await self._fetch(
                "SELECT value FROM growthbank_list WHERE key = :key AND idx >= :start ORDER BY idx",
                {"key": key, "start": start},
            )
        else:
            rows = await self._fetch(
                "SELECT value FROM growthbank_list "
                "WHERE key = :key AND idx >= :start AND idx <= :stop ORDER BY idx",
                {"key": key, "start": start, "stop": stop},
            )
        return [row[0] for row in rows]

    async def llen(self, key: str) -> int:
        rows = await self._fetch(
            "SELECT COUNT(*) FROM growthbank_list WHERE key = :key", {"key": key}
        )
        return int(rows[0][0])

    # Sorted Set Operations

    async def zadd(self, key: str, score: float, member: str) -> bool:
        await self._write(
            "INSERT INTO growthbank_zset (key, member, score) "
            "VALUES (:key, :member, :score) "
            "ON CONFLICT (key, member) DO UPDATE SET score = EXCLUDED.score",
            {"key": key, "member": member, "score": score},
        )
        return True

    async def zscore(self, key: str, member: str) -> Optional[float]:
        rows = await self._fetch(
            "SELECT score FROM growthbank_zset WHERE key = :key AND member = :member",
            {"key": key, "member": member},
        )
        return rows[0][0] if rows else None

    async def zrevrange(
        self,
        key: str,
        start: int,
        stop: int,
    ) -> list[tuple[str, float]]:
        if stop == -1:
            rows = await self._fetch(
                "SELECT member, score FROM growthbank_zset WHERE key = :key "
                "ORDER BY score DESC, member DESC OFFSET :start",
                {"key": key, "start": start},
            )
        else:
            rows = await self._fetch(
                "SELECT member, score FROM growthbank_zset WHERE key = :key "
                "ORDER BY score DESC, member DESC LIMIT :limit OFFSET :start",
                {"key": key, "start": start, "limit": stop - start + 1},
            )
        return [(row[0], float(row[1])) for row in rows]

    # Atomic Operations

    async def incrby(self, key: str, amount: int) -> int:
        from sqlalchemy import text

        async with self._session_factory() as session:
            result = await session.execute(
                text(
                    "INSERT INTO growthbank_kv (key, value) VALUES (:key, :amount) "
                    "ON CONFLICT (key) DO UPDATE SET value = "
                    "(CAST(growthbank_kv.value AS BIGINT) + CAST(:amount AS BIGINT))::TEXT "
                    "RETURNING CAST(value AS BIGINT)"
                ),
                {"key": key, "amount": str(amount)},
            )
            value = result.scalar_one()
            await session.commit()
            return int(value)
