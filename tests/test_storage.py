"""
Tests for storage providers.

The memory provider is tested directly; the Redis provider runs the same
operations against fakeredis.
"""

import pytest

from growthbank.exceptions import ConfigurationError
from growthbank.storage import (
    MemoryStorageProvider,
    PostgresStorageProvider,
    RedisStorageProvider,
    StorageConfig,
    create_provider,
)


@pytest.fixture
async def memory_provider():
    """Create and connect a memory storage provider."""
    provider = MemoryStorageProvider(StorageConfig(backend="memory"))
    await provider.connect()
    yield provider
    await provider.disconnect()


@pytest.fixture(params=["memory", "redis"])
async def provider(request):
    """Each backend in turn; Redis runs on fakeredis."""
    if request.param == "memory":
        provider = MemoryStorageProvider()
        await provider.connect()
        yield provider
        return
    fakeredis = pytest.importorskip("fakeredis")
    provider = RedisStorageProvider(StorageConfig(backend="redis"))
    provider._client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield provider
    await provider._client.flushall()


class TestMemoryStorageProvider:
    """Lifecycle specific to the memory provider."""

    async def test_connect_disconnect(self, memory_provider):
        assert await memory_provider.health_check()
        await memory_provider.disconnect()
        assert not await memory_provider.health_check()

    async def test_default_config(self):
        provider = MemoryStorageProvider()
        assert provider.config.backend == "memory"
        assert provider.config.key_prefix == "gb"

    async def test_delete_clears_every_structure(self, memory_provider):
        await memory_provider.rpush("k", "a")
        await memory_provider.hset("k", "f", "v")
        assert await memory_provider.delete("k")
        assert await memory_provider.llen("k") == 0
        assert await memory_provider.hget("k", "f") is None
        assert not await memory_provider.delete("k")


class TestProviderOperations:
    """Operations every backend must support identically."""

    async def test_key_value(self, provider):
        assert await provider.get("missing") is None
        assert await provider.set("name", "alice")
        assert await provider.get("name") == "alice"
        assert await provider.delete("name")
        assert await provider.get("name") is None

    async def test_hash(self, provider):
        await provider.hset("h", "a", "1")
        await provider.hset("h", "b", "2")
        assert await provider.hget("h", "a") == "1"
        assert await provider.hgetall("h") == {"a": "1", "b": "2"}
        assert await provider.hdel("h", "a")
        assert not await provider.hdel("h", "a")
        assert await provider.hgetall("h") == {"b": "2"}
        assert await provider.hgetall("empty") == {}

    async def test_list_is_inclusive(self, provider):
        for item in ("a", "b", "c", "d"):
            await provider.rpush("l", item)
        assert await provider.llen("l") == 4
        assert await provider.lrange("l", 0, -1) == ["a", "b", "c", "d"]
        assert await provider.lrange("l", 1, 2) == ["b", "c"]
        assert await provider.lrange("missing", 0, -1) == []

    async def test_rpush_returns_length(self, provider):
        assert await provider.rpush("l", "x") == 1
        assert await provider.rpush("l", "y") == 2

    async def test_sorted_set_order(self, provider):
        await provider.zadd("z", 10, "bob")
        await provider.zadd("z", 30, "alice")
        await provider.zadd("z", 20, "carol")
        assert await provider.zscore("z", "alice") == 30
        assert await provider.zscore("z", "nobody") is None
        rows = await provider.zrevrange("z", 0, -1)
        assert [m for m, _ in rows] == ["alice", "carol", "bob"]
        assert await provider.zrevrange("z", 0, 0) == [("alice", 30.0)]

    async def test_zadd_updates_score(self, provider):
        await provider.zadd("z", 1, "a")
        await provider.zadd("z", 5, "a")
        assert await provider.zrevrange("z", 0, -1) == [("a", 5.0)]

    async def test_incrby(self, provider):
        assert await provider.incrby("n", 5) == 5
        assert await provider.incrby("n", -8) == -3
        assert await provider.get("n") == "-3"


class TestCreateProvider:
    def test_memory(self):
        assert isinstance(create_provider(StorageConfig()), MemoryStorageProvider)

    def test_redis(self):
        provider = create_provider(StorageConfig(backend="redis"))
        assert isinstance(provider, RedisStorageProvider)

    def test_postgres(self):
        provider = create_provider(StorageConfig(backend="postgres"))
        assert isinstance(provider, PostgresStorageProvider)

    def test_postgres_connection_string(self):
        provider = PostgresStorageProvider(StorageConfig(
            backend="postgres", postgres_user="gb", postgres_password="pw",
            postgres_host="db", postgres_ssl_mode="disable",
        ))
        assert provider._connection_string() == "postgresql+asyncpg://gb:pw@db:5432/growthbank"

    def test_postgres_explicit_url_wins(self):
        provider = PostgresStorageProvider(StorageConfig(
            backend="postgres", connection_string="postgresql+asyncpg://x@y/z",
        ))
        assert provider._connection_string() == "postgresql+asyncpg://x@y/z"

    def test_unknown_backend(self):
        config = StorageConfig(backend="sqlite")
        with pytest.raises(ConfigurationError, match="sqlite"):
            create_provider(config)
