"""
Dictionary-backed storage for the ledger.

Backs the CLI default, local development and the test suite.
"""

from typing import Optional
from collections import defaultdict

from .provider import AbstractStorageProvider, StorageConfig


class MemoryStorageProvider(AbstractStorageProvider):
    """
    Ledger storage held in process memory; nothing survives a restart.

    Each operation completes without yielding to the event loop, which
    makes it atomic with respect to other coroutines.
    """

    def __init__(self, config: Optional[StorageConfig] = None):
        super().__init__(config or StorageConfig())
        self._data: dict[str, str] = {}
        self._hashes: dict[str, dict[str, str]] = defaultdict(dict)
        self._lists: dict[str, list[str]] = defaultdict(list)
        self._sorted_sets: dict[str, dict[str, float]] = defaultdict(dict)
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def health_check(self) -> bool:
        return self._connected

    # Key-Value Operations

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> bool:
        self._data[key] = value
        return True

    async def delete(self, key: str) -> bool:
        removed = False
        for store in (self._data, self._hashes, self._lists, self._sorted_sets):
            if key in store:
                del store[key]
                removed = True
        return removed

    # Hash Operations

    async def hget(self, key: str, field: str) -> Optional[str]:
        return self._hashes.get(key, {}).get(field)

    async def hset(self, key: str, field: str, value: str) -> bool:
        self._hashes[key][field] = value
        return True

    async def hgetall(self, key: str) -> dict[str, str]:
        return dict(self._hashes.get(key, {}))

    async def hdel(self, key: str, field: str) -> bool:
        if key in self._hashes and field in self._hashes[key]:
            del self._hashes[key][field]
            return True
        return False

    # List Operations

    async def rpush(self, key: str, value: str) -> int:
        self._lists[key].append(value)
        return len(self._lists[key])

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        """Get list range [start, stop], inclusive like Redis."""
        lst = self._lists.get(key, [])
        if stop == -1:
            return lst[start:]
        return lst[start:stop + 1]

    async def llen(self, key: str) -> int:
        return len(self._lists.get(key, []))

    # Sorted Set Operations

    async def zadd(self, key: str, score: float, member: str) -> bool:
        self._sorted_sets[key][member] = score
        return True

    async def zscore(self, key: str, member: str) -> Optional[float]:
        return self._sorted_sets.get(key, {}).get(member)

    async def zrevrange(
        self,
        key: str,
        start: int,
        stop: int,
    ) -> list[tuple[str, float]]:
        sorted_set = self._sorted_sets.get(key, {})
        # Redis orders equal scores by member, reversed for ZREVRANGE
        items = sorted(sorted_set.items(), key=lambda x: (x[1], x[0]), reverse=True)
        if stop == -1:
            return items[start:]
        return items[start:stop + 1]

    # Atomic Operations

    async def incrby(self, key: str, amount: int) -> int:
        current = int(self._data.get(key, "0"))
        new_value = current + amount
        self._data[key] = str(new_value)
        return new_value
