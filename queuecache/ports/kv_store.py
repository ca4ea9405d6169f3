"""
KeyValueStorePort — the key-value store as seen by CacheService.

Values cross this port as raw bytes: compression is applied by CacheService
before a write and removed after a read. Each store instance represents one
key space; a prefixed store applies its prefix to every key and pattern and
never exposes it back to the caller.

Contract notes
--------------
get / mget        — missing keys yield None (never an error)
expire_many       — one MULTI/EXEC transaction where the store supports it
delete_matching   — enumerate-and-delete as one atomic server-side step

Failures of the store itself are raised as BackingServiceError.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Protocol, runtime_checkable


@runtime_checkable
class KeyValueStorePort(Protocol):
    """
    Minimal interface required by CacheService.

    Implementing adapters (built-in):
      - RedisKeyValueStore    — redis.asyncio client
      - InMemoryKeyValueStore — dict-based, for tests and development
    """

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes, *, ex: int | None = None) -> bool: ...

    async def set_if_absent(self, key: str, value: bytes) -> bool: ...

    async def expire(self, key: str, ttl: int) -> bool: ...

    async def expire_many(self, keys: Sequence[str], ttl: int) -> list[bool]: ...

    async def delete(self, *keys: str) -> int: ...

    async def keys(self, pattern: str) -> list[str]: ...

    async def mget(self, keys: Sequence[str]) -> list[bytes | None]: ...

    async def mset(self, mapping: Mapping[str, bytes]) -> bool: ...

    async def incr_by(self, key: str, amount: int) -> int: ...

    async def sadd(self, name: str, *members: str) -> int: ...

    async def srem(self, name: str, *members: str) -> int: ...

    async def smembers(self, name: str) -> set[bytes]: ...

    async def delete_matching(self, pattern: str) -> int: ...

    async def close(self) -> None: ...
