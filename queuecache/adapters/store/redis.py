"""
RedisKeyValueStore — redis.asyncio adapter for KeyValueStorePort.

One instance per key space. A non-empty `prefix` is applied to every key and
pattern sent to Redis and stripped from keys returned by keys(), so a scoped
store ("billing:") and a global store ("") can share one Redis server without
seeing each other's keys through their accessors.

The client must be created with decode_responses=False: values are
compressed bytes and must come back as bytes.

Atomicity
---------
expire_many() runs its EXPIREs inside MULTI/EXEC. Redis executes the block
without interleaving other clients, but does not roll back commands that
fail inside it (e.g. EXPIRE on a key of the wrong type still lets the others
apply). delete_matching() runs KEYS + DEL as a single Lua script, so no
writer can slip in between enumeration and deletion.
"""
from __future__ import annotations

import dataclasses
from collections.abc import Awaitable, Mapping, Sequence
from typing import Any, TypeVar

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from queuecache.domain.errors import BackingServiceError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DELETE_MATCHING_SCRIPT = """
local keys = redis.call('KEYS', ARGV[1])
for _, key in ipairs(keys) do
    redis.call('DEL', key)
end
return #keys
"""


@dataclasses.dataclass
class RedisKeyValueStore:
    """
    Redis storage adapter.

    Parameters
    ----------
    client : redis.asyncio.Redis created with decode_responses=False
    prefix : key-space prefix, e.g. "billing:" ("" for the global space)
    """

    client: redis.Redis
    prefix: str = ""

    @classmethod
    def from_params(
        cls,
        host: str,
        port: int,
        password: str | None = None,
        prefix: str = "",
        options: Mapping[str, Any] | None = None,
    ) -> RedisKeyValueStore:
        """Build a store over a fresh client. No connection is opened yet."""
        client = redis.Redis(
            host=host,
            port=port,
            password=password,
            **{**(options or {}), "decode_responses": False},
        )
        return cls(client=client, prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def _run(self, command: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except RedisError as exc:
            logger.error("redis command failed", command=command, prefix=self.prefix, error=str(exc))
            raise BackingServiceError(f"Redis {command} failed", exc) from exc

    # ------------------------------------------------------------------ #
    # Single keys                                                          #
    # ------------------------------------------------------------------ #

    async def get(self, key: str) -> bytes | None:
        return await self._run("GET", self.client.get(self._key(key)))

    async def set(self, key: str, value: bytes, *, ex: int | None = None) -> bool:
        return bool(await self._run("SET", self.client.set(self._key(key), value, ex=ex)))

    async def set_if_absent(self, key: str, value: bytes) -> bool:
        return bool(await self._run("SETNX", self.client.setnx(self._key(key), value)))

    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self._run("EXPIRE", self.client.expire(self._key(key), ttl)))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._run("DEL", self.client.delete(*(self._key(k) for k in keys)))

    async def incr_by(self, key: str, amount: int) -> int:
        return await self._run("INCRBY", self.client.incrby(self._key(key), amount))

    # ------------------------------------------------------------------ #
    # Multiple keys                                                        #
    # ------------------------------------------------------------------ #

    async def keys(self, pattern: str) -> list[str]:
        raw = await self._run("KEYS", self.client.keys(self._key(pattern)))
        cut = len(self.prefix)
        return [
            (k.decode("utf-8") if isinstance(k, bytes) else k)[cut:] for k in raw
        ]

    async def mget(self, keys: Sequence[str]) -> list[bytes | None]:
        if not keys:
            return []
        return await self._run("MGET", self.client.mget([self._key(k) for k in keys]))

    async def mset(self, mapping: Mapping[str, bytes]) -> bool:
        if not mapping:
            return True
        prefixed = {self._key(k): v for k, v in mapping.items()}
        return bool(await self._run("MSET", self.client.mset(prefixed)))

    async def expire_many(self, keys: Sequence[str], ttl: int) -> list[bool]:
        if not keys:
            return []
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                for key in keys:
                    pipe.expire(self._key(key), ttl)
                results = await pipe.execute()
        except RedisError as exc:
            logger.error("redis transaction failed", command="EXPIRE", keys=len(keys), error=str(exc))
            raise BackingServiceError("Redis MULTI/EXEC EXPIRE failed", exc) from exc
        return [bool(r) for r in results]

    async def delete_matching(self, pattern: str) -> int:
        return int(
            await self._run(
                "EVAL", self.client.eval(DELETE_MATCHING_SCRIPT, 0, self._key(pattern))
            )
        )

    # ------------------------------------------------------------------ #
    # Sets                                                                 #
    # ------------------------------------------------------------------ #

    async def sadd(self, name: str, *members: str) -> int:
        return await self._run("SADD", self.client.sadd(self._key(name), *members))

    async def srem(self, name: str, *members: str) -> int:
        return await self._run("SREM", self.client.srem(self._key(name), *members))

    async def smembers(self, name: str) -> set[bytes]:
        return set(await self._run("SMEMBERS", self.client.smembers(self._key(name))))

    async def close(self) -> None:
        await self.client.aclose()
