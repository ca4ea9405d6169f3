"""
CacheService — compressed key-value cache facade.

Values written through the compressed accessors are text: they are encoded
as UTF-8 and Snappy-compressed before they reach the store, and values read
through them are uncompressed and decoded back to the same str. Passing
bytes to a compressed setter raises ValidationError. The only ways to store
or see raw bytes are set_key_if_not_exists() and get_uncompressed_key().

Key spaces
----------
Two stores back the service:

    scoped store  — keys live under "<service_name>:<key>"
    global store  — keys live as given, shared across services

Accessors with "global" in their name, cache_fn(is_global=True) and
remove_keys_by_pattern() use the global store; everything else uses the
scoped store. A key written through one is never read through the other.

Usage
-----
    config = CacheConfiguration(host="localhost", port=6379, service_name="billing")

    async with CacheService(config) as cache:
        await cache.set_key("invoice:1", '{"total": 10}', ttl=60)
        await cache.get_key("invoice:1")          # '{"total": 10}'

        cached_lookup = cache.cache_fn(lookup, lambda user_id: f"user:{user_id}", ttl=300)
        await cached_lookup(42)
"""
from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable, Iterable, Sequence
from types import TracebackType
from typing import Any

import structlog
from pydantic_core import from_json, to_json

from queuecache.adapters.store.redis import RedisKeyValueStore
from queuecache.core.asyncutils import maybe_await
from queuecache.core.codec import compress, uncompress
from queuecache.domain.errors import CompressionError, ConfigurationError, ValidationError
from queuecache.domain.models import DEFAULT_EXPIRY_SECONDS, CacheConfiguration
from queuecache.ports.kv_store import KeyValueStorePort

logger = structlog.get_logger(__name__)

DEFAULT_CACHE_FN_PREFIX = "cacheFn:"
DEFAULT_MGET_BATCH_SIZE = 100
MIN_PATTERN_LENGTH = 5


class CacheService:
    """
    Facade over a scoped and a global key-value store.

    Parameters
    ----------
    config       : connection and naming configuration
    store        : scoped store; a prefixed RedisKeyValueStore when omitted
    global_store : global store; an unprefixed RedisKeyValueStore when omitted
    """

    def __init__(
        self,
        config: CacheConfiguration,
        store: KeyValueStorePort | None = None,
        global_store: KeyValueStorePort | None = None,
    ) -> None:
        if not config.service_name:
            raise ConfigurationError("Service name is required")
        self._config = config
        self.default_expiry = config.default_expiry
        self._store = store if store is not None else self._redis_store(f"{config.service_name}:")
        self._global_store = (
            global_store if global_store is not None else self._redis_store("")
        )
        self._log = logger.bind(service=config.service_name)
        self._log.info("cache service created", host=config.host, port=config.port)

    def _redis_store(self, prefix: str) -> RedisKeyValueStore:
        return RedisKeyValueStore.from_params(
            host=self._config.host,
            port=self._config.port,
            password=self._config.password,
            prefix=prefix,
            options=self._config.options,
        )

    async def __aenter__(self) -> CacheService:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close both store connections."""
        await self._store.close()
        await self._global_store.close()

    @staticmethod
    def _encode(value: str) -> bytes:
        if not isinstance(value, str):
            raise ValidationError(
                f"Cached values must be str, got {type(value).__name__}; "
                "use set_key_if_not_exists() for raw bytes"
            )
        return compress(value)

    @staticmethod
    def _decode(raw: bytes | None) -> str | None:
        if raw is None:
            return None
        try:
            return uncompress(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CompressionError("Cached value is not UTF-8 text", exc) from exc

    # ------------------------------------------------------------------ #
    # Compressed single-key access                                         #
    # ------------------------------------------------------------------ #

    async def get_key(self, key: str) -> str | None:
        """Return the value of `key`, or None when it does not exist."""
        return self._decode(await self._store.get(key))

    async def set_key(self, key: str, value: str, ttl: int | None = None) -> bool:
        """Store `value` compressed under `key`, expiring after `ttl` seconds."""
        return await self._store.set(key, self._encode(value), ex=ttl or self.default_expiry)

    async def get_global_key(self, key: str) -> str | None:
        return self._decode(await self._global_store.get(key))

    async def set_global_key(self, key: str, value: str, ttl: int | None = None) -> bool:
        return await self._global_store.set(key, self._encode(value), ex=ttl or self.default_expiry)

    async def get_uncompressed_key(self, key: str) -> bytes | None:
        """Raw stored bytes of `key`, without decompression."""
        return await self._store.get(key)

    async def set_key_if_not_exists(self, key: str, value: str | bytes) -> bool:
        """SETNX of the raw value; pair with get_uncompressed_key()."""
        if isinstance(value, str):
            value = value.encode("utf-8")
        return await self._store.set_if_absent(key, value)

    async def remove_key(self, key: str) -> int:
        return await self._store.delete(key)

    async def increment_key_by_value(self, key: str, amount: int) -> int:
        """INCRBY; a missing key counts as 0."""
        return await self._store.incr_by(key, amount)

    # ------------------------------------------------------------------ #
    # TTLs                                                                 #
    # ------------------------------------------------------------------ #

    async def set_key_ttl(self, key: str, ttl: int) -> bool:
        return await self._store.expire(key, ttl)

    async def set_key_ttls(self, keys: Sequence[str], ttl: int | None = None) -> list[bool]:
        """Apply one expiry to all `keys` in a single transaction."""
        return await self._store.expire_many(list(keys), ttl or self.default_expiry)

    # ------------------------------------------------------------------ #
    # Multiple keys                                                        #
    # ------------------------------------------------------------------ #

    async def get_keys_by_pattern(self, pattern: str) -> list[str]:
        """Keys of the scoped space matching a Redis glob `pattern`."""
        return await self._store.keys(pattern)

    async def get_values(self, keys: Sequence[str]) -> list[str | None]:
        """Values of `keys` in the same order; None for missing keys."""
        if not keys:
            return []
        return [self._decode(raw) for raw in await self._store.mget(list(keys))]

    async def get_values_in_batches(
        self,
        keys: Sequence[str],
        batch_size: int = DEFAULT_MGET_BATCH_SIZE,
    ) -> list[str | None]:
        """Like get_values(), but with one MGET per chunk of at most `batch_size` keys."""
        if batch_size < 1:
            raise ValidationError(f"batch_size must be >= 1, got {batch_size}")
        if not keys:
            return []
        keys = list(keys)
        chunks = [keys[i : i + batch_size] for i in range(0, len(keys), batch_size)]
        results = await asyncio.gather(*(self._store.mget(chunk) for chunk in chunks))
        return [self._decode(raw) for chunk in results for raw in chunk]

    async def set_values(
        self,
        keys: Sequence[str],
        values: Sequence[str],
        ttl: int | None = None,
    ) -> bool:
        """MSET compressed `values` under `keys`, then expire them all after `ttl`."""
        if len(keys) != len(values):
            raise ValidationError(
                f"set_values got {len(keys)} keys but {len(values)} values"
            )
        if not keys:
            return True
        response = await self._store.mset(
            {key: self._encode(value) for key, value in zip(keys, values)}
        )
        await self.set_key_ttls(keys, ttl)
        return response

    # ------------------------------------------------------------------ #
    # Sets                                                                 #
    # ------------------------------------------------------------------ #

    async def add_elem_to_set(self, set_name: str, elements: Iterable[str]) -> int:
        members = list(elements)
        if not members:
            return 0
        return await self._store.sadd(set_name, *members)

    async def remove_elem_from_set(self, set_name: str, elements: Iterable[str]) -> int:
        members = list(elements)
        if not members:
            return 0
        return await self._store.srem(set_name, *members)

    async def get_elems_in_set(self, set_name: str) -> set[str]:
        return {m.decode("utf-8") for m in await self._store.smembers(set_name)}

    # ------------------------------------------------------------------ #
    # Memoization                                                          #
    # ------------------------------------------------------------------ #

    def cache_fn(
        self,
        fn: Callable[..., Any],
        key_generator: Callable[..., Any],
        ttl: int = DEFAULT_EXPIRY_SECONDS,
        *,
        key_prefix: str = DEFAULT_CACHE_FN_PREFIX,
        is_global: bool = False,
    ) -> Callable[..., Any]:
        """
        Wrap `fn` so its JSON-serialisable results are cached for `ttl` seconds.

        key_generator receives the same arguments as `fn` and may be async.
        When it returns a falsy key the call bypasses the cache entirely.
        Two concurrent misses on the same key both call `fn`.
        """
        if not (fn and key_generator and ttl):
            raise ValidationError("cache_fn needs all of fn, key_generator and ttl")
        get_value = self.get_global_key if is_global else self.get_key
        set_value = self.set_global_key if is_global else self.set_key

        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            sub_key = await maybe_await(key_generator(*args, **kwargs))
            if not sub_key:
                return await maybe_await(fn(*args, **kwargs))
            key = f"{key_prefix}{sub_key}"
            cached = await get_value(key)
            if cached is not None:
                return from_json(cached)
            data = await maybe_await(fn(*args, **kwargs))
            await set_value(key, to_json(data).decode("utf-8"), ttl)
            return data

        return wrapper

    # ------------------------------------------------------------------ #
    # Invalidation                                                         #
    # ------------------------------------------------------------------ #

    async def remove_keys_by_pattern(self, pattern: str) -> int:
        """
        Atomically delete every global key matching `pattern`.

        Patterns shorter than 5 characters or made only of "*" are refused
        before the store is contacted, so a typo cannot wipe the keyspace.
        """
        if len(pattern) < MIN_PATTERN_LENGTH:
            raise ValidationError(
                f"Pattern length must be at least {MIN_PATTERN_LENGTH}, got {pattern!r}"
            )
        if all(char == "*" for char in pattern):
            raise ValidationError(f"Pattern can't be all '*', got {pattern!r}")
        deleted = await self._global_store.delete_matching(pattern)
        self._log.info("keys removed by pattern", pattern=pattern, deleted=deleted)
        return deleted
