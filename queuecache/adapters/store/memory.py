"""
InMemoryKeyValueStore — dict-based KeyValueStorePort for testing and development.

Several stores may share one `entries` dict to model several key spaces on a
single server:

    entries: dict = {}
    scoped = InMemoryKeyValueStore(prefix="billing:", entries=entries)
    shared = InMemoryKeyValueStore(entries=entries)

Every operation completes without awaiting, so each one is atomic with
respect to other coroutines on the same event loop. Expiry is checked lazily
on access against time.monotonic(). Patterns follow fnmatch rules, which
cover the Redis glob subset used in practice (*, ?, [...]).

Zero external dependencies. NOT safe across processes or threads.
"""
from __future__ import annotations

import dataclasses
import time
from collections.abc import Mapping, Sequence
from fnmatch import fnmatchcase
from typing import Any

from queuecache.domain.errors import BackingServiceError


@dataclasses.dataclass
class _Entry:
    value: Any
    expires_at: float | None = None


@dataclasses.dataclass
class InMemoryKeyValueStore:
    """
    In-process key-value store.

    Parameters
    ----------
    prefix  : key-space prefix applied to every key and pattern
    entries : backing dict, shareable between stores (fresh dict by default)
    """

    prefix: str = ""
    entries: dict[str, _Entry] = dataclasses.field(default_factory=dict)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _live(self, full_key: str) -> _Entry | None:
        entry = self.entries.get(full_key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= time.monotonic():
            del self.entries[full_key]
            return None
        return entry

    def _matching(self, pattern: str) -> list[str]:
        full_pattern = self._key(pattern)
        return [k for k in list(self.entries) if fnmatchcase(k, full_pattern) and self._live(k)]

    def ttl(self, key: str) -> float | None:
        """Seconds left before `key` expires; None when absent or persistent."""
        entry = self._live(self._key(key))
        if entry is None or entry.expires_at is None:
            return None
        return entry.expires_at - time.monotonic()

    # ------------------------------------------------------------------ #
    # Single keys                                                          #
    # ------------------------------------------------------------------ #

    async def get(self, key: str) -> bytes | None:
        entry = self._live(self._key(key))
        return None if entry is None else entry.value

    async def set(self, key: str, value: bytes, *, ex: int | None = None) -> bool:
        expires_at = time.monotonic() + ex if ex else None
        self.entries[self._key(key)] = _Entry(value, expires_at)
        return True

    async def set_if_absent(self, key: str, value: bytes) -> bool:
        if self._live(self._key(key)) is not None:
            return False
        self.entries[self._key(key)] = _Entry(value)
        return True

    async def expire(self, key: str, ttl: int) -> bool:
        entry = self._live(self._key(key))
        if entry is None:
            return False
        entry.expires_at = time.monotonic() + ttl
        return True

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self._live(self._key(key)) is not None:
                del self.entries[self._key(key)]
                deleted += 1
        return deleted

    async def incr_by(self, key: str, amount: int) -> int:
        entry = self._live(self._key(key))
        try:
            current = int(entry.value) if entry is not None else 0
        except (TypeError, ValueError) as exc:
            raise BackingServiceError("INCRBY on a non-integer value", exc) from exc
        value = current + amount
        if entry is None:
            self.entries[self._key(key)] = _Entry(str(value).encode())
        else:
            entry.value = str(value).encode()
        return value

    # ------------------------------------------------------------------ #
    # Multiple keys                                                        #
    # ------------------------------------------------------------------ #

    async def keys(self, pattern: str) -> list[str]:
        cut = len(self.prefix)
        return [k[cut:] for k in self._matching(pattern)]

    async def mget(self, keys: Sequence[str]) -> list[bytes | None]:
        return [await self.get(key) for key in keys]

    async def mset(self, mapping: Mapping[str, bytes]) -> bool:
        for key, value in mapping.items():
            self.entries[self._key(key)] = _Entry(value)
        return True

    async def expire_many(self, keys: Sequence[str], ttl: int) -> list[bool]:
        return [await self.expire(key, ttl) for key in keys]

    async def delete_matching(self, pattern: str) -> int:
        matched = self._matching(pattern)
        for full_key in matched:
            del self.entries[full_key]
        return len(matched)

    # ------------------------------------------------------------------ #
    # Sets                                                                 #
    # ------------------------------------------------------------------ #

    def _set_entry(self, name: str) -> _Entry | None:
        entry = self._live(self._key(name))
        if entry is not None and not isinstance(entry.value, set):
            raise BackingServiceError(
                "Set operation on a non-set value", TypeError(f"key {name!r} holds a string")
            )
        return entry

    async def sadd(self, name: str, *members: str) -> int:
        entry = self._set_entry(name)
        if entry is None:
            entry = self.entries[self._key(name)] = _Entry(set())
        encoded = {m.encode("utf-8") for m in members}
        added = len(encoded - entry.value)
        entry.value |= encoded
        return added

    async def srem(self, name: str, *members: str) -> int:
        entry = self._set_entry(name)
        if entry is None:
            return 0
        encoded = {m.encode("utf-8") for m in members}
        removed = len(encoded & entry.value)
        entry.value -= encoded
        if not entry.value:
            del self.entries[self._key(name)]
        return removed

    async def smembers(self, name: str) -> set[bytes]:
        entry = self._set_entry(name)
        return set() if entry is None else set(entry.value)

    async def close(self) -> None:
        """Nothing to release."""
