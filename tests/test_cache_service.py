from unittest.mock import AsyncMock

import pytest

from queuecache.adapters.store.memory import InMemoryKeyValueStore
from queuecache.core import codec
from queuecache.core.cache_service import DEFAULT_CACHE_FN_PREFIX, CacheService
from queuecache.domain.errors import CompressionError, ConfigurationError, ValidationError
from queuecache.domain.models import CacheConfiguration

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def entries() -> dict:
    return {}


@pytest.fixture
def scoped(entries: dict) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(prefix="billing:", entries=entries)


@pytest.fixture
def shared(entries: dict) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(entries=entries)


@pytest.fixture
def cache(scoped: InMemoryKeyValueStore, shared: InMemoryKeyValueStore) -> CacheService:
    config = CacheConfiguration(service_name="billing", default_expiry=600)
    return CacheService(config, store=scoped, global_store=shared)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def test_missing_service_name_raises() -> None:
    with pytest.raises(ConfigurationError, match="Service name is required"):
        CacheService(
            CacheConfiguration(service_name=""),
            store=InMemoryKeyValueStore(),
            global_store=InMemoryKeyValueStore(),
        )


def test_default_expiry_from_config(cache: CacheService) -> None:
    assert cache.default_expiry == 600


async def test_close_closes_both_stores() -> None:
    store, global_store = AsyncMock(), AsyncMock()
    async with CacheService(
        CacheConfiguration(service_name="svc"), store=store, global_store=global_store
    ):
        pass
    store.close.assert_awaited_once()
    global_store.close.assert_awaited_once()


# ---------------------------------------------------------------------------
# Compressed single keys
# ---------------------------------------------------------------------------


async def test_set_then_get_returns_value(cache: CacheService) -> None:
    assert await cache.set_key("invoice:1", '{"total": 10}') is True
    assert await cache.get_key("invoice:1") == '{"total": 10}'


async def test_get_missing_key_returns_none(cache: CacheService) -> None:
    assert await cache.get_key("nope") is None


async def test_stored_bytes_are_snappy_compressed(
    cache: CacheService, entries: dict
) -> None:
    await cache.set_key("k", "hello")
    assert entries["billing:k"].value == codec.compress("hello")
    assert await cache.get_uncompressed_key("k") == codec.compress("hello")


async def test_set_key_uses_default_expiry(
    cache: CacheService, scoped: InMemoryKeyValueStore
) -> None:
    await cache.set_key("k", "v")
    assert 590 < scoped.ttl("k") <= 600


async def test_set_key_uses_explicit_ttl(
    cache: CacheService, scoped: InMemoryKeyValueStore
) -> None:
    await cache.set_key("k", "v", ttl=5)
    assert 0 < scoped.ttl("k") <= 5


async def test_unicode_round_trip(cache: CacheService) -> None:
    await cache.set_key("greeting", "grüße 👋")
    assert await cache.get_key("greeting") == "grüße 👋"


@pytest.mark.parametrize("value", [b"abc", b"\xff\xfe\x00"])
async def test_set_key_rejects_bytes_before_writing(
    cache: CacheService, entries: dict, value: bytes
) -> None:
    with pytest.raises(ValidationError):
        await cache.set_key("k", value)
    with pytest.raises(ValidationError):
        await cache.set_global_key("k", value)
    assert entries == {}


async def test_set_values_rejects_bytes_before_writing(
    cache: CacheService, entries: dict
) -> None:
    with pytest.raises(ValidationError):
        await cache.set_values(["a", "b"], ["text", b"raw"])
    assert entries == {}


async def test_non_utf8_value_raises_compression_error(
    cache: CacheService, scoped: InMemoryKeyValueStore
) -> None:
    await scoped.set("bin", codec.compress(b"\xff\xfe\x00"))
    with pytest.raises(CompressionError):
        await cache.get_key("bin")
    with pytest.raises(CompressionError):
        await cache.get_values(["bin"])


# ---------------------------------------------------------------------------
# Scoped vs global key spaces
# ---------------------------------------------------------------------------


async def test_scoped_and_global_spaces_are_isolated(cache: CacheService) -> None:
    await cache.set_key("shared-name", "scoped")
    await cache.set_global_key("shared-name", "global")
    assert await cache.get_key("shared-name") == "scoped"
    assert await cache.get_global_key("shared-name") == "global"


async def test_scoped_key_carries_service_prefix(cache: CacheService, entries: dict) -> None:
    await cache.set_key("a", "1")
    await cache.set_global_key("b", "2")
    assert set(entries) == {"billing:a", "b"}


async def test_global_key_not_visible_through_scoped_accessor(cache: CacheService) -> None:
    await cache.set_global_key("only-global", "x")
    assert await cache.get_key("only-global") is None


# ---------------------------------------------------------------------------
# Raw keys, removal, counters
# ---------------------------------------------------------------------------


async def test_set_key_if_not_exists_only_first_wins(cache: CacheService) -> None:
    assert await cache.set_key_if_not_exists("lock", "first") is True
    assert await cache.set_key_if_not_exists("lock", "second") is False
    assert await cache.get_uncompressed_key("lock") == b"first"


async def test_remove_key(cache: CacheService) -> None:
    await cache.set_key("k", "v")
    assert await cache.remove_key("k") == 1
    assert await cache.get_key("k") is None
    assert await cache.remove_key("k") == 0


async def test_increment_key_starts_from_zero(cache: CacheService) -> None:
    assert await cache.increment_key_by_value("hits", 3) == 3
    assert await cache.increment_key_by_value("hits", -1) == 2


# ---------------------------------------------------------------------------
# TTLs
# ---------------------------------------------------------------------------


async def test_set_key_ttl(cache: CacheService, scoped: InMemoryKeyValueStore) -> None:
    await cache.set_key("k", "v")
    assert await cache.set_key_ttl("k", 30) is True
    assert 0 < scoped.ttl("k") <= 30


async def test_set_key_ttl_missing_key(cache: CacheService) -> None:
    assert await cache.set_key_ttl("missing", 30) is False


async def test_set_key_ttls_applies_to_every_key(
    cache: CacheService, scoped: InMemoryKeyValueStore
) -> None:
    await cache.set_key("a", "1")
    await cache.set_key("b", "2")
    assert await cache.set_key_ttls(["a", "b", "missing"], 20) == [True, True, False]
    assert all(0 < scoped.ttl(k) <= 20 for k in ("a", "b"))


# ---------------------------------------------------------------------------
# Multiple keys
# ---------------------------------------------------------------------------


async def test_get_keys_by_pattern_returns_unprefixed_keys(cache: CacheService) -> None:
    await cache.set_key("user:1", "a")
    await cache.set_key("user:2", "b")
    await cache.set_key("order:1", "c")
    assert sorted(await cache.get_keys_by_pattern("user:*")) == ["user:1", "user:2"]


async def test_get_values_keeps_order_and_missing(cache: CacheService) -> None:
    await cache.set_key("a", "1")
    await cache.set_key("c", "3")
    assert await cache.get_values(["c", "b", "a"]) == ["3", None, "1"]


async def test_get_values_empty(cache: CacheService) -> None:
    assert await cache.get_values([]) == []


async def test_get_values_in_batches_matches_get_values(cache: CacheService) -> None:
    keys = [f"k{i}" for i in range(7)]
    for i, key in enumerate(keys):
        if i % 3:
            await cache.set_key(key, str(i))
    expected = await cache.get_values(keys)
    assert await cache.get_values_in_batches(keys, batch_size=3) == expected
    assert await cache.get_values_in_batches(keys, batch_size=100) == expected


async def test_get_values_in_batches_issues_one_mget_per_chunk() -> None:
    store = AsyncMock()
    store.mget.side_effect = lambda chunk: [None] * len(chunk)
    cache = CacheService(
        CacheConfiguration(service_name="svc"), store=store, global_store=AsyncMock()
    )
    result = await cache.get_values_in_batches([f"k{i}" for i in range(250)])
    assert result == [None] * 250
    assert [len(call.args[0]) for call in store.mget.await_args_list] == [100, 100, 50]


async def test_get_values_in_batches_rejects_zero(cache: CacheService) -> None:
    with pytest.raises(ValidationError):
        await cache.get_values_in_batches(["a"], batch_size=0)


async def test_set_values_writes_all_with_ttl(
    cache: CacheService, scoped: InMemoryKeyValueStore
) -> None:
    assert await cache.set_values(["a", "b"], ["1", "2"], ttl=40) is True
    assert await cache.get_values(["a", "b"]) == ["1", "2"]
    assert all(0 < scoped.ttl(k) <= 40 for k in ("a", "b"))


async def test_set_values_length_mismatch_raises(cache: CacheService) -> None:
    with pytest.raises(ValidationError):
        await cache.set_values(["a", "b"], ["1"])


async def test_set_values_empty_is_noop(cache: CacheService, entries: dict) -> None:
    assert await cache.set_values([], []) is True
    assert entries == {}


# ---------------------------------------------------------------------------
# Sets
# ---------------------------------------------------------------------------


async def test_set_membership(cache: CacheService) -> None:
    assert await cache.add_elem_to_set("tags", ["a", "b", "a"]) == 2
    assert await cache.add_elem_to_set("tags", ["b", "c"]) == 1
    assert await cache.get_elems_in_set("tags") == {"a", "b", "c"}
    assert await cache.remove_elem_from_set("tags", ["a", "zzz"]) == 1
    assert await cache.get_elems_in_set("tags") == {"b", "c"}


async def test_empty_set_operations_return_zero(cache: CacheService) -> None:
    assert await cache.add_elem_to_set("tags", []) == 0
    assert await cache.remove_elem_from_set("tags", []) == 0
    assert await cache.get_elems_in_set("tags") == set()


# ---------------------------------------------------------------------------
# cache_fn
# ---------------------------------------------------------------------------


async def test_cache_fn_calls_wrapped_function_once(cache: CacheService) -> None:
    calls = []

    async def lookup(user_id: int) -> dict:
        calls.append(user_id)
        return {"id": user_id, "name": "Ada"}

    cached = cache.cache_fn(lookup, lambda user_id: f"user:{user_id}", ttl=60)
    first = await cached(1)
    second = await cached(1)
    assert first == second == {"id": 1, "name": "Ada"}
    assert calls == [1]


async def test_cache_fn_uses_prefixed_scoped_key(cache: CacheService) -> None:
    cached = cache.cache_fn(lambda: [1, 2], lambda: "numbers")
    await cached()
    assert await cache.get_key(f"{DEFAULT_CACHE_FN_PREFIX}numbers") == "[1,2]"


async def test_cache_fn_global(cache: CacheService, entries: dict) -> None:
    cached = cache.cache_fn(lambda: "v", lambda: "g", key_prefix="fn:", is_global=True)
    await cached()
    assert "fn:g" in entries
    assert await cache.get_global_key("fn:g") == '"v"'


async def test_cache_fn_falsy_key_bypasses_cache(cache: CacheService, entries: dict) -> None:
    calls = 0

    def compute() -> int:
        nonlocal calls
        calls += 1
        return calls

    cached = cache.cache_fn(compute, lambda: None)
    assert await cached() == 1
    assert await cached() == 2
    assert entries == {}


async def test_cache_fn_async_key_generator(cache: CacheService) -> None:
    async def make_key(a: int, b: int) -> str:
        return f"sum:{a}:{b}"

    cached = cache.cache_fn(lambda a, b: a + b, make_key)
    assert await cached(2, 3) == 5
    assert await cache.get_key(f"{DEFAULT_CACHE_FN_PREFIX}sum:2:3") == "5"


async def test_cache_fn_caches_falsy_results(cache: CacheService) -> None:
    calls = 0

    def empty() -> list:
        nonlocal calls
        calls += 1
        return []

    cached = cache.cache_fn(empty, lambda: "empty")
    assert await cached() == []
    assert await cached() == []
    assert calls == 1


async def test_cache_fn_preserves_wrapped_name(cache: CacheService) -> None:
    async def fetch_invoice() -> None:
        return None

    assert cache.cache_fn(fetch_invoice, lambda: "x").__name__ == "fetch_invoice"


@pytest.mark.parametrize("ttl", [0, None])
def test_cache_fn_requires_ttl(cache: CacheService, ttl) -> None:
    with pytest.raises(ValidationError):
        cache.cache_fn(lambda: 1, lambda: "k", ttl=ttl)


def test_cache_fn_requires_key_generator(cache: CacheService) -> None:
    with pytest.raises(ValidationError):
        cache.cache_fn(lambda: 1, None)


# ---------------------------------------------------------------------------
# remove_keys_by_pattern
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("pattern", ["a*", "user", "****", "*****", "*******"])
async def test_unsafe_patterns_are_refused_before_store_call(pattern: str) -> None:
    global_store = AsyncMock()
    cache = CacheService(
        CacheConfiguration(service_name="svc"), store=AsyncMock(), global_store=global_store
    )
    with pytest.raises(ValidationError):
        await cache.remove_keys_by_pattern(pattern)
    global_store.delete_matching.assert_not_called()


async def test_remove_keys_by_pattern_deletes_global_matches(
    cache: CacheService, entries: dict
) -> None:
    await cache.set_global_key("user:1", "a")
    await cache.set_global_key("user:2", "b")
    await cache.set_global_key("order:1", "c")
    assert await cache.remove_keys_by_pattern("user:*") == 2
    assert set(entries) == {"order:1"}


async def test_remove_keys_by_pattern_no_matches(cache: CacheService) -> None:
    assert await cache.remove_keys_by_pattern("nothing:*") == 0
