import dataclasses
from typing import Any

from queuecache.core.batching import (
    DEFAULT_BATCH_DELAY_MS,
    DEFAULT_BATCH_SIZE,
    all_batches_full,
    is_batch,
    select_batch,
)

# ---------------------------------------------------------------------------
# Minimal job stub
# ---------------------------------------------------------------------------


@dataclasses.dataclass
class _Job:
    id: str
    data: Any

    async def update(self, data: Any) -> None:
        self.data = data

    async def promote(self) -> None:
        pass


def _batch(job_id: str, size: int) -> _Job:
    return _Job(job_id, list(range(size)))


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def test_defaults():
    assert DEFAULT_BATCH_DELAY_MS == 15_000
    assert DEFAULT_BATCH_SIZE == 20


# ---------------------------------------------------------------------------
# is_batch / all_batches_full
# ---------------------------------------------------------------------------


def test_list_data_is_batch():
    assert is_batch(_batch("1", 3))


def test_dict_data_is_not_batch():
    assert not is_batch(_Job("1", {"user": 1}))


def test_all_full_true_for_no_jobs():
    assert all_batches_full([], 20)


def test_all_full_when_every_batch_at_size():
    assert all_batches_full([_batch("1", 20), _batch("2", 20)], 20)


def test_not_all_full_with_one_open_batch():
    assert not all_batches_full([_batch("1", 20), _batch("2", 19)], 20)


def test_all_full_ignores_non_batch_jobs():
    assert all_batches_full([_batch("1", 20), _Job("2", {"x": 1})], 20)


# ---------------------------------------------------------------------------
# select_batch
# ---------------------------------------------------------------------------


def test_select_none_for_empty_queue():
    assert select_batch([], 20) is None


def test_select_none_when_all_full():
    assert select_batch([_batch("1", 20), _batch("2", 20)], 20) is None


def test_select_prefers_fullest_open_batch():
    jobs = [_batch("a", 3), _batch("b", 7)]
    assert select_batch(jobs, 20).id == "b"


def test_select_skips_full_batches():
    jobs = [_batch("full", 20), _batch("open", 2)]
    assert select_batch(jobs, 20).id == "open"


def test_select_tie_goes_to_first_in_order():
    jobs = [_batch("first", 5), _batch("second", 5)]
    assert select_batch(jobs, 20).id == "first"
    assert select_batch(list(reversed(jobs)), 20).id == "second"


def test_select_ignores_non_batch_jobs():
    jobs = [_Job("plain", {"payload": True}), _batch("batch", 1)]
    assert select_batch(jobs, 20).id == "batch"


def test_select_ignores_oversized_batches():
    jobs = [_batch("big", 25), _batch("small", 4)]
    assert select_batch(jobs, 20).id == "small"


def test_select_none_when_only_oversized_batches():
    assert select_batch([_batch("big", 25)], 20) is None
