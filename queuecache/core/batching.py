"""
Batch selection for QueueService.publish_in_batches.

A *batch* is a backing job whose data is a list of payload items. Items are
appended to the batch closest to completion, so the number of partially
filled batches waiting out their delay stays as small as possible:

    batch_size = 20, batches = [3 items, 7 items, 20 items]
    select_batch(...) -> the 7-item batch

Jobs whose data is not a list (plain publish() payloads) are not batches
and are never selected. When no batch has room, the caller starts a new one.

Job state is not considered: jobs are listed in every state, and an
under-filled batch is a candidate whatever its state. Two consequences:

  - a batch whose handler already started (ACTIVE) can still gain items;
    the running handler never sees them
  - a kept FAILED or COMPLETED batch with room keeps receiving items that
    are never delivered

Both are item-loss windows, alongside the non-atomic read → update in
publish_in_batches. Backends that remove finished jobs (removeOnComplete)
shrink the second window to failed batches.
"""
from __future__ import annotations

from collections.abc import Iterable
from typing import TypeVar

from queuecache.ports.job_queue import QueuedJob

DEFAULT_BATCH_DELAY_MS = 15_000
DEFAULT_BATCH_SIZE = 20

J = TypeVar("J", bound=QueuedJob)


def is_batch(job: QueuedJob) -> bool:
    """True when the job's data is a batch of items."""
    return isinstance(job.data, list)


def all_batches_full(jobs: Iterable[QueuedJob], batch_size: int) -> bool:
    """True when every batch among `jobs` holds exactly `batch_size` items."""
    return all(len(job.data) == batch_size for job in jobs if is_batch(job))


def select_batch(jobs: Iterable[J], batch_size: int) -> J | None:
    """
    Return the under-filled batch with the most items, or None.

    Ties go to the job that comes first in `jobs`, so the choice is
    deterministic for a given backing-queue ordering.
    """
    best: J | None = None
    for job in jobs:
        if not is_batch(job) or len(job.data) >= batch_size:
            continue
        if best is None or len(job.data) > len(best.data):
            best = job
    return best
