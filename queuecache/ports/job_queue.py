"""
JobQueuePort — the backing job queue as seen by QueueService.

Any object satisfying these structural Protocols can act as the backing
queue. No base class or registration is required.

Contract
--------
add(*args, options)
  - variadic like the underlying engine: add(data) or add(name, data)
  - options is a mapping of engine-specific job options; QueueService always
    supplies "delay" (milliseconds) and "removeOnComplete"
  - returns a handle to the created job

get_jobs()
  - every job the queue currently knows about, in any state, in the
    engine's native order (the order must be stable between calls)

QueuedJob.update(data)
  - replaces the job's stored data (no merge, no compare-and-swap)

QueuedJob.promote()
  - moves a delayed job to waiting so it is eligible immediately
  - raises PromotionRaceError if the job is no longer delayed

process(handler, concurrency)
  - subscribes a consumer; at most `concurrency` handler calls in flight
  - a handler exception marks that job failed; the consumer keeps running

Failures of the engine itself are raised as BackingServiceError.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

JobHandler = Callable[["QueuedJob"], Awaitable[Any]]
ErrorCallback = Callable[[Exception], Any]


@runtime_checkable
class QueuedJob(Protocol):
    """A job held by the backing queue."""

    @property
    def id(self) -> str: ...

    @property
    def data(self) -> Any: ...

    async def update(self, data: Any) -> None:
        """Replace the stored data of this job."""
        ...

    async def promote(self) -> None:
        """Make a delayed job eligible for processing now."""
        ...


@runtime_checkable
class JobQueuePort(Protocol):
    """
    Minimal interface required by QueueService.

    Implementing adapters (built-in):
      - BullJobQueue      — BullMQ on Redis (bullmq)
      - InMemoryJobQueue  — asyncio-based, for tests and development
    """

    async def add(self, *args: Any, options: Mapping[str, Any]) -> QueuedJob:
        """Create exactly one job and return its handle."""
        ...

    async def get_jobs(self) -> Sequence[QueuedJob]:
        """Return all jobs known to the queue, in all states."""
        ...

    async def process(self, handler: JobHandler, *, concurrency: int = 1) -> None:
        """Start consuming jobs with `handler`."""
        ...

    def on_error(self, callback: ErrorCallback) -> None:
        """Register a callback for queue-level (non-handler) errors."""
        ...

    async def close(self) -> None:
        """Stop consuming and release connections."""
        ...
