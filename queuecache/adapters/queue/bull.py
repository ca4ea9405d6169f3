"""
BullJobQueue — BullMQ adapter (Redis-backed delayed job queue).

The Queue client is created lazily on first use, so constructing the adapter
performs no network I/O. The Worker is created by process().

Error translation
-----------------
  - promote() on a job that is no longer delayed → PromotionRaceError
    (BullMQ raises TypeError "Job <id> is not in the delayed state")
  - other BullMQ script errors (e.g. "Missing key") and any RedisError
                                                  → BackingServiceError
  - worker "error" events                         → on_error() callbacks

Errors that are neither (bad arguments, bugs) propagate unchanged.

Job options use BullMQ's own names ("delay", "removeOnComplete", "attempts",
"backoff", ...). `default_job_options` are merged under every add().
"""
from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from typing import Any

import structlog
from bullmq import Job, Queue, Worker
from redis.exceptions import RedisError

from queuecache.domain.errors import BackingServiceError, PromotionRaceError
from queuecache.ports.job_queue import ErrorCallback, JobHandler

logger = structlog.get_logger(__name__)

DEFAULT_JOB_NAME = "__default__"

# Message of the TypeError BullMQ raises for result code -3 (JobNotInState) of promote.
_NOT_DELAYED = "is not in the delayed state"

# Every state a job can be listed under; get_jobs() must see them all.
_JOB_TYPES = [
    "waiting",
    "delayed",
    "prioritized",
    "paused",
    "active",
    "completed",
    "failed",
]


@dataclasses.dataclass(eq=False)
class BullJob:
    """QueuedJob view of a bullmq.Job."""

    job: Job

    @property
    def id(self) -> str:
        return str(self.job.id)

    @property
    def data(self) -> Any:
        return self.job.data

    async def update(self, data: Any) -> None:
        try:
            await self.job.updateData(data)
        except RedisError as exc:
            raise BackingServiceError(f"BullMQ update of job {self.id} failed", exc) from exc
        self.job.data = data

    async def promote(self) -> None:
        try:
            await self.job.promote()
        except RedisError as exc:
            raise BackingServiceError(f"BullMQ promote of job {self.id} failed", exc) from exc
        except TypeError as exc:
            if _NOT_DELAYED in str(exc):
                raise PromotionRaceError(self.id) from exc
            raise BackingServiceError(f"BullMQ promote of job {self.id} failed", exc) from exc


@dataclasses.dataclass
class BullJobQueue:
    """
    BullMQ job queue adapter.

    Parameters
    ----------
    name                : queue name
    prefix              : Redis key prefix of the queue (BullMQ default "bull")
    connection          : keyword arguments for the Redis connection
    default_job_options : options merged under every add()
    """

    name: str
    prefix: str = "bull"
    connection: dict[str, Any] = dataclasses.field(default_factory=dict)
    default_job_options: dict[str, Any] = dataclasses.field(
        default_factory=lambda: {"removeOnComplete": True}
    )

    _queue: Queue | None = dataclasses.field(default=None, init=False, repr=False)
    _worker: Worker | None = dataclasses.field(default=None, init=False, repr=False)
    _error_callbacks: list[ErrorCallback] = dataclasses.field(
        default_factory=list, init=False, repr=False
    )

    def _get_queue(self) -> Queue:
        if self._queue is None:
            self._queue = Queue(
                self.name, {"connection": self.connection, "prefix": self.prefix}
            )
        return self._queue

    async def add(self, *args: Any, options: Mapping[str, Any]) -> BullJob:
        """Create a job from add(data) or add(name, data)."""
        match args:
            case (data,):
                name = DEFAULT_JOB_NAME
            case (name, data):
                pass
            case _:
                raise TypeError(
                    f"add() takes (data) or (name, data), got {len(args)} arguments"
                )
        opts = {**self.default_job_options, **options}
        try:
            job = await self._get_queue().add(name, data, opts)
        except RedisError as exc:
            raise BackingServiceError(f"BullMQ add to {self.name!r} failed", exc) from exc
        return BullJob(job)

    async def get_jobs(self) -> list[BullJob]:
        try:
            jobs = await self._get_queue().getJobs(_JOB_TYPES)
        except RedisError as exc:
            raise BackingServiceError(f"BullMQ getJobs on {self.name!r} failed", exc) from exc
        return [BullJob(job) for job in jobs if job]

    async def process(self, handler: JobHandler, *, concurrency: int = 1) -> None:
        """Create a Worker that passes each job to `handler`."""
        if self._worker is not None:
            raise RuntimeError(f"BullJobQueue {self.name!r} is already processing")

        async def _processor(job: Job, token: str) -> Any:
            return await handler(BullJob(job))

        try:
            self._worker = Worker(
                self.name,
                _processor,
                {
                    "connection": self.connection,
                    "prefix": self.prefix,
                    "concurrency": concurrency,
                },
            )
        except RedisError as exc:
            raise BackingServiceError(f"BullMQ worker for {self.name!r} failed", exc) from exc
        self._worker.on("error", self._emit_error)

    def on_error(self, callback: ErrorCallback) -> None:
        self._error_callbacks.append(callback)

    async def close(self) -> None:
        if self._worker is not None:
            await self._worker.close()
            self._worker = None
        if self._queue is not None:
            await self._queue.close()
            self._queue = None

    def _emit_error(self, exc: Exception) -> None:
        logger.error("bull worker error", queue=self.name, error=str(exc))
        for callback in self._error_callbacks:
            callback(exc)
