"""
InMemoryJobQueue — asyncio-based job queue for testing and development.

Mimics the semantics QueueService relies on from a Bull-style engine:

  - add() creates a WAITING job, or a DELAYED one when options["delay"] > 0
  - a DELAYED job becomes eligible once its delay elapses, or at once when
    promoted; promoting a job that is not DELAYED raises PromotionRaceError
  - process() starts a single consumer task that runs at most `concurrency`
    handler calls at a time
  - a successful job is removed when options["removeOnComplete"] is set,
    otherwise it stays COMPLETED; a failed job stays FAILED

Zero external dependencies. Not durable, not shared across processes.
"""
from __future__ import annotations

import asyncio
import dataclasses
import itertools
from collections.abc import Mapping
from typing import Any

import structlog

from queuecache.domain.errors import PromotionRaceError
from queuecache.domain.models import JobState
from queuecache.ports.job_queue import ErrorCallback, JobHandler

logger = structlog.get_logger(__name__)

DEFAULT_JOB_NAME = "__default__"


@dataclasses.dataclass(eq=False)
class InMemoryJob:
    """
    A job held by InMemoryJobQueue.

    id       — sequential identifier ("1", "2", ...), like Bull's
    name     — job name; DEFAULT_JOB_NAME when add() got only data
    data     — current payload; replaced wholesale by update()
    options  — job options as given to add()
    state    — current lifecycle state
    ready_at — event-loop time at which a DELAYED job becomes eligible
    """

    id: str
    name: str
    data: Any
    options: dict[str, Any]
    state: JobState
    ready_at: float
    failed_reason: str | None = None
    _queue: InMemoryJobQueue = dataclasses.field(repr=False, default=None)  # type: ignore[assignment]

    async def update(self, data: Any) -> None:
        self.data = data

    async def promote(self) -> None:
        self._queue._promote(self)


@dataclasses.dataclass
class InMemoryJobQueue:
    """
    In-process job queue.

    Parameters
    ----------
    name : queue name, used in log events and task names only
    """

    name: str = "memory"

    def __post_init__(self) -> None:
        self._jobs: dict[str, InMemoryJob] = {}
        self._ids = itertools.count(1)
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._running: set[asyncio.Task[None]] = set()
        self._error_callbacks: list[ErrorCallback] = []
        self._stopped = False

    # ------------------------------------------------------------------ #
    # Producer side                                                        #
    # ------------------------------------------------------------------ #

    async def add(self, *args: Any, options: Mapping[str, Any]) -> InMemoryJob:
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
        delay_ms = int(options.get("delay", 0) or 0)
        now = asyncio.get_running_loop().time()
        job = InMemoryJob(
            id=str(next(self._ids)),
            name=name,
            data=data,
            options=dict(options),
            state=JobState.DELAYED if delay_ms > 0 else JobState.WAITING,
            ready_at=now + delay_ms / 1000,
            _queue=self,
        )
        self._jobs[job.id] = job
        self._wakeup.set()
        return job

    async def get_jobs(self) -> list[InMemoryJob]:
        """All jobs in insertion order, in every state."""
        return list(self._jobs.values())

    def _promote(self, job: InMemoryJob) -> None:
        if job.state is not JobState.DELAYED or job.id not in self._jobs:
            raise PromotionRaceError(job.id)
        job.state = JobState.WAITING
        job.ready_at = asyncio.get_running_loop().time()
        self._wakeup.set()

    # ------------------------------------------------------------------ #
    # Consumer side                                                        #
    # ------------------------------------------------------------------ #

    async def process(self, handler: JobHandler, *, concurrency: int = 1) -> None:
        """Start the background consumer task."""
        if self._task is not None:
            raise RuntimeError("InMemoryJobQueue is already processing")
        self._task = asyncio.create_task(
            self._consume_loop(handler, asyncio.Semaphore(concurrency)),
            name=f"queuecache-consumer-{self.name}",
        )

    def on_error(self, callback: ErrorCallback) -> None:
        """Register a callback for errors reported through emit_error()."""
        self._error_callbacks.append(callback)

    async def close(self) -> None:
        """Stop the consumer and wait for in-flight handlers to finish."""
        self._stopped = True
        self._wakeup.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)

    async def _consume_loop(self, handler: JobHandler, slots: asyncio.Semaphore) -> None:
        while not self._stopped:
            await slots.acquire()
            job = self._claim_next()
            if job is None:
                slots.release()
                await self._wait_for_work()
                continue
            task = asyncio.create_task(
                self._run(job, handler, slots), name=f"queuecache-job-{job.id}"
            )
            self._running.add(task)
            task.add_done_callback(self._running.discard)

    def _claim_next(self) -> InMemoryJob | None:
        now = asyncio.get_running_loop().time()
        for job in self._jobs.values():
            if job.state is JobState.DELAYED and job.ready_at <= now:
                job.state = JobState.WAITING
            if job.state is JobState.WAITING:
                job.state = JobState.ACTIVE
                return job
        return None

    async def _wait_for_work(self) -> None:
        self._wakeup.clear()
        now = asyncio.get_running_loop().time()
        pending = [
            j.ready_at - now for j in self._jobs.values() if j.state is JobState.DELAYED
        ]
        timeout = max(min(pending), 0) if pending else None
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
        except TimeoutError:
            pass

    async def _run(self, job: InMemoryJob, handler: JobHandler, slots: asyncio.Semaphore) -> None:
        try:
            await handler(job)
        except Exception as exc:
            job.state = JobState.FAILED
            job.failed_reason = str(exc)
            logger.debug("job failed", queue=self.name, job_id=job.id, error=str(exc))
        else:
            if job.options.get("removeOnComplete"):
                self._jobs.pop(job.id, None)
            else:
                job.state = JobState.COMPLETED
        finally:
            slots.release()
            self._wakeup.set()

    def emit_error(self, exc: Exception) -> None:
        """Report a queue-level error to the registered callbacks, as a broker failure would."""
        logger.error("consumer error", queue=self.name, error=str(exc))
        for callback in self._error_callbacks:
            callback(exc)
