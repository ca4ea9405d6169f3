"""
QueueService — technology-neutral facade over a backing job queue.

Usage
-----
    from queuecache import QueueConfiguration, QueueService, RedisConnectionParams

    config = QueueConfiguration(
        service_type="bull",
        queue_name="notifications",
        queue_prefix="app",
        connection_params=RedisConnectionParams(host="localhost"),
    )

    async with QueueService(config) as queue:
        await queue.publish({"user": 42}, delay=1000)
        await queue.publish_in_batches([{"user": 1}, {"user": 2}])

        queue.add_listener(message_handler=handle, on_consumer_error=report)
        await queue.start_listener()

Service types
-------------
The backend is chosen through a dispatch table keyed by ServiceType. Only
BULL has a backend; the other declared types fail at construction with
UnsupportedServiceTypeError. A backend may also be injected directly (tests
use InMemoryJobQueue), in which case the configuration is still validated.

Listener lifecycle
------------------
    UNREGISTERED --add_listener()--> REGISTERED --start_listener()--> LISTENING

LISTENING is terminal: there is no stop/restart. close() only releases the
backend's connections.
"""
from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable, Iterable, Mapping
from types import TracebackType
from typing import Any

import pydantic
import structlog

from queuecache.core.asyncutils import maybe_await
from queuecache.core.batching import (
    DEFAULT_BATCH_DELAY_MS,
    DEFAULT_BATCH_SIZE,
    all_batches_full,
    select_batch,
)
from queuecache.domain.errors import (
    ConfigurationError,
    ListenerStateError,
    PromotionRaceError,
    UnsupportedServiceTypeError,
    ValidationError,
)
from queuecache.domain.models import (
    ListenerConfig,
    ListenerState,
    QueueConfiguration,
    ServiceType,
)
from queuecache.ports.job_queue import JobQueuePort, QueuedJob

logger = structlog.get_logger(__name__)

BackendFactory = Callable[[QueueConfiguration], JobQueuePort]


def _build_bull(config: QueueConfiguration) -> JobQueuePort:
    from queuecache.adapters.queue.bull import BullJobQueue

    if config.connection_params is None:
        raise ConfigurationError("Missing connection_params")
    return BullJobQueue(
        name=config.queue_name,
        prefix=config.queue_prefix,
        connection=config.connection_params.to_redis_kwargs(),
    )


_BACKENDS: dict[ServiceType, BackendFactory] = {
    ServiceType.BULL: _build_bull,
}

_REQUIRED_FIELDS: dict[ServiceType, tuple[str, ...]] = {
    ServiceType.BULL: ("queue_name", "queue_prefix", "connection_params"),
}


def validate_configuration(config: QueueConfiguration) -> None:
    """Raise ConfigurationError unless `config` is usable for its service type."""
    if config.service_type not in _BACKENDS:
        raise UnsupportedServiceTypeError(config.service_type.value)
    for field in _REQUIRED_FIELDS[config.service_type]:
        if not getattr(config, field):
            raise ConfigurationError(f"Missing {field}")


class QueueService:
    """
    Facade over one logical queue.

    Owns its backend exclusively. Create one per queue at start-up and pass
    it to whoever needs to publish or consume.
    """

    def __init__(
        self,
        config: QueueConfiguration,
        backend: JobQueuePort | None = None,
    ) -> None:
        validate_configuration(config)
        self._config = config
        self._backend = backend if backend is not None else _BACKENDS[config.service_type](config)
        self._listener: ListenerConfig | None = None
        self._state = ListenerState.UNREGISTERED
        self._reports: set[asyncio.Task[None]] = set()
        self._log = logger.bind(queue=config.queue_name, service_type=config.service_type.value)
        self._log.info("queue service created")

    async def __aenter__(self) -> QueueService:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def config(self) -> QueueConfiguration:
        return self._config

    @property
    def listener_state(self) -> ListenerState:
        return self._state

    @property
    def listener(self) -> ListenerConfig | None:
        return self._listener

    # ------------------------------------------------------------------ #
    # Publishing                                                           #
    # ------------------------------------------------------------------ #

    async def publish(
        self,
        payload: Any,
        delay: int = 0,
        spread_payload: bool = False,
        options: Mapping[str, Any] | None = None,
    ) -> QueuedJob:
        """
        Create exactly one job.

        payload        : job data, or with spread_payload=True a sequence whose
                         truthy elements become the positional arguments of the
                         backend's add(), e.g. ["job-name", {"method": "POST"}]
        delay          : milliseconds before the job becomes eligible
        options        : backend job options (attempts, backoff, ...); "delay"
                         and "removeOnComplete" are always overridden
        """
        if delay < 0:
            raise ValidationError(f"delay must be >= 0, got {delay}")
        job_options = {**(options or {}), "removeOnComplete": True, "delay": delay}
        if spread_payload:
            job = await self._backend.add(*[p for p in payload if p], options=job_options)
        else:
            job = await self._backend.add(payload, options=job_options)
        self._log.debug("job published", job_id=job.id, delay=delay)
        return job

    async def publish_in_batches(
        self,
        items: Iterable[Any],
        delay: int = DEFAULT_BATCH_DELAY_MS,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        """
        Append each item to the fullest open batch, or start a new batch.

        Items are handled strictly one after another. A new batch waits
        `delay` ms before it becomes eligible; a batch that reaches
        `batch_size` items is promoted so it is processed right away.

        The read → select → update sequence is not atomic: concurrent
        callers on the same queue can both pick the same batch, and the last
        update wins.
        """
        if batch_size < 1:
            raise ValidationError(f"batch_size must be >= 1, got {batch_size}")
        if delay < 0:
            raise ValidationError(f"delay must be >= 0, got {delay}")
        for item in items:
            await self._publish_batch_item(item, delay, batch_size)

    async def _publish_batch_item(self, item: Any, delay: int, batch_size: int) -> None:
        jobs = await self._backend.get_jobs()
        batch = None if all_batches_full(jobs, batch_size) else select_batch(jobs, batch_size)
        if batch is None:
            # A one-item batch is already full and must not wait out the delay.
            start_delay = 0 if batch_size == 1 else delay
            job = await self._backend.add(
                [item], options={"removeOnComplete": True, "delay": start_delay}
            )
            self._log.debug("batch started", job_id=job.id, delay=start_delay)
            return

        updated = [*batch.data, item]
        await batch.update(updated)
        if len(updated) < batch_size:
            return
        try:
            await batch.promote()
        except PromotionRaceError:
            # Already active (delay elapsed or taken by a consumer); nothing to do.
            self._log.debug("batch already active", job_id=batch.id)
            return
        self._log.debug("batch full, promoted", job_id=batch.id, size=len(updated))

    # ------------------------------------------------------------------ #
    # Listening                                                            #
    # ------------------------------------------------------------------ #

    def add_listener(
        self,
        *,
        message_handler: Callable[..., Any],
        on_consumer_error: Callable[..., Any] | None = None,
        max_in_progress: int = 1,
        is_batch_pull: bool = False,
    ) -> QueueService:
        """Register the handlers used once the listener starts."""
        if self._state is ListenerState.LISTENING:
            raise ListenerStateError("Listener already started; handlers are fixed")
        try:
            self._listener = ListenerConfig(
                message_handler=message_handler,
                on_consumer_error=on_consumer_error,
                max_in_progress=max_in_progress,
                is_batch_pull=is_batch_pull,
            )
        except pydantic.ValidationError as exc:
            raise ConfigurationError(f"Invalid listener configuration: {exc}") from exc
        self._state = ListenerState.REGISTERED
        return self

    async def start_listener(self) -> None:
        """Subscribe the registered handler to the backing queue."""
        if self._state is not ListenerState.REGISTERED or self._listener is None:
            raise ListenerStateError(
                f"start_listener() requires a registered listener, state is {self._state.value}"
            )
        listener = self._listener
        self._backend.on_error(functools.partial(self._on_backend_error, listener))
        await self._backend.process(
            functools.partial(self._dispatch, listener),
            concurrency=listener.max_in_progress,
        )
        self._state = ListenerState.LISTENING
        self._log.info("listener started", max_in_progress=listener.max_in_progress)

    async def _dispatch(self, listener: ListenerConfig, job: QueuedJob) -> Any:
        try:
            return await maybe_await(listener.message_handler(job))
        except Exception as exc:
            self._log.warning("message handler failed", job_id=job.id, error=str(exc))
            await self._report(listener, exc)
            raise

    def _on_backend_error(self, listener: ListenerConfig, exc: Exception) -> None:
        self._log.error("backing queue error", error=str(exc))
        task = asyncio.get_running_loop().create_task(self._report(listener, exc))
        self._reports.add(task)
        task.add_done_callback(self._reports.discard)

    async def _report(self, listener: ListenerConfig, exc: Exception) -> None:
        if listener.on_consumer_error is None:
            return
        try:
            await maybe_await(listener.on_consumer_error(exc))
        except Exception as handler_exc:
            self._log.error("consumer error handler failed", error=str(handler_exc))

    def parse_queue_message(self, message: Any) -> Any:
        """Normalise a delivered message; Bull jobs are passed through unchanged."""
        if self._config.service_type is ServiceType.BULL:
            return message
        raise UnsupportedServiceTypeError(self._config.service_type.value)

    async def close(self) -> None:
        """Release the backend's connections. The service is unusable afterwards."""
        if self._reports:
            await asyncio.gather(*self._reports, return_exceptions=True)
        await self._backend.close()
