"""
queuecache — queue-and-cache facade over a delayed job queue and a
compressed key-value cache.

Application code talks to two facades and never to the technologies behind
them:

  QueueService  — publish jobs, aggregate payloads into shared batch jobs,
                  and run a listener that feeds jobs to a handler
  CacheService  — Snappy-compressed get/set with TTLs, multi-key operations,
                  function memoization and atomic pattern deletion

Quick start
-----------
    import asyncio
    from queuecache import QueueConfiguration, QueueService, RedisConnectionParams
    from queuecache.adapters.queue.memory import InMemoryJobQueue

    async def main():
        config = QueueConfiguration(
            queue_name="emails",
            queue_prefix="app",
            connection_params=RedisConnectionParams(),
        )
        async with QueueService(config, backend=InMemoryJobQueue()) as queue:
            # 25 items with batch_size=20: one full batch, one of 5 items
            await queue.publish_in_batches(range(25), delay=15_000, batch_size=20)

            queue.add_listener(message_handler=lambda job: print(job.data))
            await queue.start_listener()
            await asyncio.sleep(0.1)

    asyncio.run(main())

Backends
--------
Queue  (JobQueuePort):      BullJobQueue (BullMQ), InMemoryJobQueue
Cache  (KeyValueStorePort): RedisKeyValueStore (redis.asyncio), InMemoryKeyValueStore

Architecture
------------
Follows the Ports & Adapters pattern:
  domain/   — configuration models, enums and errors
  ports/    — Protocol interfaces (JobQueuePort, KeyValueStorePort)
  core/     — facades, batching and the compression codec
  adapters/ — concrete queue and store implementations
"""
from __future__ import annotations

from queuecache.adapters.queue.memory import InMemoryJobQueue
from queuecache.adapters.store.memory import InMemoryKeyValueStore
from queuecache.adapters.store.redis import RedisKeyValueStore
from queuecache.config import Settings, get_settings
from queuecache.core.cache_service import CacheService
from queuecache.core.queue_service import QueueService
from queuecache.domain.errors import (
    BackingServiceError,
    CompressionError,
    ConfigurationError,
    ListenerStateError,
    PromotionRaceError,
    QueueCacheError,
    UnsupportedServiceTypeError,
    ValidationError,
)
from queuecache.domain.models import (
    DEFAULT_EXPIRY_SECONDS,
    CacheConfiguration,
    JobState,
    ListenerConfig,
    ListenerState,
    QueueConfiguration,
    RedisConnectionParams,
    ServiceType,
)
from queuecache.ports.job_queue import JobQueuePort, QueuedJob
from queuecache.ports.kv_store import KeyValueStorePort

__all__ = [
    # Configuration and domain models
    "DEFAULT_EXPIRY_SECONDS",
    "CacheConfiguration",
    "JobState",
    "ListenerConfig",
    "ListenerState",
    "QueueConfiguration",
    "RedisConnectionParams",
    "ServiceType",
    "Settings",
    "get_settings",
    # Errors
    "QueueCacheError",
    "BackingServiceError",
    "CompressionError",
    "ConfigurationError",
    "ListenerStateError",
    "PromotionRaceError",
    "UnsupportedServiceTypeError",
    "ValidationError",
    # Ports (for typing custom adapters)
    "JobQueuePort",
    "KeyValueStorePort",
    "QueuedJob",
    # Facades
    "CacheService",
    "QueueService",
    # Built-in adapters
    "InMemoryJobQueue",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
]
