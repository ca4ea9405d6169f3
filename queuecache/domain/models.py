"""
Domain models for queuecache — backed by Pydantic v2.

Configuration objects are frozen (immutable): a facade reads them once at
construction and never mutates them. Pydantic handles field validation and
type coercion (e.g. "bull" → ServiceType.BULL).

Required-field checks are *not* expressed as Pydantic constraints. Which
fields are required depends on the service type, so the facades validate
them and raise ConfigurationError instead of pydantic.ValidationError.
"""

from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

#: Default cache entry lifetime in seconds (2 hours).
DEFAULT_EXPIRY_SECONDS = 7200


class ServiceType(str, Enum):
    """Closed set of backing queue technologies. Only BULL is implemented."""

    SQS = "sqs"
    BULL = "bull"
    KAFKA = "kafka"
    TOPIC = "topic"


class JobState(str, Enum):
    """Lifecycle states of a job held by the backing queue."""

    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class ListenerState(str, Enum):
    """Listener lifecycle of a QueueService. Transitions are one-way."""

    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    LISTENING = "listening"


class RedisConnectionParams(BaseModel):
    """Broker connection parameters for Redis-backed queues."""

    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    username: str | None = None
    password: str | None = None

    def to_redis_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for a Redis client, omitting unset credentials."""
        return self.model_dump(exclude_none=True)


class QueueConfiguration(BaseModel):
    """
    Construction-time configuration of a QueueService.

    service_type      — backing technology (only BULL is implemented)
    queue_name        — logical queue name
    queue_prefix      — key namespace of the queue inside the broker
    connection_params — broker connection parameters
    """

    model_config = ConfigDict(frozen=True)

    service_type: ServiceType = ServiceType.BULL
    queue_name: str = ""
    queue_prefix: str = ""
    connection_params: RedisConnectionParams | None = None


class CacheConfiguration(BaseModel):
    """
    Construction-time configuration of a CacheService.

    service_name scopes every non-global key as "<service_name>:<key>".
    options are forwarded verbatim to the Redis client constructor.
    """

    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int = 6379
    service_name: str = ""
    password: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)
    default_expiry: int = Field(default=DEFAULT_EXPIRY_SECONDS, gt=0)


class ListenerConfig(BaseModel):
    """Handlers and concurrency registered through QueueService.add_listener."""

    model_config = ConfigDict(frozen=True)

    message_handler: Callable[..., Any]
    on_consumer_error: Callable[..., Any] | None = None
    max_in_progress: int = Field(default=1, ge=1)
    # Reserved: per-batch delivery is not implemented, jobs are delivered one by one.
    is_batch_pull: bool = False
