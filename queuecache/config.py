"""
Environment-based settings for start-up code.

The facades themselves only accept explicit configuration objects; Settings
is a convenience for applications that keep their connection details in the
environment (or a .env file):

    QUEUECACHE_REDIS_HOST=redis.internal
    QUEUECACHE_SERVICE_NAME=billing
    QUEUECACHE_QUEUE_NAME=invoices
    QUEUECACHE_QUEUE_PREFIX=billing

    settings = get_settings()
    queue = QueueService(settings.queue_configuration())
    cache = CacheService(settings.cache_configuration())

Missing required values are not rejected here: the facades raise
ConfigurationError when they are constructed.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from queuecache.core.batching import DEFAULT_BATCH_DELAY_MS, DEFAULT_BATCH_SIZE
from queuecache.domain.models import (
    DEFAULT_EXPIRY_SECONDS,
    CacheConfiguration,
    QueueConfiguration,
    RedisConnectionParams,
    ServiceType,
)


class Settings(BaseSettings):
    """Connection and tuning values read from QUEUECACHE_* variables."""

    model_config = SettingsConfigDict(
        env_prefix="QUEUECACHE_",
        env_file=".env",
        extra="ignore",
    )

    redis_host: str = Field(default="localhost", description="Redis server host")
    redis_port: int = Field(default=6379, description="Redis server port")
    redis_db: int = Field(default=0, description="Redis database used by the queue")
    redis_password: str | None = Field(default=None, description="Redis password")

    service_name: str = Field(default="", description="Cache key scope")
    service_type: ServiceType = Field(default=ServiceType.BULL)
    queue_name: str = Field(default="", description="Logical queue name")
    queue_prefix: str = Field(default="", description="Queue key namespace")

    default_expiry: int = Field(default=DEFAULT_EXPIRY_SECONDS, gt=0)
    batch_delay_ms: int = Field(default=DEFAULT_BATCH_DELAY_MS, ge=0)
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)

    def queue_configuration(self) -> QueueConfiguration:
        return QueueConfiguration(
            service_type=self.service_type,
            queue_name=self.queue_name,
            queue_prefix=self.queue_prefix,
            connection_params=RedisConnectionParams(
                host=self.redis_host,
                port=self.redis_port,
                db=self.redis_db,
                password=self.redis_password,
            ),
        )

    def cache_configuration(self) -> CacheConfiguration:
        return CacheConfiguration(
            host=self.redis_host,
            port=self.redis_port,
            service_name=self.service_name,
            password=self.redis_password,
            default_expiry=self.default_expiry,
        )


@lru_cache
def get_settings() -> Settings:
    """Process-wide Settings, read once."""
    return Settings()
