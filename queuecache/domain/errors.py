"""
Exception hierarchy for queuecache.

QueueCacheError
├── ConfigurationError            — missing or invalid construction field
│   └── UnsupportedServiceTypeError — service type declared but not implemented
├── ListenerStateError            — listener lifecycle called out of order
├── ValidationError               — call arguments rejected before any I/O
├── PromotionRaceError            — job already left the delayed state
├── CompressionError              — codec failure (wraps original exception)
└── BackingServiceError           — queue/store failure (wraps original exception)
"""

from __future__ import annotations


class QueueCacheError(Exception):
    """Base class for all queuecache exceptions."""


class ConfigurationError(QueueCacheError):
    """Raised synchronously by a facade constructor. Never retried."""


class UnsupportedServiceTypeError(ConfigurationError):
    """Raised when a declared service type has no backing implementation."""

    def __init__(self, service_type: str) -> None:
        self.service_type = service_type
        super().__init__(f"Queue service type {service_type!r} is not supported")


class ListenerStateError(QueueCacheError):
    """Raised when add_listener/start_listener are called in the wrong state."""


class ValidationError(QueueCacheError, ValueError):
    """Raised when call arguments are rejected before contacting the backend."""


class PromotionRaceError(QueueCacheError):
    """
    Raised by an adapter when promoting a job that is no longer delayed.

    The batching publisher treats this as the normal signal that the job
    already became active through another path — not an error.
    """

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id!r} cannot be promoted; it is not delayed")


class CompressionError(QueueCacheError):
    """
    Wraps a failure from the compression codec.

    Attributes
    ----------
    cause : Exception
        The original exception from the codec.
    """

    def __init__(self, message: str, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"{message}: {cause}")


class BackingServiceError(QueueCacheError):
    """
    Wraps a failure from the backing queue or key-value store.

    Attributes
    ----------
    cause : Exception
        The original exception from the client library.
    """

    def __init__(self, message: str, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"{message}: {cause}")
