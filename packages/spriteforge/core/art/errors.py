"""Error taxonomy for the art generation pipeline.

Every error carries a class-level ``retryable`` flag. The job queue consults it
to decide whether a failed attempt is worth repeating: configuration and
validation problems can never be fixed by trying again, transient provider
failures might be.
"""

from __future__ import annotations


class ArtError(Exception):
    """Base class for all art pipeline errors."""

    retryable: bool = False


class InvalidRequestError(ArtError):
    """Illegal asset type, non-enumerated size, or empty/oversized description."""


class ProviderUnavailableError(ArtError):
    """A specific provider was requested but cannot be used (credentials/config)."""

    def __init__(self, provider: str, message: str | None = None) -> None:
        self.provider = provider
        super().__init__(message or f"Provider '{provider}' is not available")


class NoProvidersAvailableError(ArtError):
    """Hybrid selection found no usable provider at all."""

    def __init__(self, message: str = "No art providers available") -> None:
        super().__init__(message)


class GenerationFailureError(ArtError):
    """A provider call failed, timed out, or returned unusable data."""

    retryable = True


class CacheIOError(ArtError):
    """Reading or writing the asset cache failed."""


class JobCancelledError(ArtError):
    """The job was cancelled before it started."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id} cancelled")


class QueueClearedError(ArtError):
    """The job was dropped by a queue clear before it started."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id} dropped: queue cleared")


def is_retryable(error: BaseException) -> bool:
    """Whether a failed attempt should be retried.

    Unknown exception types are assumed transient.
    """
    if isinstance(error, ArtError):
        return error.retryable
    return True
