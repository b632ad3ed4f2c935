"""On-demand pixel art generation pipeline.

Content-addressable asset cache, bounded priority queue, pluggable generation
backends and nearest-neighbour post-processing, tied together by
ArtGenerationService.
"""

from spriteforge.core.art.cache import AssetCache, generate_cache_key, normalize_description
from spriteforge.core.art.errors import (
    ArtError,
    CacheIOError,
    GenerationFailureError,
    InvalidRequestError,
    JobCancelledError,
    NoProvidersAvailableError,
    ProviderUnavailableError,
    QueueClearedError,
)
from spriteforge.core.art.events import EventBus, EventType, LifecycleEvent
from spriteforge.core.art.models import (
    ASSET_SIZES,
    AssetSize,
    AssetType,
    CachedResponse,
    CacheEntry,
    CacheStats,
    GenerationJob,
    GenerationPriority,
    GenerationRequest,
    GenerationResult,
    JobStatus,
    ProviderMode,
    ProviderName,
    QueuedResponse,
    QueueStats,
)
from spriteforge.core.art.queue import AssetQueue
from spriteforge.core.art.service import ArtGenerationService, create_art_service

__all__ = [
    # Models
    "ASSET_SIZES",
    "AssetSize",
    "AssetType",
    "CachedResponse",
    "CacheEntry",
    "CacheStats",
    "GenerationJob",
    "GenerationPriority",
    "GenerationRequest",
    "GenerationResult",
    "JobStatus",
    "ProviderMode",
    "ProviderName",
    "QueuedResponse",
    "QueueStats",
    # Errors
    "ArtError",
    "CacheIOError",
    "GenerationFailureError",
    "InvalidRequestError",
    "JobCancelledError",
    "NoProvidersAvailableError",
    "ProviderUnavailableError",
    "QueueClearedError",
    # Events
    "EventBus",
    "EventType",
    "LifecycleEvent",
    # Components
    "AssetCache",
    "AssetQueue",
    "ArtGenerationService",
    "create_art_service",
    "generate_cache_key",
    "normalize_description",
]
