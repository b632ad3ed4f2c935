"""Art generation pipeline models.

Defines the data model shared by the cache, queue, providers and service:
- AssetType / AssetSize / ASSET_SIZES: what can be generated, and at which sizes
- GenerationRequest: immutable caller input
- GenerationJob: mutable record of one queued generation (owned by AssetQueue)
- GenerationResult / CachedResponse / QueuedResponse: what generate() returns
- CacheEntry / CacheStats: persisted cache index records and aggregates
- QueueStats: queue counters
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from spriteforge.core.art.errors import InvalidRequestError

MAX_DESCRIPTION_LENGTH = 500


class AssetType(str, Enum):
    """Category of generated image.

    Each type has its own enumerated legal sizes (see ASSET_SIZES) and
    cache subdirectory.
    """

    CHARACTER = "character"
    MONSTER = "monster"
    SCENE = "scene"
    ROOM = "room"
    EFFECT = "effect"

    @property
    def subdir(self) -> str:
        """Cache subdirectory name (plural form)."""
        return f"{self.value}s"

    def is_sprite(self) -> bool:
        """Whether this type is stored as a palette-quantized sprite."""
        return self in {AssetType.CHARACTER, AssetType.MONSTER}


class GenerationPriority(str, Enum):
    """Queue priority. Lower rank runs first."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: dict[GenerationPriority, int] = {
    GenerationPriority.HIGH: 0,
    GenerationPriority.NORMAL: 1,
    GenerationPriority.LOW: 2,
}


class JobStatus(str, Enum):
    """Lifecycle state of a GenerationJob."""

    QUEUED = "queued"
    GENERATING = "generating"
    COMPLETE = "complete"
    FAILED = "failed"

    def is_finished(self) -> bool:
        return self in {JobStatus.COMPLETE, JobStatus.FAILED}


class ProviderName(str, Enum):
    """Concrete generation backends."""

    REPLICATE = "replicate"
    DALLE = "dalle"
    GEMINI = "gemini"


class ProviderMode(str, Enum):
    """Service-level provider configuration: one fixed backend, or hybrid selection."""

    REPLICATE = "replicate"
    DALLE = "dalle"
    GEMINI = "gemini"
    HYBRID = "hybrid"


class AssetSize(BaseModel):
    """A (width, height) pair in pixels."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0)
    height: int = Field(gt=0)

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def is_square(self) -> bool:
        return self.width == self.height

    @classmethod
    def parse(cls, value: str) -> AssetSize:
        """Parse the ``WxH`` string form (e.g. ``"64x64"``).

        Raises:
            ValueError: If the string is not two positive integers joined by 'x'.
        """
        parts = value.lower().strip().split("x")
        if len(parts) != 2:
            raise ValueError(f"Invalid size '{value}', expected WIDTHxHEIGHT")
        try:
            width, height = int(parts[0]), int(parts[1])
        except ValueError as e:
            raise ValueError(f"Invalid size '{value}', expected WIDTHxHEIGHT") from e
        return cls(width=width, height=height)


# First entry of each list is the canonical default size for that type.
ASSET_SIZES: dict[AssetType, tuple[AssetSize, ...]] = {
    AssetType.CHARACTER: (AssetSize(width=64, height=64), AssetSize(width=128, height=128)),
    AssetType.MONSTER: (AssetSize(width=128, height=128), AssetSize(width=256, height=256)),
    AssetType.SCENE: (AssetSize(width=512, height=288), AssetSize(width=1024, height=576)),
    AssetType.ROOM: (AssetSize(width=1024, height=768), AssetSize(width=1920, height=1080)),
    AssetType.EFFECT: (AssetSize(width=64, height=64), AssetSize(width=128, height=128)),
}


def default_size(asset_type: AssetType) -> AssetSize:
    """Canonical size for an asset type."""
    return ASSET_SIZES[asset_type][0]


class GenerationRequest(BaseModel):
    """Immutable request for one generated asset.

    Attributes:
        asset_type: Category of asset (accepts ``type`` as an input alias).
        description: Free-text description of the subject.
        size: Requested size; None means the type's default size.
        priority: Queue priority for asynchronous generation.
        wait_for_result: Block until the asset exists instead of queueing.
        session_id: Caller session used to route progress events.
        metadata: Opaque caller data, passed through to providers.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    asset_type: AssetType = Field(validation_alias=AliasChoices("asset_type", "type"))
    description: str
    size: AssetSize | None = None
    priority: GenerationPriority = GenerationPriority.NORMAL
    wait_for_result: bool = False
    session_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("size", mode="before")
    @classmethod
    def _parse_size_string(cls, v: Any) -> Any:
        if isinstance(v, str):
            return AssetSize.parse(v)
        return v

    @property
    def effective_size(self) -> AssetSize:
        return self.size or default_size(self.asset_type)


def validate_request(request: GenerationRequest) -> AssetSize:
    """Check a request against the per-type rules and resolve its size.

    Args:
        request: The request to validate.

    Returns:
        The effective AssetSize (requested or type default).

    Raises:
        InvalidRequestError: Blank or oversized description, or a size that is
            not enumerated for the asset type.
    """
    if not request.description.strip():
        raise InvalidRequestError("Description is required")

    if len(request.description) > MAX_DESCRIPTION_LENGTH:
        raise InvalidRequestError(
            f"Description must be {MAX_DESCRIPTION_LENGTH} characters or less"
        )

    size = request.effective_size
    allowed = ASSET_SIZES[request.asset_type]
    if size not in allowed:
        allowed_str = ", ".join(str(s) for s in allowed)
        raise InvalidRequestError(
            f"Invalid size {size} for {request.asset_type.value}; must be one of: {allowed_str}"
        )

    return size


def parse_request(data: Mapping[str, Any]) -> GenerationRequest:
    """Build a GenerationRequest from loose input (CLI arguments, config files).

    Raises:
        InvalidRequestError: On any schema problem, including unknown asset types.
    """
    try:
        return GenerationRequest.model_validate(dict(data))
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidRequestError(f"Invalid generation request: {problems}") from e


@dataclass
class GenerationJob:
    """Record of one generation attempt sequence for a cache miss.

    Mutated only by AssetQueue; callers receive copies.
    """

    id: str
    request: GenerationRequest
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    attempts: int = 0
    result: GenerationResult | None = None
    error: str | None = None


class GenerationResult(BaseModel):
    """Output of a successful generation.

    ``image_bytes`` is only populated when the result could not be written to
    the cache, so the caller still holds the asset in memory.
    """

    url: str
    local_path: str
    cache_key: str
    width: int
    height: int
    provider: ProviderName
    generation_time_ms: float
    cached: bool = False
    image_bytes: bytes | None = Field(default=None, exclude=True, repr=False)


class CachedResponse(BaseModel):
    """Returned by generate() on a cache hit."""

    status: Literal["ready"] = "ready"
    url: str
    cached: Literal[True] = True
    cache_key: str


class QueuedResponse(BaseModel):
    """Returned by generate() when the request was queued for later generation."""

    job_id: str
    status: Literal["queued"] = "queued"
    placeholder: str
    estimated_time_ms: float
    position: int


ArtResponse = CachedResponse | GenerationResult | QueuedResponse


class CacheEntry(BaseModel):
    """Persisted cache index record for one generated asset.

    Timestamps are Unix epoch seconds.
    """

    cache_key: str
    asset_type: AssetType
    description: str
    normalized_description: str
    file_path: str
    url: str
    width: int
    height: int
    provider: ProviderName
    created_at: float
    last_accessed_at: float
    access_count: int = 0
    size_bytes: int = 0


class CacheStats(BaseModel):
    """Aggregate cache statistics."""

    total_entries: int = 0
    total_size_bytes: int = 0
    hit_count: int = 0
    miss_count: int = 0
    hit_rate: float = 0.0
    entries_by_type: dict[AssetType, int] = Field(default_factory=dict)


class QueueStats(BaseModel):
    """Queue counters.

    Attributes:
        pending: Jobs with no attempt made yet (retry backoff excluded).
        active: Jobs in ``generating`` state.
        completed: Finished jobs still inside the retention window.
        failed: Failed jobs still inside the retention window.
        size: Jobs waiting in the dispatch heap (never started).
    """

    pending: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    size: int = 0
